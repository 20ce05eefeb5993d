"""Operator commands for the admin-claim recovery service."""

import typer
from rich.console import Console
from rich.table import Table
from sqlmodel import Session

from .application.services import build_services
from .config import settings
from .domain.constants import MemberRole
from .domain.exceptions import ClaimNotFoundError
from .infrastructure.database.database import get_main_engine, init_db
from .infrastructure.membership import SqlMembershipOracle
from .logging_config import setup_logging

console = Console()

app = typer.Typer(
    name="admin-recovery",
    help="""Admin Claim Recovery operator tool

    Examples:
      admin-recovery init-db                    - create missing tables
      admin-recovery sweep                      - expire overdue claims once
      admin-recovery audit CLAIM_ID             - show a claim's audit trail
      admin-recovery add-member FAMILY USER     - seed a family membership
    """,
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True,
)


def main():
    """Main entry point for the CLI."""
    app()


@app.callback()
def configure(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
):
    setup_logging(log_level)


@app.command("init-db")
def init_db_command():
    """Create the database tables."""
    init_db(get_main_engine())
    console.print(f"✅ Database ready at {settings.database_url}", style="green")


@app.command()
def sweep():
    """Run one expiry pass over overdue claims."""
    engine = get_main_engine()
    init_db(engine)
    with Session(engine) as session:
        report = build_services(session, settings).scheduler.sweep()

    table = Table(title="Expiry sweep")
    table.add_column("Expired pending", justify="right")
    table.add_column("Expired approved", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_row(
        str(report.expired_pending),
        str(report.expired_approved),
        str(report.skipped),
    )
    console.print(table)


@app.command()
def audit(claim_id: str = typer.Argument(..., help="Claim to inspect")):
    """Print the audit trail of a claim."""
    with Session(get_main_engine()) as session:
        registry = build_services(session, settings).registry
        try:
            claim = registry.get_claim_by_id(claim_id)
            entries = registry.get_audit_trail(claim_id)
        except ClaimNotFoundError as e:
            console.print(f"❌ {e}", style="red")
            raise typer.Exit(code=1) from e

    console.print(
        f"Claim [bold]{claim.id}[/bold] ({claim.claim_type.value}) by "
        f"{claim.claimant_id} for family {claim.family_id}: "
        f"[cyan]{claim.status.value}[/cyan]"
    )

    table = Table(title="Audit trail")
    table.add_column("#", justify="right")
    table.add_column("Time")
    table.add_column("Actor")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Reason")
    table.add_column("Outcome")
    for entry in entries:
        table.add_row(
            str(entry.id),
            entry.timestamp.isoformat(timespec="seconds"),
            entry.actor_id,
            entry.from_status.value if entry.from_status else "-",
            entry.to_status.value if entry.to_status else "-",
            entry.reason_code,
            entry.outcome.value,
            style="red" if entry.outcome.value == "rejected" else None,
        )
    console.print(table)


@app.command("add-member")
def add_member(
    family_id: str = typer.Argument(..., help="Family id"),
    user_id: str = typer.Argument(..., help="User id"),
    admin: bool = typer.Option(False, "--admin", help="Add the user as admin"),
):
    """Add a user to a family in the built-in membership table."""
    engine = get_main_engine()
    init_db(engine)
    role = MemberRole.ADMIN if admin else MemberRole.MEMBER
    with Session(engine) as session:
        SqlMembershipOracle(session).add_member(family_id, user_id, role)
        session.commit()
    console.print(f"✅ {user_id} added to {family_id} as {role.value}", style="green")


if __name__ == "__main__":
    main()
