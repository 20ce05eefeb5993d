import logging
from typing import Any

from fastapi import Request

from .request_utils import get_client_ip


def log_claim_command(
    command: str,
    actor_id: str,
    claim_id: str,
    family_id: str | None = None,
    **context: Any,
) -> None:
    """Record a recovery command that was applied.

    Args:
        command: Service operation, e.g. 'submit_claim' or 'grant_admin_rights'
        actor_id: Member who issued the command
        claim_id: Claim the command acted on
        family_id: Family the claim belongs to, when the caller has it at hand
        **context: Extra fields such as the claim type or endorsement type
    """
    logging.getLogger("claims.commands").info(
        f"{command} on claim {claim_id} by {actor_id}",
        extra={
            "command": command,
            "actor_id": actor_id,
            "claim_id": claim_id,
            "family_id": family_id,
            **context,
        },
    )


def log_claim_transition(
    claim_id: str,
    from_status: str | None,
    to_status: str | None,
    actor_id: str,
    reason_code: str,
    applied: bool = True,
    logger_name: str = "claims",
) -> None:
    """Log a claim state change or a rejected attempt at one.

    Args:
        claim_id: Claim being transitioned
        from_status: Status before the attempt
        to_status: Requested status
        actor_id: User id or 'system'
        reason_code: Machine readable reason
        applied: False for rejected or raced attempts
        logger_name: Name of the logger to use
    """
    logger = logging.getLogger(logger_name)

    log_data = {
        "claim_id": claim_id,
        "from_status": from_status,
        "to_status": to_status,
        "actor_id": actor_id,
        "reason_code": reason_code,
        "applied": applied,
    }

    if applied:
        logger.info(
            f"Claim {claim_id}: {from_status} -> {to_status} ({reason_code})",
            extra=log_data,
        )
    else:
        logger.warning(
            f"Claim {claim_id}: rejected {reason_code} by {actor_id}", extra=log_data
        )


def log_api_request(
    request: Request, route: str, status_code: int, duration_ms: float
) -> None:
    """One line per API call, keyed by route template and caller.

    The acting user and claim come from the path parameters, so a security
    review can follow one member's requests without parsing URLs. Anything
    4xx is a warning since most are refused recovery attempts.
    """
    params = request.path_params
    log_data = {
        "method": request.method,
        "route": route,
        "status_code": status_code,
        "user_id": params.get("user_id"),
        "claim_id": params.get("claim_id"),
        "family_id": params.get("family_id"),
        "client_ip": get_client_ip(request),
        "duration_ms": round(duration_ms, 2),
    }

    if status_code >= 500:
        level = logging.ERROR
    elif status_code >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO

    logging.getLogger("api").log(
        level,
        f"{request.method} {route} -> {status_code} ({duration_ms:.1f}ms)",
        extra=log_data,
    )


def log_store_write(
    table: str, operation: str, won: bool = True, **context: Any
) -> None:
    """Log a conditional write; a lost one means another writer got there first."""
    logging.getLogger("claims.store").log(
        logging.DEBUG if won else logging.INFO,
        f"{operation} on {table} {'applied' if won else 'lost the race'}",
        extra={"table": table, "operation": operation, "won": won, **context},
    )


def log_startup(
    hostname: str,
    database_backend: str,
    endorsements_required: int,
    cooling_off_days: int,
    sweep_interval_seconds: int | None,
) -> None:
    """Log the recovery policy the process starts with."""
    logging.getLogger("system").info(
        "Admin recovery service starting",
        extra={
            "hostname": hostname,
            "database_backend": database_backend,
            "endorsements_required": endorsements_required,
            "cooling_off_days": cooling_off_days,
            # None when the background sweep is disabled
            "sweep_interval_seconds": sweep_interval_seconds,
        },
    )


def mask_email(email: str) -> str:
    """Mask an email address for logs (``o***@x.com``)."""
    local, _, domain = email.partition("@")
    if not domain:
        return "[REDACTED]"
    return f"{local[:1]}***@{domain}"
