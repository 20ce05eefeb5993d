"""Application layer - wiring of the recovery use cases for one session."""

from dataclasses import dataclass

from sqlmodel import Session

from ..config import Settings
from ..domain.entities import ClaimPolicy
from ..domain.ports import ChallengeService, EmailSender, MembershipOracle
from ..infrastructure.challenge import TokenChallengeService
from ..infrastructure.email import build_email_sender
from ..infrastructure.membership import SqlMembershipOracle
from ..utils import Clock, utc_now
from .claim_registry import ClaimRegistry
from .endorsement_ledger import EndorsementLedger
from .grant_executor import GrantExecutor
from .notifications import NotificationCenter
from .scheduler import CoolingOffScheduler


@dataclass
class RecoveryServices:
    registry: ClaimRegistry
    ledger: EndorsementLedger
    grants: GrantExecutor
    scheduler: CoolingOffScheduler
    notifications: NotificationCenter


def build_services(
    session: Session,
    settings: Settings,
    email_sender: EmailSender | None = None,
    clock: Clock = utc_now,
    membership: MembershipOracle | None = None,
    challenges: ChallengeService | None = None,
) -> RecoveryServices:
    """Assemble the use cases around one session and one clock."""
    membership = membership or SqlMembershipOracle(session, clock)
    challenges = challenges or TokenChallengeService(
        session,
        email_sender or build_email_sender(settings),
        settings.public_base_url,
        clock,
    )
    notifications = NotificationCenter(session, membership, clock)
    registry = ClaimRegistry(
        session,
        membership,
        challenges,
        ClaimPolicy.from_settings(settings),
        notifications=notifications,
        clock=clock,
        max_attempts=settings.transaction_max_attempts,
        backoff_ms=settings.transaction_retry_backoff_ms,
    )
    return RecoveryServices(
        registry=registry,
        ledger=EndorsementLedger(registry),
        grants=GrantExecutor(registry),
        scheduler=CoolingOffScheduler(registry),
        notifications=notifications,
    )
