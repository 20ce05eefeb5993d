"""Append-only audit trail of claim transitions and rejected attempts."""

from typing import Any, Final

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from ..domain.constants import AuditOutcome, ClaimStatus
from ..domain.entities import AuditEntry
from ..domain.exceptions import DomainError
from ..infrastructure.database.repositories import AuditRepository, ClaimRepository
from ..logging_config import get_logger
from ..logging_utils import log_claim_transition
from ..utils import Clock, utc_now

logger: Final = get_logger(__name__)


class AuditLog:
    """Writes audit entries. Applied transitions share the caller's transaction."""

    def __init__(self, session: Session, clock: Clock = utc_now):
        self.session = session
        self.repo = AuditRepository(session)
        self.claim_repo = ClaimRepository(session)
        self.clock = clock

    def record(
        self,
        claim_id: str,
        family_id: str,
        from_status: ClaimStatus | None,
        to_status: ClaimStatus | None,
        actor_id: str,
        reason_code: str,
        detail: dict[str, Any] | None = None,
    ) -> None:
        """Append an applied transition. Does not commit."""
        self.repo.append(
            AuditEntry(
                id=None,
                claim_id=claim_id,
                family_id=family_id,
                from_status=from_status,
                to_status=to_status,
                actor_id=actor_id,
                timestamp=self.clock(),
                reason_code=reason_code,
                detail=detail or {},
            )
        )

    def record_rejection(
        self,
        claim_id: str,
        family_id: str | None,
        actor_id: str,
        attempted: str,
        error: DomainError,
        detail: dict[str, Any] | None = None,
    ) -> None:
        """Persist a rejected command in its own transaction.

        The claim is left as it is; the entry records its current status on
        both sides. A failure to write the entry is logged, never raised, so
        the caller still sees the original rejection.
        """
        status: ClaimStatus | None = None
        try:
            claim = self.claim_repo.get(claim_id)
            if claim is not None:
                status = claim.status
                family_id = claim.family_id
            if family_id is None:
                logger.warning(
                    "Rejected command has no family to audit under",
                    claim_id=claim_id,
                    reason_code=error.code,
                )
                return
            self.repo.append(
                AuditEntry(
                    id=None,
                    claim_id=claim_id,
                    family_id=family_id,
                    from_status=status,
                    to_status=status,
                    actor_id=actor_id,
                    timestamp=self.clock(),
                    reason_code=error.code,
                    outcome=AuditOutcome.REJECTED,
                    detail={
                        "attempted": attempted,
                        "message": str(error),
                        **(detail or {}),
                    },
                )
            )
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(
                "Could not write rejection to audit log",
                claim_id=claim_id,
                reason_code=error.code,
                error=str(e),
            )
            return

        log_claim_transition(
            claim_id=claim_id,
            from_status=status.value if status else None,
            to_status=status.value if status else None,
            actor_id=actor_id,
            reason_code=error.code,
            applied=False,
        )

    def trail(self, claim_id: str) -> list[AuditEntry]:
        return self.repo.list_for_claim(claim_id)

    def family_trail(self, family_id: str, limit: int = 100) -> list[AuditEntry]:
        return self.repo.list_for_family(family_id, limit)
