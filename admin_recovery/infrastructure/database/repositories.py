"""Infrastructure layer - Repository implementations.

Repositories never commit; the application layer owns transaction
boundaries so that a vote, its recount and the claim update land together.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import Table, func, update
from sqlmodel import Session, col, select

from ...domain.constants import ClaimStatus, ClaimType, EndorsementType
from ...domain.entities import AuditEntry as DomainAuditEntry
from ...domain.entities import Claim as DomainClaim
from ...domain.entities import Endorsement as DomainEndorsement
from ...domain.entities import Notification as DomainNotification
from ...logging_utils import log_store_write
from .models import (
    AuditEntryRecord,
    ChallengeRecord,
    ClaimRecord,
    EndorsementRecord,
    NotificationRecord,
)

_claims: Table = ClaimRecord.__table__  # type: ignore[attr-defined]


class ClaimRepository:
    """Repository for claim persistence operations."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, claim: DomainClaim) -> DomainClaim:
        """Insert a new claim.

        Raises:
            sqlalchemy.exc.IntegrityError: If the pair already has an active claim
        """
        record = ClaimRecord.from_domain(claim)
        self.session.add(record)
        self.session.flush()
        return record.to_domain()

    def get(self, claim_id: str) -> DomainClaim | None:
        """Load the claim as currently stored, bypassing the identity map."""
        record = self.session.get(ClaimRecord, claim_id, populate_existing=True)
        return record.to_domain() if record else None

    def find_active(self, family_id: str, claimant_id: str) -> DomainClaim | None:
        record = self.session.exec(
            select(ClaimRecord)
            .where(
                ClaimRecord.family_id == family_id,
                ClaimRecord.claimant_id == claimant_id,
                col(ClaimRecord.status).in_(
                    [ClaimStatus.PENDING.value, ClaimStatus.APPROVED.value]
                ),
            )
            .execution_options(populate_existing=True)
        ).first()
        return record.to_domain() if record else None

    def find_latest(self, family_id: str, claimant_id: str) -> DomainClaim | None:
        """Return the active claim for the pair, else the most recent one."""
        active = self.find_active(family_id, claimant_id)
        if active:
            return active

        record = self.session.exec(
            select(ClaimRecord)
            .where(
                ClaimRecord.family_id == family_id,
                ClaimRecord.claimant_id == claimant_id,
            )
            .order_by(col(ClaimRecord.created_at).desc())
            .execution_options(populate_existing=True)
        ).first()
        return record.to_domain() if record else None

    def list_pending_endorsement(
        self, family_id: str, excluding: str | None = None
    ) -> list[DomainClaim]:
        statement = (
            select(ClaimRecord)
            .where(
                ClaimRecord.family_id == family_id,
                ClaimRecord.status == ClaimStatus.PENDING.value,
                ClaimRecord.claim_type == ClaimType.ENDORSEMENT.value,
            )
            .order_by(col(ClaimRecord.created_at).desc())
            .execution_options(populate_existing=True)
        )
        if excluding:
            statement = statement.where(ClaimRecord.claimant_id != excluding)
        return [record.to_domain() for record in self.session.exec(statement).all()]

    def list_overdue(self, now: datetime) -> list[DomainClaim]:
        """Active claims whose deadline has passed."""
        records = self.session.exec(
            select(ClaimRecord)
            .where(
                col(ClaimRecord.status).in_(
                    [ClaimStatus.PENDING.value, ClaimStatus.APPROVED.value]
                ),
                col(ClaimRecord.expires_at) < now,
            )
            .order_by(col(ClaimRecord.expires_at))
            .execution_options(populate_existing=True)
        ).all()
        return [record.to_domain() for record in records]

    def compare_and_swap(
        self,
        claim_id: str,
        expected_status: ClaimStatus,
        now: datetime,
        expected_version: int | None = None,
        overdue_only: bool = False,
        **values: Any,
    ) -> bool:
        """Update the claim only if it still has the expected status (and version).

        ``values`` are keyed by column name. The version is always bumped.

        Returns:
            True if this call won and the row was updated
        """
        statement = update(_claims).where(
            _claims.c.id == claim_id, _claims.c.status == expected_status.value
        )
        if expected_version is not None:
            statement = statement.where(_claims.c.version == expected_version)
        if overdue_only:
            statement = statement.where(_claims.c.expires_at < now)

        row_values = {
            key: value.value if isinstance(value, ClaimStatus) else value
            for key, value in values.items()
        }
        statement = statement.values(
            version=_claims.c.version + 1, updated_at=now, **row_values
        )

        result = self.session.connection().execute(statement)
        won = result.rowcount == 1

        log_store_write(
            "admin_claims",
            "compare_and_swap",
            won,
            claim_id=claim_id,
            expected_status=expected_status.value,
            expected_version=expected_version,
        )
        return won


class EndorsementRepository:
    """Repository for endorsement persistence operations."""

    def __init__(self, session: Session):
        self.session = session

    def add(
        self,
        claim_id: str,
        endorser_id: str,
        endorsement_type: EndorsementType,
        reason: str | None,
        now: datetime,
    ) -> DomainEndorsement:
        """Insert a vote.

        Raises:
            sqlalchemy.exc.IntegrityError: If the endorser already voted
        """
        record = EndorsementRecord(
            claim_id=claim_id,
            endorser_id=endorser_id,
            endorsement_type=endorsement_type.value,
            reason=reason,
            created_at=now,
        )
        self.session.add(record)
        self.session.flush()
        return record.to_domain()

    def find(self, claim_id: str, endorser_id: str) -> EndorsementRecord | None:
        return self.session.exec(
            select(EndorsementRecord).where(
                EndorsementRecord.claim_id == claim_id,
                EndorsementRecord.endorser_id == endorser_id,
            )
        ).first()

    def change_vote(
        self,
        record: EndorsementRecord,
        endorsement_type: EndorsementType,
        reason: str | None,
        now: datetime,
    ) -> DomainEndorsement:
        record.endorsement_type = endorsement_type.value
        record.reason = reason
        record.updated_at = now
        self.session.add(record)
        self.session.flush()
        return record.to_domain()

    def tally(self, claim_id: str) -> tuple[int, int]:
        """Count ``(support, oppose)`` votes as seen by this transaction."""
        rows = self.session.exec(
            select(EndorsementRecord.endorsement_type, func.count())
            .where(EndorsementRecord.claim_id == claim_id)
            .group_by(EndorsementRecord.endorsement_type)
        ).all()
        counts = {endorsement_type: count for endorsement_type, count in rows}
        return (
            counts.get(EndorsementType.SUPPORT.value, 0),
            counts.get(EndorsementType.OPPOSE.value, 0),
        )

    def list_for_claim(self, claim_id: str) -> list[DomainEndorsement]:
        records = self.session.exec(
            select(EndorsementRecord)
            .where(EndorsementRecord.claim_id == claim_id)
            .order_by(col(EndorsementRecord.created_at))
        ).all()
        return [record.to_domain() for record in records]


class AuditRepository:
    """Append-only access to the audit trail. There is no update or delete."""

    def __init__(self, session: Session):
        self.session = session

    def append(self, entry: DomainAuditEntry) -> None:
        self.session.add(AuditEntryRecord.from_domain(entry))

    def list_for_claim(self, claim_id: str) -> list[DomainAuditEntry]:
        records = self.session.exec(
            select(AuditEntryRecord)
            .where(AuditEntryRecord.claim_id == claim_id)
            .order_by(col(AuditEntryRecord.id))
        ).all()
        return [record.to_domain() for record in records]

    def list_for_family(self, family_id: str, limit: int = 100) -> list[DomainAuditEntry]:
        records = self.session.exec(
            select(AuditEntryRecord)
            .where(AuditEntryRecord.family_id == family_id)
            .order_by(col(AuditEntryRecord.id).desc())
            .limit(limit)
        ).all()
        return [record.to_domain() for record in records]


class ChallengeRepository:
    def __init__(self, session: Session):
        self.session = session

    def add(self, record: ChallengeRecord) -> ChallengeRecord:
        self.session.add(record)
        self.session.flush()
        return record

    def supersede_open(self, claim_id: str, now: datetime) -> int:
        """Invalidate every unused token of the claim."""
        records = self.session.exec(
            select(ChallengeRecord).where(
                ChallengeRecord.claim_id == claim_id,
                col(ChallengeRecord.used_at).is_(None),
                col(ChallengeRecord.superseded_at).is_(None),
            )
        ).all()
        for record in records:
            record.superseded_at = now
            self.session.add(record)
        return len(records)

    def find_usable(
        self, claim_id: str, token_hash: str, now: datetime
    ) -> ChallengeRecord | None:
        return self.session.exec(
            select(ChallengeRecord).where(
                ChallengeRecord.claim_id == claim_id,
                ChallengeRecord.token_hash == token_hash,
                col(ChallengeRecord.used_at).is_(None),
                col(ChallengeRecord.superseded_at).is_(None),
                col(ChallengeRecord.expires_at) >= now,
            )
        ).first()

    def mark_used(self, record: ChallengeRecord, now: datetime) -> None:
        record.used_at = now
        self.session.add(record)
        self.session.flush()


class NotificationRepository:
    def __init__(self, session: Session):
        self.session = session

    def add_many(self, records: list[NotificationRecord]) -> None:
        self.session.add_all(records)

    def list_for_recipient(
        self, recipient_id: str, unread_only: bool = False
    ) -> list[DomainNotification]:
        statement = (
            select(NotificationRecord)
            .where(NotificationRecord.recipient_id == recipient_id)
            .order_by(col(NotificationRecord.created_at).desc())
        )
        if unread_only:
            statement = statement.where(col(NotificationRecord.read_at).is_(None))
        return [record.to_domain() for record in self.session.exec(statement).all()]

    def mark_read(self, notification_id: str, recipient_id: str, now: datetime) -> bool:
        record = self.session.get(NotificationRecord, notification_id)
        if not record or record.recipient_id != recipient_id:
            return False
        if record.read_at is None:
            record.read_at = now
            self.session.add(record)
        return True

    def mark_all_read(self, recipient_id: str, now: datetime) -> int:
        records = self.session.exec(
            select(NotificationRecord).where(
                NotificationRecord.recipient_id == recipient_id,
                col(NotificationRecord.read_at).is_(None),
            )
        ).all()
        for record in records:
            record.read_at = now
            self.session.add(record)
        return len(records)
