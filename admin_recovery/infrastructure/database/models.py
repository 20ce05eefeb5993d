from datetime import UTC, datetime
from typing import Any

from sqlalchemy import DateTime, Index, TypeDecorator, UniqueConstraint, text
from sqlmodel import JSON, Column, Field, SQLModel

from ...domain.constants import (
    AuditOutcome,
    ClaimStatus,
    ClaimType,
    EndorsementType,
    MemberRole,
    NotificationType,
)
from ...domain.entities import AuditEntry as DomainAuditEntry
from ...domain.entities import Claim as DomainClaim
from ...domain.entities import Endorsement as DomainEndorsement
from ...domain.entities import Notification as DomainNotification
from ...utils import new_id, utc_now

_ACTIVE_CLAIM_PREDICATE = text("status IN ('pending', 'approved')")


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    Values are stored as naive UTC, since SQLite keeps no offset, and come
    back with ``tzinfo=UTC`` attached.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            raise ValueError("Datetime values must be timezone-aware")
        return value.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return value.replace(tzinfo=UTC)


class ClaimRecord(SQLModel, table=True):  # type: ignore[call-arg]
    """An admin claim. Mutated only through status-conditioned updates."""

    __tablename__: str = "admin_claims"  # type: ignore[assignment]
    __table_args__ = (
        # At most one pending/approved claim per (family, claimant)
        Index(
            "uq_admin_claims_active_pair",
            "family_id",
            "claimant_id",
            unique=True,
            sqlite_where=_ACTIVE_CLAIM_PREDICATE,
            postgresql_where=_ACTIVE_CLAIM_PREDICATE,
        ),
    )

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    family_id: str = Field(index=True)
    claimant_id: str = Field(index=True)
    claim_type: str
    status: str = Field(default=ClaimStatus.PENDING, index=True)
    reason: str | None = None
    endorsements_required: int
    endorsements_received: int = 0
    opposition_received: int = 0
    cooling_off_until: datetime | None = Field(default=None, sa_type=UTCDateTime)
    expires_at: datetime = Field(index=True, sa_type=UTCDateTime)
    claimed_at: datetime | None = Field(default=None, sa_type=UTCDateTime)
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)

    # "metadata" is reserved on declarative classes
    claim_metadata: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON)
    )
    version: int = 0

    @classmethod
    def from_domain(cls, claim: DomainClaim) -> "ClaimRecord":
        """Convert domain entity to persistence model."""
        return cls(
            id=claim.id,
            family_id=claim.family_id,
            claimant_id=claim.claimant_id,
            claim_type=claim.claim_type.value,
            status=claim.status.value,
            reason=claim.reason,
            endorsements_required=claim.endorsements_required,
            endorsements_received=claim.endorsements_received,
            opposition_received=claim.opposition_received,
            cooling_off_until=claim.cooling_off_until,
            expires_at=claim.expires_at,
            claimed_at=claim.claimed_at,
            created_at=claim.created_at,
            updated_at=claim.updated_at or claim.created_at,
            claim_metadata=dict(claim.metadata),
            version=claim.version,
        )

    def to_domain(self) -> DomainClaim:
        """Convert persistence model to domain entity."""
        return DomainClaim(
            id=self.id,
            family_id=self.family_id,
            claimant_id=self.claimant_id,
            claim_type=ClaimType(self.claim_type),
            status=ClaimStatus(self.status),
            reason=self.reason,
            endorsements_required=self.endorsements_required,
            endorsements_received=self.endorsements_received,
            opposition_received=self.opposition_received,
            cooling_off_until=self.cooling_off_until,
            expires_at=self.expires_at,
            claimed_at=self.claimed_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
            metadata=dict(self.claim_metadata or {}),
            version=self.version,
        )


class EndorsementRecord(SQLModel, table=True):  # type: ignore[call-arg]
    """A peer's vote. One row per (claim, endorser)."""

    __tablename__: str = "admin_claim_endorsements"  # type: ignore[assignment]
    __table_args__ = (
        UniqueConstraint("claim_id", "endorser_id", name="uq_endorsement_per_peer"),
    )

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    claim_id: str = Field(foreign_key="admin_claims.id", index=True)
    endorser_id: str = Field(index=True)
    endorsement_type: str = Field(default=EndorsementType.SUPPORT)
    reason: str | None = None
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    updated_at: datetime | None = Field(default=None, sa_type=UTCDateTime)

    def to_domain(self) -> DomainEndorsement:
        return DomainEndorsement(
            id=self.id,
            claim_id=self.claim_id,
            endorser_id=self.endorser_id,
            endorsement_type=EndorsementType(self.endorsement_type),
            reason=self.reason,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class AuditEntryRecord(SQLModel, table=True):  # type: ignore[call-arg]
    """Append-only audit trail. Rows are never updated or deleted."""

    __tablename__: str = "admin_claim_audit"  # type: ignore[assignment]

    # Integer key keeps entries in write order when timestamps tie
    id: int | None = Field(default=None, primary_key=True)
    # No foreign key: rejected submissions are audited before a claim exists
    claim_id: str = Field(index=True)
    family_id: str = Field(index=True)
    from_status: str | None = None
    to_status: str | None = None
    actor_id: str
    timestamp: datetime = Field(
        default_factory=utc_now, index=True, sa_type=UTCDateTime
    )
    reason_code: str
    outcome: str = Field(default=AuditOutcome.APPLIED)
    detail: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))

    @classmethod
    def from_domain(cls, entry: DomainAuditEntry) -> "AuditEntryRecord":
        return cls(
            id=entry.id,
            claim_id=entry.claim_id,
            family_id=entry.family_id,
            from_status=entry.from_status.value if entry.from_status else None,
            to_status=entry.to_status.value if entry.to_status else None,
            actor_id=entry.actor_id,
            timestamp=entry.timestamp,
            reason_code=entry.reason_code,
            outcome=entry.outcome.value,
            detail=dict(entry.detail),
        )

    def to_domain(self) -> DomainAuditEntry:
        return DomainAuditEntry(
            id=self.id,
            claim_id=self.claim_id,
            family_id=self.family_id,
            from_status=ClaimStatus(self.from_status) if self.from_status else None,
            to_status=ClaimStatus(self.to_status) if self.to_status else None,
            actor_id=self.actor_id,
            timestamp=self.timestamp,
            reason_code=self.reason_code,
            outcome=AuditOutcome(self.outcome),
            detail=dict(self.detail or {}),
        )


class ChallengeRecord(SQLModel, table=True):  # type: ignore[call-arg]
    """An email challenge token, stored as a SHA-256 digest."""

    __tablename__: str = "admin_claim_challenges"  # type: ignore[assignment]

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    claim_id: str = Field(foreign_key="admin_claims.id", index=True)
    token_hash: str = Field(index=True, max_length=64)
    email: str
    issued_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    expires_at: datetime = Field(sa_type=UTCDateTime)
    used_at: datetime | None = Field(default=None, sa_type=UTCDateTime)
    superseded_at: datetime | None = Field(default=None, sa_type=UTCDateTime)


class NotificationRecord(SQLModel, table=True):  # type: ignore[call-arg]
    __tablename__: str = "admin_claim_notifications"  # type: ignore[assignment]

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    claim_id: str = Field(foreign_key="admin_claims.id", index=True)
    recipient_id: str = Field(index=True)
    notification_type: str
    title: str
    message: str
    created_at: datetime = Field(
        default_factory=utc_now, index=True, sa_type=UTCDateTime
    )
    read_at: datetime | None = Field(default=None, sa_type=UTCDateTime)

    def to_domain(self) -> DomainNotification:
        return DomainNotification(
            id=self.id,
            claim_id=self.claim_id,
            recipient_id=self.recipient_id,
            notification_type=NotificationType(self.notification_type),
            title=self.title,
            message=self.message,
            created_at=self.created_at,
            read_at=self.read_at,
        )


class MembershipRecord(SQLModel, table=True):  # type: ignore[call-arg]
    """Family membership rows backing the SQL membership oracle."""

    __tablename__: str = "family_members"  # type: ignore[assignment]

    family_id: str = Field(primary_key=True)
    user_id: str = Field(primary_key=True)
    role: str = Field(default=MemberRole.MEMBER)
    active: bool = True
    updated_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)


class FamilyAdminLockRecord(SQLModel, table=True):  # type: ignore[call-arg]
    """One row per family, updated to serialize changes to its admin set."""

    __tablename__: str = "family_admin_locks"  # type: ignore[assignment]

    family_id: str = Field(primary_key=True)
    locked_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
