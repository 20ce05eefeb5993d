"""Pure domain entities without infrastructure dependencies."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Literal

from .constants import (
    ACTIVE_STATUSES,
    MAX_EMAIL_LENGTH,
    MAX_REASON_LENGTH,
    AuditOutcome,
    ClaimStatus,
    ClaimType,
    EndorsementType,
    NotificationType,
)
from .exceptions import ValidationError


def validate_reason(reason: str | None) -> None:
    """Validate a free-text reason attached to a claim or vote.

    Raises:
        ValidationError: If the reason is too long or contains control characters
    """
    if reason is None:
        return

    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationError(
            f"Reason cannot be longer than {MAX_REASON_LENGTH} characters"
        )

    for char in reason:
        # Newlines are fine in a reason, other control characters are not
        if (ord(char) < 32 and char not in "\n\r\t") or ord(char) == 127:
            raise ValidationError("Reason cannot contain control characters")


def validate_owner_email(email: str | None) -> str:
    """Validate and normalise the original owner's email address.

    Returns:
        The stripped address

    Raises:
        ValidationError: If the address is missing or malformed
    """
    if not email or not email.strip():
        raise ValidationError("Original owner email required for email challenge")

    email = email.strip()
    if len(email) > MAX_EMAIL_LENGTH:
        raise ValidationError("Original owner email is too long")

    local, sep, domain = email.rpartition("@")
    if (
        not sep
        or not local
        or "." not in domain
        or domain.startswith(".")
        or domain.endswith(".")
        or any(c.isspace() for c in email)
    ):
        raise ValidationError(f"'{email}' is not a valid email address")

    return email


@dataclass(frozen=True)
class OppositionPolicy:
    """When opposing votes deny an endorsement claim.

    ``count`` denies once oppose votes reach ``threshold``; ``majority``
    denies once there is opposition and it is at least as large as support.
    """

    mode: Literal["count", "majority"] = "count"
    threshold: int = 2

    def is_reached(self, support: int, oppose: int) -> bool:
        if self.mode == "majority":
            return oppose > 0 and oppose >= support
        return oppose >= self.threshold


@dataclass(frozen=True)
class ClaimPolicy:
    """Recovery policy constants, fixed when a claim is created."""

    endorsements_required: int = 2
    claim_ttl: timedelta = timedelta(days=7)
    cooling_off: timedelta = timedelta(days=7)
    grant_grace: timedelta = timedelta(days=7)
    opposition: OppositionPolicy = field(default_factory=OppositionPolicy)
    challenge_ttl: timedelta = timedelta(hours=24)
    challenge_reissue_cooldown: timedelta = timedelta(minutes=5)
    challenge_max_issues: int = 5

    @classmethod
    def from_settings(cls, settings: Any) -> "ClaimPolicy":
        return cls(
            endorsements_required=settings.endorsements_required,
            claim_ttl=timedelta(days=settings.claim_ttl_days),
            cooling_off=timedelta(days=settings.cooling_off_days),
            grant_grace=timedelta(days=settings.grant_grace_days),
            opposition=OppositionPolicy(
                mode=settings.oppose_policy, threshold=settings.oppose_threshold
            ),
            challenge_ttl=timedelta(hours=settings.challenge_ttl_hours),
            challenge_reissue_cooldown=timedelta(
                seconds=settings.challenge_reissue_cooldown_seconds
            ),
            challenge_max_issues=settings.challenge_max_issues,
        )

    def initial_deadline(self, now: datetime) -> datetime:
        return now + self.claim_ttl

    def approval_window(
        self, now: datetime, current_expires_at: datetime
    ) -> tuple[datetime, datetime]:
        """Return ``(cooling_off_until, expires_at)`` for a claim approved now.

        The deadline only ever moves later, and always leaves the grace period
        after the cooling-off ends so an approved claim cannot expire before it
        becomes grantable.
        """
        cooling_off_until = now + self.cooling_off
        expires_at = max(current_expires_at, cooling_off_until + self.grant_grace)
        return cooling_off_until, expires_at

    def evaluate_votes(
        self, support: int, oppose: int, required: int | None = None
    ) -> ClaimStatus | None:
        """Decide the outcome of an endorsement tally, if any.

        ``required`` overrides the policy quorum with the one fixed on the
        claim. Denial wins when both thresholds are reached by the same vote.
        """
        if self.opposition.is_reached(support, oppose):
            return ClaimStatus.DENIED
        quorum = self.endorsements_required if required is None else required
        if support >= quorum:
            return ClaimStatus.APPROVED
        return None


@dataclass
class Claim:
    """One attempt to recover admin rights for a family."""

    id: str
    family_id: str
    claimant_id: str
    claim_type: ClaimType
    status: ClaimStatus
    endorsements_required: int
    expires_at: datetime
    created_at: datetime
    reason: str | None = None
    endorsements_received: int = 0
    opposition_received: int = 0
    cooling_off_until: datetime | None = None
    claimed_at: datetime | None = None
    updated_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    version: int = 0

    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def is_past_deadline(self, now: datetime) -> bool:
        return now > self.expires_at

    def effective_status(self, now: datetime) -> ClaimStatus:
        """Status as of ``now``, treating an overdue active claim as expired."""
        if self.is_active() and self.is_past_deadline(now):
            return ClaimStatus.EXPIRED
        return self.status

    def is_cooling_off(self, now: datetime) -> bool:
        return (
            self.status == ClaimStatus.APPROVED
            and self.cooling_off_until is not None
            and now < self.cooling_off_until
        )

    def is_grantable(self, now: datetime) -> bool:
        """Approved, out of cooling-off and not yet past the deadline."""
        return (
            self.status == ClaimStatus.APPROVED
            and self.cooling_off_until is not None
            and self.cooling_off_until <= now <= self.expires_at
        )

    def cooling_off_remaining(self, now: datetime) -> timedelta | None:
        if self.cooling_off_until is None or not self.is_cooling_off(now):
            return None
        return self.cooling_off_until - now


@dataclass
class Endorsement:
    """One peer's vote on an endorsement-type claim."""

    id: str
    claim_id: str
    endorser_id: str
    endorsement_type: EndorsementType
    created_at: datetime
    reason: str | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class AuditEntry:
    """Immutable record of a claim transition or a rejected attempt at one."""

    id: int | None
    claim_id: str
    family_id: str
    from_status: ClaimStatus | None
    to_status: ClaimStatus | None
    actor_id: str
    timestamp: datetime
    reason_code: str
    outcome: AuditOutcome = AuditOutcome.APPLIED
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass
class Notification:
    id: str
    claim_id: str
    recipient_id: str
    notification_type: NotificationType
    title: str
    message: str
    created_at: datetime
    read_at: datetime | None = None

    def is_read(self) -> bool:
        return self.read_at is not None
