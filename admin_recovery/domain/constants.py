"""Domain business rules and constants."""

from enum import StrEnum
from typing import Final


class ClaimType(StrEnum):
    ENDORSEMENT = "endorsement"
    EMAIL_CHALLENGE = "email_challenge"


class ClaimStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    COMPLETED = "completed"
    EXPIRED = "expired"


class EndorsementType(StrEnum):
    SUPPORT = "support"
    OPPOSE = "oppose"


class MemberRole(StrEnum):
    ADMIN = "admin"
    MEMBER = "member"


class AuditOutcome(StrEnum):
    APPLIED = "applied"
    REJECTED = "rejected"


class NotificationType(StrEnum):
    CLAIM_STARTED = "admin_claim_started"
    CLAIM_APPROVED = "admin_claim_approved"
    CLAIM_DENIED = "admin_claim_denied"
    CLAIM_EXPIRED = "admin_claim_expired"
    CLAIM_COMPLETED = "admin_claim_completed"


ACTIVE_STATUSES: Final = frozenset({ClaimStatus.PENDING, ClaimStatus.APPROVED})
TERMINAL_STATUSES: Final = frozenset(
    {ClaimStatus.DENIED, ClaimStatus.COMPLETED, ClaimStatus.EXPIRED}
)

# Actor recorded for transitions nobody asked for (sweeps, lazy expiry)
SYSTEM_ACTOR: Final = "system"
# Actor recorded when the original owner answers an email challenge
EMAIL_OWNER_ACTOR: Final = "email_owner"

DEFAULT_CLAIM_REASON: Final = "Claiming admin rights for orphaned family"
MAX_REASON_LENGTH: Final = 1000
MAX_EMAIL_LENGTH: Final = 254


class ReasonCode:
    """Audit reason codes."""

    CLAIM_SUBMITTED: Final = "claim_submitted"
    QUORUM_REACHED: Final = "quorum_reached"
    OPPOSITION_THRESHOLD: Final = "opposition_threshold_reached"
    ENDORSEMENT_RECORDED: Final = "endorsement_recorded"
    ENDORSEMENT_CHANGED: Final = "endorsement_changed"
    CHALLENGE_ISSUED: Final = "challenge_issued"
    CHALLENGE_DELIVERY_FAILED: Final = "challenge_delivery_failed"
    CHALLENGE_VERIFIED: Final = "challenge_verified"
    WITHDRAWN: Final = "withdrawn"
    SYSTEM_DENIAL: Final = "system_denial"
    FAMILY_HAS_ADMIN: Final = "family_has_admin"
    DEADLINE_PASSED: Final = "deadline_passed"
    ADMIN_GRANTED: Final = "admin_granted"
    CONCURRENT_UPDATE: Final = "concurrent_update"
