"""Domain-specific exceptions.

Each error carries a stable ``code`` that is written to the audit log and
returned to API clients.
"""

from datetime import datetime
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from .entities import Claim


class DomainError(Exception):
    """Base exception for domain errors."""

    code: ClassVar[str] = "domain_error"


class ValidationError(DomainError):
    """Raised when domain validation fails."""

    code = "validation_failed"


class ClaimNotFoundError(DomainError):
    code = "claim_not_found"


class EndorsementNotFoundError(DomainError):
    code = "endorsement_not_found"


class NotOrphanedError(DomainError):
    """The family still has at least one active admin."""

    code = "not_orphaned"


class DuplicateActiveClaimError(DomainError):
    """The claimant already has a pending or approved claim for the family."""

    code = "duplicate_active_claim"

    def __init__(self, message: str, existing_claim: "Claim"):
        super().__init__(message)
        self.existing_claim = existing_claim


class SelfEndorsementError(DomainError):
    code = "self_endorsement"


class NotAMemberError(DomainError):
    code = "not_a_member"


class DuplicateEndorsementError(DomainError):
    code = "duplicate_endorsement"


class ClaimNotPendingError(DomainError):
    code = "claim_not_pending"


class ChallengeInvalidOrExpiredError(DomainError):
    code = "challenge_invalid_or_expired"


class ChallengeRateLimitedError(DomainError):
    code = "challenge_rate_limited"


class NotApprovedError(DomainError):
    code = "not_approved"


class CoolingOffActiveError(DomainError):
    code = "cooling_off_active"

    def __init__(self, message: str, cooling_off_until: datetime):
        super().__init__(message)
        self.cooling_off_until = cooling_off_until


class NotClaimantError(DomainError):
    code = "not_claimant"


class TransientStoreError(DomainError):
    """A write kept losing races or hitting a locked store; nothing was applied."""

    code = "transient_store_error"
