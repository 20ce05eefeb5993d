"""Final step of a recovery: promote the claimant to admin."""

from typing import Final

from ..domain.constants import SYSTEM_ACTOR, ClaimStatus, MemberRole, ReasonCode
from ..domain.entities import Claim
from ..domain.exceptions import CoolingOffActiveError, NotApprovedError, NotClaimantError
from ..logging_config import get_logger
from ..logging_utils import log_claim_command
from ..metrics import record_grant
from .claim_registry import ClaimRegistry
from .transactions import CommitThenRaise

logger: Final = get_logger(__name__)


class GrantExecutor:
    def __init__(self, registry: ClaimRegistry):
        self.registry = registry

    def grant_admin_rights(self, claim_id: str, actor_id: str) -> Claim:
        """Make the claimant an admin and complete the claim, atomically.

        The role grant and the ``approved -> completed`` swap share one
        transaction; if either fails neither is applied and the claim stays
        approved.

        Raises:
            NotClaimantError: Someone other than the claimant asked
            NotApprovedError: Not approved, already completed, expired, or
                the family has an admin again
            CoolingOffActiveError: The cooling-off period has not ended
        """
        registry = self.registry

        def operation() -> Claim:
            claim = registry.require(claim_id)
            now = registry.clock()

            if claim.claimant_id != actor_id:
                raise NotClaimantError("Only the claimant can complete the claim")
            if claim.status == ClaimStatus.APPROVED and claim.is_past_deadline(now):
                registry.expire_overdue(claim)
                raise CommitThenRaise(
                    NotApprovedError("Claim expired before admin rights were granted")
                )
            if claim.status != ClaimStatus.APPROVED:
                raise NotApprovedError(f"Claim is {claim.status.value}")
            until = claim.cooling_off_until
            if until is not None and now < until:
                raise CoolingOffActiveError(
                    f"Cooling-off period ends at {until.isoformat()}", until
                )

            # Serializes with other grants in the family, so the check below
            # sees any admin they created
            registry.membership.lock_admin_changes(claim.family_id)
            if registry.membership.has_active_admin(claim.family_id):
                registry.transition(
                    claim,
                    ClaimStatus.DENIED,
                    SYSTEM_ACTOR,
                    ReasonCode.FAMILY_HAS_ADMIN,
                )
                raise CommitThenRaise(
                    NotApprovedError("Family already has an admin")
                )

            registry.membership.grant_role(
                claim.family_id, claim.claimant_id, MemberRole.ADMIN
            )
            return registry.transition(
                claim,
                ClaimStatus.COMPLETED,
                actor_id,
                ReasonCode.ADMIN_GRANTED,
                claimed_at=now,
            )

        claim = registry.execute(
            operation,
            description="grant_admin_rights",
            actor_id=actor_id,
            claim_id=claim_id,
        )

        record_grant()
        log_claim_command(
            "grant_admin_rights",
            actor_id,
            claim_id=claim.id,
            family_id=claim.family_id,
        )
        logger.info(
            "Admin rights granted", claim_id=claim.id, family_id=claim.family_id
        )
        return claim
