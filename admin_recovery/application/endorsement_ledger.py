"""Peer endorsements and the quorum decision they drive."""

from typing import Final

from sqlalchemy.exc import IntegrityError

from ..domain.constants import ClaimStatus, ClaimType, EndorsementType, ReasonCode
from ..domain.entities import Claim, Endorsement, validate_reason
from ..domain.exceptions import (
    ClaimNotPendingError,
    DuplicateEndorsementError,
    EndorsementNotFoundError,
    NotAMemberError,
    SelfEndorsementError,
    ValidationError,
)
from ..infrastructure.database.repositories import EndorsementRepository
from ..logging_config import get_logger
from ..logging_utils import log_claim_command
from ..metrics import record_endorsement
from .claim_registry import ClaimRegistry
from .transactions import CommitThenRaise, StaleClaimError

logger: Final = get_logger(__name__)


def _endorsement_type(value: EndorsementType | str) -> EndorsementType:
    try:
        return EndorsementType(value)
    except ValueError as e:
        raise ValidationError(f"Unknown endorsement type '{value}'") from e


class EndorsementLedger:
    """Records votes and recounts the claim in the same transaction."""

    def __init__(self, registry: ClaimRegistry):
        self.registry = registry
        self.repo = EndorsementRepository(registry.session)

    def submit_endorsement(
        self,
        claim_id: str,
        endorser_id: str,
        endorsement_type: EndorsementType | str = EndorsementType.SUPPORT,
        reason: str | None = None,
    ) -> Claim:
        """Cast a first vote on a pending endorsement claim.

        Raises:
            SelfEndorsementError: The claimant voted on their own claim
            ClaimNotPendingError: Not a pending endorsement claim
            NotAMemberError: The endorser is not in the claim's family
            DuplicateEndorsementError: The endorser already voted
        """
        vote = _endorsement_type(endorsement_type)
        validate_reason(reason)

        def operation() -> Claim:
            claim = self._check_can_vote(claim_id, endorser_id)
            if self.repo.find(claim.id, endorser_id) is not None:
                raise DuplicateEndorsementError(
                    f"User {endorser_id} already voted on this claim"
                )
            try:
                self.repo.add(claim.id, endorser_id, vote, reason, self.registry.clock())
            except IntegrityError as e:
                # A concurrent request from the same endorser won; the retry
                # reports the duplicate
                raise StaleClaimError(claim.id) from e
            return self._recount(claim, endorser_id, ReasonCode.ENDORSEMENT_RECORDED)

        claim = self.registry.execute(
            operation,
            description="submit_endorsement",
            actor_id=endorser_id,
            claim_id=claim_id,
        )
        record_endorsement(vote.value)
        log_claim_command(
            "endorse_claim",
            endorser_id,
            claim_id=claim_id,
            family_id=claim.family_id,
            endorsement_type=vote.value,
        )
        return claim

    def change_endorsement(
        self,
        claim_id: str,
        endorser_id: str,
        endorsement_type: EndorsementType | str,
        reason: str | None = None,
    ) -> Claim:
        """Change an existing vote while the claim is still pending.

        Raises:
            EndorsementNotFoundError: The endorser has not voted yet
        """
        vote = _endorsement_type(endorsement_type)
        validate_reason(reason)

        def operation() -> Claim:
            claim = self._check_can_vote(claim_id, endorser_id)
            record = self.repo.find(claim.id, endorser_id)
            if record is None:
                raise EndorsementNotFoundError(
                    f"User {endorser_id} has not voted on this claim"
                )
            self.repo.change_vote(record, vote, reason, self.registry.clock())
            return self._recount(claim, endorser_id, ReasonCode.ENDORSEMENT_CHANGED)

        claim = self.registry.execute(
            operation,
            description="change_endorsement",
            actor_id=endorser_id,
            claim_id=claim_id,
        )
        record_endorsement(vote.value, changed=True)
        log_claim_command(
            "change_endorsement",
            endorser_id,
            claim_id=claim_id,
            family_id=claim.family_id,
            endorsement_type=vote.value,
        )
        return claim

    def list_endorsements(self, claim_id: str) -> list[Endorsement]:
        self.registry.require(claim_id)
        return self.repo.list_for_claim(claim_id)

    def _check_can_vote(self, claim_id: str, endorser_id: str) -> Claim:
        claim = self.registry.require(claim_id)

        if endorser_id == claim.claimant_id:
            raise SelfEndorsementError("You cannot endorse your own claim")
        if claim.claim_type != ClaimType.ENDORSEMENT:
            raise ClaimNotPendingError("Claim does not accept endorsements")
        if claim.status == ClaimStatus.PENDING and claim.is_past_deadline(
            self.registry.clock()
        ):
            self.registry.expire_overdue(claim)
            raise CommitThenRaise(ClaimNotPendingError("Claim has expired"))
        if claim.status != ClaimStatus.PENDING:
            raise ClaimNotPendingError(f"Claim is {claim.status.value}")
        if not self.registry.membership.is_member(claim.family_id, endorser_id):
            raise NotAMemberError("Only family members can endorse a claim")
        return claim

    def _recount(self, claim: Claim, actor_id: str, reason_code: str) -> Claim:
        """Tally the votes visible to this transaction and apply the outcome.

        The claim update is conditioned on the version read before the vote,
        so of two concurrent votes only one commits from a given count; the
        other retries and counts both.
        """
        support, oppose = self.repo.tally(claim.id)
        registry = self.registry
        outcome = registry.policy.evaluate_votes(
            support, oppose, required=claim.endorsements_required
        )
        counts = {"endorsements_received": support, "opposition_received": oppose}
        detail = {"support": support, "oppose": oppose}

        if outcome == ClaimStatus.DENIED:
            return registry.transition(
                claim,
                ClaimStatus.DENIED,
                actor_id,
                ReasonCode.OPPOSITION_THRESHOLD,
                detail,
                **counts,
            )

        if outcome == ClaimStatus.APPROVED:
            cooling_off_until, expires_at = registry.policy.approval_window(
                registry.clock(), claim.expires_at
            )
            logger.info(
                "Endorsement quorum reached",
                claim_id=claim.id,
                support=support,
                required=claim.endorsements_required,
            )
            return registry.transition(
                claim,
                ClaimStatus.APPROVED,
                actor_id,
                ReasonCode.QUORUM_REACHED,
                detail,
                cooling_off_until=cooling_off_until,
                expires_at=expires_at,
                **counts,
            )

        return registry.transition(
            claim, ClaimStatus.PENDING, actor_id, reason_code, detail, **counts
        )
