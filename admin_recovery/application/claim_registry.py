"""Claim lifecycle: creation, status transitions and queries.

Every write to a claim goes through :meth:`ClaimRegistry.transition`, a
compare-and-swap on the claim's status and version. Losing the swap raises
``StaleClaimError`` and the surrounding transaction is retried from a fresh
read, so two writers can never both apply a transition from the same state.
"""

from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from typing import Any, Final, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ..domain.constants import (
    DEFAULT_CLAIM_REASON,
    EMAIL_OWNER_ACTOR,
    SYSTEM_ACTOR,
    ClaimStatus,
    ClaimType,
    ReasonCode,
)
from ..domain.entities import (
    AuditEntry,
    Claim,
    ClaimPolicy,
    validate_owner_email,
    validate_reason,
)
from ..domain.exceptions import (
    ChallengeInvalidOrExpiredError,
    ChallengeRateLimitedError,
    ClaimNotFoundError,
    ClaimNotPendingError,
    DomainError,
    DuplicateActiveClaimError,
    NotAMemberError,
    NotClaimantError,
    NotOrphanedError,
    TransientStoreError,
    ValidationError,
)
from ..domain.ports import ChallengeService, EmailDeliveryError, MembershipOracle
from ..infrastructure.database.repositories import ClaimRepository
from ..logging_config import get_logger
from ..logging_utils import log_claim_transition, log_claim_command, mask_email
from ..metrics import record_claim_submitted, record_rejection, record_transition
from ..utils import Clock, new_id, utc_now
from .audit_log import AuditLog
from .notifications import NotificationCenter
from .transactions import CommitThenRaise, StaleClaimError, run_in_transaction

logger: Final = get_logger(__name__)

T = TypeVar("T")


class ClaimRegistry:
    """Owns claim records and the rules for moving them between states."""

    def __init__(
        self,
        session: Session,
        membership: MembershipOracle,
        challenges: ChallengeService,
        policy: ClaimPolicy,
        notifications: NotificationCenter | None = None,
        clock: Clock = utc_now,
        max_attempts: int = 5,
        backoff_ms: int = 25,
    ):
        self.session = session
        self.membership = membership
        self.challenges = challenges
        self.policy = policy
        self.clock = clock
        self.claims = ClaimRepository(session)
        self.audit = AuditLog(session, clock)
        self.notifications = notifications or NotificationCenter(
            session, membership, clock
        )
        self.max_attempts = max_attempts
        self.backoff_ms = backoff_ms

    # Building blocks shared with the ledger, the grant executor and the sweep

    def require(self, claim_id: str) -> Claim:
        claim = self.claims.get(claim_id)
        if claim is None:
            raise ClaimNotFoundError(f"Claim {claim_id} not found")
        return claim

    def transition(
        self,
        claim: Claim,
        to_status: ClaimStatus,
        actor_id: str,
        reason_code: str,
        detail: dict[str, Any] | None = None,
        check_version: bool = True,
        overdue_only: bool = False,
        now: datetime | None = None,
        **values: Any,
    ) -> Claim:
        """Move ``claim`` to ``to_status`` if nobody changed it since it was read.

        ``to_status`` may equal the current status for counter or metadata
        updates. ``now`` defaults to the registry clock and is the time the
        deadline of an ``overdue_only`` swap is checked against. The audit
        entry and notifications join the caller's transaction.

        Raises:
            StaleClaimError: If the claim changed underneath us
        """
        now = now or self.clock()
        won = self.claims.compare_and_swap(
            claim.id,
            claim.status,
            now,
            expected_version=claim.version if check_version else None,
            overdue_only=overdue_only,
            status=to_status,
            **values,
        )
        if not won:
            raise StaleClaimError(claim.id)

        self.audit.record(
            claim.id,
            claim.family_id,
            claim.status,
            to_status,
            actor_id,
            reason_code,
            detail,
        )
        if to_status != claim.status:
            self.notifications.claim_transitioned(claim, to_status)
            record_transition(to_status.value, reason_code)
            log_claim_transition(
                claim_id=claim.id,
                from_status=claim.status.value,
                to_status=to_status.value,
                actor_id=actor_id,
                reason_code=reason_code,
            )

        return self.require(claim.id)

    def expire_overdue(self, claim: Claim, now: datetime | None = None) -> Claim:
        """Expire an active claim whose deadline has passed.

        Conditioned on status and deadline only, so concurrent sweeps and lazy
        expiries of the same claim apply it exactly once.
        """
        return self.transition(
            claim,
            ClaimStatus.EXPIRED,
            SYSTEM_ACTOR,
            ReasonCode.DEADLINE_PASSED,
            check_version=False,
            overdue_only=True,
            now=now,
        )

    def execute(
        self,
        operation: Callable[[], T],
        *,
        description: str,
        actor_id: str,
        claim_id: str | None = None,
        family_id: str | None = None,
    ) -> T:
        """Run a command in a retried transaction and audit its rejection."""
        try:
            return run_in_transaction(
                self.session,
                operation,
                description=description,
                max_attempts=self.max_attempts,
                backoff_ms=self.backoff_ms,
            )
        except (ClaimNotFoundError, ValidationError):
            raise
        except DomainError as e:
            record_rejection(e.code)
            if isinstance(e, TransientStoreError):
                logger.error(
                    "Command gave up after repeated conflicts",
                    operation=description,
                    claim_id=claim_id,
                )
            if claim_id is not None:
                self.audit.record_rejection(
                    claim_id, family_id, actor_id, description, e
                )
            raise

    def as_of(self, claim: Claim, now: datetime | None = None) -> Claim:
        """View of ``claim`` that reports an overdue active claim as expired."""
        status = claim.effective_status(now or self.clock())
        if status == claim.status:
            return claim
        return replace(claim, status=status)

    # Commands

    def submit_claim(
        self,
        family_id: str,
        claimant_id: str,
        claim_type: ClaimType | str,
        reason: str | None = None,
        owner_email: str | None = None,
    ) -> Claim:
        """Open a recovery claim for an orphaned family.

        Raises:
            ValidationError: Bad reason, or missing/invalid owner email
            NotAMemberError: The claimant does not belong to the family
            NotOrphanedError: The family still has an admin
            DuplicateActiveClaimError: The claimant already has an active claim
        """
        try:
            claim_type = ClaimType(claim_type)
        except ValueError as e:
            raise ValidationError(f"Unknown claim type '{claim_type}'") from e
        validate_reason(reason)
        email = (
            validate_owner_email(owner_email)
            if claim_type == ClaimType.EMAIL_CHALLENGE
            else None
        )

        # Fixed up front so a rejected attempt is audited under the same id
        claim_id = new_id()
        issued: dict[str, str] = {}

        def operation() -> Claim:
            issued.clear()
            now = self.clock()

            if not self.membership.is_member(family_id, claimant_id):
                raise NotAMemberError(
                    f"User {claimant_id} is not a member of family {family_id}"
                )
            if self.membership.has_active_admin(family_id):
                raise NotOrphanedError(f"Family {family_id} already has an admin")

            existing = self.claims.find_active(family_id, claimant_id)
            if existing is not None:
                if existing.is_past_deadline(now):
                    self.expire_overdue(existing)
                else:
                    raise DuplicateActiveClaimError(
                        "An active claim already exists for this family", existing
                    )

            metadata: dict[str, Any] = {}
            if email is not None:
                metadata = {
                    "email_sent_to": email,
                    "challenges_issued": 1,
                    "last_challenge_at": now.isoformat(),
                }

            try:
                claim = self.claims.add(
                    Claim(
                        id=claim_id,
                        family_id=family_id,
                        claimant_id=claimant_id,
                        claim_type=claim_type,
                        status=ClaimStatus.PENDING,
                        endorsements_required=self.policy.endorsements_required,
                        expires_at=self.policy.initial_deadline(now),
                        created_at=now,
                        updated_at=now,
                        reason=reason or DEFAULT_CLAIM_REASON,
                        metadata=metadata,
                    )
                )
            except IntegrityError as e:
                # Another request opened a claim for the pair; the retry
                # finds it and reports the duplicate
                raise StaleClaimError(claim_id) from e

            self.audit.record(
                claim.id,
                family_id,
                None,
                ClaimStatus.PENDING,
                claimant_id,
                ReasonCode.CLAIM_SUBMITTED,
                {"claim_type": claim_type.value},
            )
            self.notifications.claim_started(claim)

            if email is not None:
                issued["token"] = self.challenges.issue_challenge(
                    claim.id,
                    email,
                    min(now + self.policy.challenge_ttl, claim.expires_at),
                )
                self.audit.record(
                    claim.id,
                    family_id,
                    ClaimStatus.PENDING,
                    ClaimStatus.PENDING,
                    claimant_id,
                    ReasonCode.CHALLENGE_ISSUED,
                    {"recipient": mask_email(email)},
                )
            return claim

        claim = self.execute(
            operation,
            description="submit_claim",
            actor_id=claimant_id,
            claim_id=claim_id,
            family_id=family_id,
        )

        record_claim_submitted(claim_type.value)
        log_claim_command(
            "submit_claim",
            claimant_id,
            claim_id=claim.id,
            family_id=family_id,
            claim_type=claim_type.value,
        )
        log_claim_transition(
            claim_id=claim.id,
            from_status=None,
            to_status=ClaimStatus.PENDING.value,
            actor_id=claimant_id,
            reason_code=ReasonCode.CLAIM_SUBMITTED,
        )

        if email is not None and "token" in issued:
            self._deliver_challenge(claim, email, issued["token"])
        return claim

    def verify_challenge(
        self, claim_id: str, token: str, actor_id: str = EMAIL_OWNER_ACTOR
    ) -> Claim:
        """Approve an email-challenge claim with the token sent to the owner.

        Raises:
            ChallengeInvalidOrExpiredError: Wrong, used, superseded or expired
                token, or a claim that is no longer pending
        """

        def operation() -> Claim:
            claim = self.require(claim_id)
            now = self.clock()

            if (
                claim.claim_type != ClaimType.EMAIL_CHALLENGE
                or claim.status != ClaimStatus.PENDING
            ):
                raise ChallengeInvalidOrExpiredError(
                    "Challenge is invalid or has expired"
                )
            if claim.is_past_deadline(now):
                self.expire_overdue(claim)
                raise CommitThenRaise(
                    ChallengeInvalidOrExpiredError("Claim has expired")
                )
            if not self.challenges.verify_challenge(claim.id, token):
                raise ChallengeInvalidOrExpiredError(
                    "Challenge is invalid or has expired"
                )

            cooling_off_until, expires_at = self.policy.approval_window(
                now, claim.expires_at
            )
            return self.transition(
                claim,
                ClaimStatus.APPROVED,
                actor_id,
                ReasonCode.CHALLENGE_VERIFIED,
                cooling_off_until=cooling_off_until,
                expires_at=expires_at,
            )

        return self.execute(
            operation,
            description="verify_challenge",
            actor_id=actor_id,
            claim_id=claim_id,
        )

    def reissue_challenge(self, claim_id: str, actor_id: str) -> Claim:
        """Send a fresh challenge token, invalidating earlier ones.

        Raises:
            NotClaimantError: Only the claimant may ask for a new token
            ClaimNotPendingError: Not a pending email-challenge claim
            ChallengeRateLimitedError: Asked again too soon or too often
        """
        issued: dict[str, str] = {}

        def operation() -> Claim:
            issued.clear()
            claim = self.require(claim_id)
            now = self.clock()

            if claim.claimant_id != actor_id:
                raise NotClaimantError("Only the claimant can request a new challenge")
            if claim.claim_type != ClaimType.EMAIL_CHALLENGE:
                raise ClaimNotPendingError("Claim is not an email challenge")
            if claim.status == ClaimStatus.PENDING and claim.is_past_deadline(now):
                self.expire_overdue(claim)
                raise CommitThenRaise(ClaimNotPendingError("Claim has expired"))
            if claim.status != ClaimStatus.PENDING:
                raise ClaimNotPendingError(f"Claim is {claim.status.value}")

            issues = int(claim.metadata.get("challenges_issued", 0))
            if issues >= self.policy.challenge_max_issues:
                raise ChallengeRateLimitedError(
                    "Too many challenges issued for this claim"
                )
            last_issued = claim.metadata.get("last_challenge_at")
            if last_issued and now < (
                datetime.fromisoformat(last_issued)
                + self.policy.challenge_reissue_cooldown
            ):
                raise ChallengeRateLimitedError(
                    "A challenge was sent recently, please wait before retrying"
                )

            email = claim.metadata["email_sent_to"]
            issued["email"] = email
            issued["token"] = self.challenges.issue_challenge(
                claim.id,
                email,
                min(now + self.policy.challenge_ttl, claim.expires_at),
            )
            return self.transition(
                claim,
                ClaimStatus.PENDING,
                actor_id,
                ReasonCode.CHALLENGE_ISSUED,
                {"recipient": mask_email(email), "issue": issues + 1},
                metadata={
                    **claim.metadata,
                    "challenges_issued": issues + 1,
                    "last_challenge_at": now.isoformat(),
                },
            )

        claim = self.execute(
            operation,
            description="reissue_challenge",
            actor_id=actor_id,
            claim_id=claim_id,
        )
        self._deliver_challenge(claim, issued["email"], issued["token"])
        return claim

    def withdraw_claim(self, claim_id: str, actor_id: str) -> Claim:
        """Let the claimant abandon a pending claim."""

        def operation() -> Claim:
            claim = self.require(claim_id)
            if claim.claimant_id != actor_id:
                raise NotClaimantError("Only the claimant can withdraw a claim")
            return self._deny_pending(claim, actor_id, ReasonCode.WITHDRAWN)

        claim = self.execute(
            operation,
            description="withdraw_claim",
            actor_id=actor_id,
            claim_id=claim_id,
        )
        log_claim_command(
            "withdraw_claim", actor_id, claim_id=claim_id, family_id=claim.family_id
        )
        return claim

    def deny_claim(
        self, claim_id: str, reason_code: str = ReasonCode.SYSTEM_DENIAL
    ) -> Claim:
        """Deny a pending claim on behalf of the system."""
        return self.execute(
            lambda: self._deny_pending(self.require(claim_id), SYSTEM_ACTOR, reason_code),
            description="deny_claim",
            actor_id=SYSTEM_ACTOR,
            claim_id=claim_id,
        )

    def _deny_pending(self, claim: Claim, actor_id: str, reason_code: str) -> Claim:
        if claim.status == ClaimStatus.PENDING and claim.is_past_deadline(self.clock()):
            self.expire_overdue(claim)
            raise CommitThenRaise(ClaimNotPendingError("Claim has expired"))
        if claim.status != ClaimStatus.PENDING:
            raise ClaimNotPendingError(f"Claim is {claim.status.value}")
        return self.transition(claim, ClaimStatus.DENIED, actor_id, reason_code)

    def _deliver_challenge(self, claim: Claim, email: str, token: str) -> None:
        """Email the token after the claim is committed.

        A delivery failure leaves the claim pending; the claimant can ask for
        a new token.
        """
        try:
            self.challenges.deliver_challenge(claim.id, email, token)
        except EmailDeliveryError as e:
            logger.error(
                "Challenge email could not be delivered",
                claim_id=claim.id,
                recipient=mask_email(email),
                error=str(e),
            )
            run_in_transaction(
                self.session,
                lambda: self.audit.record(
                    claim.id,
                    claim.family_id,
                    claim.status,
                    claim.status,
                    SYSTEM_ACTOR,
                    ReasonCode.CHALLENGE_DELIVERY_FAILED,
                    {"recipient": mask_email(email), "error": str(e)},
                ),
                description="audit_delivery_failure",
                max_attempts=self.max_attempts,
                backoff_ms=self.backoff_ms,
            )
            return

        logger.info(
            "Challenge email sent", claim_id=claim.id, recipient=mask_email(email)
        )

    # Queries

    def get_claim(self, family_id: str, claimant_id: str) -> Claim:
        """Most relevant claim for the pair: the active one, else the latest."""
        claim = self.claims.find_latest(family_id, claimant_id)
        if claim is None:
            raise ClaimNotFoundError(
                f"No claim by {claimant_id} for family {family_id}"
            )
        return self.as_of(claim)

    def get_claim_by_id(self, claim_id: str) -> Claim:
        return self.as_of(self.require(claim_id))

    def list_pending_endorsement_claims(
        self, family_id: str, excluding: str | None = None
    ) -> list[Claim]:
        now = self.clock()
        return [
            claim
            for claim in self.claims.list_pending_endorsement(family_id, excluding)
            if not claim.is_past_deadline(now)
        ]

    def get_audit_trail(self, claim_id: str) -> list[AuditEntry]:
        self.require(claim_id)
        return self.audit.trail(claim_id)

    def get_family_audit_trail(
        self, family_id: str, limit: int = 100
    ) -> list[AuditEntry]:
        return self.audit.family_trail(family_id, limit)
