"""In-app notifications about claims, written with the claim's transaction."""

from typing import Final

from sqlmodel import Session

from ..domain.constants import ClaimStatus, ClaimType, NotificationType
from ..domain.entities import Claim, Notification
from ..domain.ports import MembershipOracle
from ..infrastructure.database.models import NotificationRecord
from ..infrastructure.database.repositories import NotificationRepository
from ..logging_config import get_logger
from ..utils import Clock, utc_now

logger: Final = get_logger(__name__)

_STATUS_NOTIFICATIONS: Final = {
    ClaimStatus.APPROVED: (
        NotificationType.CLAIM_APPROVED,
        "Admin Claim Approved",
        "Your admin claim was approved. You can take over admin rights once "
        "the cooling-off period has passed.",
    ),
    ClaimStatus.DENIED: (
        NotificationType.CLAIM_DENIED,
        "Admin Claim Denied",
        "Your admin claim was denied.",
    ),
    ClaimStatus.EXPIRED: (
        NotificationType.CLAIM_EXPIRED,
        "Admin Claim Expired",
        "Your admin claim expired before it was completed.",
    ),
    ClaimStatus.COMPLETED: (
        NotificationType.CLAIM_COMPLETED,
        "Admin Rights Granted",
        "You are now an admin of this family.",
    ),
}


class NotificationCenter:
    def __init__(
        self,
        session: Session,
        membership: MembershipOracle,
        clock: Clock = utc_now,
    ):
        self.session = session
        self.repo = NotificationRepository(session)
        self.membership = membership
        self.clock = clock

    def claim_started(self, claim: Claim) -> int:
        """Tell every other family member about a new claim. Does not commit."""
        if claim.claim_type == ClaimType.ENDORSEMENT:
            hint = "Your endorsement may be needed."
        else:
            hint = "Email verification is in progress."

        now = self.clock()
        records = [
            NotificationRecord(
                claim_id=claim.id,
                recipient_id=member_id,
                notification_type=NotificationType.CLAIM_STARTED.value,
                title="Admin Claim Request",
                message=f"A family member has requested admin rights. {hint}",
                created_at=now,
            )
            for member_id in self.membership.list_members(claim.family_id)
            if member_id != claim.claimant_id
        ]
        self.repo.add_many(records)
        return len(records)

    def claim_transitioned(self, claim: Claim, to_status: ClaimStatus) -> None:
        """Tell the claimant their claim changed status. Does not commit."""
        entry = _STATUS_NOTIFICATIONS.get(to_status)
        if entry is None:
            return

        notification_type, title, message = entry
        self.repo.add_many(
            [
                NotificationRecord(
                    claim_id=claim.id,
                    recipient_id=claim.claimant_id,
                    notification_type=notification_type.value,
                    title=title,
                    message=message,
                    created_at=self.clock(),
                )
            ]
        )

    def list_for(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        return self.repo.list_for_recipient(user_id, unread_only)

    def mark_read(self, user_id: str, notification_id: str) -> bool:
        updated = self.repo.mark_read(notification_id, user_id, self.clock())
        self.session.commit()
        return updated

    def mark_all_read(self, user_id: str) -> int:
        count = self.repo.mark_all_read(user_id, self.clock())
        self.session.commit()
        logger.debug("Notifications marked read", user_id=user_id, count=count)
        return count
