"""Port interfaces for the collaborators the recovery flow depends on.

Concrete implementations live in the infrastructure layer.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from .constants import MemberRole


class MembershipOracle(ABC):
    """Answers membership questions about a family and applies role grants."""

    @abstractmethod
    def has_active_admin(self, family_id: str) -> bool:
        """Return True if at least one active member of the family is admin."""

    @abstractmethod
    def is_member(self, family_id: str, user_id: str) -> bool:
        """Return True if the user is an active member of the family."""

    @abstractmethod
    def list_members(self, family_id: str) -> list[str]:
        """Return the ids of all active members of the family."""

    @abstractmethod
    def lock_admin_changes(self, family_id: str) -> None:
        """Serialize admin changes for the family until the transaction ends.

        Callers take the lock before checking ``has_active_admin`` so the
        check and a following grant cannot interleave with another grant.
        """

    @abstractmethod
    def grant_role(self, family_id: str, user_id: str, role: MemberRole) -> None:
        """Upsert the user's role in the family.

        Implementations must not commit on their own; the grant is part of the
        caller's transaction. Store failures surface as ``TransientStoreError``.
        """


class EmailSender(ABC):
    """Outbound email delivery. May fail transiently."""

    @abstractmethod
    def send(self, to: str, subject: str, html: str) -> None:
        """Deliver one message, raising ``EmailDeliveryError`` on failure."""


class ChallengeService(ABC):
    """Issues and verifies single-use proof tokens sent to an owner's email."""

    @abstractmethod
    def issue_challenge(self, claim_id: str, email: str, expires_at: datetime) -> str:
        """Create a fresh token for the claim and return it.

        Earlier unused tokens for the same claim stop being valid.
        """

    @abstractmethod
    def deliver_challenge(self, claim_id: str, email: str, token: str) -> None:
        """Send the token to the owner, raising ``EmailDeliveryError`` on failure."""

    @abstractmethod
    def verify_challenge(self, claim_id: str, token: str) -> bool:
        """Consume the token if it is valid for the claim; False otherwise."""


class EmailDeliveryError(Exception):
    """Raised by email senders when a message could not be handed off."""
