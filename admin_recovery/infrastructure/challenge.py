"""Default email challenge service: random single-use tokens, stored hashed."""

import secrets
from datetime import datetime
from html import escape

from sqlmodel import Session

from ..domain.ports import ChallengeService, EmailSender
from ..logging_config import get_logger
from ..logging_utils import mask_email
from ..utils import Clock, hash_token, utc_now
from .database.models import ChallengeRecord
from .database.repositories import ChallengeRepository

logger = get_logger(__name__)

_TOKEN_BYTES = 32


class TokenChallengeService(ChallengeService):
    """Issues tokens within the caller's transaction and emails them."""

    def __init__(
        self,
        session: Session,
        email_sender: EmailSender,
        public_base_url: str,
        clock: Clock = utc_now,
    ):
        self.repo = ChallengeRepository(session)
        self.email_sender = email_sender
        self.public_base_url = public_base_url.rstrip("/")
        self.clock = clock

    def issue_challenge(self, claim_id: str, email: str, expires_at: datetime) -> str:
        now = self.clock()
        superseded = self.repo.supersede_open(claim_id, now)

        token = secrets.token_urlsafe(_TOKEN_BYTES)
        self.repo.add(
            ChallengeRecord(
                claim_id=claim_id,
                token_hash=hash_token(token),
                email=email,
                issued_at=now,
                expires_at=expires_at,
            )
        )
        logger.debug(
            "Challenge issued",
            claim_id=claim_id,
            recipient=mask_email(email),
            expires_at=expires_at.isoformat(),
            superseded=superseded,
        )
        return token

    def deliver_challenge(self, claim_id: str, email: str, token: str) -> None:
        link = (
            f"{self.public_base_url}/api/v1/claims/{claim_id}/challenge/verify"
            f"?token={token}"
        )
        html = f"""
            <h2>Admin Claim Request</h2>
            <p>Someone has requested to claim admin rights for a family you created.</p>
            <p>If you approve this request, click the link below:</p>
            <p><a href="{escape(link)}">Approve Admin Claim</a></p>
            <p>This link can be used once and will expire.</p>
            <p>If you did not expect this email, please ignore it.</p>
        """
        self.email_sender.send(email, "Admin Claim Request for Your Family", html)

    def verify_challenge(self, claim_id: str, token: str) -> bool:
        now = self.clock()
        record = self.repo.find_usable(claim_id, hash_token(token), now)
        if record is None:
            logger.info("Challenge verification failed", claim_id=claim_id)
            return False

        self.repo.mark_used(record, now)
        logger.info("Challenge verified", claim_id=claim_id)
        return True
