"""Outbound email adapters for challenge delivery."""

import httpx
from pydantic import BaseModel

from ..constants import EMAIL_HTTP_TIMEOUT_SECONDS, RESEND_API_BASE_URL
from ..domain.ports import EmailDeliveryError, EmailSender
from ..logging_config import get_logger
from ..logging_utils import mask_email

logger = get_logger(__name__)


class ResendConfig(BaseModel):
    """Configuration for the Resend adapter."""

    api_key: str
    sender: str
    base_url: str = RESEND_API_BASE_URL
    timeout: float = EMAIL_HTTP_TIMEOUT_SECONDS


class ResendEmailSender(EmailSender):
    """Sends mail through the Resend HTTP API."""

    def __init__(self, config: ResendConfig, client: httpx.Client | None = None):
        self._config = config
        self._client = client or httpx.Client(
            base_url=config.base_url,
            timeout=config.timeout,
            headers={"Authorization": f"Bearer {config.api_key}"},
        )

    def send(self, to: str, subject: str, html: str) -> None:
        try:
            response = self._client.post(
                "/emails",
                json={
                    "from": self._config.sender,
                    "to": [to],
                    "subject": subject,
                    "html": html,
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(
                "Email delivery failed", recipient=mask_email(to), error=str(e)
            )
            raise EmailDeliveryError(f"Failed to send email: {e}") from e

        logger.info("Email handed to Resend", recipient=mask_email(to))

    def close(self) -> None:
        self._client.close()


class LoggingEmailSender(EmailSender):
    """Development sender: logs the message instead of delivering it.

    Sent messages are kept in ``outbox`` so tests can read the token back.
    """

    def __init__(self) -> None:
        self.outbox: list[dict[str, str]] = []

    def send(self, to: str, subject: str, html: str) -> None:
        self.outbox.append({"to": to, "subject": subject, "html": html})
        logger.info("Email captured", recipient=mask_email(to), subject=subject)


def build_email_sender(settings) -> EmailSender:
    """Select the sender configured by ``email_backend``."""
    if settings.email_backend == "resend":
        if not settings.resend_api_key:
            raise ValueError("RESEND_API_KEY is required when EMAIL_BACKEND=resend")
        return ResendEmailSender(
            ResendConfig(api_key=settings.resend_api_key, sender=settings.email_from)
        )
    return LoggingEmailSender()
