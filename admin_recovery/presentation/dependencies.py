"""FastAPI dependencies shared by the API routes."""

from functools import lru_cache

from fastapi import Depends
from sqlmodel import Session

from ..application.services import RecoveryServices, build_services
from ..config import settings
from ..domain.ports import EmailSender
from ..infrastructure.database.database import get_session
from ..infrastructure.email import build_email_sender
from ..utils import Clock, utc_now


def get_clock() -> Clock:
    return utc_now


@lru_cache(maxsize=1)
def get_email_sender() -> EmailSender:
    """One sender per process; the Resend adapter holds a pooled HTTP client."""
    return build_email_sender(settings)


def get_services(
    session: Session = Depends(get_session),
    email_sender: EmailSender = Depends(get_email_sender),
    clock: Clock = Depends(get_clock),
) -> RecoveryServices:
    return build_services(session, settings, email_sender=email_sender, clock=clock)
