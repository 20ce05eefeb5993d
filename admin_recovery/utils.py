"""Small helpers shared across layers."""

import hashlib
import uuid
from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def new_id() -> str:
    """Opaque identifier for claims, endorsements and audit entries."""
    return uuid.uuid4().hex


def hash_token(token: str) -> str:
    """SHA-256 digest used to store challenge tokens at rest."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
