"""Transaction boundaries with bounded retry for lost races."""

import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from ..domain.exceptions import DomainError, TransientStoreError
from ..logging_config import get_logger
from ..metrics import record_retry

logger = get_logger(__name__)

T = TypeVar("T")


class StaleClaimError(Exception):
    """A compare-and-swap on a claim matched no row; another writer got there first."""

    def __init__(self, claim_id: str):
        super().__init__(f"Claim {claim_id} changed concurrently")
        self.claim_id = claim_id


class CommitThenRaise(Exception):
    """Commit the work done so far, then surface ``error`` to the caller.

    Used when a command discovers a transition it must persist (an overdue
    claim expiring, a family that regained an admin) before rejecting.
    """

    def __init__(self, error: DomainError):
        super().__init__(str(error))
        self.error = error


_RETRYABLE = (StaleClaimError, OperationalError, TransientStoreError)


def run_in_transaction(
    session: Session,
    operation: Callable[[], T],
    *,
    description: str,
    max_attempts: int = 5,
    backoff_ms: int = 25,
) -> T:
    """Run ``operation`` and commit, retrying when it loses a race.

    Domain errors roll back and propagate immediately. Lost races and
    locked-store errors roll back and retry with linear backoff; after
    ``max_attempts`` a ``TransientStoreError`` is raised and nothing of the
    operation has been applied.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            result = operation()
            session.commit()
            return result
        except CommitThenRaise as deferred:
            session.commit()
            raise deferred.error from None
        except _RETRYABLE as e:
            session.rollback()
            logger.warning(
                "Transaction lost a race, retrying",
                operation=description,
                attempt=attempt,
                max_attempts=max_attempts,
                error=str(e),
            )
            record_retry(description)
            if attempt == max_attempts:
                raise TransientStoreError(
                    f"{description} failed after {max_attempts} attempts"
                ) from e
            time.sleep(backoff_ms * attempt / 1000)
        except BaseException:
            session.rollback()
            raise

    # Unreachable: the loop either returns or raises
    raise TransientStoreError(f"{description} failed")
