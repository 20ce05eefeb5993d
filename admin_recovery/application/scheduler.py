"""Background expiry of claims that ran past their deadline."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Final

from ..domain.constants import SYSTEM_ACTOR, ClaimStatus
from ..domain.exceptions import TransientStoreError
from ..logging_config import get_logger
from ..metrics import record_sweep
from .claim_registry import ClaimRegistry
from .transactions import StaleClaimError, run_in_transaction

logger: Final = get_logger(__name__)


@dataclass(frozen=True)
class SweepReport:
    expired_pending: int = 0
    expired_approved: int = 0
    skipped: int = 0

    @property
    def expired(self) -> int:
        return self.expired_pending + self.expired_approved


class CoolingOffScheduler:
    """Expires overdue pending and approved claims.

    Each claim is expired in its own short transaction through a swap
    conditioned on status and deadline. Running several sweeps at once, or a
    sweep racing a lazy expiry, still expires each claim exactly once; the
    losers count it as skipped.
    """

    def __init__(self, registry: ClaimRegistry):
        self.registry = registry

    def sweep(self, now: datetime | None = None) -> SweepReport:
        """Expire every active claim whose deadline is before ``now``.

        ``now`` defaults to the registry clock. Claims that another writer
        moved first are counted as skipped and audited as rejected attempts.
        """
        registry = self.registry
        now = now or registry.clock()
        overdue = registry.claims.list_overdue(now)
        # End the read so each expiry starts its own transaction
        registry.session.rollback()

        expired_pending = expired_approved = skipped = 0
        for claim in overdue:
            try:
                run_in_transaction(
                    registry.session,
                    lambda claim=claim: registry.expire_overdue(claim, now),
                    description="sweep_expire",
                    max_attempts=1,
                )
            except TransientStoreError as e:
                # Lost to a concurrent expiry or a transition
                if not isinstance(e.__cause__, StaleClaimError):
                    logger.warning(
                        "Could not expire claim", claim_id=claim.id, error=str(e)
                    )
                registry.audit.record_rejection(
                    claim.id, claim.family_id, SYSTEM_ACTOR, "sweep_expire", e
                )
                skipped += 1
                continue

            if claim.status == ClaimStatus.PENDING:
                expired_pending += 1
            else:
                expired_approved += 1

        report = SweepReport(expired_pending, expired_approved, skipped)
        record_sweep(report.expired)
        if overdue:
            logger.info(
                "Expiry sweep finished",
                expired_pending=report.expired_pending,
                expired_approved=report.expired_approved,
                skipped=report.skipped,
            )
        return report


async def run_forever(
    sweep: Callable[[], SweepReport],
    interval_seconds: float,
    stop_event: asyncio.Event,
) -> None:
    """Run ``sweep`` in a worker thread every ``interval_seconds`` until stopped.

    ``sweep`` should open its own session; it runs off the event loop.
    Cancelling the task stops the loop as well.
    """
    logger.info("Expiry sweep loop started", interval_seconds=interval_seconds)
    while not stop_event.is_set():
        try:
            await asyncio.to_thread(sweep)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Expiry sweep failed")

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except TimeoutError:
            continue
    logger.info("Expiry sweep loop stopped")
