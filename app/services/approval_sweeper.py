"""Background loop that expires pending approval requests past their deadline.

Each API process starts a sweeper from the FastAPI lifespan. On PostgreSQL a
session-level advisory lock lets only one of them sweep at a time; the others
skip that round. Each sweep runs in a worker thread with its own session, so a
slow database never blocks the event loop. Failures back off exponentially
(1, 2, 4, 8, 16 minutes); after ``max_failures`` consecutive failures the
circuit opens and the loop waits out a cooldown before trying again. Any
successful sweep closes the circuit.
"""

import asyncio
import logging
from collections.abc import Callable

from sqlalchemy import text

from app import metrics
from app.config import settings

logger = logging.getLogger(__name__)


# pg_advisory_lock key shared by every process that runs a sweeper.
SWEEP_LOCK_KEY = 7_130_402_871


def _sweep_with_session(session_factory) -> int:
    from app.services.approval import share_approvals

    db = session_factory()
    try:
        return share_approvals.process_expired_requests(db)
    finally:
        db.close()


def sweep_expired_requests() -> int:
    """Run one expiry sweep; on PostgreSQL only the advisory lock holder sweeps."""
    from app.db import SessionLocal, engine

    if engine.dialect.name != "postgresql":
        return _sweep_with_session(SessionLocal)
    with engine.connect() as conn:
        locked = conn.execute(
            text("SELECT pg_try_advisory_lock(:key)"), {"key": SWEEP_LOCK_KEY}
        ).scalar()
        if not locked:
            logger.debug("Another process holds the sweep lock, skipping")
            return 0
        try:
            return _sweep_with_session(SessionLocal)
        finally:
            conn.execute(
                text("SELECT pg_advisory_unlock(:key)"), {"key": SWEEP_LOCK_KEY}
            )


class ApprovalExpirySweeper:
    def __init__(
        self,
        sweep: Callable[[], int] = sweep_expired_requests,
        interval_seconds: float = settings.approval_sweep_interval_seconds,
        max_failures: int = settings.approval_sweep_max_failures,
        cooldown_seconds: float = settings.approval_sweep_cooldown_seconds,
        max_backoff_seconds: float = settings.approval_sweep_max_backoff_seconds,
        backoff_unit_seconds: float = 60,
    ):
        self._sweep = sweep
        self.interval_seconds = interval_seconds
        self.max_failures = max_failures
        self.cooldown_seconds = cooldown_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.backoff_unit_seconds = backoff_unit_seconds
        self.consecutive_failures = 0
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def circuit_open(self) -> bool:
        return self.consecutive_failures >= self.max_failures

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_delay(self) -> float:
        if self.consecutive_failures == 0:
            return self.interval_seconds
        if self.circuit_open:
            return self.cooldown_seconds
        backoff = self.backoff_unit_seconds * 2 ** (self.consecutive_failures - 1)
        return min(backoff, self.max_backoff_seconds)

    async def run_once(self) -> int | None:
        """Run one sweep. Returns the expired count, or None if it failed."""
        try:
            count = await asyncio.to_thread(self._sweep)
        except Exception:
            self.consecutive_failures += 1
            metrics.approval_sweep_failures_total.inc()
            logger.exception(
                "Approval expiry sweep failed (%d/%d consecutive)",
                self.consecutive_failures,
                self.max_failures,
            )
            if self.circuit_open:
                metrics.approval_sweeper_circuit_open.set(1)
                logger.error(
                    "Approval sweeper circuit open, pausing for %ss",
                    self.cooldown_seconds,
                )
            return None
        if self.consecutive_failures:
            logger.info(
                "Approval expiry sweep recovered after %d failures",
                self.consecutive_failures,
            )
        self.consecutive_failures = 0
        metrics.approval_sweeper_circuit_open.set(0)
        logger.debug("Approval expiry sweep expired %d requests", count)
        return count

    async def run(self) -> None:
        logger.info("Approval expiry sweeper started")
        while not self._stop.is_set():
            await self.run_once()
            if await self._wait(self.next_delay()):
                break
        logger.info("Approval expiry sweeper stopped")

    async def _wait(self, delay: float) -> bool:
        """Sleep for ``delay`` seconds; True if a stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    def start(self) -> asyncio.Task:
        if self.is_running:
            logger.warning("Approval expiry sweeper already running")
            return self._task
        self._stop.clear()
        self._task = asyncio.create_task(self.run(), name="approval-expiry-sweeper")
        return self._task

    def request_stop(self) -> None:
        self._stop.set()

    async def stop(self) -> None:
        self._stop.set()
        if self._task is None:
            return
        try:
            await self._task
        finally:
            self._task = None
