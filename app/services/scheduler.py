"""Periodic election transitions (SCHEDULED -> OPEN -> CLOSED) driven by APScheduler."""

import asyncio
from collections.abc import Callable
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.core.logging_config import election_events, get_logger
from app.store.base import BallotStore
from app.utils.time import now_utc

logger = get_logger(__name__)

JOB_ID = "process_due_elections"

TransitionListener = Callable[[dict], None]


class ElectionScheduler:
    """
    Opens and closes elections whose time window has been reached.

    One job runs every ``interval_seconds``. Each tick asks the store to
    process due elections in a single transaction, so an election moves at
    most one step per tick. Ticks never overlap; a tick that finds another
    one in progress is skipped.
    """

    def __init__(
        self,
        store: BallotStore,
        interval_seconds: int = 60,
        clock: Callable[[], datetime] = now_utc,
        timezone: str = "UTC",
    ):
        if interval_seconds < 1:
            raise ValueError("interval_seconds must be at least 1")
        self.store = store
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.timezone = timezone
        self._scheduler: AsyncIOScheduler | None = None
        self._tick_lock = asyncio.Lock()
        self._listeners: list[TransitionListener] = []

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def add_listener(self, listener: TransitionListener) -> None:
        """Call ``listener`` with every transition dict the scheduler applies."""
        self._listeners.append(listener)

    def start(self) -> None:
        if self.running:
            logger.warning("Election scheduler already running")
            return

        self._scheduler = AsyncIOScheduler(timezone=self.timezone)
        self._scheduler.add_job(
            self._tick,
            IntervalTrigger(seconds=self.interval_seconds, timezone=self.timezone),
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(f"Election scheduler started (every {self.interval_seconds}s)")

    def stop(self) -> None:
        if not self.running:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Election scheduler stopped")

    async def trigger_now(self, raise_errors: bool = False) -> list[dict]:
        """
        Run one tick immediately and return the applied transitions.

        Store failures are logged and an empty list is returned unless
        ``raise_errors`` is set. Returns an empty list when a tick is already
        in progress.
        """
        if self._tick_lock.locked():
            logger.info("Election tick already in progress, skipping")
            return []

        async with self._tick_lock:
            try:
                transitions = await self.store.process_due_elections(self.clock())
            except Exception as e:
                if raise_errors:
                    raise
                logger.error(f"Election tick failed: {e}", exc_info=True)
                return []

        for transition in transitions:
            self._emit(transition)
        return transitions

    async def _tick(self) -> None:
        await self.trigger_now()

    def _emit(self, transition: dict) -> None:
        election_events.log_transition(
            transition["election_id"],
            transition["election_name"],
            transition["action"],
            source="scheduler",
        )
        for listener in self._listeners:
            try:
                listener(transition)
            except Exception as e:
                logger.error(f"Election transition listener failed: {e}", exc_info=True)
