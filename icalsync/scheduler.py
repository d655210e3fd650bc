"""Per-source refresh scheduling."""
import asyncio
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from .models import Source, Trigger

logger = logging.getLogger(__name__)

MIN_DELAY_SECONDS = 1.0
RETRY_BACKOFF_SECONDS = 3600.0

RefreshFunc = Callable[[Source, Trigger], Awaitable[object]]


class SchedulerState(Enum):
    IDLE = "idle"
    ARMED = "armed"
    FIRING = "firing"


def compute_delay(source: Source, now: datetime, advanced: bool = True) -> Optional[float]:
    """Seconds until a source is due again, or None when it never is.

    ``advanced`` is False after a refresh that did not move
    ``last_updated`` forward; such cycles wait at least the retry backoff.
    """
    if source.refresh_interval_minutes <= 0:
        return None

    if source.last_updated is None:
        remaining = 0.0
    else:
        remaining = (source.last_updated + source.refresh_interval - now).total_seconds()

    if not advanced:
        return max(remaining, RETRY_BACKOFF_SECONDS)
    if remaining > 0:
        return remaining
    return MIN_DELAY_SECONDS


class RefreshScheduler:
    """Runs one refresh loop task per armed source."""

    def __init__(
        self,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.clock = clock
        self.sleep = sleep
        self._tasks: Dict[str, asyncio.Task] = {}
        self._states: Dict[str, SchedulerState] = {}
        self._due: Dict[str, datetime] = {}

    def arm(self, source: Source, refresh: RefreshFunc) -> None:
        """(Re)start the refresh loop of a source."""
        self.disarm(source.id)

        if source.refresh_interval_minutes <= 0:
            logger.info(f"Auto refresh off for {source.name or source.id}, not scheduling")
            return

        now = self.clock()
        self._states[source.id] = SchedulerState.ARMED
        self._due[source.id] = now + timedelta(seconds=compute_delay(source, now))
        self._tasks[source.id] = asyncio.create_task(
            self._run(source, refresh), name=f"refresh_{source.id}"
        )

    def disarm(self, source_id: str) -> None:
        """Cancel the refresh loop of a source, if any."""
        task = self._tasks.pop(source_id, None)
        self._states.pop(source_id, None)
        self._due.pop(source_id, None)
        if task is not None:
            task.cancel()
            logger.info(f"Unscheduled {source_id}")

    def shutdown(self) -> None:
        for source_id in list(self._tasks):
            self.disarm(source_id)
        logger.info("Scheduler stopped")

    def state(self, source_id: str) -> SchedulerState:
        return self._states.get(source_id, SchedulerState.IDLE)

    def next_run_time(self, source_id: str) -> Optional[datetime]:
        """Get the next scheduled run time for a source."""
        if self.state(source_id) is not SchedulerState.ARMED:
            return None
        return self._due.get(source_id)

    def armed_ids(self) -> List[str]:
        return list(self._tasks)

    async def _run(self, source: Source, refresh: RefreshFunc) -> None:
        advanced = True
        while True:
            delay = compute_delay(source, self.clock(), advanced)
            if delay is None:
                logger.info(f"Auto refresh off for {source.name or source.id}, stopping")
                if self._tasks.get(source.id) is asyncio.current_task():
                    self._tasks.pop(source.id)
                    self._states.pop(source.id, None)
                    self._due.pop(source.id, None)
                return

            self._states[source.id] = SchedulerState.ARMED
            self._due[source.id] = self.clock() + timedelta(seconds=delay)
            logger.debug(f"Next refresh of {source.name or source.id} in {delay:.0f}s")
            await self.sleep(delay)

            self._states[source.id] = SchedulerState.FIRING
            before = source.last_updated
            # Shielded so that disarming never aborts a request mid-flight.
            inner = asyncio.ensure_future(refresh(source, Trigger.TIMER))
            try:
                await asyncio.shield(inner)
            except Exception:
                logger.exception(f"Timer refresh of {source.name or source.id} failed")

            advanced = source.last_updated is not None and (
                before is None or source.last_updated > before
            )
            if not advanced:
                logger.info(
                    f"{source.name or source.id} was not updated, "
                    f"retrying in no less than {RETRY_BACKOFF_SECONDS:.0f}s"
                )
