"""Sync engine: orchestrates fetching, caching and scheduling of all sources."""
import asyncio
import copy
import logging
from datetime import date
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol

import httpx

from .config import AppConfig, ConfigManager
from .dates import build_holiday_map
from .errors import ConfigPersistError, SourceNotFound
from .event_cache import EventCache
from .fetcher import Fetcher
from .models import Event, HolidayInfo, Source, Trigger
from .scheduler import RefreshScheduler
from .storage import CacheStore, RequestLog

logger = logging.getLogger(__name__)

HOLIDAY_SOURCE_ID = "System_Holiday_CN"
HOLIDAY_FEED_URL = "https://cdn.jsdelivr.net/gh/lanceliao/china-holiday-calender/holidayCal.ics"

EDITABLE_FIELDS = ("name", "url", "refresh_interval_minutes", "color", "enabled")


class DisplayListener(Protocol):
    """Receives full snapshots whenever displayed data changes."""

    def on_events_updated(self, events: Dict[str, List[Event]]) -> None:
        ...

    def on_holiday_data_updated(self, holidays: Dict[date, HolidayInfo]) -> None:
        ...


def default_holiday_source() -> Source:
    return Source(
        id=HOLIDAY_SOURCE_ID,
        name="China Holidays",
        url=HOLIDAY_FEED_URL,
        refresh_interval_minutes=1440,
    )


class SyncEngine:
    """Owns the event cache, the refresh scheduler and the source list.

    All writes to the event cache and to the configuration happen under
    one lock. A per-source generation counter is bumped whenever a source
    is edited, disabled or deleted; refreshes that started under an older
    generation are discarded when they complete.
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        fetcher: Fetcher,
        config: Optional[AppConfig] = None,
        scheduler: Optional[RefreshScheduler] = None,
        event_cache: Optional[EventCache] = None,
        holiday_source: Optional[Source] = None,
    ):
        self.config_manager = config_manager
        self.config = config if config is not None else config_manager.load()
        self.fetcher = fetcher
        self.scheduler = scheduler or RefreshScheduler()
        self.cache = event_cache or EventCache()
        self.holiday_source = holiday_source or default_holiday_source()
        self.holiday_source.enabled = self.config.show_holiday_feed
        self._drop_reserved_sources()
        self._holidays: Dict[date, HolidayInfo] = {}
        self._listeners: List[DisplayListener] = []
        self._lock = asyncio.Lock()
        self._generations: Dict[str, int] = {}

    @classmethod
    def from_data_dir(
        cls,
        data_dir: Path,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "SyncEngine":
        """Build an engine with the standard on-disk layout under data_dir."""
        config_manager = ConfigManager(data_dir / "config.toml")
        config = config_manager.load()
        cache_dir = Path(config.cache_dir) if config.cache_dir else data_dir / "cache"
        fetcher = Fetcher(
            CacheStore(cache_dir),
            RequestLog(data_dir / "requests.log"),
            transport=transport,
        )
        return cls(config_manager, fetcher, config=config)

    # Lifecycle

    async def start(self) -> None:
        """Load every source (cache first where fresh) and start the timers."""
        logger.info("Starting sync engine")
        for source in [*self.config.sources, self.holiday_source]:
            if source.last_updated is None:
                cached_at = await asyncio.to_thread(self.fetcher.cache.last_modified, source.url)
                if cached_at is not None:
                    source.last_updated = cached_at

        await self.reload(Trigger.STARTUP)

        if self.holiday_source.enabled:
            await self.refresh_holidays(Trigger.STARTUP)
            self.scheduler.arm(self.holiday_source, self._refresh_holiday_source)

    async def shutdown(self) -> None:
        logger.info("Shutting down sync engine")
        self.scheduler.shutdown()
        if self.fetcher.request_log is not None:
            self.fetcher.request_log.close()

    # Display side

    def add_listener(self, listener: DisplayListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: DisplayListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def snapshot(self) -> Dict[str, List[Event]]:
        return self.cache.snapshot()

    def holiday_snapshot(self) -> Dict[date, HolidayInfo]:
        return dict(self._holidays)

    def get_sources(self) -> List[Source]:
        return list(self.config.sources)

    def get_source(self, source_id: str) -> Source:
        source = self.config.get_source(source_id)
        if source is None:
            raise SourceNotFound(source_id)
        return source

    # Refreshing

    async def refresh_all(
        self, sources: Iterable[Source], trigger: Trigger
    ) -> Dict[str, List[Event]]:
        """Fetch every enabled source concurrently.

        Every enabled source gets an entry; one that fails gets an empty list.
        """
        enabled = [source for source in sources if source.enabled]
        results = await asyncio.gather(
            *(self._fetch_safely(source, trigger) for source in enabled)
        )
        return {source.id: events for source, events in zip(enabled, results)}

    async def reload(self, trigger: Trigger = Trigger.MANUAL_REFRESH) -> Dict[str, List[Event]]:
        """Refresh all enabled sources and replace the cache with the result."""
        sources = list(self.config.sources)
        started = {source.id: self._generation(source.id) for source in sources}
        results = await self.refresh_all(sources, trigger)

        async with self._lock:
            enabled_ids = self.config.enabled_ids()
            for source_id, events in results.items():
                if source_id in enabled_ids and self._generation(source_id) == started[source_id]:
                    self.cache.upsert(source_id, events)
            removed = self.cache.prune_to_enabled(enabled_ids)
            if removed:
                logger.info(f"Dropped events of disabled sources: {', '.join(removed)}")

            for source in self.config.sources:
                if source.enabled:
                    self.scheduler.arm(source, self.refresh_one)
            self._notify_events()
            await self._persist(trigger)

        return results

    async def refresh_one(self, source: Source, trigger: Trigger) -> None:
        """Refresh a single source and publish its events."""
        generation = self._generation(source.id)
        events = await self._fetch_safely(source, trigger)

        async with self._lock:
            if not self._is_current(source, generation):
                logger.info(f"Discarding stale refresh of {source.name or source.id}")
                return
            self.cache.upsert(source.id, events)
            self._notify_events()
            await self._persist(trigger)

    async def refresh_holidays(self, trigger: Trigger) -> None:
        """Refresh the built-in holiday feed and publish the day map."""
        source = self.holiday_source
        generation = self._generation(source.id)
        events = await self._fetch_safely(source, trigger)
        holidays = build_holiday_map(events)

        async with self._lock:
            if not source.enabled or self._generation(source.id) != generation:
                logger.info("Discarding stale holiday refresh")
                return
            self._holidays = holidays
            self._notify_holidays()

    async def _refresh_holiday_source(self, source: Source, trigger: Trigger) -> None:
        await self.refresh_holidays(trigger)

    # Configuration changes

    async def add_source(self, source: Source) -> Source:
        """Add a source, then load it if enabled."""
        async with self._lock:
            if source.id == self.holiday_source.id:
                raise ValueError(f"Source id {source.id} is reserved")
            if self.config.get_source(source.id) is not None:
                raise ValueError(f"Source {source.id} already exists")
            self.config.sources.append(source)
        await self._save_and_activate(source)
        return source

    async def edit_source(self, source_id: str, **changes) -> Source:
        """Apply changes to a source and reload it from the network."""
        source = self.get_source(source_id)
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot edit fields: {', '.join(sorted(unknown))}")

        self.scheduler.disarm(source_id)
        self._bump(source_id)
        for name, value in changes.items():
            setattr(source, name, value)
        if not source.enabled:
            self._drop_from_display(source_id)

        await self._save_and_activate(source)
        return source

    async def enable_source(self, source_id: str) -> Source:
        return await self.edit_source(source_id, enabled=True)

    async def disable_source(self, source_id: str) -> None:
        """Stop refreshing a source and remove its events right away."""
        source = self.get_source(source_id)
        self.scheduler.disarm(source_id)
        self._bump(source_id)
        source.enabled = False
        self._drop_from_display(source_id)
        async with self._lock:
            await self._save_config()

    async def delete_source(self, source_id: str) -> None:
        """Forget a source. Its on-disk cache is kept for a later re-add."""
        source = self.get_source(source_id)
        self.scheduler.disarm(source_id)
        self._bump(source_id)
        self.config.sources.remove(source)
        self._drop_from_display(source_id)
        async with self._lock:
            await self._save_config()

    async def set_holiday_feed(self, enabled: bool) -> None:
        """Switch the built-in holiday feed on or off."""
        source = self.holiday_source
        self.scheduler.disarm(source.id)
        self._bump(source.id)
        source.enabled = enabled
        self.config.show_holiday_feed = enabled

        if enabled:
            generation = self._generation(source.id)
            await self.refresh_holidays(Trigger.SETTINGS_CHANGED)
            if source.enabled and self._generation(source.id) == generation:
                self.scheduler.arm(source, self._refresh_holiday_source)
        else:
            self._holidays = {}
            self._notify_holidays()

        async with self._lock:
            await self._save_config()

    # Helpers

    def _drop_reserved_sources(self) -> None:
        reserved = self.holiday_source.id
        if self.config.get_source(reserved) is not None:
            logger.warning(f"Ignoring configured source with reserved id {reserved}")
            self.config.sources = [s for s in self.config.sources if s.id != reserved]

    async def _save_and_activate(self, source: Source) -> None:
        """Save the configuration; the source is loaded and armed even if that fails."""
        try:
            async with self._lock:
                await self._save_config()
        finally:
            if source.enabled:
                await self._activate(source)

    async def _activate(self, source: Source) -> None:
        generation = self._generation(source.id)
        await self.refresh_one(source, Trigger.EDIT_SOURCE)
        if self._is_current(source, generation):
            self.scheduler.arm(source, self.refresh_one)

    def _drop_from_display(self, source_id: str) -> None:
        if self.cache.remove(source_id):
            self._notify_events()

    async def _fetch_safely(self, source: Source, trigger: Trigger) -> List[Event]:
        try:
            return await self.fetcher.fetch(source, trigger)
        except Exception:
            logger.exception(f"Unexpected error refreshing {source.name or source.id}")
            return []

    def _generation(self, source_id: str) -> int:
        return self._generations.get(source_id, 0)

    def _bump(self, source_id: str) -> None:
        self._generations[source_id] = self._generation(source_id) + 1

    def _is_current(self, source: Source, generation: int) -> bool:
        return (
            self.config.get_source(source.id) is source
            and source.enabled
            and self._generation(source.id) == generation
        )

    async def _save_config(self) -> None:
        config = copy.deepcopy(self.config)
        await asyncio.to_thread(self.config_manager.save, config)

    async def _persist(self, trigger: Trigger) -> None:
        """Save refresh timestamps; only a manual refresh reports failure."""
        try:
            await self._save_config()
        except ConfigPersistError as e:
            if trigger is Trigger.MANUAL_REFRESH:
                raise
            logger.warning(f"Could not save refresh state: {e}")

    def _notify_events(self) -> None:
        for listener in list(self._listeners):
            self._dispatch(listener.on_events_updated, self.cache.snapshot())

    def _notify_holidays(self) -> None:
        for listener in list(self._listeners):
            self._dispatch(listener.on_holiday_data_updated, dict(self._holidays))

    def _dispatch(self, callback: Callable, payload) -> None:
        asyncio.get_running_loop().call_soon(self._deliver, callback, payload)

    @staticmethod
    def _deliver(callback: Callable, payload) -> None:
        try:
            callback(payload)
        except Exception:
            logger.exception("Display listener failed")
