"""iCal feed fetcher with cache fallback."""
import asyncio
import httpx
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from . import parser
from .errors import CacheUnavailable, NetworkError, ParseError
from .models import Event, Source, Trigger
from .storage import CacheStore, RequestLog

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
UNTITLED = "(No title)"


def should_skip_network(source: Source, trigger: Trigger, now: datetime) -> bool:
    """Decide whether a refresh may be served from the cache alone."""
    if trigger is Trigger.STARTUP:
        if source.refresh_interval_minutes <= 0:
            return True
        next_refresh = source.next_refresh_time
        return next_refresh is not None and now < next_refresh
    if trigger in (
        Trigger.TIMER,
        Trigger.MANUAL_REFRESH,
        Trigger.EDIT_SOURCE,
        Trigger.SETTINGS_CHANGED,
    ):
        return False
    raise ValueError(f"Unknown trigger: {trigger!r}")


def to_event(raw: parser.RawEvent, source: Source) -> Event:
    """Build an Event from a parsed item, stamped with its source."""
    end = raw.end
    if end is None:
        end = raw.start + (timedelta(days=1) if raw.is_all_day else timedelta(hours=1))
    return Event(
        id=raw.uid or str(uuid.uuid4()),
        title=raw.title or UNTITLED,
        description=raw.description or "",
        location=raw.location or "",
        url=raw.url or "",
        start_time=raw.start,
        end_time=end,
        is_all_day=raw.is_all_day,
        source_id=source.id,
        source_color=source.color,
        source_name=source.name,
    )


class Fetcher:
    """Fetches iCal feeds, keeping the cache as a fallback."""

    def __init__(
        self,
        cache: CacheStore,
        request_log: Optional[RequestLog] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.cache = cache
        self.request_log = request_log
        self.timeout = timeout
        self.transport = transport
        self.clock = clock

    def _log_request(self, trigger: Trigger, url: str, status: str, error: Optional[str] = None):
        if self.request_log is not None:
            self.request_log.record(trigger.value, url, status, error)

    async def download(self, url: str) -> bytes:
        """GET a feed. Any transport or HTTP failure becomes NetworkError."""
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self.transport,
                follow_redirects=True,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as e:
            raise NetworkError(f"HTTP error fetching {url}: {e!r}") from e

    async def _read_cache(self, source: Source, trigger: Trigger) -> bytes:
        content = await asyncio.to_thread(self.cache.read, source.url)
        if content is None:
            self._log_request(trigger, source.url, "CacheMiss")
            raise CacheUnavailable(f"No usable cache for {source.url}")
        self._log_request(trigger, source.url, "CacheHit")
        return content

    async def load_content(self, source: Source, trigger: Trigger) -> Optional[bytes]:
        """Get feed bytes from the network or, failing that, the cache."""
        now = self.clock()
        request_url = source.request_url

        if should_skip_network(source, trigger, now):
            if source.refresh_interval_minutes <= 0:
                reason = "Auto refresh off"
            else:
                reason = f"Next refresh: {source.next_refresh_time:%m-%d %H:%M}"
            self._log_request(trigger, request_url, f"SkippedNetwork ({reason})")
            logger.debug(f"Skipping network for {source.name or source.id}: {reason}")
        else:
            try:
                content = await self.download(request_url)
            except NetworkError as e:
                logger.warning(f"Failed to fetch {source.name or source.id}, using cache: {e}")
                self._log_request(trigger, request_url, "Failed", str(e))
            else:
                written = await asyncio.to_thread(self.cache.write, source.url, content)
                if not written:
                    self._log_request(trigger, source.url, "CacheWriteFailed")
                source.mark_updated(self.clock())
                self._log_request(trigger, request_url, "Success")
                logger.info(f"Successfully fetched {source.name or source.id}")
                return content

        try:
            return await self._read_cache(source, trigger)
        except CacheUnavailable as e:
            logger.info(f"{e}; {source.name or source.id} has no events this cycle")
            return None

    async def fetch(self, source: Source, trigger: Trigger) -> List[Event]:
        """Get the current events of one source. Never raises for feed problems."""
        content = await self.load_content(source, trigger)
        if not content:
            return []

        try:
            raw_events = parser.parse(content)
        except ParseError as e:
            logger.error(f"Failed to parse {source.name or source.id}: {e}")
            self._log_request(trigger, source.url, "ParseFailed", str(e))
            return []

        events = [to_event(raw, source) for raw in raw_events]
        events.sort(key=lambda event: event.start_time)
        return events
