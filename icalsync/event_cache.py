"""In-memory view of the current events of every source."""
import threading
from typing import Dict, Iterable, List

from .models import Event


class EventCache:
    """Maps source ids to their current events, sorted by start time.

    Readers get copies from snapshot(); the live map is only touched
    under the lock.
    """

    def __init__(self):
        self._events: Dict[str, List[Event]] = {}
        self._lock = threading.Lock()

    def upsert(self, source_id: str, events: Iterable[Event]) -> None:
        """Replace all events of a source."""
        ordered = sorted(events, key=lambda event: event.start_time)
        with self._lock:
            self._events[source_id] = ordered

    def remove(self, source_id: str) -> bool:
        """Drop a source. Returns whether it was present."""
        with self._lock:
            return self._events.pop(source_id, None) is not None

    def prune_to_enabled(self, enabled_ids: Iterable[str]) -> List[str]:
        """Drop every source not in enabled_ids. Returns the dropped ids."""
        keep = set(enabled_ids)
        with self._lock:
            stale = [source_id for source_id in self._events if source_id not in keep]
            for source_id in stale:
                del self._events[source_id]
        return stale

    def snapshot(self) -> Dict[str, List[Event]]:
        """Independent copy of the current map."""
        with self._lock:
            return {source_id: list(events) for source_id, events in self._events.items()}

    def source_ids(self) -> List[str]:
        with self._lock:
            return list(self._events)

    def __contains__(self, source_id: object) -> bool:
        with self._lock:
            return source_id in self._events

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
