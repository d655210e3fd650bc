"""Data model for ICalSync."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

WEBCAL_PREFIX = "webcal://"
DEFAULT_COLOR = "#0078D7"


class Trigger(Enum):
    """Reason a refresh cycle was started."""
    STARTUP = "Startup"
    TIMER = "Timer"
    MANUAL_REFRESH = "ManualRefresh"
    EDIT_SOURCE = "EditSource"
    SETTINGS_CHANGED = "SettingsChanged"


class HolidayType(Enum):
    """Classification of a day in the holiday feed."""
    NONE = "none"
    HOLIDAY = "holiday"
    WORKDAY = "workday"


@dataclass
class Source:
    """A remote iCal feed plus its refresh policy and freshness state."""
    url: str
    name: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    refresh_interval_minutes: int = 60
    color: str = DEFAULT_COLOR
    enabled: bool = True
    last_updated: Optional[datetime] = None

    @property
    def request_url(self) -> str:
        """URL used on the wire; webcal:// is served over https."""
        if self.url.lower().startswith(WEBCAL_PREFIX):
            return "https://" + self.url[len(WEBCAL_PREFIX):]
        return self.url

    @property
    def refresh_interval(self) -> timedelta:
        return timedelta(minutes=self.refresh_interval_minutes)

    @property
    def next_refresh_time(self) -> Optional[datetime]:
        """When the feed stops being fresh, or None without auto refresh."""
        if self.refresh_interval_minutes <= 0 or self.last_updated is None:
            return None
        return self.last_updated + self.refresh_interval

    def mark_updated(self, when: datetime) -> None:
        """Record a successful retrieval. Never moves backwards."""
        if self.last_updated is None or when > self.last_updated:
            self.last_updated = when


@dataclass(frozen=True)
class Event:
    """A calendar event as shown to the display layer."""
    id: str
    title: str
    start_time: datetime
    end_time: datetime
    source_id: str
    description: str = ""
    location: str = ""
    url: str = ""
    is_all_day: bool = False
    source_color: str = DEFAULT_COLOR
    source_name: str = ""

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'location': self.location,
            'url': self.url,
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat(),
            'is_all_day': self.is_all_day,
            'source_id': self.source_id,
            'source_color': self.source_color,
            'source_name': self.source_name,
        }


@dataclass(frozen=True)
class HolidayInfo:
    """Holiday or make-up workday marker for one date."""
    type: HolidayType
    description: str = ""
