"""iCalendar parsing on top of the icalendar package."""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Tuple

from icalendar import Calendar

from .errors import ParseError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawEvent:
    """A VEVENT reduced to the fields the sync engine cares about.

    Times are naive local datetimes. All-day events start at midnight.
    ``end`` is None when the feed gives neither DTEND nor DURATION.
    """
    uid: Optional[str]
    title: Optional[str]
    description: Optional[str]
    start: datetime
    end: Optional[datetime]
    location: Optional[str]
    url: Optional[str]
    is_all_day: bool


def _to_local(value) -> Tuple[datetime, bool]:
    """Convert a DTSTART/DTEND value to (naive local datetime, is_date)."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone().replace(tzinfo=None)
        return value, False
    if isinstance(value, date):
        return datetime.combine(value, time.min), True
    raise ValueError(f"Unsupported date value: {value!r}")


def _text(component, name: str) -> Optional[str]:
    value = component.get(name)
    if value is None:
        return None
    return str(value)


def _parse_component(component) -> Optional[RawEvent]:
    if component.get('dtstart') is None:
        return None

    start, is_all_day = _to_local(component.decoded('dtstart'))

    end = None
    if component.get('dtend') is not None:
        end, _ = _to_local(component.decoded('dtend'))
    elif component.get('duration') is not None:
        duration = component.decoded('duration')
        if isinstance(duration, timedelta):
            end = start + duration

    return RawEvent(
        uid=_text(component, 'uid'),
        title=_text(component, 'summary'),
        description=_text(component, 'description'),
        start=start,
        end=end,
        location=_text(component, 'location'),
        url=_text(component, 'url'),
        is_all_day=is_all_day,
    )


def parse(content: bytes) -> List[RawEvent]:
    """Parse iCalendar bytes into raw events.

    Raises ParseError when the content is not a calendar at all. Single
    events that cannot be read are skipped and logged.
    """
    try:
        calendar = Calendar.from_ical(content)
    except Exception as e:
        raise ParseError(f"Failed to parse iCal: {e}") from e

    events = []
    for component in calendar.walk('VEVENT'):
        try:
            event = _parse_component(component)
        except Exception as e:
            logger.warning(f"Skipping unreadable event {component.get('uid')}: {e}")
            continue
        if event is not None:
            events.append(event)
    return events
