"""Date-range normalization shared by event placement and holiday lookup."""
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Set

from .models import Event, HolidayInfo, HolidayType

# Title markers used by the built-in holiday feed.
HOLIDAY_MARKER = "假期"
WORKDAY_MARKER = "补班"

ONE_SECOND = timedelta(seconds=1)


def effective_end(event: Event) -> datetime:
    """Last instant an event occupies, for the purpose of picking dates.

    Feeds end all-day events at midnight of the following day, and
    timed events that run up to midnight end at 00:00 of the next date.
    Both belong to the previous day.
    """
    start, end = event.start_time, event.end_time
    if event.is_all_day:
        if end > start:
            return end - ONE_SECOND
        return end
    if end.date() > start.date() and end.time() == time.min:
        return end - ONE_SECOND
    return end


def days_covered(event: Event) -> Set[date]:
    """All dates on which an event should appear."""
    first = event.start_time.date()
    last = effective_end(event).date()
    if last < first:
        return {first}
    return {first + timedelta(days=offset) for offset in range((last - first).days + 1)}


def events_on(events: Iterable[Event], day: date) -> List[Event]:
    """Events covering a date, all-day ones first, then by start time."""
    matching = [event for event in events if day in days_covered(event)]
    matching.sort(key=lambda event: (not event.is_all_day, event.start_time))
    return matching


def classify_holiday(title: str) -> HolidayType:
    if HOLIDAY_MARKER in title:
        return HolidayType.HOLIDAY
    if WORKDAY_MARKER in title:
        return HolidayType.WORKDAY
    return HolidayType.NONE


def build_holiday_map(events: Iterable[Event]) -> Dict[date, HolidayInfo]:
    """Expand holiday feed entries into a per-day lookup."""
    holidays: Dict[date, HolidayInfo] = {}
    for event in events:
        holiday_type = classify_holiday(event.title)
        if holiday_type is HolidayType.NONE:
            continue
        info = HolidayInfo(type=holiday_type, description=f"{event.title}\n{event.description}")
        for day in days_covered(event):
            holidays[day] = info
    return holidays
