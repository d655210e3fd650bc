"""Shared fixtures for ICalSync tests."""
import asyncio
from datetime import datetime
from typing import Callable, Dict

import httpx
import pytest

from icalsync.fetcher import Fetcher
from icalsync.storage import CacheStore, RequestLog

NOW = datetime(2026, 2, 11, 12, 0, 0)


def make_ics(*vevents: str) -> bytes:
    body = "\n".join(vevents)
    return (
        "BEGIN:VCALENDAR\n"
        "VERSION:2.0\n"
        "PRODID:-//ICalSync Test//EN\n"
        f"{body}\n"
        "END:VCALENDAR\n"
    ).replace("\n", "\r\n").encode("utf-8")


def vevent(uid: str, summary: str, start: str, end: str = "", extra: str = "") -> str:
    lines = ["BEGIN:VEVENT", f"UID:{uid}", f"SUMMARY:{summary}", f"DTSTART{start}"]
    if end:
        lines.append(f"DTEND{end}")
    if extra:
        lines.append(extra)
    lines.append("END:VEVENT")
    return "\n".join(lines)


SAMPLE_ICS = make_ics(
    vevent("meeting@test", "Team Meeting", ":20260301T100000", ":20260301T110000",
           "LOCATION:Room A\nDESCRIPTION:Weekly sync"),
    vevent("offsite@test", "Offsite", ";VALUE=DATE:20260215", ";VALUE=DATE:20260217"),
)

OTHER_ICS = make_ics(
    vevent("review@test", "Review", ":20260305T140000", ":20260305T150000"),
)

HOLIDAY_SOURCE_HOST = "cdn.jsdelivr.net"

HOLIDAY_ICS = make_ics(
    vevent("spring@test", "春节 假期", ";VALUE=DATE:20260215", ";VALUE=DATE:20260218",
           "DESCRIPTION:Spring Festival"),
    vevent("makeup@test", "春节 补班", ";VALUE=DATE:20260214", ";VALUE=DATE:20260215"),
)


def routing_transport(routes: Dict[str, object], calls: list = None) -> httpx.MockTransport:
    """Serve responses by host. A route is bytes, a status code, or an exception."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(str(request.url))
        route = routes.get(request.url.host)
        if route is None:
            return httpx.Response(404)
        if isinstance(route, int):
            return httpx.Response(route)
        if isinstance(route, type) and issubclass(route, Exception):
            raise route("simulated failure", request=request)
        return httpx.Response(200, content=route)

    return httpx.MockTransport(handler)


async def wait_for(predicate: Callable[[], bool], attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


class FakeSleep:
    """Records requested delays; blocks forever after `fires` sleeps."""

    def __init__(self, fires: int = 0):
        self.fires = fires
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if len(self.delays) > self.fires:
            await asyncio.Event().wait()


@pytest.fixture
def cache_store(tmp_path) -> CacheStore:
    return CacheStore(tmp_path / "cache")


@pytest.fixture
def request_log(tmp_path):
    log = RequestLog(tmp_path / "requests.log")
    yield log
    log.close()


@pytest.fixture
def make_fetcher(cache_store, request_log):
    def factory(transport: httpx.MockTransport, clock=lambda: NOW) -> Fetcher:
        return Fetcher(cache_store, request_log, transport=transport, clock=clock)

    return factory
