"""Tests for the fetch/fallback policy."""
from datetime import datetime, timedelta

import httpx
import pytest

from icalsync.fetcher import UNTITLED, should_skip_network, to_event
from icalsync.models import Source, Trigger
from icalsync.parser import RawEvent

from conftest import NOW, OTHER_ICS, SAMPLE_ICS, routing_transport


def make_source(**kwargs) -> Source:
    kwargs.setdefault("url", "https://feeds.example/cal.ics")
    kwargs.setdefault("id", "work")
    kwargs.setdefault("name", "Work")
    return Source(**kwargs)


class TestSkipNetworkPolicy:

    def test_startup_with_auto_refresh_off_skips(self):
        source = make_source(refresh_interval_minutes=0)
        assert should_skip_network(source, Trigger.STARTUP, NOW)

    def test_startup_while_fresh_skips(self):
        source = make_source(last_updated=NOW - timedelta(minutes=10))
        assert should_skip_network(source, Trigger.STARTUP, NOW)

    def test_startup_when_stale_fetches(self):
        source = make_source(last_updated=NOW - timedelta(minutes=61))
        assert not should_skip_network(source, Trigger.STARTUP, NOW)

    def test_startup_never_updated_fetches(self):
        assert not should_skip_network(make_source(), Trigger.STARTUP, NOW)

    @pytest.mark.parametrize("trigger", [
        Trigger.TIMER, Trigger.MANUAL_REFRESH, Trigger.EDIT_SOURCE, Trigger.SETTINGS_CHANGED,
    ])
    def test_other_triggers_always_fetch(self, trigger):
        source = make_source(last_updated=NOW - timedelta(minutes=1), refresh_interval_minutes=0)
        assert not should_skip_network(source, trigger, NOW)


class TestFetch:

    @pytest.mark.asyncio
    async def test_success_writes_cache_and_advances_last_updated(self, make_fetcher, cache_store):
        fetcher = make_fetcher(routing_transport({"feeds.example": SAMPLE_ICS}))
        source = make_source(color="#FF0000", last_updated=NOW - timedelta(days=1))

        events = await fetcher.fetch(source, Trigger.TIMER)

        assert [event.title for event in events] == ["Offsite", "Team Meeting"]
        assert all(event.source_id == "work" for event in events)
        assert all(event.source_color == "#FF0000" for event in events)
        assert source.last_updated == NOW
        assert cache_store.read(source.url) == SAMPLE_ICS

    @pytest.mark.asyncio
    async def test_fresh_startup_serves_cache_without_network(self, make_fetcher, cache_store):
        calls = []
        fetcher = make_fetcher(routing_transport({"feeds.example": OTHER_ICS}, calls))
        source = make_source(last_updated=NOW - timedelta(minutes=10), refresh_interval_minutes=60)
        cache_store.write(source.url, SAMPLE_ICS)

        events = await fetcher.fetch(source, Trigger.STARTUP)

        assert calls == []
        assert {event.id for event in events} == {"meeting@test", "offsite@test"}
        assert source.last_updated == NOW - timedelta(minutes=10)

    @pytest.mark.asyncio
    async def test_http_error_falls_back_to_cache(self, make_fetcher, cache_store):
        fetcher = make_fetcher(routing_transport({"feeds.example": 500}))
        last_updated = NOW - timedelta(hours=3)
        source = make_source(last_updated=last_updated)
        cache_store.write(source.url, SAMPLE_ICS)

        events = await fetcher.fetch(source, Trigger.TIMER)

        assert len(events) == 2
        assert source.last_updated == last_updated

    @pytest.mark.asyncio
    async def test_timeout_falls_back_to_cache(self, make_fetcher, cache_store):
        fetcher = make_fetcher(routing_transport({"feeds.example": httpx.ConnectTimeout}))
        source = make_source()
        cache_store.write(source.url, OTHER_ICS)

        events = await fetcher.fetch(source, Trigger.MANUAL_REFRESH)

        assert [event.title for event in events] == ["Review"]
        assert source.last_updated is None

    @pytest.mark.asyncio
    async def test_failure_without_cache_yields_nothing(self, make_fetcher):
        fetcher = make_fetcher(routing_transport({"feeds.example": 503}))
        assert await fetcher.fetch(make_source(), Trigger.TIMER) == []

    @pytest.mark.asyncio
    async def test_unparseable_content_yields_nothing(self, make_fetcher):
        fetcher = make_fetcher(routing_transport({"feeds.example": b"<html>not a calendar</html>"}))
        source = make_source()

        assert await fetcher.fetch(source, Trigger.TIMER) == []
        # the download itself succeeded
        assert source.last_updated == NOW

    @pytest.mark.asyncio
    async def test_webcal_is_requested_over_https_but_cached_by_original_url(
        self, make_fetcher, cache_store
    ):
        calls = []
        fetcher = make_fetcher(routing_transport({"feeds.example": SAMPLE_ICS}, calls))
        source = make_source(url="webcal://feeds.example/cal.ics")

        await fetcher.fetch(source, Trigger.EDIT_SOURCE)

        assert calls == ["https://feeds.example/cal.ics"]
        assert cache_store.read("webcal://feeds.example/cal.ics") == SAMPLE_ICS
        assert cache_store.read("https://feeds.example/cal.ics") is None

    @pytest.mark.asyncio
    async def test_request_log_records_outcomes(self, make_fetcher, cache_store, request_log):
        fetcher = make_fetcher(routing_transport({"feeds.example": 500}))
        source = make_source()
        cache_store.write(source.url, SAMPLE_ICS)

        await fetcher.fetch(source, Trigger.TIMER)
        request_log.close()

        lines = request_log.log_path.read_text(encoding="utf-8").splitlines()
        assert "Trigger: Timer" in lines[0]
        assert "Status: Failed" in lines[0]
        assert "Status: CacheHit" in lines[1]


class TestToEvent:

    def test_defaults_for_missing_fields(self):
        raw = RawEvent(
            uid=None, title=None, description=None, start=datetime(2026, 2, 11, 9, 0),
            end=None, location=None, url=None, is_all_day=False,
        )
        event = to_event(raw, make_source())

        assert event.title == UNTITLED
        assert event.id
        assert event.end_time == datetime(2026, 2, 11, 10, 0)
        assert event.source_name == "Work"

    def test_all_day_without_end_lasts_one_day(self):
        raw = RawEvent(
            uid="x", title="Day off", description=None, start=datetime(2026, 2, 11),
            end=None, location=None, url=None, is_all_day=True,
        )
        assert to_event(raw, make_source()).end_time == datetime(2026, 2, 12)
