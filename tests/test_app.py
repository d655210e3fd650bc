"""Tests for the HTTP API."""
import pytest
from fastapi.testclient import TestClient

from icalsync.app import create_app

from conftest import HOLIDAY_ICS, HOLIDAY_SOURCE_HOST, OTHER_ICS, SAMPLE_ICS, routing_transport

CONFIG = """
show_holiday_feed = true

[[sources]]
id = "work"
name = "Work"
url = "https://work.example/cal.ics"
refresh_interval_minutes = 60
color = "#FF0000"
enabled = true
"""


@pytest.fixture
def client(tmp_path):
    (tmp_path / "config.toml").write_text(CONFIG, encoding="utf-8")
    transport = routing_transport({
        "work.example": SAMPLE_ICS,
        "home.example": OTHER_ICS,
        HOLIDAY_SOURCE_HOST: HOLIDAY_ICS,
    })
    app = create_app(tmp_path, transport=transport)
    with TestClient(app) as test_client:
        yield test_client


def test_startup_loads_events_and_holidays(client):
    events = client.get("/api/events").json()
    assert [event["id"] for event in events["work"]] == ["offsite@test", "meeting@test"]
    assert events["work"][0]["source_color"] == "#FF0000"

    holidays = client.get("/api/holidays").json()
    assert holidays["2026-02-14"]["type"] == "workday"
    assert holidays["2026-02-16"]["type"] == "holiday"


def test_events_for_one_day(client):
    events = client.get("/api/events", params={"day": "2026-02-16"}).json()
    assert [event["title"] for event in events["work"]] == ["Offsite"]

    events = client.get("/api/events", params={"day": "2026-02-17"}).json()
    assert events["work"] == []


def test_list_sources_shows_schedule(client):
    [source] = client.get("/api/sources").json()
    assert source["id"] == "work"
    assert source["last_updated"] is not None
    assert source["state"] in ("armed", "firing")
    assert source["next_refresh"] is not None


def test_add_disable_and_delete_source(client):
    response = client.post("/api/sources", json={"id": "home", "url": "https://home.example/cal.ics"})
    assert response.status_code == 200
    assert [event["title"] for event in client.get("/api/events").json()["home"]] == ["Review"]

    assert client.post("/api/sources/home/disable").status_code == 200
    assert "home" not in client.get("/api/events").json()

    assert client.delete("/api/sources/home").status_code == 200
    assert [source["id"] for source in client.get("/api/sources").json()] == ["work"]


def test_duplicate_source_is_rejected(client):
    response = client.post("/api/sources", json={"id": "work", "url": "https://work.example/cal.ics"})
    assert response.status_code == 400


def test_holiday_source_id_is_reserved(client):
    response = client.post("/api/sources", json={"id": "System_Holiday_CN", "url": "https://home.example/cal.ics"})
    assert response.status_code == 400
    assert client.get("/api/holidays").json()


def test_unknown_source_is_404(client):
    assert client.patch("/api/sources/nope", json={"name": "x"}).status_code == 404
    assert client.post("/api/sources/nope/disable").status_code == 404
    assert client.delete("/api/sources/nope").status_code == 404


def test_edit_source(client):
    response = client.patch("/api/sources/work", json={"url": "https://home.example/cal.ics"})
    assert response.status_code == 200
    assert response.json()["url"] == "https://home.example/cal.ics"
    assert [event["title"] for event in client.get("/api/events").json()["work"]] == ["Review"]


def test_manual_refresh(client):
    response = client.post("/api/refresh")
    assert response.status_code == 200
    assert response.json()["events"] == {"work": 2}


def test_holiday_toggle(client):
    assert client.put("/api/holidays/enabled", json={"enabled": False}).status_code == 200
    assert client.get("/api/holidays").json() == {}

    assert client.put("/api/holidays/enabled", json={"enabled": True}).status_code == 200
    assert client.get("/api/holidays").json()
