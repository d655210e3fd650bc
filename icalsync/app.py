"""HTTP API through which a display reads events and triggers sync actions."""
import logging
from contextlib import asynccontextmanager
from datetime import date
from pathlib import Path
from typing import Optional

import httpx
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from .dates import events_on
from .engine import SyncEngine
from .errors import ConfigPersistError, SourceNotFound
from .models import DEFAULT_COLOR, Source, Trigger

logger = logging.getLogger(__name__)


# Pydantic models
class SourceCreate(BaseModel):
    url: str
    name: str = ""
    id: Optional[str] = None
    refresh_interval_minutes: int = 60
    color: str = DEFAULT_COLOR
    enabled: bool = True


class SourceUpdate(BaseModel):
    name: Optional[str] = None
    url: Optional[str] = None
    refresh_interval_minutes: Optional[int] = None
    color: Optional[str] = None
    enabled: Optional[bool] = None


class HolidayToggle(BaseModel):
    enabled: bool


def source_to_dict(engine: SyncEngine, source: Source) -> dict:
    next_run = engine.scheduler.next_run_time(source.id)
    return {
        'id': source.id,
        'name': source.name,
        'url': source.url,
        'refresh_interval_minutes': source.refresh_interval_minutes,
        'color': source.color,
        'enabled': source.enabled,
        'last_updated': source.last_updated.isoformat() if source.last_updated else None,
        'next_refresh': next_run.isoformat() if next_run else None,
        'state': engine.scheduler.state(source.id).value,
    }


def create_app(
    data_dir: Path,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Create the FastAPI application around a sync engine."""
    engine = SyncEngine.from_data_dir(data_dir, transport=transport)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await engine.start()
        yield
        await engine.shutdown()

    app = FastAPI(title="ICalSync", lifespan=lifespan)
    app.state.engine = engine

    @app.get("/api/events")
    async def list_events(day: Optional[date] = None):
        """Current events per source, optionally only those on one day."""
        snapshot = engine.snapshot()
        if day is not None:
            snapshot = {
                source_id: events_on(events, day)
                for source_id, events in snapshot.items()
            }
        return {
            source_id: [event.to_dict() for event in events]
            for source_id, events in snapshot.items()
        }

    @app.get("/api/holidays")
    async def list_holidays():
        return {
            day.isoformat(): {'type': info.type.value, 'description': info.description}
            for day, info in sorted(engine.holiday_snapshot().items())
        }

    @app.put("/api/holidays/enabled")
    async def toggle_holidays(toggle: HolidayToggle):
        try:
            await engine.set_holiday_feed(toggle.enabled)
        except ConfigPersistError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"status": "enabled" if toggle.enabled else "disabled"}

    @app.get("/api/sources")
    async def list_sources():
        return [source_to_dict(engine, source) for source in engine.get_sources()]

    @app.post("/api/sources")
    async def create_source(payload: SourceCreate):
        data = payload.model_dump(exclude_none=True)
        source = Source(**data)
        try:
            await engine.add_source(source)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except ConfigPersistError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"status": "created", "id": source.id}

    @app.patch("/api/sources/{source_id}")
    async def update_source(source_id: str, update: SourceUpdate):
        changes = update.model_dump(exclude_none=True)
        try:
            source = await engine.edit_source(source_id, **changes)
        except SourceNotFound:
            raise HTTPException(status_code=404, detail="Source not found")
        except ConfigPersistError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return source_to_dict(engine, source)

    @app.post("/api/sources/{source_id}/enable")
    async def enable_source(source_id: str):
        try:
            await engine.enable_source(source_id)
        except SourceNotFound:
            raise HTTPException(status_code=404, detail="Source not found")
        except ConfigPersistError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"status": "enabled"}

    @app.post("/api/sources/{source_id}/disable")
    async def disable_source(source_id: str):
        try:
            await engine.disable_source(source_id)
        except SourceNotFound:
            raise HTTPException(status_code=404, detail="Source not found")
        except ConfigPersistError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"status": "disabled"}

    @app.delete("/api/sources/{source_id}")
    async def delete_source(source_id: str):
        try:
            await engine.delete_source(source_id)
        except SourceNotFound:
            raise HTTPException(status_code=404, detail="Source not found")
        except ConfigPersistError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"status": "deleted"}

    @app.post("/api/refresh")
    async def manual_refresh():
        """Reload every enabled source from the network."""
        try:
            results = await engine.reload(Trigger.MANUAL_REFRESH)
        except ConfigPersistError as e:
            logger.error(f"Manual refresh could not save settings: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        return {
            "status": "refreshed",
            "events": {source_id: len(events) for source_id, events in results.items()},
        }

    return app
