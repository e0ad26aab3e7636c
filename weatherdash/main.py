"""
FastAPI entrypoint.

This file focuses on:
- routing
- request/response handling
- process lifecycle: building the provider client and the sync engine
  once, starting the timer on startup and stopping it on shutdown
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import crud, models
from .db import Base, SessionLocal, engine, get_db
from .logging_config import setup_logging
from .schemas import HealthOut, LocationCreate, LocationOut, LocationUpdate
from .settings import settings
from .sync import SyncEngine
from .weather_clients import ErrorKind, OpenWeatherClient, WeatherError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.app_name)
    Base.metadata.create_all(bind=engine)

    client = OpenWeatherClient.from_settings(settings)
    sync_engine = SyncEngine(
        client,
        SessionLocal,
        interval_minutes=settings.sync_interval_minutes,
        retention_days=settings.snapshot_retention_days,
    )
    app.state.weather_client = client
    app.state.sync_engine = sync_engine

    if settings.sync_enabled:
        sync_engine.start()
    yield
    sync_engine.stop()


app = FastAPI(title=settings.app_name, lifespan=lifespan)


def get_sync_engine(request: Request) -> SyncEngine:
    return request.app.state.sync_engine


def get_weather_client(request: Request) -> OpenWeatherClient:
    return request.app.state.weather_client


def error_status(kind: ErrorKind) -> int:
    if kind == ErrorKind.NOT_FOUND:
        return 404
    if kind == ErrorKind.VALIDATION:
        return 400
    return 500


@app.exception_handler(WeatherError)
async def weather_error_handler(request: Request, exc: WeatherError):
    return JSONResponse(
        status_code=error_status(exc.kind),
        content={"success": False, "error": exc.message, "type": exc.kind.value},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:])
    message = f"{field}: {first.get('msg', 'invalid value')}" if field else "Invalid request"
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": message, "type": ErrorKind.VALIDATION.value},
    )


def location_to_dict(location: models.Location) -> dict:
    """Convert ORM model -> camelCase dict for JSON."""
    return LocationOut.model_validate(location).model_dump(mode="json", by_alias=True)


def require_location(db: Session, location_id: int) -> models.Location:
    location = crud.get_location(db, location_id)
    if location is None:
        raise WeatherError("Location not found", kind=ErrorKind.NOT_FOUND, status_code=404)
    return location


def require_param(value, message: str):
    if value is None or value == "":
        raise WeatherError(message, kind=ErrorKind.VALIDATION, status_code=400)
    return value


# -------------------------
# Health
# -------------------------

@app.get("/health")
def health(sync_engine: SyncEngine = Depends(get_sync_engine)):
    """Liveness plus the sync engine's counters."""
    return HealthOut(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        sync_service=sync_engine.get_stats(),
    )


# -------------------------
# Locations
# -------------------------

@app.get("/api/locations")
def api_list_locations(
    is_active: Optional[bool] = Query(None, alias="isActive"),
    db: Session = Depends(get_db),
):
    """List locations, optionally only active (or inactive) ones."""
    locations = [location_to_dict(loc) for loc in crud.list_locations(db, is_active=is_active)]
    return {"success": True, "data": locations, "count": len(locations)}


@app.get("/api/locations/search")
def api_search_locations(q: Optional[str] = None, db: Session = Depends(get_db)):
    require_param(q, "Search query is required")
    locations = [location_to_dict(loc) for loc in crud.search_locations(db, q)]
    return {"success": True, "data": locations, "count": len(locations)}


@app.get("/api/locations/{location_id}")
def api_get_location(location_id: int, db: Session = Depends(get_db)):
    return {"success": True, "data": location_to_dict(require_location(db, location_id))}


@app.post("/api/locations", status_code=201)
async def api_create_location(
    payload: LocationCreate,
    db: Session = Depends(get_db),
    client: OpenWeatherClient = Depends(get_weather_client),
):
    """Register a location; a bare name is geocoded to coordinates."""
    location = await crud.create_location(db, payload, client)
    return {"success": True, "data": location_to_dict(location)}


@app.put("/api/locations/{location_id}")
def api_update_location(location_id: int, payload: LocationUpdate, db: Session = Depends(get_db)):
    """Partial update; toggling isActive takes a location in or out of the sync."""
    location = require_location(db, location_id)
    updated = crud.update_location(db, location, payload)
    return {"success": True, "data": location_to_dict(updated)}


@app.delete("/api/locations/{location_id}")
def api_delete_location(location_id: int, db: Session = Depends(get_db)):
    crud.delete_location(db, require_location(db, location_id))
    return {"success": True, "message": "Location deleted successfully"}


# -------------------------
# Weather for a location
# -------------------------

@app.get("/api/locations/{location_id}/weather")
def api_location_weather(location_id: int, db: Session = Depends(get_db)):
    """Latest cached snapshot (null until the first sync has run)."""
    location = require_location(db, location_id)
    snapshot = crud.latest_snapshot(db, location_id)
    return {"success": True, "data": {"location": location_to_dict(location), "weather": snapshot}}


@app.get("/api/locations/{location_id}/forecast")
async def api_location_forecast(
    location_id: int,
    db: Session = Depends(get_db),
    client: OpenWeatherClient = Depends(get_weather_client),
):
    """Live 5-day forecast for the location's coordinates (not cached)."""
    location = require_location(db, location_id)
    forecast = await client.fetch_forecast_by_coords(location.latitude, location.longitude)
    return {"success": True, "data": {"location": location_to_dict(location), "forecast": forecast}}


@app.get("/api/locations/{location_id}/weather/history")
def api_location_history(
    location_id: int,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
):
    if start_date is None or end_date is None:
        raise WeatherError("startDate and endDate are required", kind=ErrorKind.VALIDATION, status_code=400)
    history = crud.snapshot_history(db, location_id, start_date, end_date)
    return {"success": True, "data": history, "count": len(history)}


@app.post("/api/locations/{location_id}/weather/refresh")
async def api_refresh_location_weather(location_id: int, sync_engine: SyncEngine = Depends(get_sync_engine)):
    """Fetch and store a reading now, outside the timer."""
    result = await sync_engine.sync_single_location(location_id)
    if not result.success:
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": result.error, "type": result.error_type.value},
        )
    return {"success": True, "data": result.snapshot}


# -------------------------
# Ad-hoc city lookups
# -------------------------

@app.get("/api/weather")
async def api_weather_by_city(
    city: Optional[str] = None,
    country: str = "",
    client: OpenWeatherClient = Depends(get_weather_client),
):
    """Current weather for a city that has not been registered."""
    require_param(city, "City parameter is required")
    weather = await client.fetch_current_weather_by_city(city, country)
    label = f"{city},{country}" if country else city
    return {"success": True, "data": {"city": label, "weather": weather}}


@app.get("/api/forecast")
async def api_forecast_by_city(
    city: Optional[str] = None,
    country: str = "",
    client: OpenWeatherClient = Depends(get_weather_client),
):
    require_param(city, "City parameter is required")
    forecast = await client.fetch_forecast_by_city(city, country)
    return {"success": True, "data": forecast}
