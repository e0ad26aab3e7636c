"""
CRUD functions.

Two collaborators of the sync engine live here:
- the location registry (which locations exist, which are active)
- the snapshot store (append-only weather readings, latest/history reads,
  retention housekeeping)

Validation rules (coordinate ranges, unique coordinate pairs) are enforced
here so the HTTP layer and the engine see the same errors.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .models import utcnow
from .schemas import CurrentWeather, LocationCreate, LocationOut, LocationUpdate, StoredSnapshot
from .weather_clients import ErrorKind, OpenWeatherClient, WeatherError

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100
SEARCH_LIMIT = 20
DEFAULT_RETENTION_DAYS = 30


class ValidationError(WeatherError):
    """Bad input: missing fields, out-of-range or duplicate coordinates."""

    def __init__(self, message: str):
        super().__init__(message, kind=ErrorKind.VALIDATION, status_code=400)


class PersistenceError(WeatherError):
    """The snapshot store could not write a record."""

    def __init__(self, message: str):
        super().__init__(message, kind=ErrorKind.PERSISTENCE, status_code=500)


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# -------------------------
# Location registry
# -------------------------

def validate_coordinates(latitude: float, longitude: float) -> None:
    if not (-90.0 <= latitude <= 90.0):
        raise ValidationError("Latitude must be between -90 and 90")
    if not (-180.0 <= longitude <= 180.0):
        raise ValidationError("Longitude must be between -180 and 180")


def find_by_coordinates(db: Session, latitude: float, longitude: float) -> models.Location | None:
    stmt = select(models.Location).where(
        models.Location.latitude == latitude,
        models.Location.longitude == longitude,
    )
    return db.scalars(stmt).first()


def list_locations(db: Session, is_active: Optional[bool] = None) -> List[models.Location]:
    """List locations ordered by name, optionally filtered on the active flag."""
    stmt = select(models.Location).order_by(models.Location.name)
    if is_active is not None:
        stmt = stmt.where(models.Location.is_active == is_active)
    return list(db.scalars(stmt))


def list_active_locations(db: Session) -> List[models.Location]:
    """Locations eligible for background sync."""
    return list_locations(db, is_active=True)


def get_location(db: Session, location_id: int) -> models.Location | None:
    """Fetch a single location by id."""
    return db.get(models.Location, location_id)


def search_locations(db: Session, q: str) -> List[models.Location]:
    """Case-insensitive substring match on name or country."""
    pattern = f"%{q}%"
    stmt = (
        select(models.Location)
        .where(or_(models.Location.name.ilike(pattern), models.Location.country.ilike(pattern)))
        .limit(SEARCH_LIMIT)
    )
    return list(db.scalars(stmt))


async def create_location(db: Session, payload: LocationCreate, client: OpenWeatherClient) -> models.Location:
    """
    CREATE location:
    - geocode the name when coordinates are missing
    - validate required fields and coordinate ranges
    - reject a duplicate (latitude, longitude) pair
    - store
    """
    name = (payload.name or "").strip()
    country = (payload.country or "").strip()
    latitude, longitude = payload.latitude, payload.longitude

    if name and (latitude is None or longitude is None):
        try:
            resolved = await client.geocode_city(name, country)
        except WeatherError as e:
            if e.kind == ErrorKind.NOT_FOUND:
                raise WeatherError(
                    f"City '{name}' not found. Please check the spelling or try a different city.",
                    kind=ErrorKind.NOT_FOUND,
                    status_code=404,
                ) from e
            raise
        name, country = resolved.name, resolved.country
        latitude, longitude = resolved.latitude, resolved.longitude

    if not name or latitude is None or longitude is None:
        raise ValidationError("Name, latitude, and longitude are required")
    if not country:
        raise ValidationError("Country is required")

    validate_coordinates(latitude, longitude)

    if find_by_coordinates(db, latitude, longitude):
        raise ValidationError("A location with these coordinates already exists")

    now = utcnow()
    location = models.Location(
        name=name,
        country=country,
        latitude=latitude,
        longitude=longitude,
        timezone=payload.timezone or "UTC",
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    db.add(location)
    try:
        db.commit()
    except IntegrityError as e:
        # lost a race against another insert of the same pair
        db.rollback()
        raise ValidationError("A location with these coordinates already exists") from e
    db.refresh(location)
    logger.info("Created location %s (%s, %s)", location.id, location.name, location.country)
    return location


def update_location(db: Session, location: models.Location, payload: LocationUpdate) -> models.Location:
    """
    UPDATE location: apply the fields that were sent, re-validating
    coordinates when either one changes.
    """
    changes = payload.model_dump(exclude_unset=True)

    latitude = changes.get("latitude", location.latitude)
    longitude = changes.get("longitude", location.longitude)
    if "latitude" in changes or "longitude" in changes:
        if latitude is None or longitude is None:
            raise ValidationError("Latitude and longitude cannot be empty")
        validate_coordinates(latitude, longitude)
        existing = find_by_coordinates(db, latitude, longitude)
        if existing and existing.id != location.id:
            raise ValidationError("A location with these coordinates already exists")

    for field in ("name", "country", "timezone"):
        if field in changes:
            value = (changes[field] or "").strip()
            if not value:
                raise ValidationError(f"{field.capitalize()} cannot be empty")
            setattr(location, field, value)
    if changes.get("is_active") is not None:
        location.is_active = changes["is_active"]
    location.latitude = latitude
    location.longitude = longitude
    location.updated_at = utcnow()

    db.add(location)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ValidationError("A location with these coordinates already exists") from e
    db.refresh(location)
    return location


def delete_location(db: Session, location: models.Location) -> None:
    """DELETE location. Its snapshots are left in place."""
    location_id = location.id
    db.delete(location)
    db.commit()
    logger.info("Deleted location %s", location_id)


# -------------------------
# Snapshot store
# -------------------------

def save_snapshot(db: Session, location_id: int, weather: CurrentWeather) -> models.WeatherSnapshot:
    """Append one reading. Existing rows are never modified."""
    if isinstance(location_id, bool) or not isinstance(location_id, int) or location_id <= 0:
        raise PersistenceError(f"Invalid location reference: {location_id!r}")

    row = models.WeatherSnapshot(
        location_id=location_id,
        temp_current=weather.temperature.current,
        temp_feels_like=weather.temperature.feels_like,
        temp_min=weather.temperature.min,
        temp_max=weather.temperature.max,
        humidity=weather.humidity,
        pressure=weather.pressure,
        wind_speed=weather.wind.speed,
        wind_direction=weather.wind.direction,
        wind_gust=weather.wind.gust,
        visibility=weather.visibility,
        clouds=weather.clouds,
        weather_main=weather.weather.main,
        weather_description=weather.weather.description,
        weather_icon=weather.weather.icon,
        sunrise=weather.sunrise,
        sunset=weather.sunset,
        fetched_at=_as_naive_utc(weather.fetched_at),
        api_source=weather.api_source,
    )
    db.add(row)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Error saving weather snapshot for location %s: %s", location_id, e)
        raise PersistenceError(f"Could not save weather snapshot: {e}") from e
    db.refresh(row)
    return row


def snapshot_to_schema(row: models.WeatherSnapshot, location: models.Location | None = None) -> StoredSnapshot:
    """Convert ORM row (+ optional location) -> StoredSnapshot."""
    return StoredSnapshot(
        id=row.id,
        location_id=row.location_id,
        location=LocationOut.model_validate(location) if location is not None else None,
        temperature={
            "current": row.temp_current,
            "feels_like": row.temp_feels_like,
            "min": row.temp_min,
            "max": row.temp_max,
        },
        humidity=row.humidity,
        pressure=row.pressure,
        wind={"speed": row.wind_speed, "direction": row.wind_direction, "gust": row.wind_gust},
        visibility=row.visibility,
        clouds=row.clouds,
        weather={"main": row.weather_main, "description": row.weather_description, "icon": row.weather_icon},
        sunrise=row.sunrise,
        sunset=row.sunset,
        fetched_at=row.fetched_at,
        api_source=row.api_source,
    )


def latest_snapshot(db: Session, location_id: int) -> StoredSnapshot | None:
    """Newest reading for a location, with the location's current row attached."""
    stmt = (
        select(models.WeatherSnapshot)
        .where(models.WeatherSnapshot.location_id == location_id)
        .order_by(models.WeatherSnapshot.fetched_at.desc(), models.WeatherSnapshot.id.desc())
        .limit(1)
    )
    row = db.scalars(stmt).first()
    if row is None:
        return None
    return snapshot_to_schema(row, get_location(db, location_id))


def snapshot_history(db: Session, location_id: int, start: datetime, end: datetime) -> List[StoredSnapshot]:
    """
    Readings with start <= fetched_at <= end, newest first, capped at
    HISTORY_LIMIT. An inverted range simply matches nothing.
    """
    stmt = (
        select(models.WeatherSnapshot)
        .where(
            models.WeatherSnapshot.location_id == location_id,
            models.WeatherSnapshot.fetched_at >= _as_naive_utc(start),
            models.WeatherSnapshot.fetched_at <= _as_naive_utc(end),
        )
        .order_by(models.WeatherSnapshot.fetched_at.desc(), models.WeatherSnapshot.id.desc())
        .limit(HISTORY_LIMIT)
    )
    return [snapshot_to_schema(row) for row in db.scalars(stmt)]


def purge_expired_snapshots(
    db: Session,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    now: Optional[datetime] = None,
) -> int:
    """Delete readings whose fetched_at is older than the retention window. Returns the row count."""
    cutoff = _as_naive_utc(now or utcnow()) - timedelta(days=retention_days)
    result = db.execute(delete(models.WeatherSnapshot).where(models.WeatherSnapshot.fetched_at < cutoff))
    db.commit()
    removed = result.rowcount or 0
    if removed:
        logger.info("Purged %s weather snapshots older than %s", removed, cutoff.isoformat())
    return removed
