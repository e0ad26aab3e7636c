"""
ORM models.

We store:
- user-registered locations (coordinates are the identity that matters)
- weather snapshots: one flattened row per successful provider fetch

Snapshots only keep the location id, with no foreign key constraint, so
deleting a location leaves its history in place.
"""

from sqlalchemy import String, Integer, Float, Boolean, DateTime, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from typing import Optional
from .db import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite does not keep tzinfo anyway."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Location(Base):
    __tablename__ = "locations"
    __table_args__ = (
        UniqueConstraint("latitude", "longitude", name="uq_locations_coords"),
        Index("ix_locations_name_country", "name", "country"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    name: Mapped[str] = mapped_column(String(255))
    country: Mapped[str] = mapped_column(String(64))
    latitude: Mapped[float] = mapped_column(Float)
    longitude: Mapped[float] = mapped_column(Float)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")

    # Only active locations are picked up by the background sync
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class WeatherSnapshot(Base):
    __tablename__ = "weather_snapshots"
    __table_args__ = (
        Index("ix_snapshots_location_fetched", "location_id", "fetched_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    location_id: Mapped[int] = mapped_column(Integer, index=True)

    temp_current: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    temp_feels_like: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    temp_min: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    temp_max: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    humidity: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    pressure: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    wind_speed: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    wind_direction: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    wind_gust: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    visibility: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    clouds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    weather_main: Mapped[str] = mapped_column(String(64), default="")
    weather_description: Mapped[str] = mapped_column(String(255), default="")
    weather_icon: Mapped[str] = mapped_column(String(16), default="")

    sunrise: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    sunset: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Expiry and ordering both key off fetched_at
    fetched_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    api_source: Mapped[str] = mapped_column(String(64), default="openweathermap")
