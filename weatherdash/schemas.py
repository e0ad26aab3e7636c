"""
Pydantic schemas.

Two families live here:
- normalized weather records produced by the provider client
  (CurrentWeather, ForecastResult) and stored snapshots built from them
- REST payloads (location create/update/out, health, sync stats)

Everything serializes with camelCase keys, which is what the dashboard
client reads; Python code keeps snake_case attribute names.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from datetime import date, datetime
from typing import List, Optional


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -------------------------
# Normalized weather
# -------------------------

class Temperature(CamelModel):
    current: Optional[float] = None
    feels_like: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None


class Wind(CamelModel):
    speed: Optional[float] = None
    direction: Optional[float] = None
    gust: Optional[float] = None


class WeatherDescriptor(CamelModel):
    """Provider condition: category ("Rain"), text ("light rain") and icon code ("10d")."""
    main: str = ""
    description: str = ""
    icon: str = ""


class CurrentWeather(CamelModel):
    """One normalized current-conditions reading."""
    temperature: Temperature
    humidity: Optional[float] = None
    pressure: Optional[float] = None
    wind: Wind
    visibility: Optional[float] = None
    clouds: Optional[float] = None
    weather: WeatherDescriptor
    sunrise: Optional[datetime] = None
    sunset: Optional[datetime] = None
    fetched_at: datetime
    api_source: str = "openweathermap"


class ForecastTemperature(CamelModel):
    min: int
    max: int


class ForecastWind(CamelModel):
    speed: float


class ForecastDay(CamelModel):
    """One day reduced from the 3-hourly forecast feed."""
    date: date
    temperature: ForecastTemperature
    weather: WeatherDescriptor
    humidity: int
    wind: ForecastWind


class ForecastCity(CamelModel):
    name: str = ""
    country: str = ""
    sunrise: Optional[datetime] = None
    sunset: Optional[datetime] = None


class ForecastResult(CamelModel):
    city: ForecastCity
    forecast: List[ForecastDay]
    fetched_at: datetime
    api_source: str = "openweathermap"


# -------------------------
# Locations
# -------------------------

class LocationCreate(CamelModel):
    """
    Payload for registering a location.
    Coordinates may be omitted, in which case the name (and country)
    are geocoded. Range checks happen in crud so they share the
    error envelope with the duplicate-coordinates check.
    """
    name: Optional[str] = None
    country: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    timezone: Optional[str] = None


class LocationUpdate(CamelModel):
    name: Optional[str] = None
    country: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    timezone: Optional[str] = None
    is_active: Optional[bool] = None


class LocationOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    name: str
    country: str
    latitude: float
    longitude: float
    timezone: str
    is_active: bool
    created_at: datetime
    updated_at: datetime


class StoredSnapshot(CurrentWeather):
    """A persisted reading, with the location's current row attached (None once deleted)."""
    id: int
    location_id: int
    location: Optional[LocationOut] = None


# -------------------------
# Sync / health
# -------------------------

class SyncStats(CamelModel):
    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    last_sync_time: Optional[datetime] = None
    is_running: bool = False
    interval_minutes: Optional[float] = None


class HealthOut(CamelModel):
    status: str
    timestamp: datetime
    sync_service: SyncStats
