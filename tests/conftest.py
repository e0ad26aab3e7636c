from __future__ import annotations

import os

# Settings are read at import time; keep the suite off the real API and disk.
os.environ.setdefault("OPENWEATHER_API_KEY", "test-key")
os.environ.setdefault("SYNC_ENABLED", "false")
os.environ.setdefault("SQLITE_PATH", ":memory:")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from weatherdash import models  # noqa: F401  (registers tables on Base)
from weatherdash.db import Base
from weatherdash.weather_clients import ErrorKind, OpenWeatherClient, ResolvedLocation, WeatherError


def current_payload(temp: float = 21.5, **overrides) -> dict:
    """A trimmed OpenWeather /data/2.5/weather response."""
    payload = {
        "coord": {"lon": 20.0, "lat": 10.0},
        "weather": [{"id": 800, "main": "Clear", "description": "clear sky", "icon": "01d"}],
        "main": {
            "temp": temp,
            "feels_like": temp - 0.7,
            "temp_min": temp - 2,
            "temp_max": temp + 2,
            "pressure": 1012,
            "humidity": 48,
        },
        "visibility": 10000,
        "wind": {"speed": 3.6, "deg": 250},
        "clouds": {"all": 5},
        "dt": 1710000000,
        "sys": {"country": "XX", "sunrise": 1709960000, "sunset": 1710003000},
        "name": "Testville",
    }
    payload.update(overrides)
    return payload


class FakeWeatherClient:
    """Stands in for OpenWeatherClient in engine and API tests."""

    def __init__(self, payload: dict | None = None, failing=(), cities: dict | None = None):
        self.payload = payload or current_payload()
        self.failing = set(failing)
        self.cities = cities or {}
        self.calls: list[tuple[float, float]] = []

    async def fetch_current_weather_by_coords(self, lat: float, lon: float):
        self.calls.append((lat, lon))
        if (lat, lon) in self.failing:
            raise WeatherError("Network error. Please check your connection.", kind=ErrorKind.NETWORK)
        return OpenWeatherClient.transform_current(self.payload)

    async def geocode_city(self, name: str, country_code: str = "") -> ResolvedLocation:
        if name not in self.cities:
            raise WeatherError(f"City '{name}' not found", kind=ErrorKind.NOT_FOUND, status_code=404)
        return self.cities[name]


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def fake_client():
    return FakeWeatherClient()


@pytest.fixture
def make_fake_client():
    return FakeWeatherClient


@pytest.fixture
def make_payload():
    return current_payload
