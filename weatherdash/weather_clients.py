"""
Weather provider client.

All OpenWeatherMap specifics live here:
- endpoint URLs and query parameters
- translating provider JSON into the normalized schemas
- classifying upstream failures into a small, stable set of error kinds

Nothing outside this module should need to know what an OpenWeather
payload looks like.
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from .schemas import (
    CurrentWeather,
    ForecastCity,
    ForecastDay,
    ForecastResult,
    ForecastTemperature,
    ForecastWind,
    Temperature,
    WeatherDescriptor,
    Wind,
)

logger = logging.getLogger(__name__)

API_SOURCE = "openweathermap"
FORECAST_DAYS = 5


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    NETWORK = "network"
    VALIDATION = "validation"
    PERSISTENCE = "persistence"
    UNKNOWN = "unknown"


class WeatherError(RuntimeError):
    """Raised for user-facing weather lookup failures."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNKNOWN, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status_code = status_code


@dataclass(frozen=True)
class CategorizedError:
    kind: ErrorKind
    message: str


@dataclass(frozen=True)
class ResolvedLocation:
    """
    Minimal resolved location object produced by geocoding.
    """
    name: str
    country: str
    latitude: float
    longitude: float
    state: Optional[str] = None


def categorize_error(exc: BaseException, context: str) -> CategorizedError:
    """
    Map an upstream failure onto an ErrorKind.

    HTTP status wins over exception type, which wins over message sniffing.
    The same input always yields the same kind and message.
    """
    status = _status_of(exc)
    message = str(exc)
    lowered = message.lower()

    if status == 401:
        return CategorizedError(ErrorKind.AUTH, "Invalid API key")
    if status == 404:
        return CategorizedError(ErrorKind.NOT_FOUND, f"City '{context}' not found")
    if status == 429:
        return CategorizedError(ErrorKind.RATE_LIMIT, "API rate limit exceeded. Please try again later.")
    if isinstance(exc, httpx.TimeoutException) or "timeout" in lowered or "timed out" in lowered:
        return CategorizedError(ErrorKind.TIMEOUT, "Request timed out. Please try again.")
    if (
        isinstance(exc, httpx.TransportError)
        or "network" in lowered
        or "econnreset" in lowered
        or "connection reset" in lowered
    ):
        return CategorizedError(ErrorKind.NETWORK, "Network error. Please check your connection.")
    return CategorizedError(ErrorKind.UNKNOWN, message or "An unexpected error occurred")


def _status_of(exc: BaseException) -> Optional[int]:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


def _round_half_up(value: float, digits: int = 0) -> float:
    # Halves round towards +infinity, unlike Python's round()
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def _from_unix(ts: Optional[int]) -> Optional[datetime]:
    if ts is None:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).replace(tzinfo=None)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _descriptor(item: Dict[str, Any]) -> WeatherDescriptor:
    w = (item.get("weather") or [{}])[0]
    return WeatherDescriptor(
        main=w.get("main", ""),
        description=w.get("description", ""),
        icon=w.get("icon", ""),
    )


def _city_query(name: str, country_code: str = "") -> str:
    return f"{name},{country_code}" if country_code else name


class OpenWeatherClient:
    """
    OpenWeatherMap wrapper.

    Endpoints used:
    - Geocoding:
        {geocoding_url}/direct?q=...&limit=1&appid=KEY
    - Current weather:
        {base_url}/weather?lat=...&lon=...&units=metric&appid=KEY
    - 5-day forecast (3-hour increments):
        {forecast_url}/forecast?lat=...&lon=...&units=metric&appid=KEY

    Every call uses a fresh AsyncClient with a fixed timeout. Pass a
    transport (e.g. httpx.MockTransport) to keep tests off the network.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openweathermap.org/data/2.5",
        forecast_url: str = "https://api.openweathermap.org/data/2.5",
        geocoding_url: str = "https://api.openweathermap.org/geo/1.0",
        timeout_s: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.forecast_url = forecast_url.rstrip("/")
        self.geocoding_url = geocoding_url.rstrip("/")
        self.timeout_s = timeout_s
        self.transport = transport

    @classmethod
    def from_settings(cls, settings) -> "OpenWeatherClient":
        return cls(
            api_key=settings.openweather_api_key,
            base_url=settings.weather_api_base_url,
            forecast_url=settings.weather_api_forecast_url,
            geocoding_url=settings.weather_api_geocoding_url,
            timeout_s=settings.request_timeout_s,
        )

    async def _get_json(self, url: str, params: Dict[str, Any], context: str) -> Any:
        """GET url and return decoded JSON; any failure is re-raised as a categorized WeatherError."""
        params = {**params, "appid": self.api_key}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self.transport) as client:
                r = await client.get(url, params=params)
                r.raise_for_status()
                return r.json()
        except Exception as exc:
            categorized = categorize_error(exc, context)
            status = _status_of(exc) or 500
            logger.error("Weather API request failed (%s): %s", context, categorized.message)
            raise WeatherError(categorized.message, kind=categorized.kind, status_code=status) from exc

    async def geocode_city(self, name: str, country_code: str = "") -> ResolvedLocation:
        """
        Resolve a city name (optionally narrowed by ISO country code) to coordinates.
        The top match wins; no match is a NOT_FOUND error.
        """
        results = await self._get_json(
            f"{self.geocoding_url}/direct",
            {"q": _city_query(name, country_code), "limit": 1},
            name,
        )
        if not results:
            raise WeatherError(f"City '{name}' not found", kind=ErrorKind.NOT_FOUND, status_code=404)

        best = results[0]
        resolved = ResolvedLocation(
            name=best.get("name", name),
            country=best.get("country", ""),
            latitude=float(best["lat"]),
            longitude=float(best["lon"]),
            state=best.get("state") or None,
        )
        logger.debug("Geocoded %r to %s", name, resolved)
        return resolved

    async def fetch_current_weather_by_coords(self, lat: float, lon: float) -> CurrentWeather:
        data = await self._get_json(
            f"{self.base_url}/weather",
            {"lat": lat, "lon": lon, "units": "metric"},
            f"{lat},{lon}",
        )
        return self.transform_current(data)

    async def fetch_current_weather_by_city(self, name: str, country_code: str = "") -> CurrentWeather:
        data = await self._get_json(
            f"{self.base_url}/weather",
            {"q": _city_query(name, country_code), "units": "metric"},
            name,
        )
        return self.transform_current(data)

    async def fetch_forecast_by_coords(self, lat: float, lon: float) -> ForecastResult:
        data = await self._get_json(
            f"{self.forecast_url}/forecast",
            {"lat": lat, "lon": lon, "units": "metric"},
            f"{lat},{lon}",
        )
        return self.transform_forecast(data)

    async def fetch_forecast_by_city(self, name: str, country_code: str = "") -> ForecastResult:
        data = await self._get_json(
            f"{self.forecast_url}/forecast",
            {"q": _city_query(name, country_code), "units": "metric"},
            name,
        )
        return self.transform_forecast(data)

    @staticmethod
    def transform_current(data: Dict[str, Any]) -> CurrentWeather:
        """Flatten OpenWeather's /weather payload into a CurrentWeather record."""
        main = data.get("main") or {}
        wind = data.get("wind") or {}
        sys = data.get("sys") or {}
        return CurrentWeather(
            temperature=Temperature(
                current=main.get("temp"),
                feels_like=main.get("feels_like"),
                min=main.get("temp_min"),
                max=main.get("temp_max"),
            ),
            humidity=main.get("humidity"),
            pressure=main.get("pressure"),
            wind=Wind(
                speed=wind.get("speed"),
                direction=wind.get("deg"),
                gust=wind.get("gust") or None,
            ),
            visibility=data.get("visibility"),
            clouds=(data.get("clouds") or {}).get("all"),
            weather=_descriptor(data),
            sunrise=_from_unix(sys.get("sunrise")),
            sunset=_from_unix(sys.get("sunset")),
            fetched_at=_utcnow(),
            api_source=API_SOURCE,
        )

    @staticmethod
    def summarize_to_5_days(items: List[Dict[str, Any]]) -> List[ForecastDay]:
        """
        OpenWeather forecast returns ~40 data points (3-hour steps).
        We reduce them to one entry per day.

        Strategy:
        - Group items by UTC date, keeping the order the feed delivers them
        - For each day:
          - true min of temp_min and true max of temp_max
          - the descriptor at the middle position of the day's points
          - mean humidity (rounded) and mean wind speed (1 decimal)
        - Keep the first 5 groups as encountered; they are not re-sorted
        """
        grouped: Dict[date, Dict[str, Any]] = {}
        for item in items:
            d = datetime.fromtimestamp(int(item["dt"]), tz=timezone.utc).date()
            bucket = grouped.get(d)
            if bucket is None:
                bucket = grouped[d] = {
                    "min": math.inf,
                    "max": -math.inf,
                    "weather": [],
                    "humidity": [],
                    "wind": [],
                }
            main = item["main"]
            bucket["min"] = min(bucket["min"], main["temp_min"])
            bucket["max"] = max(bucket["max"], main["temp_max"])
            bucket["humidity"].append(main["humidity"])
            bucket["wind"].append(item["wind"]["speed"])
            bucket["weather"].append(_descriptor(item))

        days: List[ForecastDay] = []
        for d, bucket in list(grouped.items())[:FORECAST_DAYS]:
            humidity = bucket["humidity"]
            wind = bucket["wind"]
            days.append(ForecastDay(
                date=d,
                temperature=ForecastTemperature(
                    min=int(_round_half_up(bucket["min"])),
                    max=int(_round_half_up(bucket["max"])),
                ),
                weather=bucket["weather"][len(bucket["weather"]) // 2],
                humidity=int(_round_half_up(sum(humidity) / len(humidity))),
                wind=ForecastWind(speed=_round_half_up(sum(wind) / len(wind), 1)),
            ))
        return days

    @classmethod
    def transform_forecast(cls, data: Dict[str, Any]) -> ForecastResult:
        city = data.get("city") or {}
        return ForecastResult(
            city=ForecastCity(
                name=city.get("name", ""),
                country=city.get("country", ""),
                sunrise=_from_unix(city.get("sunrise")),
                sunset=_from_unix(city.get("sunset")),
            ),
            forecast=cls.summarize_to_5_days(data.get("list") or []),
            fetched_at=_utcnow(),
            api_source=API_SOURCE,
        )
