from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone

import httpx
import pytest

from weatherdash.weather_clients import (
    ErrorKind,
    OpenWeatherClient,
    WeatherError,
    categorize_error,
)


def _client(handler) -> OpenWeatherClient:
    return OpenWeatherClient("test-key", transport=httpx.MockTransport(handler))


def _ts(year: int, month: int, day: int, hour: int = 0) -> int:
    return int(datetime(year, month, day, hour, tzinfo=timezone.utc).timestamp())


def _point(dt: int, temp_min: float, temp_max: float, humidity: float, wind: float, main: str = "Clouds") -> dict:
    return {
        "dt": dt,
        "main": {"temp": (temp_min + temp_max) / 2, "temp_min": temp_min, "temp_max": temp_max, "humidity": humidity},
        "wind": {"speed": wind},
        "weather": [{"main": main, "description": main.lower(), "icon": "04d"}],
    }


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.openweathermap.org/data/2.5/weather")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


# -------------------------
# Current weather
# -------------------------

def test_transform_current_normalizes_payload(make_payload) -> None:
    payload = make_payload(temp=18.25)
    payload["wind"]["gust"] = 7.1

    weather = OpenWeatherClient.transform_current(payload)

    assert weather.temperature.current == 18.25
    assert weather.temperature.feels_like == pytest.approx(17.55)
    assert weather.temperature.min == pytest.approx(16.25)
    assert weather.temperature.max == pytest.approx(20.25)
    assert weather.humidity == 48
    assert weather.pressure == 1012
    assert weather.wind.speed == 3.6
    assert weather.wind.direction == 250
    assert weather.wind.gust == 7.1
    assert weather.visibility == 10000
    assert weather.clouds == 5
    assert weather.weather.main == "Clear"
    assert weather.weather.icon == "01d"
    assert weather.sunrise == datetime(2024, 3, 9, 4, 53, 20)
    assert weather.api_source == "openweathermap"


def test_transform_current_missing_gust_is_none(make_payload) -> None:
    weather = OpenWeatherClient.transform_current(make_payload())
    assert weather.wind.gust is None


def test_current_weather_by_coords_queries_metric_units(make_payload) -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json=make_payload(temp=9.0))

    weather = asyncio.run(_client(handler).fetch_current_weather_by_coords(10.0, 20.0))

    assert weather.temperature.current == 9.0
    assert seen["path"] == "/data/2.5/weather"
    assert seen["params"] == {"lat": "10.0", "lon": "20.0", "units": "metric", "appid": "test-key"}


def test_current_weather_by_city_joins_country_code(make_payload) -> None:
    queries = []

    def handler(request: httpx.Request) -> httpx.Response:
        queries.append(request.url.params["q"])
        return httpx.Response(200, json=make_payload())

    client = _client(handler)
    asyncio.run(client.fetch_current_weather_by_city("Paris", "FR"))
    asyncio.run(client.fetch_current_weather_by_city("Paris"))

    assert queries == ["Paris,FR", "Paris"]


def test_upstream_401_raises_auth_error() -> None:
    client = _client(lambda request: httpx.Response(401, json={"cod": 401, "message": "Invalid API key"}))

    with pytest.raises(WeatherError) as excinfo:
        asyncio.run(client.fetch_current_weather_by_coords(1.0, 2.0))

    assert excinfo.value.kind == ErrorKind.AUTH
    assert excinfo.value.status_code == 401
    assert excinfo.value.message == "Invalid API key"


def test_upstream_timeout_raises_timeout_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read operation timed out", request=request)

    with pytest.raises(WeatherError) as excinfo:
        asyncio.run(_client(handler).fetch_current_weather_by_coords(1.0, 2.0))

    assert excinfo.value.kind == ErrorKind.TIMEOUT
    assert excinfo.value.status_code == 500


# -------------------------
# Geocoding
# -------------------------

def test_geocode_city_unknown_name_is_not_found() -> None:
    client = _client(lambda request: httpx.Response(200, json=[]))

    with pytest.raises(WeatherError) as excinfo:
        asyncio.run(client.geocode_city("Zzyzx123"))

    assert excinfo.value.kind == ErrorKind.NOT_FOUND
    assert excinfo.value.status_code == 404


def test_geocode_city_returns_top_match() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json=[{"name": "Austin", "country": "US", "state": "Texas", "lat": 30.27, "lon": -97.74}])

    resolved = asyncio.run(_client(handler).geocode_city("Austin", "US"))

    assert seen["path"] == "/geo/1.0/direct"
    assert seen["params"]["q"] == "Austin,US"
    assert seen["params"]["limit"] == "1"
    assert (resolved.name, resolved.country, resolved.state) == ("Austin", "US", "Texas")
    assert (resolved.latitude, resolved.longitude) == (30.27, -97.74)


def test_geocode_city_without_state() -> None:
    client = _client(lambda request: httpx.Response(200, json=[{"name": "Oslo", "country": "NO", "lat": 59.9, "lon": 10.7}]))

    resolved = asyncio.run(client.geocode_city("Oslo"))

    assert resolved.state is None


# -------------------------
# Error categorization
# -------------------------

@pytest.mark.parametrize(
    "exc, kind",
    [
        (_status_error(401), ErrorKind.AUTH),
        (_status_error(404), ErrorKind.NOT_FOUND),
        (_status_error(429), ErrorKind.RATE_LIMIT),
        (httpx.ConnectTimeout("connect timed out"), ErrorKind.TIMEOUT),
        (httpx.ConnectError("connection refused"), ErrorKind.NETWORK),
        (RuntimeError("read ECONNRESET"), ErrorKind.NETWORK),
        (_status_error(503), ErrorKind.UNKNOWN),
    ],
)
def test_categorize_error_kinds(exc, kind) -> None:
    assert categorize_error(exc, "Paris").kind == kind


def test_categorize_error_not_found_names_context() -> None:
    assert categorize_error(_status_error(404), "Atlantis").message == "City 'Atlantis' not found"


def test_categorize_error_unknown_passes_message_through() -> None:
    result = categorize_error(ValueError("Unexpected token < in JSON"), "Paris")

    assert result.kind == ErrorKind.UNKNOWN
    assert result.message == "Unexpected token < in JSON"


def test_categorize_error_is_deterministic() -> None:
    exc = _status_error(429)
    assert categorize_error(exc, "x") == categorize_error(exc, "x")


# -------------------------
# Forecast reduction
# -------------------------

def _five_day_feed() -> list:
    items = []
    for day in range(5):
        for step in range(8):
            items.append(_point(
                _ts(2024, 3, 1 + day, step * 3),
                temp_min=5 + day + step,
                temp_max=10 + day + step,
                humidity=60 + step,
                wind=2 + step,
                main=f"W{step}",
            ))
    return items


def test_forecast_reduces_three_hourly_feed_to_five_days() -> None:
    items = _five_day_feed()

    days = OpenWeatherClient.summarize_to_5_days(items)

    assert [d.date for d in days] == [date(2024, 3, n) for n in range(1, 6)]
    for n, day in enumerate(days):
        points = [p for p in items if datetime.fromtimestamp(p["dt"], tz=timezone.utc).date() == day.date]
        assert day.temperature.max == max(p["main"]["temp_max"] for p in points)
        assert day.temperature.min == min(p["main"]["temp_min"] for p in points)
        assert day.temperature.max == 17 + n
        assert day.weather.main == "W4"
        assert day.humidity == 64  # mean 63.5, halves round up
        assert day.wind.speed == 5.5


def test_forecast_keeps_encounter_order_and_caps_at_five() -> None:
    order = [3, 1, 2, 6, 5, 4]
    items = [_point(_ts(2024, 3, d, 12), 1, 2, 50, 1) for d in order]

    days = OpenWeatherClient.summarize_to_5_days(items)

    assert [d.date.day for d in days] == [3, 1, 2, 6, 5]


def test_forecast_buckets_by_utc_day() -> None:
    items = [
        _point(_ts(2024, 3, 1, 21), 1, 2, 50, 1),
        _point(_ts(2024, 3, 1, 23) + 3599, 1, 2, 50, 1),
        _point(_ts(2024, 3, 2, 0), 1, 2, 50, 1),
    ]

    days = OpenWeatherClient.summarize_to_5_days(items)

    assert [d.date for d in days] == [date(2024, 3, 1), date(2024, 3, 2)]


def test_forecast_rounding_matches_half_up() -> None:
    items = [
        _point(_ts(2024, 3, 1, 0), -2.5, 2.5, 70, 3.0, main="Rain"),
        _point(_ts(2024, 3, 1, 3), -1.0, 1.0, 71, 3.5, main="Snow"),
    ]

    [day] = OpenWeatherClient.summarize_to_5_days(items)

    assert day.temperature.min == -2
    assert day.temperature.max == 3
    assert day.humidity == 71
    assert day.wind.speed == 3.3  # mean 3.25
    assert day.weather.main == "Snow"  # index 2 // 2


def test_forecast_by_coords_wraps_city_block() -> None:
    feed = {
        "list": _five_day_feed(),
        "city": {"name": "Testville", "country": "XX", "sunrise": 1709960000, "sunset": 1710003000},
    }
    client = _client(lambda request: httpx.Response(200, json=feed))

    result = asyncio.run(client.fetch_forecast_by_coords(10.0, 20.0))

    assert result.city.name == "Testville"
    assert result.city.sunrise == datetime(2024, 3, 9, 4, 53, 20)
    assert len(result.forecast) == 5
    assert result.api_source == "openweathermap"
