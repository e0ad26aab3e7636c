from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized configuration.

    Loaded from:
    - environment variables
    - .env file (if present)
    """
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Required key (the app should fail fast if missing)
    openweather_api_key: str = Field(
        validation_alias=AliasChoices("openweather_api_key", "weather_api_key"),
    )

    # Upstream endpoints; current/forecast/geocoding can live on different hosts
    weather_api_base_url: str = "https://api.openweathermap.org/data/2.5"
    weather_api_forecast_url: str = "https://api.openweathermap.org/data/2.5"
    weather_api_geocoding_url: str = "https://api.openweathermap.org/geo/1.0"
    request_timeout_s: float = 10.0

    # Background sync
    sync_interval_minutes: int = 15
    sync_enabled: bool = True
    snapshot_retention_days: int = 30

    app_name: str = "Weather Dashboard"
    log_level: str = "INFO"

    # SQLite file path (simple local persistence)
    sqlite_path: str = "weatherdash.sqlite3"


settings = Settings()
