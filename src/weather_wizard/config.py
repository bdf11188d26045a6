"""Typed settings loader for the weather wizard."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigError
from .models import Provider


class ProviderConfig(BaseModel):
    """API key and daily call ceiling for a single provider."""

    api_key: str | None = Field(default=None, repr=False)
    daily_limit: int


class Settings(BaseSettings):
    """Application settings loaded from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_env: Literal["dev", "staging", "prod"] = Field(default="dev", alias="APP_ENV")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", alias="LOG_LEVEL"
    )
    database_url: str = Field(
        default="sqlite:///./data/weather_wizard.db",
        alias="DATABASE_URL",
    )
    http_timeout_seconds: float = Field(default=15.0, alias="HTTP_TIMEOUT_SECONDS")

    journal_dir: Path = Field(default=Path("./data/journal"), alias="JOURNAL_DIR")
    raw_payload_dir: Path = Field(default=Path("./data/raw"), alias="RAW_PAYLOAD_DIR")
    weather_journal_raw_payloads: bool = Field(
        default=False, alias="WEATHER_JOURNAL_RAW_PAYLOADS"
    )

    api_key_accuweather: str | None = Field(
        default=None, alias="API_KEY_ACCUWEATHER", repr=False
    )
    api_key_apixu: str | None = Field(default=None, alias="API_KEY_APIXU", repr=False)
    api_key_darksky: str | None = Field(default=None, alias="API_KEY_DARKSKY", repr=False)
    api_key_openweathermap: str | None = Field(
        default=None, alias="API_KEY_OPENWEATHERMAP", repr=False
    )
    api_key_opencagedata: str | None = Field(
        default=None, alias="API_KEY_OPENCAGEDATA", repr=False
    )

    # Free-tier ceilings: AccuWeather 50/day including location lookups,
    # Apixu 10k/month, OpenWeatherMap 60/minute.
    api_limit_accuweather: int = Field(default=50, alias="API_LIMIT_ACCUWEATHER")
    api_limit_apixu: int = Field(default=330, alias="API_LIMIT_APIXU")
    api_limit_darksky: int = Field(default=1000, alias="API_LIMIT_DARKSKY")
    api_limit_openweathermap: int = Field(default=1440, alias="API_LIMIT_OPENWEATHERMAP")
    api_limit_opencagedata: int = Field(default=2500, alias="API_LIMIT_OPENCAGEDATA")

    geocoder_min_interval_seconds: float = Field(
        default=1.0, alias="GEOCODER_MIN_INTERVAL_SECONDS"
    )
    # OpenWeatherMap free tier allows 60 calls per minute.
    openweathermap_min_interval_seconds: float = Field(
        default=1.0, alias="OPENWEATHERMAP_MIN_INTERVAL_SECONDS"
    )

    @field_validator(
        "api_key_accuweather",
        "api_key_apixu",
        "api_key_darksky",
        "api_key_openweathermap",
        "api_key_opencagedata",
        mode="before",
    )
    @classmethod
    def empty_string_to_none(cls, value: Any) -> Any:
        """Treat empty env-string values as an unset key."""
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @model_validator(mode="after")
    def validate_limits(self) -> Settings:
        """Reject non-positive ceilings and timeouts."""
        for provider in Provider:
            limit = getattr(self, f"api_limit_{provider.value}")
            if limit <= 0:
                raise ValueError(f"API_LIMIT_{provider.value.upper()} must be > 0.")
        if self.http_timeout_seconds <= 0:
            raise ValueError("HTTP_TIMEOUT_SECONDS must be > 0.")
        if self.geocoder_min_interval_seconds < 0:
            raise ValueError("GEOCODER_MIN_INTERVAL_SECONDS must be >= 0.")
        if self.openweathermap_min_interval_seconds < 0:
            raise ValueError("OPENWEATHERMAP_MIN_INTERVAL_SECONDS must be >= 0.")
        if not self.database_url.strip():
            raise ValueError("DATABASE_URL must not be empty.")
        return self

    def provider_config(self, provider: Provider) -> ProviderConfig:
        """Return key and ceiling for one provider."""
        return ProviderConfig(
            api_key=getattr(self, f"api_key_{provider.value}"),
            daily_limit=getattr(self, f"api_limit_{provider.value}"),
        )

    def min_interval_seconds(self, provider: Provider) -> float:
        """Return the minimum spacing between requests to ``provider``."""
        if provider is Provider.OPENCAGEDATA:
            return self.geocoder_min_interval_seconds
        if provider is Provider.OPENWEATHERMAP:
            return self.openweathermap_min_interval_seconds
        return 0.0

    def safe_summary(self) -> dict[str, Any]:
        """Return config summary safe for journaling (no credentials)."""
        return {
            "app_env": self.app_env,
            "http_timeout_seconds": self.http_timeout_seconds,
            "weather_raw_journaling": self.weather_journal_raw_payloads,
            "providers": {
                provider.value: {
                    "configured": self.provider_config(provider).api_key is not None,
                    "daily_limit": self.provider_config(provider).daily_limit,
                }
                for provider in Provider
            },
        }


def load_settings() -> Settings:
    """Load and validate settings, raising ConfigError on failure."""
    try:
        settings = Settings()
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed reading environment/.env: {exc}") from exc

    try:
        settings.journal_dir.mkdir(parents=True, exist_ok=True)
        settings.raw_payload_dir.mkdir(parents=True, exist_ok=True)
        url = settings.database_url
        if url.startswith("sqlite:///") and ":memory:" not in url:
            Path(url.removeprefix("sqlite:///")).parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigError(f"Failed creating data directories: {exc}") from exc
    return settings
