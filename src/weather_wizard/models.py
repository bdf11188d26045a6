"""Typed models shared by the store, providers and orchestrator."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from enum import Enum
from typing import NamedTuple

from pydantic import BaseModel, Field, field_validator


class Provider(str, Enum):
    """Identity of every remote data source with its own key and quota."""

    ACCUWEATHER = "accuweather"
    APIXU = "apixu"
    DARKSKY = "darksky"
    OPENWEATHERMAP = "openweathermap"
    OPENCAGEDATA = "opencagedata"

    @property
    def display_name(self) -> str:
        return PROVIDER_TABLE[self].display_name


class Capability(str, Enum):
    FORECAST = "forecast"
    HISTORY = "history"


class Day(str, Enum):
    """Target day relative to the caller's local calendar."""

    YESTERDAY = "yesterday"
    TODAY = "today"
    TOMORROW = "tomorrow"

    def resolve(self, today: date) -> date:
        """Return the calendar date this day refers to."""
        if self is Day.YESTERDAY:
            return today - timedelta(days=1)
        if self is Day.TOMORROW:
            return today + timedelta(days=1)
        return today


class ProviderSpec(NamedTuple):
    display_name: str
    capabilities: frozenset[Capability]
    aliases: tuple[str, ...]


PROVIDER_TABLE: dict[Provider, ProviderSpec] = {
    Provider.ACCUWEATHER: ProviderSpec(
        "AccuWeather",
        frozenset({Capability.FORECAST}),
        ("accuweather", "accuweather.com"),
    ),
    Provider.APIXU: ProviderSpec(
        "Apixu",
        frozenset({Capability.FORECAST, Capability.HISTORY}),
        ("apixu", "apixu.com"),
    ),
    Provider.DARKSKY: ProviderSpec(
        "Dark Sky",
        frozenset({Capability.FORECAST, Capability.HISTORY}),
        ("darksky", "darksky.net"),
    ),
    Provider.OPENWEATHERMAP: ProviderSpec(
        "OpenWeatherMap",
        frozenset({Capability.FORECAST}),
        ("owm", "openweather", "openweathermap", "openweathermap.org"),
    ),
    Provider.OPENCAGEDATA: ProviderSpec(
        "OpenCage",
        frozenset(),
        (),
    ),
}

# Fixed order in which weather providers are tried when no filter is given.
WEATHER_PROVIDER_PRIORITY: tuple[Provider, ...] = (
    Provider.ACCUWEATHER,
    Provider.APIXU,
    Provider.DARKSKY,
    Provider.OPENWEATHERMAP,
)


def provider_from_alias(value: str) -> Provider | None:
    """Map user input such as 'owm' or 'darksky.net' to a weather provider."""
    candidate = value.strip().lower()
    for provider in WEATHER_PROVIDER_PRIORITY:
        if candidate in PROVIDER_TABLE[provider].aliases:
            return provider
    return None


def _round_temperature(value: float | None) -> float | None:
    return None if value is None else round(float(value), 1)


class NormalizedForecast(BaseModel):
    """One provider's report for one calendar day, before persistence."""

    provider: Provider
    forecast_date: date
    weather: str
    temperature: float | None = None
    temp_min: float | None = None
    temp_max: float | None = None

    @field_validator("weather")
    @classmethod
    def lower_case_weather(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("temperature", "temp_min", "temp_max")
    @classmethod
    def round_temperatures(cls, value: float | None) -> float | None:
        return _round_temperature(value)


class ForecastPair(NamedTuple):
    """Today's entry and the adjacent day's entry from one forecast call."""

    today: NormalizedForecast
    tomorrow: NormalizedForecast


class CityRecord(BaseModel):
    """Canonical city entity as stored in the database."""

    id: int
    name: str
    region: str | None = None
    country: str
    lat: float
    lon: float
    location_keys: dict[Provider, str] = Field(default_factory=dict)
    popularity: int = 0

    @property
    def label(self) -> str:
        parts = [self.name]
        if self.region:
            parts.append(self.region)
        parts.append(self.country)
        return ", ".join(parts)


class CityDraft(BaseModel):
    """Partial city attributes merged into the store by ``upsert_city``."""

    name: str
    country: str
    region: str | None = None
    lat: float
    lon: float
    location_keys: dict[Provider, str] = Field(default_factory=dict)

    @field_validator("lat", "lon")
    @classmethod
    def round_coordinates(cls, value: float) -> float:
        return round(float(value), 2)

    @field_validator("country")
    @classmethod
    def upper_case_country(cls, value: str) -> str:
        return value.strip().upper()


class ForecastRecord(BaseModel):
    """Persisted, immutable forecast row."""

    id: int
    forecast_date: date
    city_id: int
    city_name: str
    weather: str
    temperature: float | None = None
    temp_min: float | None = None
    temp_max: float | None = None
    provider: Provider
    created_at: datetime

    @property
    def average_temperature(self) -> float | None:
        if self.temp_min is None or self.temp_max is None:
            return self.temperature
        return round((self.temp_min + self.temp_max) / 2, 1)


class GeocodeCandidate(BaseModel):
    """One geocoding match, already normalized to city fields."""

    name: str
    country: str
    lat: float
    lon: float
    region: str | None = None


class QuotaDecision(BaseModel):
    """Outcome of a single quota check."""

    provider: Provider
    allowed: bool
    calls_made: int
    calls_allowed: int


class OutcomeCode(str, Enum):
    CACHE_HIT = "cache_hit"
    FETCHED = "fetched"
    QUOTA_LIMITED = "quota_limited"
    CONFIG_MISSING = "config_missing"
    FAILED = "failed"
    UNSUPPORTED = "unsupported"


class ProviderOutcome(BaseModel):
    """What happened for one provider during a forecast request."""

    provider: Provider
    code: OutcomeCode
    stored: int = 0
    detail: str | None = None
