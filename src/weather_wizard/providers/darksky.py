"""Dark Sky (api.darksky.net) forecast and time-machine adapter."""

from __future__ import annotations

from datetime import UTC, date, datetime, time
from typing import Any

from ..models import CityRecord, ForecastPair, NormalizedForecast, Provider
from ..transport import build_url
from .base import WeatherProvider

BASE_URL = "https://api.darksky.net/forecast/{api_key}/{location}"
EXCLUDE_BLOCKS = "currently,minutely,hourly,alerts,flags"


class DarkSkyProvider(WeatherProvider):
    provider = Provider.DARKSKY

    def fetch_forecast(self, city: CityRecord) -> ForecastPair:
        api_key = self._require_key()
        self._consume_quota()

        self.logger.info("Calling %s forecast API for %s", self.name, city.name)
        payload = self._get(self._url(api_key, city), context="forecast")
        entries = self._daily_entries(payload, city)
        if len(entries) < 2:
            raise self._fail(f"forecast data not found for {city.name}")
        offset_seconds = self._offset_seconds(payload)
        return ForecastPair(
            today=self._normalize(entries[0], self._entry_date(entries[0], offset_seconds)),
            tomorrow=self._normalize(entries[1], self._entry_date(entries[1], offset_seconds)),
        )

    def fetch_history(self, city: CityRecord, target_date: date) -> NormalizedForecast:
        api_key = self._require_key()
        self._consume_quota()

        self.logger.info(
            "Calling %s history API for %s, %s", self.name, city.name, target_date.isoformat()
        )
        # Noon UTC falls inside the requested local day for nearly every timezone.
        timestamp = int(datetime.combine(target_date, time(12), tzinfo=UTC).timestamp())
        payload = self._get(self._url(api_key, city, timestamp), context="history")
        entries = self._daily_entries(payload, city)
        if not entries:
            raise self._fail(f"history data not found for {city.name}")
        return self._normalize(entries[0], target_date)

    @staticmethod
    def _url(api_key: str, city: CityRecord, timestamp: int | None = None) -> str:
        location = f"{city.lat},{city.lon}"
        if timestamp is not None:
            location = f"{location},{timestamp}"
        return build_url(
            BASE_URL.format(api_key=api_key, location=location),
            {"exclude": EXCLUDE_BLOCKS, "units": "si"},
        )

    def _daily_entries(self, payload: Any, city: CityRecord) -> list[Any]:
        if isinstance(payload, dict) and "code" in payload and str(payload["code"]) != "200":
            message = payload.get("error") or f"error code {payload['code']}"
            self.logger.warning("%s: %s", self.name, message)
            raise self._fail(str(message))
        entries = self._dig(payload, "daily", "data")
        if not isinstance(entries, list):
            raise self._fail(f"daily data not found for {city.name}")
        return entries

    def _offset_seconds(self, payload: Any) -> float:
        offset_hours = None
        if isinstance(payload, dict):
            offset_hours = self._optional_number(payload.get("offset"))
        return (offset_hours or 0.0) * 3600

    def _entry_date(self, entry: Any, offset_seconds: float) -> date:
        return self._epoch_to_date(self._number(self._dig(entry, "time"), "time"), offset_seconds)

    def _normalize(self, entry: Any, forecast_date: date) -> NormalizedForecast:
        summary = self._text(self._dig(entry, "summary"), "summary")
        return NormalizedForecast(
            provider=self.provider,
            forecast_date=forecast_date,
            weather=summary.rstrip("."),
            temp_min=self._number(self._dig(entry, "temperatureMin"), "temperatureMin"),
            temp_max=self._number(self._dig(entry, "temperatureMax"), "temperatureMax"),
        )
