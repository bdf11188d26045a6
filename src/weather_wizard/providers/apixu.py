"""Apixu (api.apixu.com) forecast and history adapter."""

from __future__ import annotations

from datetime import date
from typing import Any

from ..models import CityRecord, ForecastPair, NormalizedForecast, Provider
from ..transport import build_url
from .base import WeatherProvider

FORECAST_URL = "https://api.apixu.com/v1/forecast.json"
HISTORY_URL = "https://api.apixu.com/v1/history.json"


class ApixuProvider(WeatherProvider):
    provider = Provider.APIXU

    def fetch_forecast(self, city: CityRecord) -> ForecastPair:
        api_key = self._require_key()
        self._consume_quota()

        self.logger.info("Calling %s forecast API for %s", self.name, city.name)
        url = build_url(
            FORECAST_URL,
            {"key": api_key, "q": f"{city.lat},{city.lon}", "days": 2},
        )
        payload = self._get(url, context="forecast")
        days = self._forecast_days(payload, city)
        if len(days) < 2:
            raise self._fail(f"forecast data not found for {city.name}")
        return ForecastPair(today=self._normalize(days[0]), tomorrow=self._normalize(days[1]))

    def fetch_history(self, city: CityRecord, target_date: date) -> NormalizedForecast:
        api_key = self._require_key()
        self._consume_quota()

        self.logger.info(
            "Calling %s history API for %s, %s", self.name, city.name, target_date.isoformat()
        )
        url = build_url(
            HISTORY_URL,
            {
                "key": api_key,
                "q": f"{city.lat},{city.lon}",
                "dt": target_date.isoformat(),
                "hour": 12,
            },
        )
        payload = self._get(url, context="history")
        days = self._forecast_days(payload, city)
        if not days:
            raise self._fail(f"history data not found for {city.name}")
        return self._normalize(days[0])

    def _forecast_days(self, payload: Any, city: CityRecord) -> list[Any]:
        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            error = payload["error"]
            message = error.get("message") or f"error code {error.get('code')}"
            self.logger.warning("%s: %s", self.name, message)
            raise self._fail(str(message))
        days = self._dig(payload, "forecast", "forecastday")
        if not isinstance(days, list):
            raise self._fail(f"forecast data not found for {city.name}")
        return days

    def _normalize(self, entry: Any) -> NormalizedForecast:
        raw_date = entry.get("date") if isinstance(entry, dict) else None
        if isinstance(raw_date, str):
            try:
                forecast_date = date.fromisoformat(raw_date)
            except ValueError as exc:
                raise self._fail(f"invalid forecast date {raw_date!r}") from exc
        else:
            forecast_date = self._epoch_to_date(
                self._number(self._dig(entry, "date_epoch"), "date_epoch")
            )

        day = self._dig(entry, "day")
        return NormalizedForecast(
            provider=self.provider,
            forecast_date=forecast_date,
            weather=self._text(self._dig(day, "condition", "text"), "day.condition.text"),
            temperature=self._optional_number(day.get("avgtemp_c")),
            temp_min=self._number(self._dig(day, "mintemp_c"), "day.mintemp_c"),
            temp_max=self._number(self._dig(day, "maxtemp_c"), "day.maxtemp_c"),
        )
