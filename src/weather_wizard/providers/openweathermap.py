"""OpenWeatherMap (api.openweathermap.org) 3-hourly forecast adapter."""

from __future__ import annotations

from typing import Any

from ..models import CityRecord, ForecastPair, NormalizedForecast, Provider
from ..transport import build_url
from .base import WeatherProvider

FORECAST_URL = "https://api.openweathermap.org/data/2.5/forecast"
# Nine 3-hour slots span 24 hours: the first is "today", the last "tomorrow".
SLOT_COUNT = 9


class OpenWeatherMapProvider(WeatherProvider):
    provider = Provider.OPENWEATHERMAP

    def fetch_forecast(self, city: CityRecord) -> ForecastPair:
        api_key = self._require_key()
        self._consume_quota()

        self.logger.info("Calling %s API for %s", self.name, city.name)
        params: dict[str, Any] = {"APPID": api_key, "units": "metric", "cnt": SLOT_COUNT}
        city_id = city.location_keys.get(self.provider)
        if city_id:
            params["id"] = city_id
        else:
            params["lat"] = city.lat
            params["lon"] = city.lon
        payload = self._get(build_url(FORECAST_URL, params), context="forecast")

        if not isinstance(payload, dict):
            raise self._fail(f"forecast data not found for {city.name}")
        if str(payload.get("cod")) != "200":
            message = payload.get("message") or f"error code {payload.get('cod')}"
            self.logger.warning("%s: %s", self.name, message)
            raise self._fail(str(message))

        city_info = payload.get("city") if isinstance(payload.get("city"), dict) else {}
        learned = city_info.get("id")
        if not city_id and isinstance(learned, (int, str)) and str(learned):
            self._remember_location_key(city, str(learned))

        slots = self._dig(payload, "list")
        if not isinstance(slots, list) or not slots:
            raise self._fail(f"forecast data not found for {city.name}")
        offset = self._optional_number(city_info.get("timezone")) or 0.0
        return ForecastPair(
            today=self._normalize(slots[0], offset),
            tomorrow=self._normalize(slots[-1], offset),
        )

    def _normalize(self, slot: Any, offset_seconds: float) -> NormalizedForecast:
        temp_min = self._number(self._dig(slot, "main", "temp_min"), "main.temp_min")
        temp_max = self._number(self._dig(slot, "main", "temp_max"), "main.temp_max")
        timestamp = self._number(self._dig(slot, "dt"), "dt")
        return NormalizedForecast(
            provider=self.provider,
            forecast_date=self._epoch_to_date(timestamp, offset_seconds),
            weather=self._text(
                self._dig(slot, "weather", 0, "description"), "weather.description"
            ),
            temperature=self._optional_number(slot["main"].get("temp")),
            temp_min=temp_min,
            temp_max=temp_max,
        )
