"""AccuWeather (dataservice.accuweather.com) forecast adapter."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from ..models import CityRecord, ForecastPair, NormalizedForecast, Provider
from ..transport import build_url
from .base import WeatherProvider

LOCATION_URL = "http://dataservice.accuweather.com/locations/v1/cities/geoposition/search"
FORECAST_URL = "http://dataservice.accuweather.com/forecasts/v1/daily/5day/{location_key}"


class AccuWeatherProvider(WeatherProvider):
    """Five-day daily forecast keyed by an AccuWeather location key.

    The location key comes from a separate geoposition lookup, which is
    metered against the same daily quota as forecast calls.
    """

    provider = Provider.ACCUWEATHER

    def fetch_forecast(self, city: CityRecord) -> ForecastPair:
        api_key = self._require_key()
        self._consume_quota()
        location_key = self._location_key(city, api_key)

        self.logger.info("Calling %s forecast API for %s", self.name, city.name)
        url = build_url(
            FORECAST_URL.format(location_key=location_key),
            {"apikey": api_key, "metric": "true"},
        )
        payload = self._get(url, context="forecast")
        self._raise_for_error(payload)

        daily = self._dig(payload, "DailyForecasts")
        if not isinstance(daily, list) or len(daily) < 2:
            raise self._fail(f"forecast data not found for {city.name}")
        return ForecastPair(
            today=self._normalize(self._dig(daily, 0)),
            tomorrow=self._normalize(self._dig(daily, 1)),
        )

    def _location_key(self, city: CityRecord, api_key: str) -> str:
        cached = city.location_keys.get(self.provider)
        if cached:
            self.logger.debug("%s ID for %s = %s", self.name, city.name, cached)
            return cached
        self.logger.info("%s ID missing for %s", self.name, city.name)

        self._consume_quota()
        self.logger.info("Calling %s location API for %s", self.name, city.name)
        url = build_url(LOCATION_URL, {"apikey": api_key, "q": f"{city.lat},{city.lon}"})
        payload = self._get(url, context="location")
        self._raise_for_error(payload)
        if not isinstance(payload, dict) or not payload:
            raise self._fail(f"location data not found for {city.name}")

        location_key = self._text(str(payload.get("Key") or ""), "Key")
        self._remember_location_key(city, location_key)
        return location_key

    def _raise_for_error(self, payload: Any) -> None:
        if isinstance(payload, dict) and "Code" in payload and str(payload["Code"]) != "200":
            message = payload.get("Message") or payload["Code"]
            self.logger.warning("%s: %s", self.name, message)
            raise self._fail(str(message))

    def _normalize(self, entry: Any) -> NormalizedForecast:
        return NormalizedForecast(
            provider=self.provider,
            forecast_date=self._entry_date(entry),
            weather=self._text(self._dig(entry, "Day", "IconPhrase"), "Day.IconPhrase"),
            temp_min=self._number(
                self._dig(entry, "Temperature", "Minimum", "Value"), "Temperature.Minimum"
            ),
            temp_max=self._number(
                self._dig(entry, "Temperature", "Maximum", "Value"), "Temperature.Maximum"
            ),
        )

    def _entry_date(self, entry: Any) -> date:
        # "Date" carries the location's own UTC offset, so its date part is local.
        raw = entry.get("Date") if isinstance(entry, dict) else None
        if isinstance(raw, str):
            try:
                return datetime.fromisoformat(raw).date()
            except ValueError:
                pass
        return self._epoch_to_date(self._number(self._dig(entry, "EpochDate"), "EpochDate"))
