"""Provider adapter tests: payload normalization, error codes and quota use."""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

import httpx
import pytest

from weather_wizard.config import ProviderConfig
from weather_wizard.exceptions import (
    ConfigMissingError,
    ProviderDataError,
    QuotaExceededError,
    UnsupportedCapabilityError,
)
from weather_wizard.models import Capability, CityDraft, CityRecord, Provider
from weather_wizard.providers import (
    AccuWeatherProvider,
    ApixuProvider,
    DarkSkyProvider,
    OpenWeatherMapProvider,
    WeatherProvider,
)
from weather_wizard.storage import (
    ForecastStore,
    QuotaLedger,
    create_engine_from_url,
    init_db,
    session_factory,
)


class FakeTransport:
    """Serves canned payloads keyed by (provider, context) and records every URL."""

    def __init__(self, responses: dict[tuple[str, str], Any]) -> None:
        self.responses = responses
        self.calls: list[tuple[str, str, str]] = []

    def fetch_json(self, url: str, *, provider: str, context: str) -> Any:
        self.calls.append((url, provider, context))
        return self.responses[(provider, context)]

    def params(self, index: int) -> dict[str, str]:
        return dict(httpx.URL(self.calls[index][0]).params)


def _epoch(year: int, month: int, day: int, hour: int = 0) -> int:
    return int(datetime(year, month, day, hour, tzinfo=UTC).timestamp())


def _make_env(
    tmp_path: Path, limit: int = 50
) -> tuple[ForecastStore, QuotaLedger, CityRecord]:
    engine = create_engine_from_url(f"sqlite:///{tmp_path / 'providers.db'}")
    init_db(engine)
    sessions = session_factory(engine)
    logger = logging.getLogger("test_provider_adapters")
    store = ForecastStore(sessions, logger)
    ledger = QuotaLedger(
        sessions,
        {provider: limit for provider in Provider},
        logger,
        today=lambda: date(2026, 10, 19),
    )
    city = store.upsert_city(
        CityDraft(
            name="Ljubljana",
            region="Osrednjeslovenska",
            country="SI",
            lat=46.05,
            lon=14.51,
        )
    )
    return store, ledger, city


def _make_provider(
    cls: type[WeatherProvider],
    transport: FakeTransport,
    ledger: QuotaLedger,
    store: ForecastStore | None = None,
    api_key: str | None = "test-key",
) -> WeatherProvider:
    return cls(
        ProviderConfig(api_key=api_key, daily_limit=50),
        transport,
        ledger,
        logging.getLogger("test_provider_adapters"),
        store=store,
    )


ACCUWEATHER_FORECAST = {
    "Headline": {"Text": "Rain Monday"},
    "DailyForecasts": [
        {
            "Date": "2026-10-19T07:00:00+02:00",
            "EpochDate": 1792386000,
            "Temperature": {
                "Minimum": {"Value": 7.8, "Unit": "C"},
                "Maximum": {"Value": 15.44, "Unit": "C"},
            },
            "Day": {"Icon": 12, "IconPhrase": "Showers"},
        },
        {
            "Date": "2026-10-20T07:00:00+02:00",
            "EpochDate": 1792472400,
            "Temperature": {
                "Minimum": {"Value": 6.1, "Unit": "C"},
                "Maximum": {"Value": 13.0, "Unit": "C"},
            },
            "Day": {"Icon": 3, "IconPhrase": "Partly Sunny"},
        },
    ],
}


def _apixu_day(day: str, text: str, low: float, high: float) -> dict[str, Any]:
    return {
        "date": day,
        "date_epoch": 0,
        "day": {
            "maxtemp_c": high,
            "mintemp_c": low,
            "avgtemp_c": round((low + high) / 2, 2),
            "condition": {"text": text, "code": 1003},
        },
    }


def _owm_slot(timestamp: int, description: str, low: float, high: float) -> dict[str, Any]:
    return {
        "dt": timestamp,
        "main": {"temp": (low + high) / 2, "temp_min": low, "temp_max": high},
        "weather": [{"id": 500, "main": "Rain", "description": description}],
    }


def test_accuweather_looks_up_location_key_once(tmp_path: Path) -> None:
    store, ledger, city = _make_env(tmp_path)
    transport = FakeTransport(
        {
            ("accuweather", "location"): {"Key": "299198", "LocalizedName": "Ljubljana"},
            ("accuweather", "forecast"): ACCUWEATHER_FORECAST,
        }
    )
    provider = _make_provider(AccuWeatherProvider, transport, ledger, store)

    pair = provider.fetch_forecast(city)

    assert [call[2] for call in transport.calls] == ["location", "forecast"]
    assert "/forecasts/v1/daily/5day/299198" in transport.calls[1][0]
    assert transport.params(1) == {"apikey": "test-key", "metric": "true"}
    assert pair.today.forecast_date == date(2026, 10, 19)
    assert pair.today.weather == "showers"
    assert pair.today.temp_min == 7.8
    assert pair.today.temp_max == 15.4
    assert pair.tomorrow.forecast_date == date(2026, 10, 20)
    assert pair.tomorrow.weather == "partly sunny"
    assert ledger.usage(Provider.ACCUWEATHER).calls_made == 2
    refreshed = store.get_city(city.id)
    assert refreshed is not None
    assert refreshed.location_keys[Provider.ACCUWEATHER] == "299198"

    provider.fetch_forecast(city)

    assert [call[2] for call in transport.calls] == ["location", "forecast", "forecast"]
    assert ledger.usage(Provider.ACCUWEATHER).calls_made == 3


def test_accuweather_error_code_raises(tmp_path: Path) -> None:
    store, ledger, city = _make_env(tmp_path)
    city.location_keys[Provider.ACCUWEATHER] = "299198"
    transport = FakeTransport(
        {
            ("accuweather", "forecast"): {
                "Code": "ServiceUnavailable",
                "Message": "The allowed number of requests has been exceeded.",
            }
        }
    )
    provider = _make_provider(AccuWeatherProvider, transport, ledger, store)

    with pytest.raises(ProviderDataError, match="allowed number of requests"):
        provider.fetch_forecast(city)
    assert ledger.usage(Provider.ACCUWEATHER).calls_made == 1


def test_accuweather_location_call_needs_its_own_quota(tmp_path: Path) -> None:
    _, ledger, city = _make_env(tmp_path, limit=3)
    transport = FakeTransport({})
    provider = _make_provider(AccuWeatherProvider, transport, ledger)

    with pytest.raises(QuotaExceededError):
        provider.fetch_forecast(city)
    assert transport.calls == []


def test_apixu_forecast_normalizes_both_days(tmp_path: Path) -> None:
    _, ledger, city = _make_env(tmp_path)
    transport = FakeTransport(
        {
            ("apixu", "forecast"): {
                "location": {"name": "Ljubljana"},
                "forecast": {
                    "forecastday": [
                        _apixu_day("2026-10-19", "Partly cloudy", 8.04, 16.66),
                        _apixu_day("2026-10-20", "Moderate Rain", 9.0, 12.0),
                    ]
                },
            }
        }
    )
    provider = _make_provider(ApixuProvider, transport, ledger)

    pair = provider.fetch_forecast(city)

    assert transport.params(0) == {"key": "test-key", "q": "46.05,14.51", "days": "2"}
    assert pair.today.provider is Provider.APIXU
    assert pair.today.forecast_date == date(2026, 10, 19)
    assert pair.today.weather == "partly cloudy"
    assert pair.today.temp_min == 8.0
    assert pair.today.temp_max == 16.7
    assert pair.tomorrow.forecast_date == date(2026, 10, 20)
    assert pair.tomorrow.temperature == 10.5


def test_apixu_history_requests_target_date(tmp_path: Path) -> None:
    _, ledger, city = _make_env(tmp_path)
    transport = FakeTransport(
        {
            ("apixu", "history"): {
                "forecast": {"forecastday": [_apixu_day("2026-10-18", "Sunny", 5.0, 17.0)]}
            }
        }
    )
    provider = _make_provider(ApixuProvider, transport, ledger)

    record = provider.fetch_history(city, date(2026, 10, 18))

    assert transport.params(0)["dt"] == "2026-10-18"
    assert record.forecast_date == date(2026, 10, 18)
    assert record.weather == "sunny"


def test_apixu_error_payload_raises(tmp_path: Path) -> None:
    _, ledger, city = _make_env(tmp_path)
    transport = FakeTransport(
        {("apixu", "forecast"): {"error": {"code": 2006, "message": "API key is invalid."}}}
    )
    provider = _make_provider(ApixuProvider, transport, ledger)

    with pytest.raises(ProviderDataError, match="API key is invalid"):
        provider.fetch_forecast(city)


def test_darksky_forecast_uses_location_offset(tmp_path: Path) -> None:
    _, ledger, city = _make_env(tmp_path)
    transport = FakeTransport(
        {
            ("darksky", "forecast"): {
                "timezone": "Europe/Ljubljana",
                "offset": 2,
                "daily": {
                    "data": [
                        {
                            "time": _epoch(2026, 10, 18, 22),
                            "summary": "Light rain in the morning.",
                            "temperatureMin": 7.21,
                            "temperatureMax": 13.88,
                        },
                        {
                            "time": _epoch(2026, 10, 19, 22),
                            "summary": "Mostly cloudy throughout the day.",
                            "temperatureMin": 6.5,
                            "temperatureMax": 12.0,
                        },
                    ]
                },
            }
        }
    )
    provider = _make_provider(DarkSkyProvider, transport, ledger)

    pair = provider.fetch_forecast(city)

    url = transport.calls[0][0]
    assert url.startswith("https://api.darksky.net/forecast/test-key/46.05,14.51?")
    assert transport.params(0)["units"] == "si"
    assert pair.today.forecast_date == date(2026, 10, 19)
    assert pair.today.weather == "light rain in the morning"
    assert pair.today.temp_min == 7.2
    assert pair.today.temp_max == 13.9
    assert pair.tomorrow.forecast_date == date(2026, 10, 20)


def test_darksky_history_is_dated_with_requested_day(tmp_path: Path) -> None:
    _, ledger, city = _make_env(tmp_path)
    transport = FakeTransport(
        {
            ("darksky", "history"): {
                "offset": -10,
                "daily": {
                    "data": [
                        {
                            "time": _epoch(2026, 10, 18, 10),
                            "summary": "Clear throughout the day.",
                            "temperatureMin": 3.0,
                            "temperatureMax": 18.0,
                        }
                    ]
                },
            }
        }
    )
    provider = _make_provider(DarkSkyProvider, transport, ledger)

    record = provider.fetch_history(city, date(2026, 10, 18))

    assert f"/46.05,14.51,{_epoch(2026, 10, 18, 12)}" in transport.calls[0][0]
    assert record.forecast_date == date(2026, 10, 18)
    assert record.weather == "clear throughout the day"


def test_darksky_error_code_raises(tmp_path: Path) -> None:
    _, ledger, city = _make_env(tmp_path)
    transport = FakeTransport(
        {("darksky", "forecast"): {"code": 403, "error": "daily usage limit exceeded"}}
    )
    provider = _make_provider(DarkSkyProvider, transport, ledger)

    with pytest.raises(ProviderDataError, match="daily usage limit exceeded"):
        provider.fetch_forecast(city)


def test_openweathermap_learns_and_reuses_city_id(tmp_path: Path) -> None:
    store, ledger, city = _make_env(tmp_path)
    transport = FakeTransport(
        {
            ("openweathermap", "forecast"): {
                "cod": "200",
                "cnt": 9,
                "list": [_owm_slot(_epoch(2026, 10, 19, 12), "light rain", 9.1, 11.3)]
                + [_owm_slot(_epoch(2026, 10, 19, 15), "overcast clouds", 9.0, 10.0)] * 7
                + [_owm_slot(_epoch(2026, 10, 20, 12), "clear sky", 4.0, 14.0)],
                "city": {"id": 3196359, "name": "Ljubljana", "timezone": 7200},
            }
        }
    )
    provider = _make_provider(OpenWeatherMapProvider, transport, ledger, store)

    pair = provider.fetch_forecast(city)

    first_params = transport.params(0)
    assert first_params["lat"] == "46.05"
    assert first_params["lon"] == "14.51"
    assert first_params["cnt"] == "9"
    assert "id" not in first_params
    assert pair.today.forecast_date == date(2026, 10, 19)
    assert pair.today.weather == "light rain"
    assert pair.today.temperature == 10.2
    assert pair.tomorrow.forecast_date == date(2026, 10, 20)
    assert pair.tomorrow.weather == "clear sky"
    assert city.location_keys[Provider.OPENWEATHERMAP] == "3196359"

    provider.fetch_forecast(city)

    second_params = transport.params(1)
    assert second_params["id"] == "3196359"
    assert "lat" not in second_params


def test_openweathermap_error_code_raises(tmp_path: Path) -> None:
    _, ledger, city = _make_env(tmp_path)
    transport = FakeTransport(
        {("openweathermap", "forecast"): {"cod": "404", "message": "city not found"}}
    )
    provider = _make_provider(OpenWeatherMapProvider, transport, ledger)

    with pytest.raises(ProviderDataError, match="city not found"):
        provider.fetch_forecast(city)


def test_openweathermap_calls_are_paced(tmp_path: Path) -> None:
    store, ledger, city = _make_env(tmp_path)
    transport = FakeTransport(
        {
            ("openweathermap", "forecast"): {
                "cod": "200",
                "list": [
                    _owm_slot(_epoch(2026, 10, 19, 12), "light rain", 9.1, 11.3),
                    _owm_slot(_epoch(2026, 10, 20, 12), "clear sky", 4.0, 14.0),
                ],
                "city": {"id": 3196359},
            }
        }
    )
    readings = [100.0, 100.4, 101.0, 102.5, 102.6]
    sleeps: list[float] = []
    provider = OpenWeatherMapProvider(
        ProviderConfig(api_key="test-key", daily_limit=50),
        transport,
        ledger,
        logging.getLogger("test_provider_adapters"),
        store=store,
        min_interval_seconds=1.0,
        sleep=sleeps.append,
        clock=lambda: readings.pop(0),
    )

    for _ in range(3):
        provider.fetch_forecast(city)

    assert sleeps == [pytest.approx(0.6)]
    assert len(transport.calls) == 3
    assert readings == []


def test_malformed_payload_raises_provider_data_error(tmp_path: Path) -> None:
    _, ledger, city = _make_env(tmp_path)
    transport = FakeTransport({("apixu", "forecast"): {"forecast": {"forecastday": [{}]}}})
    provider = _make_provider(ApixuProvider, transport, ledger)

    with pytest.raises(ProviderDataError):
        provider.fetch_forecast(city)


@pytest.mark.parametrize(
    "cls",
    [AccuWeatherProvider, ApixuProvider, DarkSkyProvider, OpenWeatherMapProvider],
)
def test_missing_key_spends_no_quota(tmp_path: Path, cls: type[WeatherProvider]) -> None:
    _, ledger, city = _make_env(tmp_path)
    transport = FakeTransport({})
    provider = _make_provider(cls, transport, ledger, api_key=None)

    with pytest.raises(ConfigMissingError):
        provider.fetch_forecast(city)
    assert transport.calls == []
    assert ledger.usage(provider.provider).calls_made == 0


def test_quota_limited_provider_makes_no_request(tmp_path: Path) -> None:
    _, ledger, city = _make_env(tmp_path, limit=3)
    transport = FakeTransport(
        {("apixu", "forecast"): {"error": {"code": 9999, "message": "Internal error"}}}
    )
    provider = _make_provider(ApixuProvider, transport, ledger)
    with pytest.raises(ProviderDataError):
        provider.fetch_forecast(city)

    with pytest.raises(QuotaExceededError):
        provider.fetch_forecast(city)
    assert len(transport.calls) == 1
    assert ledger.usage(Provider.APIXU).calls_made == 1


def test_forecast_only_providers_reject_history(tmp_path: Path) -> None:
    _, ledger, city = _make_env(tmp_path)
    transport = FakeTransport({})
    accuweather = _make_provider(AccuWeatherProvider, transport, ledger)
    owm = _make_provider(OpenWeatherMapProvider, transport, ledger)

    assert not accuweather.supports(Capability.HISTORY)
    assert not owm.supports(Capability.HISTORY)
    assert _make_provider(DarkSkyProvider, transport, ledger).supports(Capability.HISTORY)
    with pytest.raises(UnsupportedCapabilityError):
        owm.fetch_history(city, date(2026, 10, 18))
    assert transport.calls == []
