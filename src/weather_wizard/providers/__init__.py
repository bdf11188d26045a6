"""Provider adapters: four weather sources and one geocoder."""

from __future__ import annotations

import logging

from ..config import Settings
from ..models import WEATHER_PROVIDER_PRIORITY, Provider
from ..storage import ForecastStore, QuotaLedger
from ..transport import Transport
from .accuweather import AccuWeatherProvider
from .apixu import ApixuProvider
from .base import ProviderClient, WeatherProvider
from .darksky import DarkSkyProvider
from .opencage import OpenCageGeocoder
from .openweathermap import OpenWeatherMapProvider

ADAPTER_CLASSES: dict[Provider, type[WeatherProvider]] = {
    Provider.ACCUWEATHER: AccuWeatherProvider,
    Provider.APIXU: ApixuProvider,
    Provider.DARKSKY: DarkSkyProvider,
    Provider.OPENWEATHERMAP: OpenWeatherMapProvider,
}


def build_weather_providers(
    settings: Settings,
    transport: Transport,
    ledger: QuotaLedger,
    store: ForecastStore,
    logger: logging.Logger,
) -> dict[Provider, WeatherProvider]:
    """Instantiate every weather adapter in priority order."""
    return {
        provider: ADAPTER_CLASSES[provider](
            settings.provider_config(provider),
            transport,
            ledger,
            logger,
            store=store,
            min_interval_seconds=settings.min_interval_seconds(provider),
        )
        for provider in WEATHER_PROVIDER_PRIORITY
    }


__all__ = [
    "ADAPTER_CLASSES",
    "AccuWeatherProvider",
    "ApixuProvider",
    "DarkSkyProvider",
    "OpenCageGeocoder",
    "OpenWeatherMapProvider",
    "ProviderClient",
    "WeatherProvider",
    "build_weather_providers",
]
