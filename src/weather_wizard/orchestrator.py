"""Cache-first forecast acquisition across every configured provider."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import date

from .exceptions import (
    ConfigMissingError,
    JournalError,
    QuotaExceededError,
    WeatherProviderError,
)
from .journal import JournalWriter
from .models import (
    WEATHER_PROVIDER_PRIORITY,
    Capability,
    CityRecord,
    Day,
    ForecastRecord,
    NormalizedForecast,
    OutcomeCode,
    Provider,
    ProviderOutcome,
)
from .providers import WeatherProvider
from .storage import ForecastStore


class ForecastOrchestrator:
    """Drives store, quota and adapters for one (city, day, provider filter) request.

    Each provider is attempted independently: a failure on one never stops
    the others, and the returned records always come from a fresh store read.
    """

    def __init__(
        self,
        store: ForecastStore,
        providers: Mapping[Provider, WeatherProvider],
        logger: logging.Logger,
        journal: JournalWriter | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.store = store
        self.providers = dict(providers)
        self.logger = logger
        self.journal = journal
        self._today = today

    def get_forecasts(
        self,
        city: CityRecord,
        day: Day,
        provider: Provider | None = None,
    ) -> list[ForecastRecord]:
        """Fill the cache where needed and return every stored record for the request."""
        target_date = day.resolve(self._today())
        self.acquire(city, day, provider, target_date=target_date)
        return self.store.find_all(city, target_date, provider)

    def acquire(
        self,
        city: CityRecord,
        day: Day,
        provider: Provider | None = None,
        *,
        target_date: date | None = None,
    ) -> list[ProviderOutcome]:
        """Run the cache/quota/fetch cycle for each selected provider."""
        target_date = target_date or day.resolve(self._today())
        selected = (provider,) if provider is not None else WEATHER_PROVIDER_PRIORITY
        outcomes: list[ProviderOutcome] = []
        for current in selected:
            outcome = self._acquire_one(city, day, target_date, current)
            self.logger.info(
                "%s outcome for %s on %s: %s",
                current.value,
                city.name,
                target_date,
                outcome.code.value,
                extra={
                    "provider": current,
                    "city": city.label,
                    "day": day,
                    "outcome": outcome.code,
                },
            )
            self._journal_outcome(city, target_date, outcome)
            outcomes.append(outcome)
        return outcomes

    def _acquire_one(
        self,
        city: CityRecord,
        day: Day,
        target_date: date,
        provider: Provider,
    ) -> ProviderOutcome:
        adapter = self.providers.get(provider)
        capability = Capability.HISTORY if day is Day.YESTERDAY else Capability.FORECAST
        if adapter is None or not adapter.supports(capability):
            return ProviderOutcome(
                provider=provider,
                code=OutcomeCode.UNSUPPORTED,
                detail=f"no {capability.value} support",
            )

        if self.store.find_cached(city, target_date, provider) is not None:
            self.logger.debug("Data found")
            return ProviderOutcome(provider=provider, code=OutcomeCode.CACHE_HIT)
        self.logger.debug("No data found")

        try:
            forecasts = self._fetch(adapter, city, capability, target_date)
        except ConfigMissingError as exc:
            return ProviderOutcome(
                provider=provider, code=OutcomeCode.CONFIG_MISSING, detail=str(exc)
            )
        except QuotaExceededError as exc:
            return ProviderOutcome(
                provider=provider, code=OutcomeCode.QUOTA_LIMITED, detail=str(exc)
            )
        except WeatherProviderError as exc:
            self.logger.warning("%s fetch failed for %s: %s", provider.value, city.name, exc)
            return ProviderOutcome(provider=provider, code=OutcomeCode.FAILED, detail=str(exc))

        stored = 0
        for forecast in forecasts:
            if self.store.upsert_forecast(city, forecast) is not None:
                stored += 1
        return ProviderOutcome(provider=provider, code=OutcomeCode.FETCHED, stored=stored)

    @staticmethod
    def _fetch(
        adapter: WeatherProvider,
        city: CityRecord,
        capability: Capability,
        target_date: date,
    ) -> list[NormalizedForecast]:
        if capability is Capability.HISTORY:
            return [adapter.fetch_history(city, target_date)]
        # Providers return today and tomorrow together; both are kept.
        return list(adapter.fetch_forecast(city))

    def _journal_outcome(
        self, city: CityRecord, target_date: date, outcome: ProviderOutcome
    ) -> None:
        if self.journal is None:
            return
        try:
            self.journal.write_event(
                "provider_outcome",
                payload={
                    "city_id": city.id,
                    "city": city.label,
                    "date": target_date,
                    **outcome.model_dump(mode="json"),
                },
            )
        except JournalError as exc:
            self.logger.warning("Failed to journal provider outcome: %s", exc)
