"""Shared plumbing and the capability contract for provider adapters."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from typing import Any, ClassVar

from ..config import ProviderConfig
from ..exceptions import (
    ConfigMissingError,
    ProviderDataError,
    QuotaExceededError,
    UnsupportedCapabilityError,
)
from ..models import (
    PROVIDER_TABLE,
    Capability,
    CityRecord,
    ForecastPair,
    NormalizedForecast,
    Provider,
)
from ..storage import ForecastStore, QuotaLedger
from ..transport import Transport


class ProviderClient:
    """Key check, quota gate and payload access common to every provider.

    Consecutive requests are spaced at least ``min_interval_seconds`` apart.
    """

    provider: ClassVar[Provider]

    def __init__(
        self,
        config: ProviderConfig,
        transport: Transport,
        ledger: QuotaLedger,
        logger: logging.Logger,
        min_interval_seconds: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.transport = transport
        self.ledger = ledger
        self.logger = logger
        self._min_interval = min_interval_seconds
        self._sleep = sleep
        self._clock = clock
        self._last_call: float | None = None

    @property
    def name(self) -> str:
        return self.provider.display_name

    def _require_key(self) -> str:
        if not self.config.api_key:
            self.logger.warning("%s API key missing", self.name)
            raise ConfigMissingError(f"{self.name} API key missing", provider=self.provider.value)
        return self.config.api_key

    def _consume_quota(self) -> None:
        decision = self.ledger.check_and_consume(self.provider)
        if not decision.allowed:
            raise QuotaExceededError(
                f"{self.name} daily limit reached "
                f"({decision.calls_made} of {decision.calls_allowed} calls made)",
                provider=self.provider.value,
            )

    def _get(self, url: str, context: str) -> Any:
        self._throttle()
        try:
            return self.transport.fetch_json(
                url, provider=self.provider.value, context=context
            )
        finally:
            self._last_call = self._clock()

    def _throttle(self) -> None:
        if self._last_call is None or self._min_interval <= 0:
            return
        remaining = self._min_interval - (self._clock() - self._last_call)
        if remaining > 0:
            self.logger.debug("Pacing %s requests, sleeping %.2fs", self.name, remaining)
            self._sleep(remaining)

    def _fail(self, message: str) -> ProviderDataError:
        return ProviderDataError(f"{self.name}: {message}", provider=self.provider.value)

    def _dig(self, payload: Any, *path: str | int) -> Any:
        """Walk ``path`` through nested dicts/lists or raise ProviderDataError."""
        current = payload
        walked: list[str] = []
        for step in path:
            walked.append(str(step))
            if isinstance(step, int):
                if not isinstance(current, list) or not -len(current) <= step < len(current):
                    raise self._fail(f"payload missing '{'.'.join(walked)}'")
            elif not isinstance(current, dict) or step not in current:
                raise self._fail(f"payload missing '{'.'.join(walked)}'")
            current = current[step]
        return current

    def _number(self, value: Any, label: str) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise self._fail(f"expected a number for '{label}', got {value!r}")
        return float(value)

    def _optional_number(self, value: Any) -> float | None:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return float(value)

    def _text(self, value: Any, label: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise self._fail(f"expected text for '{label}', got {value!r}")
        return value.strip()

    @staticmethod
    def _epoch_to_date(epoch: float, offset_seconds: float = 0) -> date:
        return (datetime.fromtimestamp(epoch, UTC) + timedelta(seconds=offset_seconds)).date()


class WeatherProvider(ProviderClient, ABC):
    """A weather source offering forecasts and, for some, history."""

    def __init__(
        self,
        config: ProviderConfig,
        transport: Transport,
        ledger: QuotaLedger,
        logger: logging.Logger,
        store: ForecastStore | None = None,
        min_interval_seconds: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(config, transport, ledger, logger, min_interval_seconds, sleep, clock)
        self.store = store

    @property
    def capabilities(self) -> frozenset[Capability]:
        return PROVIDER_TABLE[self.provider].capabilities

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    @abstractmethod
    def fetch_forecast(self, city: CityRecord) -> ForecastPair:
        """Fetch today's and tomorrow's forecast for ``city``."""

    def fetch_history(self, city: CityRecord, target_date: date) -> NormalizedForecast:
        """Fetch observed weather for a past ``target_date``."""
        raise UnsupportedCapabilityError(
            f"{self.name} does not provide history data", provider=self.provider.value
        )

    def _remember_location_key(self, city: CityRecord, key: str) -> None:
        """Cache a provider location key on the city and persist it when a store is wired."""
        if self.store is None:
            city.location_keys[self.provider] = key
            return
        self.store.set_location_key(city, self.provider, key)
