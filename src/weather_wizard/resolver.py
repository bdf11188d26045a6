"""Maps free-text location input to a single stored city."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

from .exceptions import CityUnresolvedError, InvalidSelectionError, WeatherProviderError
from .models import CityDraft, CityRecord, GeocodeCandidate
from .storage import ForecastStore, lookup_key


class Geocoder(Protocol):
    def lookup(self, name: str, country: str | None = None) -> list[GeocodeCandidate]: ...


class Disambiguator(Protocol):
    """Asks a human (or a test double) to pick between same-named cities."""

    def confirm(self, city: CityRecord) -> bool:
        """Return True if ``city`` is the one the user meant."""
        ...

    def choose(self, cities: Sequence[CityRecord], none_index: int) -> int | str | None:
        """Return the chosen index; ``none_index`` means none of the listed cities."""
        ...


def _display_name(name: str) -> str:
    return name.strip()[:1].upper() + name.strip()[1:]


class CityResolver:
    """Store lookup, geocoding fallback and popularity-ranked disambiguation."""

    def __init__(
        self,
        store: ForecastStore,
        geocoder: Geocoder | None,
        logger: logging.Logger,
    ) -> None:
        self.store = store
        self.geocoder = geocoder
        self.logger = logger

    def candidates(self, name: str, country: str | None = None) -> list[CityRecord]:
        """Return stored cities named ``name``, geocoding first if none are known."""
        cities = self.store.find_all_cities(name, country)
        if not cities:
            self.logger.info("No data found for %s, populating...", name)
            self._populate(name, country)
            cities = self.store.find_all_cities(name, country)
        self.logger.debug("%d cities found matching %s", len(cities), name)
        return cities

    def resolve(
        self,
        name: str,
        country: str | None,
        disambiguator: Disambiguator,
    ) -> CityRecord:
        """Return the one city the caller means, or raise CityUnresolvedError.

        Popularity is only incremented for a city that was actually selected.
        """
        cities = self.candidates(name, country)
        if not cities:
            raise CityUnresolvedError(
                f"Sorry, there is no data for any cities named '{_display_name(name)}'.",
                name=name,
            )

        first = cities[0]
        if len(cities) == 1 or disambiguator.confirm(first):
            return self.store.increment_popularity(first)

        none_index = len(cities)
        answer = disambiguator.choose(cities, none_index)
        index = self._parse_choice(answer, none_index, name)
        return self.store.increment_popularity(cities[index])

    def _populate(self, name: str, country: str | None) -> None:
        if self.geocoder is None:
            return
        try:
            results = self.geocoder.lookup(name, country)
        except WeatherProviderError as exc:
            self.logger.warning("Geocoding failed for %s: %s", name, exc)
            return

        wanted_name = lookup_key(name)
        wanted_country = lookup_key(country) if country else None
        for result in results:
            # Ignore results that don't match what the user typed.
            if lookup_key(result.name) != wanted_name:
                continue
            if wanted_country and lookup_key(result.country) != wanted_country:
                continue
            self.store.upsert_city(
                CityDraft(
                    name=result.name,
                    country=result.country,
                    region=result.region,
                    lat=result.lat,
                    lon=result.lon,
                )
            )

    @staticmethod
    def _parse_choice(answer: int | str | None, none_index: int, name: str) -> int:
        if isinstance(answer, bool):
            answer = None
        if isinstance(answer, str) and answer.strip().isdigit():
            answer = int(answer.strip())
        if not isinstance(answer, int) or answer < 0 or answer > none_index:
            raise InvalidSelectionError(
                f"Sorry, {answer!r} is not a valid choice.",
                name=name,
            )
        if answer == none_index:
            raise CityUnresolvedError(
                f"Sorry, there is no data for any other cities named '{_display_name(name)}'.",
                name=name,
            )
        return answer
