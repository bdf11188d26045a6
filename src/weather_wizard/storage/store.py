"""Read/write access to cached forecasts and known cities."""

from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ..models import (
    WEATHER_PROVIDER_PRIORITY,
    CityDraft,
    CityRecord,
    ForecastRecord,
    NormalizedForecast,
    Provider,
)
from .database import transaction
from .schema import CityLocationKeyRow, CityRow, ForecastRow, lookup_key


def calendar_day(value: date | datetime) -> date:
    """Drop the time of day so records match on the calendar date only."""
    if isinstance(value, datetime):
        return value.date()
    return value


def _city_record(row: CityRow) -> CityRecord:
    return CityRecord(
        id=row.id,
        name=row.name,
        region=row.region,
        country=row.country,
        lat=row.lat,
        lon=row.lon,
        location_keys={Provider(item.provider): item.key for item in row.location_keys},
        popularity=row.popularity,
    )


def _forecast_record(row: ForecastRow) -> ForecastRecord:
    return ForecastRecord(
        id=row.id,
        forecast_date=row.forecast_date,
        city_id=row.city_id,
        city_name=row.city_name,
        weather=row.weather,
        temperature=row.temperature,
        temp_min=row.temp_min,
        temp_max=row.temp_max,
        provider=Provider(row.provider),
        created_at=row.created_at,
    )


def _provider_rank(provider: Provider) -> int:
    if provider in WEATHER_PROVIDER_PRIORITY:
        return WEATHER_PROVIDER_PRIORITY.index(provider)
    return len(WEATHER_PROVIDER_PRIORITY)


class ForecastStore:
    """Forecast and city persistence with check-before-insert semantics."""

    def __init__(self, sessions: sessionmaker[Session], logger: logging.Logger) -> None:
        self._sessions = sessions
        self.logger = logger

    # -- forecasts ---------------------------------------------------------

    def find_cached(
        self, city: CityRecord, forecast_date: date | datetime, provider: Provider
    ) -> ForecastRecord | None:
        """Return the single record for (city, calendar day, provider), if any."""
        day = calendar_day(forecast_date)
        self.logger.debug(
            "Querying one forecast matching %s, %s, %s", city.name, day, provider.value
        )
        with transaction(self._sessions) as session:
            row = session.scalars(
                select(ForecastRow)
                .where(
                    ForecastRow.city_id == city.id,
                    ForecastRow.forecast_date == day,
                    ForecastRow.provider == provider.value,
                )
                .order_by(ForecastRow.id)
                .limit(1)
            ).first()
            return _forecast_record(row) if row is not None else None

    def find_all(
        self,
        city: CityRecord,
        forecast_date: date | datetime,
        provider: Provider | None = None,
    ) -> list[ForecastRecord]:
        """Return every record for the city and day; ``provider=None`` is a wildcard."""
        day = calendar_day(forecast_date)
        self.logger.debug(
            "Querying all forecasts matching %s, %s, %s",
            city.name,
            day,
            provider.value if provider else "*",
        )
        stmt = select(ForecastRow).where(
            ForecastRow.city_id == city.id,
            ForecastRow.forecast_date == day,
        )
        if provider is not None:
            stmt = stmt.where(ForecastRow.provider == provider.value)
        with transaction(self._sessions) as session:
            records = [_forecast_record(row) for row in session.scalars(stmt)]
        return sorted(records, key=lambda item: (_provider_rank(item.provider), item.id))

    def upsert_forecast(
        self, city: CityRecord, forecast: NormalizedForecast
    ) -> ForecastRecord | None:
        """Insert a forecast unless one already exists for its key.

        Returns the new record, or None when the key was already present,
        including when a concurrent writer won the race.
        """
        if self.find_cached(city, forecast.forecast_date, forecast.provider) is not None:
            self.logger.debug(
                "Forecast for %s, %s, %s already stored",
                city.name,
                forecast.forecast_date,
                forecast.provider.value,
            )
            return None

        try:
            with transaction(self._sessions) as session:
                row = ForecastRow(
                    forecast_date=forecast.forecast_date,
                    city_id=city.id,
                    city_name=city.name,
                    weather=forecast.weather,
                    temperature=forecast.temperature,
                    temp_min=forecast.temp_min,
                    temp_max=forecast.temp_max,
                    provider=forecast.provider.value,
                )
                session.add(row)
                session.flush()
                record = _forecast_record(row)
        except IntegrityError:
            self.logger.debug(
                "Concurrent insert for %s, %s, %s skipped",
                city.name,
                forecast.forecast_date,
                forecast.provider.value,
            )
            return None

        self.logger.debug(
            "Saved %s forecast for %s on %s",
            forecast.provider.value,
            city.name,
            forecast.forecast_date,
        )
        return record

    # -- cities ------------------------------------------------------------

    def find_city(
        self,
        name: str,
        region: str | None = None,
        country: str | None = None,
    ) -> CityRecord | None:
        with transaction(self._sessions) as session:
            row = self._find_city_row(session, name, region=region, country=country)
            return _city_record(row) if row is not None else None

    def find_all_cities(self, name: str, country: str | None = None) -> list[CityRecord]:
        """Return cities named ``name``, most popular first."""
        self.logger.debug("Querying all cities matching %s %s", name, country or "")
        stmt = select(CityRow).where(CityRow.name_key == lookup_key(name))
        if country:
            stmt = stmt.where(func.upper(CityRow.country) == country.strip().upper())
        stmt = stmt.order_by(CityRow.popularity.desc(), CityRow.id)
        with transaction(self._sessions) as session:
            return [_city_record(row) for row in session.scalars(stmt)]

    def get_city(self, city_id: int) -> CityRecord | None:
        with transaction(self._sessions) as session:
            row = session.get(CityRow, city_id)
            return _city_record(row) if row is not None else None

    def upsert_city(self, draft: CityDraft) -> CityRecord:
        """Merge ``draft`` into a matching city, or create one.

        Only fields that are still empty on the existing city are filled.
        """
        with transaction(self._sessions) as session:
            row = None
            if draft.region:
                row = self._find_city_row(
                    session, draft.name, region=draft.region, country=draft.country
                )
            if row is None:
                # A regionless city is refined by the first draft that knows its region.
                row = self._find_city_row(
                    session, draft.name, region=None, country=draft.country, unset_region=True
                )
            if row is None:
                self.logger.debug("Saving new city %s, %s", draft.name, draft.country)
                row = CityRow(
                    name=draft.name,
                    region=draft.region,
                    country=draft.country,
                    lat=draft.lat,
                    lon=draft.lon,
                    popularity=0,
                )
                session.add(row)
            else:
                self.logger.debug("City %s already stored, merging", row.name)
                if not row.region and draft.region:
                    row.region = draft.region

            known = {item.provider for item in row.location_keys}
            for provider, key in draft.location_keys.items():
                if provider.value not in known:
                    row.location_keys.append(
                        CityLocationKeyRow(provider=provider.value, key=key)
                    )
            session.flush()
            return _city_record(row)

    def increment_popularity(self, city: CityRecord) -> CityRecord:
        with transaction(self._sessions) as session:
            session.execute(
                update(CityRow)
                .where(CityRow.id == city.id)
                .values(popularity=CityRow.popularity + 1)
                .execution_options(synchronize_session=False)
            )
            popularity = session.scalar(select(CityRow.popularity).where(CityRow.id == city.id))
        city.popularity = popularity if popularity is not None else city.popularity + 1
        return city

    def set_location_key(self, city: CityRecord, provider: Provider, key: str) -> CityRecord:
        """Persist a provider location key and record it on ``city`` in place.

        An existing key wins; keys are never overwritten once cached.
        """
        try:
            with transaction(self._sessions) as session:
                existing = session.scalar(
                    select(CityLocationKeyRow).where(
                        CityLocationKeyRow.city_id == city.id,
                        CityLocationKeyRow.provider == provider.value,
                    )
                )
                if existing is None:
                    session.add(
                        CityLocationKeyRow(city_id=city.id, provider=provider.value, key=key)
                    )
                else:
                    key = existing.key
        except IntegrityError:
            self.logger.debug(
                "Location key for %s/%s stored concurrently", city.name, provider.value
            )
            refreshed = self.get_city(city.id)
            if refreshed is not None and provider in refreshed.location_keys:
                key = refreshed.location_keys[provider]
        city.location_keys[provider] = key
        self.logger.debug("%s id for %s = %s", provider.display_name, city.name, key)
        return city

    @staticmethod
    def _find_city_row(
        session: Session,
        name: str,
        *,
        region: str | None,
        country: str | None,
        unset_region: bool = False,
    ) -> CityRow | None:
        stmt = select(CityRow).where(CityRow.name_key == lookup_key(name))
        if unset_region:
            stmt = stmt.where(CityRow.region.is_(None))
        elif region:
            stmt = stmt.where(CityRow.region_key == lookup_key(region))
        if country:
            stmt = stmt.where(func.upper(CityRow.country) == country.strip().upper())
        return session.scalars(stmt.order_by(CityRow.id).limit(1)).first()
