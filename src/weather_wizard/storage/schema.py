"""SQLAlchemy ORM models for cities, forecasts and quota entries."""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Optional

from sqlalchemy import Date, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, validates


def _utcnow() -> datetime:
    return datetime.now(UTC)


def lookup_key(text: str) -> str:
    """Case-insensitive comparison key for city and region names.

    Folded in Python because SQLite's ``lower()`` only handles ASCII.
    """
    return " ".join(text.split()).casefold()


class Base(DeclarativeBase):
    """Base class for all models."""


class CityRow(Base):
    __tablename__ = "cities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    name_key: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    region: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    region_key: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    country: Mapped[str] = mapped_column(String(8), nullable=False, index=True)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lon: Mapped[float] = mapped_column(Float, nullable=False)
    # Number of times a user settled on this city during disambiguation.
    popularity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    location_keys: Mapped[list[CityLocationKeyRow]] = relationship(
        back_populates="city",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @validates("name")
    def _sync_name_key(self, _key: str, value: str) -> str:
        self.name_key = lookup_key(value)
        return value

    @validates("region")
    def _sync_region_key(self, _key: str, value: str | None) -> str | None:
        self.region_key = lookup_key(value) if value else None
        return value

    def __repr__(self) -> str:
        return f"<CityRow {self.id} {self.name}, {self.region}, {self.country}>"


class CityLocationKeyRow(Base):
    """Opaque provider-specific identifier for a city."""

    __tablename__ = "city_location_keys"
    __table_args__ = (UniqueConstraint("city_id", "provider", name="uq_city_location_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    city_id: Mapped[int] = mapped_column(ForeignKey("cities.id"), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    key: Mapped[str] = mapped_column(String(64), nullable=False)

    city: Mapped[CityRow] = relationship(back_populates="location_keys")


class ForecastRow(Base):
    __tablename__ = "forecasts"
    __table_args__ = (
        UniqueConstraint("city_id", "forecast_date", "provider", name="uq_forecast_city_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    forecast_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    city_id: Mapped[int] = mapped_column(ForeignKey("cities.id"), nullable=False, index=True)
    # Denormalized so output stays stable if the city row is edited later.
    city_name: Mapped[str] = mapped_column(String(120), nullable=False)
    weather: Mapped[str] = mapped_column(String(255), nullable=False)
    temperature: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    temp_min: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    temp_max: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class QuotaEntryRow(Base):
    __tablename__ = "quota_entries"
    __table_args__ = (UniqueConstraint("quota_date", "provider", name="uq_quota_day"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    quota_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    calls_made: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    calls_allowed: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
