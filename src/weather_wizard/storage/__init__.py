"""Relational persistence for cities, forecasts and provider quotas."""

from .database import create_engine_from_url, init_db, session_factory
from .quota import SAFETY_MARGIN, QuotaLedger
from .schema import lookup_key
from .store import ForecastStore

__all__ = [
    "SAFETY_MARGIN",
    "ForecastStore",
    "QuotaLedger",
    "create_engine_from_url",
    "init_db",
    "lookup_key",
    "session_factory",
]
