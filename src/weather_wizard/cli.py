"""Command-line entry point: resolve a city and print its forecasts."""

from __future__ import annotations

import argparse
import logging
import sys
import uuid
from collections.abc import Sequence

from pydantic import BaseModel
from rich.console import Console
from rich.prompt import Confirm, Prompt
from rich.table import Table

from .config import Settings, load_settings
from .exceptions import (
    CityUnresolvedError,
    ConfigError,
    InputError,
    JournalError,
    StoreError,
)
from .journal import JournalWriter, describe_error
from .log_setup import setup_logger
from .models import (
    PROVIDER_TABLE,
    WEATHER_PROVIDER_PRIORITY,
    CityRecord,
    Day,
    ForecastRecord,
    Provider,
    QuotaDecision,
    provider_from_alias,
)
from .orchestrator import ForecastOrchestrator
from .providers import OpenCageGeocoder, build_weather_providers
from .resolver import CityResolver
from .storage import (
    ForecastStore,
    QuotaLedger,
    create_engine_from_url,
    init_db,
    session_factory,
)
from .transport import HttpTransport

COUNTRY_ALIASES = {"uk": "gb"}


class ForecastRequest(BaseModel):
    """Validated command-line input."""

    name: str
    country: str | None = None
    day: Day = Day.TODAY
    provider: Provider | None = None


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse weather CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Return the weather forecast for a city on a given day."
    )
    parser.add_argument(
        "city_name",
        nargs="?",
        default="ljubljana",
        help="City name, optionally followed by a country code (e.g. 'ljubljana, si').",
    )
    parser.add_argument(
        "day",
        nargs="?",
        default="today",
        help="One of 'yesterday', 'today' or 'tomorrow'.",
    )
    parser.add_argument(
        "provider",
        nargs="?",
        default="",
        help="Restrict to a single provider (apixu, openweathermap, darksky, accuweather).",
    )
    parser.add_argument(
        "--quota",
        action="store_true",
        help="Print today's per-provider call usage and exit.",
    )
    return parser.parse_args(argv)


def _valid_providers() -> str:
    names = [f"'{PROVIDER_TABLE[p].aliases[0]}'" for p in WEATHER_PROVIDER_PRIORITY]
    return ", ".join(names[:-1]) + f" or {names[-1]}"


def parse_request(city_name: str, day: str, provider: str) -> ForecastRequest:
    """Normalize raw arguments, raising InputError for unknown values."""
    city_parts = city_name.strip().lower().split(",")
    name = city_parts[0].strip()
    country = city_parts[1].strip() if len(city_parts) > 1 and city_parts[1].strip() else None
    if country is not None:
        country = COUNTRY_ALIASES.get(country, country)
    if not name:
        raise InputError("city_name", city_name, "any non-empty city name")

    day_value = day.strip().lower()
    try:
        parsed_day = Day(day_value)
    except ValueError:
        raise InputError("day", day_value, "'today', 'tomorrow' or 'yesterday'") from None

    provider_value = provider.strip().lower()
    parsed_provider: Provider | None = None
    if provider_value:
        parsed_provider = provider_from_alias(provider_value)
        if parsed_provider is None:
            raise InputError("provider", provider_value, _valid_providers())

    return ForecastRequest(name=name, country=country, day=parsed_day, provider=parsed_provider)


class ConsoleDisambiguator:
    """Interactive city confirmation using rich prompts."""

    def __init__(self, console: Console) -> None:
        self.console = console

    def confirm(self, city: CityRecord) -> bool:
        return Confirm.ask(f"Do you mean {city.label}?", console=self.console)

    def choose(self, cities: Sequence[CityRecord], none_index: int) -> str:
        for index, city in enumerate(cities):
            self.console.print(f" {index}: {city.label}")
        self.console.print(f" {none_index}: None of the above")
        return Prompt.ask("Please choose a number from the above list", console=self.console)


def _print_error(console: Console, message: str, extra: str | None = None) -> None:
    console.print("-----", style="yellow")
    console.print(message)
    if extra:
        console.print(extra)
    console.print("Please check your spelling and try again.")
    console.print("Use quotation marks if any of your arguments contains more than one word.")
    console.print("-----", style="yellow")


def _print_forecasts(
    console: Console, city: CityRecord, forecasts: list[ForecastRecord]
) -> None:
    if not forecasts:
        _print_error(console, f"Sorry, no weather forecast could be found for {city.name}.")
        return

    table = Table(title=f"Weather for {city.label}")
    table.add_column("Provider")
    table.add_column("City")
    table.add_column("Date")
    table.add_column("Weather", overflow="fold")
    table.add_column("Avg °C", justify="right")
    for forecast in forecasts:
        average = forecast.average_temperature
        table.add_row(
            forecast.provider.display_name,
            forecast.city_name,
            forecast.forecast_date.isoformat(),
            forecast.weather,
            f"{average:g}" if average is not None else "-",
        )
    console.print(table)


def _print_quota(console: Console, report: list[QuotaDecision]) -> None:
    table = Table(title="Provider call quota (today)")
    table.add_column("Provider")
    table.add_column("Calls made", justify="right")
    table.add_column("Daily limit", justify="right")
    table.add_column("Available")
    for entry in report:
        table.add_row(
            entry.provider.display_name,
            str(entry.calls_made),
            str(entry.calls_allowed),
            "yes" if entry.allowed else "no",
        )
    console.print(table)


def _quota_limits(settings: Settings) -> dict[Provider, int]:
    return {provider: settings.provider_config(provider).daily_limit for provider in Provider}


def main(argv: Sequence[str] | None = None) -> int:
    """Run the forecast lookup flow."""
    args = parse_args(argv)
    logger = setup_logger()
    console = Console()
    session_id = uuid.uuid4().hex[:12]

    try:
        settings = load_settings()
    except ConfigError as exc:
        logger.error("Configuration failure: %s", exc)
        return 2
    logger.setLevel(settings.log_level)

    try:
        journal = JournalWriter(
            journal_dir=settings.journal_dir,
            raw_payload_dir=settings.raw_payload_dir,
            session_id=session_id,
        )
        journal.write_event("weather_startup", payload=settings.safe_summary())
        engine = create_engine_from_url(settings.database_url)
    except (JournalError, StoreError) as exc:
        logger.error("Failed to initialize journal or database: %s", exc)
        return 3
    try:
        init_db(engine)
    except StoreError as exc:
        logger.error("Failed to initialize database schema: %s", exc)
        engine.dispose()
        return 3

    exit_code = 0
    sessions = session_factory(engine)
    store = ForecastStore(sessions, logger)
    ledger = QuotaLedger(sessions, _quota_limits(settings), logger)
    try:
        if args.quota:
            _print_quota(console, ledger.usage_report())
        else:
            request = parse_request(args.city_name, args.day, args.provider)
            journal.write_event("weather_request_start", payload=request.model_dump(mode="json"))
            raw_journal = journal if settings.weather_journal_raw_payloads else None
            geocoder_interval = settings.min_interval_seconds(Provider.OPENCAGEDATA)
            with HttpTransport(settings.http_timeout_seconds, logger, raw_journal) as transport:
                geocoder = OpenCageGeocoder(
                    settings.provider_config(Provider.OPENCAGEDATA),
                    transport,
                    ledger,
                    logger,
                    min_interval_seconds=geocoder_interval,
                )
                resolver = CityResolver(store, geocoder, logger)
                city = resolver.resolve(
                    request.name, request.country, ConsoleDisambiguator(console)
                )

                logger.info(
                    "Fetching data for %s %s %s %s",
                    city.name,
                    request.country or "",
                    request.day.value,
                    request.provider.value if request.provider else "",
                )
                console.print(f"# Fetching {request.day.value}'s weather for {city.name}")
                orchestrator = ForecastOrchestrator(
                    store,
                    build_weather_providers(settings, transport, ledger, store, logger),
                    logger,
                    journal=journal,
                )
                forecasts = orchestrator.get_forecasts(city, request.day, request.provider)

            _print_forecasts(console, city, forecasts)
            journal.write_event(
                "weather_request_success",
                payload={"city_id": city.id, "forecast_count": len(forecasts)},
            )
    except InputError as exc:
        exit_code = 4
        _print_error(console, str(exc), f"Valid options are: {exc.valid}.")
        _journal_failure(journal, logger, "weather_request_failure", exc)
    except CityUnresolvedError as exc:
        exit_code = 4
        _print_error(console, str(exc))
        _journal_failure(journal, logger, "weather_request_failure", exc)
    except (StoreError, JournalError) as exc:
        exit_code = 3
        logger.error("Storage failure: %s", exc)
        _journal_failure(journal, logger, "weather_request_failure", exc)
    except Exception as exc:  # pragma: no cover
        exit_code = 99
        logger.exception("Unexpected weather CLI failure: %s", exc)
        _journal_failure(journal, logger, "weather_request_failure_unhandled", exc)
    finally:
        try:
            journal.write_event("weather_shutdown", payload={"exit_code": exit_code})
        except JournalError:
            logger.error("Failed to write weather_shutdown event.")
        engine.dispose()

    return exit_code


def _journal_failure(
    journal: JournalWriter, logger: logging.Logger, event_type: str, exc: Exception
) -> None:
    try:
        journal.write_event(event_type, payload=describe_error(exc))
    except JournalError:
        logger.error("Failed to write %s event.", event_type)


if __name__ == "__main__":
    sys.exit(main())
