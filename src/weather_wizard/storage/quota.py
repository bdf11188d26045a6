"""Per-provider daily call budget."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import date

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ..exceptions import ConfigMissingError
from ..models import Provider, QuotaDecision
from .database import transaction
from .schema import QuotaEntryRow

# Calls held back from every ceiling to absorb races and provider-side
# off-by-one accounting.
SAFETY_MARGIN = 2


class QuotaLedger:
    """Tracks calls made against each provider's daily ceiling.

    A call is counted when it is attempted, whether or not the provider
    returns usable data.
    """

    def __init__(
        self,
        sessions: sessionmaker[Session],
        limits: Mapping[Provider, int],
        logger: logging.Logger,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._sessions = sessions
        self._limits = dict(limits)
        self.logger = logger
        self._today = today

    def check_and_consume(self, provider: Provider) -> QuotaDecision:
        """Reserve one call for ``provider`` today, unless the budget is spent."""
        day = self._today()
        self._ensure_entry(provider, day)

        with transaction(self._sessions) as session:
            result = session.execute(
                update(QuotaEntryRow)
                .where(
                    QuotaEntryRow.quota_date == day,
                    QuotaEntryRow.provider == provider.value,
                    QuotaEntryRow.calls_made < QuotaEntryRow.calls_allowed - SAFETY_MARGIN,
                )
                .values(calls_made=QuotaEntryRow.calls_made + 1)
                .execution_options(synchronize_session=False)
            )
            consumed = result.rowcount == 1
            calls_made, calls_allowed = session.execute(
                select(QuotaEntryRow.calls_made, QuotaEntryRow.calls_allowed).where(
                    QuotaEntryRow.quota_date == day,
                    QuotaEntryRow.provider == provider.value,
                )
            ).one()

        if consumed:
            self.logger.info(
                "%s: %d of %d calls made",
                provider.value,
                calls_made,
                calls_allowed,
                extra={"provider": provider},
            )
        else:
            self.logger.info(
                "%s - Rate limit reached!", provider.value, extra={"provider": provider}
            )
        return QuotaDecision(
            provider=provider,
            allowed=consumed,
            calls_made=calls_made,
            calls_allowed=calls_allowed,
        )

    def usage(self, provider: Provider) -> QuotaDecision:
        """Read today's usage without consuming anything."""
        day = self._today()
        with transaction(self._sessions) as session:
            row = session.execute(
                select(QuotaEntryRow.calls_made, QuotaEntryRow.calls_allowed).where(
                    QuotaEntryRow.quota_date == day,
                    QuotaEntryRow.provider == provider.value,
                )
            ).first()
        if row is None:
            calls_made, calls_allowed = 0, self._limit_for(provider)
        else:
            calls_made, calls_allowed = row
        return QuotaDecision(
            provider=provider,
            allowed=calls_made < calls_allowed - SAFETY_MARGIN,
            calls_made=calls_made,
            calls_allowed=calls_allowed,
        )

    def usage_report(self) -> list[QuotaDecision]:
        return [self.usage(provider) for provider in Provider if provider in self._limits]

    def _limit_for(self, provider: Provider) -> int:
        try:
            return self._limits[provider]
        except KeyError:
            raise ConfigMissingError(
                f"No daily call limit configured for {provider.value}",
                provider=provider.value,
            ) from None

    def _ensure_entry(self, provider: Provider, day: date) -> None:
        limit = self._limit_for(provider)
        try:
            with transaction(self._sessions) as session:
                existing = session.scalar(
                    select(QuotaEntryRow.id).where(
                        QuotaEntryRow.quota_date == day,
                        QuotaEntryRow.provider == provider.value,
                    )
                )
                if existing is not None:
                    return
                self.logger.debug("Creating new quota entry for %s", provider.value)
                session.add(
                    QuotaEntryRow(
                        quota_date=day,
                        provider=provider.value,
                        calls_made=0,
                        calls_allowed=limit,
                    )
                )
        except IntegrityError:
            self.logger.debug("Quota entry for %s created concurrently", provider.value)
