"""HTTP transport shared by every provider adapter."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from .exceptions import JournalError, ProviderDataError, TransportError
from .journal import JournalWriter
from .redaction import sanitize_text


class Transport(Protocol):
    def fetch_json(self, url: str, *, provider: str, context: str) -> Any: ...


def build_url(base: str, params: dict[str, Any]) -> str:
    """Append query parameters to ``base``, skipping ``None`` values."""
    clean = {key: value for key, value in params.items() if value is not None}
    return str(httpx.URL(base, params=clean))


class HttpTransport:
    """Executes a single GET and decodes the JSON body. Never retries."""

    def __init__(
        self,
        timeout_seconds: float,
        logger: logging.Logger,
        journal: JournalWriter | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.logger = logger
        self._journal = journal
        self._client = client or httpx.Client(
            timeout=timeout_seconds,
            headers={"Accept": "application/json"},
            follow_redirects=True,
        )

    def __enter__(self) -> HttpTransport:
        return self

    def __exit__(self, exc_type: Any, exc: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def fetch_json(self, url: str, *, provider: str, context: str) -> Any:
        """Fetch ``url`` and return the decoded JSON document.

        Provider error bodies (4xx with a JSON payload) are returned as-is so
        adapters can read the provider's own error code and message.
        """
        self.logger.debug("GET %s", sanitize_text(url))
        try:
            response = self._client.get(url)
        except httpx.TimeoutException as exc:
            raise TransportError(
                f"{provider} {context} timed out at {sanitize_text(url)}",
                provider=provider,
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(
                f"{provider} {context} request failed at {sanitize_text(url)}: "
                f"{sanitize_text(str(exc))}",
                provider=provider,
            ) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            if response.is_error:
                raise TransportError(
                    f"{provider} {context} failed with status {response.status_code} "
                    f"at {sanitize_text(url)}: {sanitize_text(response.text[:300])}",
                    provider=provider,
                    status_code=response.status_code,
                ) from exc
            raise ProviderDataError(
                f"{provider} {context} returned non-JSON response at {sanitize_text(url)}.",
                provider=provider,
            ) from exc

        if response.is_error and not isinstance(payload, dict):
            raise TransportError(
                f"{provider} {context} failed with status {response.status_code} "
                f"at {sanitize_text(url)}",
                provider=provider,
                status_code=response.status_code,
            )

        self._snapshot(provider, context, payload)
        return payload

    def _snapshot(self, provider: str, context: str, payload: Any) -> None:
        if self._journal is None:
            return
        try:
            self._journal.write_raw_snapshot(provider, context, payload)
        except JournalError as exc:
            self.logger.warning("Failed writing raw payload snapshot: %s", exc)
