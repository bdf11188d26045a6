"""OpenCage (api.opencagedata.com) forward geocoding."""

from __future__ import annotations

from typing import Any

from ..models import GeocodeCandidate, Provider
from ..transport import build_url
from .base import ProviderClient

GEOCODE_URL = "https://api.opencagedata.com/geocode/v1/json"
# Countries whose meaningful sub-national unit is the state/province.
STATE_REGION_COUNTRIES = frozenset({"us", "ca"})


class OpenCageGeocoder(ProviderClient):
    """Turns a place name into candidate cities, one metered call per lookup."""

    provider = Provider.OPENCAGEDATA

    def lookup(self, name: str, country: str | None = None) -> list[GeocodeCandidate]:
        """Return every parseable result for ``name`` (and ``country``)."""
        api_key = self._require_key()
        self._consume_quota()

        query = f"{name}, {country}" if country else name
        self.logger.info("Calling %s API for %s", self.name, query)
        payload = self._get(
            build_url(GEOCODE_URL, {"key": api_key, "q": query, "no_annotations": 1}),
            context="geocode",
        )

        self._raise_for_status(payload)
        results = self._dig(payload, "results")
        if not isinstance(results, list):
            raise self._fail(f"data not found for {query}")

        candidates: list[GeocodeCandidate] = []
        for result in results:
            candidate = self._candidate(result)
            if candidate is not None:
                candidates.append(candidate)
        self.logger.debug("%d geocoding candidates for %s", len(candidates), query)
        return candidates

    def _raise_for_status(self, payload: Any) -> None:
        status = payload.get("status") if isinstance(payload, dict) else None
        if isinstance(status, dict) and str(status.get("code", 200)) != "200":
            message = status.get("message") or f"error code {status.get('code')}"
            self.logger.warning("%s: %s", self.name, message)
            raise self._fail(str(message))

    def _candidate(self, result: Any) -> GeocodeCandidate | None:
        if not isinstance(result, dict):
            return None
        formatted = result.get("formatted")
        components = result.get("components")
        geometry = result.get("geometry")
        if not (
            isinstance(formatted, str)
            and isinstance(components, dict)
            and isinstance(geometry, dict)
        ):
            return None
        code = components.get("country_code")
        lat = self._optional_number(geometry.get("lat"))
        lon = self._optional_number(geometry.get("lng"))
        if not isinstance(code, str) or lat is None or lon is None:
            return None

        code = code.lower()
        if code not in STATE_REGION_COUNTRIES and components.get("county"):
            region = components["county"]
        else:
            region = components.get("state")

        return GeocodeCandidate(
            name=formatted.split(", ")[0].strip(),
            country=code.upper(),
            lat=round(lat, 2),
            lon=round(lon, 2),
            region=region or None,
        )
