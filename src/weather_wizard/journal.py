"""Append-only JSONL journaling of forecast requests and raw provider payloads."""

from __future__ import annotations

import json
from datetime import UTC, date, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from .exceptions import JournalError, TransportError, WeatherProviderError
from .redaction import sanitize_for_logging, sanitize_text


def _json_default(value: Any) -> Any:
    """Fallback serializer for dates, enums and models found in event payloads."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC).isoformat()
        return value.astimezone(UTC).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return sanitize_for_logging(value.model_dump(mode="json"))
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _safe_segment(text: str) -> str:
    return "".join(ch if ch.isalnum() or ch in {"-", "_"} else "_" for ch in text) or "unknown"


class JournalWriter:
    """Writes request events to one JSONL file per UTC day.

    Raw provider payloads, when enabled, land in one folder per provider so
    a single source's responses can be replayed or diffed on their own.
    """

    def __init__(self, journal_dir: Path, raw_payload_dir: Path, session_id: str) -> None:
        self.journal_dir = journal_dir
        self.raw_payload_dir = raw_payload_dir
        self.session_id = session_id
        try:
            self.journal_dir.mkdir(parents=True, exist_ok=True)
            self.raw_payload_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise JournalError(f"Failed creating journal directories: {exc}") from exc
        self.events_path = self.journal_dir / f"weather_{datetime.now(UTC):%Y%m%d}.jsonl"

    def write_event(self, event_type: str, payload: dict[str, Any]) -> None:
        """Append a single event record to the JSONL journal."""
        record: dict[str, Any] = {
            "ts": datetime.now(UTC).isoformat(),
            "event_type": event_type,
            "session_id": self.session_id,
            "payload": sanitize_for_logging(payload),
        }
        try:
            line = json.dumps(record, default=_json_default)
            with self.events_path.open("a", encoding="utf-8") as fh:
                fh.write(line)
                fh.write("\n")
        except (OSError, TypeError, ValueError) as exc:
            raise JournalError(f"Failed writing event journal: {exc}") from exc

    def write_raw_snapshot(self, provider: str, context: str, payload: Any) -> Path:
        """Write one provider response under ``raw_payload_dir/<provider>/``."""
        timestamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S%fZ")
        folder = self.raw_payload_dir / _safe_segment(provider)
        output_path = folder / f"{timestamp}_{self.session_id}_{_safe_segment(context)}.json"
        try:
            folder.mkdir(parents=True, exist_ok=True)
            with output_path.open("w", encoding="utf-8") as fh:
                json.dump(
                    sanitize_for_logging(payload),
                    fh,
                    ensure_ascii=False,
                    indent=2,
                    default=_json_default,
                )
                fh.write("\n")
        except (OSError, TypeError, ValueError) as exc:
            raise JournalError(f"Failed writing raw payload snapshot: {exc}") from exc
        return output_path


def describe_error(exc: Exception) -> dict[str, Any]:
    """Build a journal-safe description of an exception."""
    described: dict[str, Any] = {"error": sanitize_text(str(exc)), "type": type(exc).__name__}
    if isinstance(exc, WeatherProviderError) and exc.provider:
        described["provider"] = exc.provider
    if isinstance(exc, TransportError) and exc.status_code is not None:
        described["status_code"] = exc.status_code
    return described
