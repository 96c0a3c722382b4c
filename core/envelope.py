"""Versioned JSON envelope used for exports, imports and Drive backups."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from core.errors import InvalidFormatError
from core.events import EventRecord, now_ms

SCHEMA_VERSION = 1
DAY_MS = 24 * 60 * 60 * 1000

TIMEFRAME_DAYS: Mapping[str, Optional[int]] = {
    "all": None,
    "year": 365,
    "m6": 183,
    "month": 30,
    "week": 7,
}


@dataclass
class ExportOptions:
    """Filter echoed into the envelope ``options`` field."""

    timeframe: str = "all"
    region_key: Optional[str] = None
    joint_key: Optional[str] = None

    def __post_init__(self) -> None:
        if self.timeframe not in TIMEFRAME_DAYS:
            raise ValueError(f"Unknown timeframe: {self.timeframe}")

    def to_wire(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"timeframe": self.timeframe}
        if self.region_key:
            payload["regionKey"] = self.region_key
        if self.joint_key:
            payload["jointKey"] = self.joint_key
        return payload


def timeframe_range(timeframe: str, *, now: Optional[int] = None) -> Tuple[Optional[int], int]:
    """Return the ``(start, end)`` epoch-ms window for ``timeframe``.

    ``start`` is ``None`` for the unbounded ``all`` timeframe.
    """

    if timeframe not in TIMEFRAME_DAYS:
        raise ValueError(f"Unknown timeframe: {timeframe}")
    end = now if now is not None else now_ms()
    days = TIMEFRAME_DAYS[timeframe]
    if days is None:
        return None, end
    return end - days * DAY_MS, end


def build_envelope(
    events: Sequence[EventRecord],
    options: Optional[ExportOptions] = None,
    *,
    exported_at: Optional[int] = None,
) -> Dict[str, Any]:
    return {
        "schemaVersion": SCHEMA_VERSION,
        "exportedAt": exported_at if exported_at is not None else now_ms(),
        "options": (options or ExportOptions()).to_wire(),
        "events": [event.to_wire() for event in events],
    }


def serialise_envelope(envelope: Mapping[str, Any], *, indent: Optional[int] = None) -> str:
    return json.dumps(envelope, ensure_ascii=False, indent=indent)


def parse_envelope(payload: Any) -> List[Mapping[str, Any]]:
    """Validate an envelope and return its raw event entries.

    ``payload`` may be the decoded mapping, or JSON text/bytes. Anything other
    than a schema version 1 envelope with an ``events`` list raises
    :class:`InvalidFormatError`.
    """

    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise InvalidFormatError(f"Backup is not valid UTF-8: {exc}") from exc
    if isinstance(payload, str):
        text = payload.strip()
        if not text:
            raise InvalidFormatError("Backup content is empty")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise InvalidFormatError(f"Backup is not valid JSON: {exc.msg}") from exc

    if not isinstance(payload, Mapping):
        raise InvalidFormatError("Invalid import payload")
    version = payload.get("schemaVersion")
    if isinstance(version, bool) or version != SCHEMA_VERSION:
        raise InvalidFormatError(f"Unsupported schema version: {version!r}")
    events = payload.get("events")
    if not isinstance(events, list):
        raise InvalidFormatError("Invalid import payload: 'events' must be a list")
    for entry in events:
        if not isinstance(entry, Mapping):
            raise InvalidFormatError("Invalid import payload: events must be objects")
    return events


__all__ = [
    "DAY_MS",
    "ExportOptions",
    "SCHEMA_VERSION",
    "TIMEFRAME_DAYS",
    "build_envelope",
    "parse_envelope",
    "serialise_envelope",
    "timeframe_range",
]
