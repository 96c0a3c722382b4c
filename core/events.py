"""Event record model shared by the store, the envelope and the merge."""
from __future__ import annotations

import math
import time
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional, Tuple

from core.errors import InvalidFormatError

# Sentinel key supplied by the taxonomy for "other, please specify" options.
OTHER_KEY = "other"

CHOICE_FIELDS: Tuple[str, ...] = ("symptom", "trigger", "action", "drill1", "drill2")

SYSTEM_FIELDS: Tuple[str, ...] = ("id", "created_at", "updated_at")

# SQLite INTEGER bounds.
MIN_WIRE_INT = -(2**63)
MAX_WIRE_INT = 2**63 - 1

WIRE_INT_FIELDS: Tuple[str, ...] = ("startAt", "endAt", "pain", "createdAt", "updatedAt")
WIRE_TEXT_FIELDS: Tuple[str, ...] = ("region", "regionKey", "jointKey", "side", "notes") + tuple(
    f"{name}{suffix}" for name in CHOICE_FIELDS for suffix in ("Key", "Custom")
)


def now_ms() -> int:
    """Return the current instant in epoch milliseconds."""

    return int(time.time() * 1000)


@dataclass(frozen=True)
class Choice:
    """A categorical key, optionally carrying free text for the ``other`` key.

    ``custom_text`` is only kept when ``key`` is :data:`OTHER_KEY`; for any
    vocabulary key it is discarded on construction.
    """

    key: str
    custom_text: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.key, str) or not self.key:
            raise ValueError("Choice key must be a non-empty string")
        if self.key != OTHER_KEY and self.custom_text is not None:
            object.__setattr__(self, "custom_text", None)

    @property
    def is_other(self) -> bool:
        return self.key == OTHER_KEY

    @classmethod
    def coerce(cls, value: Any) -> Optional["Choice"]:
        if value is None or isinstance(value, Choice):
            return value
        if isinstance(value, str):
            return cls(value) if value else None
        if isinstance(value, Mapping):
            key = value.get("key")
            if not key:
                return None
            return cls(str(key), value.get("custom_text"))
        raise TypeError(f"Cannot build a Choice from {type(value).__name__}")


@dataclass(frozen=True)
class EventRecord:
    """A single logbook entry. Timestamps are epoch milliseconds."""

    id: str
    start_at: int
    created_at: int
    updated_at: int
    end_at: Optional[int] = None
    pain: int = 0
    region: str = ""
    region_key: Optional[str] = None
    joint_key: Optional[str] = None
    symptom: Optional[Choice] = None
    trigger: Optional[Choice] = None
    action: Optional[Choice] = None
    side: str = ""
    drill1: Optional[Choice] = None
    drill2: Optional[Choice] = None
    notes: str = ""

    def with_values(self, values: Mapping[str, Any]) -> "EventRecord":
        """Return a copy with ``values`` shallow-merged over editable fields."""

        changes = _normalise_values(values)
        return replace(self, **changes)

    def to_wire(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "startAt": self.start_at,
            "endAt": self.end_at,
            "pain": self.pain,
            "region": self.region,
            "regionKey": self.region_key,
            "jointKey": self.joint_key,
        }
        for name in CHOICE_FIELDS:
            choice: Optional[Choice] = getattr(self, name)
            payload[f"{name}Key"] = choice.key if choice else None
            payload[f"{name}Custom"] = choice.custom_text if choice else None
        payload["side"] = self.side
        payload["notes"] = self.notes
        payload["createdAt"] = self.created_at
        payload["updatedAt"] = self.updated_at
        return payload

    @classmethod
    def from_wire(cls, data: Mapping[str, Any], *, now: Optional[int] = None) -> "EventRecord":
        """Build a record from its exported JSON form.

        Missing ``createdAt``/``updatedAt`` fall back to each other and then to
        ``now``. Any malformed field raises :class:`InvalidFormatError`.
        """

        if not isinstance(data, Mapping):
            raise InvalidFormatError("Event entries must be JSON objects")
        event_id = data.get("id")
        if not isinstance(event_id, str) or not event_id:
            raise InvalidFormatError("Event is missing an id")

        fallback = now if now is not None else now_ms()
        created_at = _wire_int(data, "createdAt", optional=True)
        updated_at = _wire_int(data, "updatedAt", optional=True)
        if created_at is None:
            created_at = updated_at if updated_at is not None else fallback
        if updated_at is None:
            updated_at = created_at

        choices = {name: _wire_choice(data, name) for name in CHOICE_FIELDS}
        return cls(
            id=event_id,
            start_at=_wire_int(data, "startAt"),
            end_at=_wire_int(data, "endAt", optional=True),
            pain=_wire_int(data, "pain", optional=True) or 0,
            region=_wire_text(data, "region") or "",
            region_key=_wire_text(data, "regionKey"),
            joint_key=_wire_text(data, "jointKey"),
            side=_wire_text(data, "side") or "",
            notes=_wire_text(data, "notes") or "",
            created_at=created_at,
            updated_at=updated_at,
            **choices,
        )


@dataclass
class EventFilter:
    """Listing filter: every populated criterion must match."""

    min_pain: int = 0
    days: Optional[int] = None
    region_key: Optional[str] = None
    joint_key: Optional[str] = None


EDITABLE_FIELDS: Tuple[str, ...] = tuple(
    item.name for item in fields(EventRecord) if item.name not in SYSTEM_FIELDS
)


def _normalise_values(values: Mapping[str, Any]) -> Dict[str, Any]:
    changes: Dict[str, Any] = {}
    for key, value in values.items():
        if key not in EDITABLE_FIELDS:
            continue
        if key in CHOICE_FIELDS:
            changes[key] = Choice.coerce(value)
        elif key in ("start_at", "end_at", "pain"):
            changes[key] = None if value is None else int(value)
        elif key in ("region", "side", "notes"):
            changes[key] = "" if value is None else str(value)
        else:
            changes[key] = None if value in (None, "") else str(value)
    if "start_at" in changes and changes["start_at"] is None:
        raise ValueError("start_at cannot be cleared")
    if "pain" in changes and changes["pain"] is None:
        changes["pain"] = 0
    return changes


def new_event(event_id: str, values: Mapping[str, Any], *, now: int) -> EventRecord:
    """Build a fresh record stamped with ``now``."""

    changes = _normalise_values(values)
    changes.setdefault("start_at", now)
    return EventRecord(id=event_id, created_at=now, updated_at=now, **changes)


def _wire_int(data: Mapping[str, Any], key: str, *, optional: bool = False) -> Optional[int]:
    value = data.get(key)
    if value is None:
        if optional:
            return None
        raise InvalidFormatError(f"Event field '{key}' is required")
    return coerce_wire_int(value, key)


def coerce_wire_int(value: Any, key: str) -> int:
    """Convert a JSON number to an integer that fits a SQLite INTEGER column."""

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidFormatError(f"Event field '{key}' must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidFormatError(f"Event field '{key}' must be a finite number")
    number = int(value)
    if not MIN_WIRE_INT <= number <= MAX_WIRE_INT:
        raise InvalidFormatError(f"Event field '{key}' is out of range")
    return number


def validate_wire(data: Any) -> None:
    """Check the type of every field present in ``data``.

    Unlike :meth:`EventRecord.from_wire` no field is required, so partial
    entries meant to be merged over a stored record pass.
    """

    if not isinstance(data, Mapping):
        raise InvalidFormatError("Event entries must be JSON objects")
    event_id = data.get("id")
    if event_id is not None and not isinstance(event_id, str):
        raise InvalidFormatError("Event id must be a string")
    for key in WIRE_INT_FIELDS:
        _wire_int(data, key, optional=True)
    for key in WIRE_TEXT_FIELDS:
        _wire_text(data, key)


def _wire_text(data: Mapping[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidFormatError(f"Event field '{key}' must be a string")
    return value


def _wire_choice(data: Mapping[str, Any], name: str) -> Optional[Choice]:
    key = _wire_text(data, f"{name}Key")
    custom = _wire_text(data, f"{name}Custom")
    if not key:
        return None
    return Choice(key, custom)


__all__ = [
    "CHOICE_FIELDS",
    "Choice",
    "EDITABLE_FIELDS",
    "EventFilter",
    "EventRecord",
    "MAX_WIRE_INT",
    "MIN_WIRE_INT",
    "OTHER_KEY",
    "coerce_wire_int",
    "new_event",
    "now_ms",
    "validate_wire",
]
