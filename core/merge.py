"""Last-writer-wins reconciliation of imported events against the local store."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence

import db
from core.envelope import parse_envelope
from core.errors import InvalidFormatError
from core.events import EventRecord, coerce_wire_int, now_ms, validate_wire

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    imported: int = 0
    skipped: int = 0


def incoming_timestamp(entry: Mapping[str, Any]) -> int:
    """Return ``updatedAt``, falling back to ``createdAt`` and then zero."""

    for key in ("updatedAt", "createdAt"):
        value = entry.get(key)
        if value is not None:
            return coerce_wire_int(value, key)
    return 0


def resolve(
    entry: Mapping[str, Any],
    existing: Optional[EventRecord],
    *,
    now: int,
) -> Optional[EventRecord]:
    """Decide what to store for one incoming entry.

    Returns the record to write, or ``None`` when the stored copy wins.
    """

    if existing is None:
        return EventRecord.from_wire(entry, now=now)

    if incoming_timestamp(entry) <= existing.updated_at:
        return None

    merged = existing.to_wire()
    merged.update(entry)
    updated_at = entry.get("updatedAt")
    merged["updatedAt"] = updated_at if updated_at is not None else now
    return EventRecord.from_wire(merged, now=now)


def _validate_batch(entries: Any) -> List[Mapping[str, Any]]:
    if not isinstance(entries, list):
        raise InvalidFormatError("Invalid import payload: events must be a list")
    accepted: List[Mapping[str, Any]] = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            raise InvalidFormatError("Invalid import payload: events must be objects")
        if not entry.get("id"):
            continue
        validate_wire(entry)
        accepted.append(entry)
    return accepted


def merge_events(entries: Sequence[Mapping[str, Any]]) -> ImportResult:
    """Apply ``entries`` to the store inside a single transaction.

    Field types are checked for the whole batch before anything is written.
    An entry for an unknown id must be a complete record; an entry for a
    stored id only needs the fields it changes. Any failure rolls back.
    """

    now = now_ms()
    accepted = _validate_batch(entries)
    result = ImportResult(skipped=len(entries) - len(accepted))
    changed: List[str] = []

    with db.transaction() as conn:
        for entry in accepted:
            existing = db.fetch_event_row(conn, str(entry["id"]))
            record = resolve(entry, existing, now=now)
            if record is None:
                result.skipped += 1
                continue
            db.write_event_row(conn, record)
            changed.append(record.id)
            result.imported += 1

    for event_id in changed:
        db.notify_event_changed(event_id)
    logger.info("Merged %s event(s), %s unchanged", result.imported, result.skipped)
    return result


def import_envelope(payload: Any) -> ImportResult:
    """Validate an export envelope (mapping, text or bytes) and merge it."""

    return merge_events(parse_envelope(payload))


__all__ = ["ImportResult", "import_envelope", "incoming_timestamp", "merge_events", "resolve"]
