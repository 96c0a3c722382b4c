"""SQLite-backed data access layer for PsA Logbook."""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from core import app_paths
from core.envelope import DAY_MS, ExportOptions, timeframe_range
from core.errors import EventNotFoundError
from core.events import CHOICE_FIELDS, Choice, EventFilter, EventRecord, new_event, now_ms

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Database path handling
# ---------------------------------------------------------------------------
_DEFAULT_DB_PATH = Path(
    os.environ.get("PSALOG_DB_PATH", str(app_paths.data_path("psalogbook.db")))
).resolve()
_DB_PATH = _DEFAULT_DB_PATH
DB_PATH = _DB_PATH

_SCHEMA_LOCK = threading.Lock()
_SCHEMA_READY = False

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------
EVENT_COLUMN_DEFINITIONS: Dict[str, str] = {
    "id": "TEXT PRIMARY KEY",
    "start_at": "INTEGER NOT NULL",
    "end_at": "INTEGER",
    "pain": "INTEGER NOT NULL DEFAULT 0",
    "region": "TEXT NOT NULL DEFAULT ''",
    "region_key": "TEXT",
    "joint_key": "TEXT",
    "symptom_key": "TEXT",
    "symptom_custom": "TEXT",
    "trigger_key": "TEXT",
    "trigger_custom": "TEXT",
    "action_key": "TEXT",
    "action_custom": "TEXT",
    "side": "TEXT NOT NULL DEFAULT ''",
    "drill1_key": "TEXT",
    "drill1_custom": "TEXT",
    "drill2_key": "TEXT",
    "drill2_custom": "TEXT",
    "notes": "TEXT NOT NULL DEFAULT ''",
    "created_at": "INTEGER NOT NULL",
    "updated_at": "INTEGER NOT NULL",
}

META_COLUMN_DEFINITIONS: Dict[str, str] = {
    "key": "TEXT PRIMARY KEY",
    "value": "TEXT NOT NULL",
}


class MetaKey(str, Enum):
    """Keys of the metadata table."""

    DRIVE_FOLDER_ID = "driveFolderId"
    DRIVE_FILE_ID = "driveFileId"
    LAST_BACKUP_AT = "lastBackupAt"
    LAST_RESTORE_AT = "lastRestoreAt"


_EVENT_LISTENERS: List[Callable[[str], None]] = []
_LISTENER_LOCK = threading.Lock()

# ---------------------------------------------------------------------------
# Database helpers
# ---------------------------------------------------------------------------

def set_database_path(path: Path) -> None:
    """Override the SQLite file used for storage."""

    global _DB_PATH, DB_PATH, _SCHEMA_READY
    _DB_PATH = Path(path).resolve()
    DB_PATH = _DB_PATH
    _SCHEMA_READY = False


def _ensure_schema(conn: sqlite3.Connection) -> None:
    event_columns = ",\n        ".join(
        f"{column} {definition}" for column, definition in EVENT_COLUMN_DEFINITIONS.items()
    )
    conn.execute(f"CREATE TABLE IF NOT EXISTS events (\n        {event_columns}\n    )")

    existing = {row[1] for row in conn.execute("PRAGMA table_info(events)")}
    for column, definition in EVENT_COLUMN_DEFINITIONS.items():
        if column not in existing:
            conn.execute(f"ALTER TABLE events ADD COLUMN {column} {definition}")

    meta_columns = ",\n        ".join(
        f"{column} {definition}" for column, definition in META_COLUMN_DEFINITIONS.items()
    )
    conn.execute(f"CREATE TABLE IF NOT EXISTS meta (\n        {meta_columns}\n    )")

    conn.execute("CREATE INDEX IF NOT EXISTS idx_events_start_at ON events(start_at)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_events_region_key ON events(region_key)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_events_pain ON events(pain)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_events_updated_at ON events(updated_at)")


def _ensure_database() -> None:
    global _SCHEMA_READY
    if _SCHEMA_READY:
        return
    with _SCHEMA_LOCK:
        if _SCHEMA_READY:
            return
        if _DB_PATH.parent:
            _DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(_DB_PATH)
        try:
            _ensure_schema(conn)
            conn.commit()
        finally:
            conn.close()
        _SCHEMA_READY = True
        logger.debug("Database ready at %s", _DB_PATH)


def get_connection() -> sqlite3.Connection:
    _ensure_database()
    conn = sqlite3.connect(_DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    conn = get_connection()
    try:
        conn.execute("BEGIN")
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


@contextmanager
def _reading() -> Iterator[sqlite3.Connection]:
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


def initialize_database() -> Path:
    _ensure_database()
    return _DB_PATH


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------

def _event_to_row(event: EventRecord) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "id": event.id,
        "start_at": event.start_at,
        "end_at": event.end_at,
        "pain": event.pain,
        "region": event.region,
        "region_key": event.region_key,
        "joint_key": event.joint_key,
        "side": event.side,
        "notes": event.notes,
        "created_at": event.created_at,
        "updated_at": event.updated_at,
    }
    for name in CHOICE_FIELDS:
        choice: Optional[Choice] = getattr(event, name)
        row[f"{name}_key"] = choice.key if choice else None
        row[f"{name}_custom"] = choice.custom_text if choice else None
    return row


def _row_to_event(row: sqlite3.Row) -> EventRecord:
    record = dict(row)
    choices = {}
    for name in CHOICE_FIELDS:
        key = record.get(f"{name}_key")
        choices[name] = Choice(key, record.get(f"{name}_custom")) if key else None
    return EventRecord(
        id=record["id"],
        start_at=int(record["start_at"]),
        end_at=record.get("end_at"),
        pain=int(record.get("pain") or 0),
        region=record.get("region") or "",
        region_key=record.get("region_key"),
        joint_key=record.get("joint_key"),
        side=record.get("side") or "",
        notes=record.get("notes") or "",
        created_at=int(record["created_at"]),
        updated_at=int(record["updated_at"]),
        **choices,
    )


def fetch_event_row(conn: sqlite3.Connection, event_id: str) -> Optional[EventRecord]:
    """Return the stored record for ``event_id`` using an open connection."""

    cursor = conn.execute("SELECT * FROM events WHERE id = ?", (event_id,))
    row = cursor.fetchone()
    return _row_to_event(row) if row else None


def write_event_row(conn: sqlite3.Connection, event: EventRecord) -> None:
    """Insert or fully replace ``event`` using an open connection."""

    payload = _event_to_row(event)
    columns = list(payload.keys())
    placeholders = ", ".join(["?" for _ in columns])
    sql = f"INSERT OR REPLACE INTO events ({', '.join(columns)}) VALUES ({placeholders})"
    conn.execute(sql, [payload[column] for column in columns])


# ---------------------------------------------------------------------------
# Change listeners
# ---------------------------------------------------------------------------

def notify_event_changed(event_id: str) -> None:
    with _LISTENER_LOCK:
        listeners = list(_EVENT_LISTENERS)
    for listener in listeners:
        try:
            listener(event_id)
        except Exception:
            logger.exception("Event listener raised an exception")


def add_event_listener(listener: Callable[[str], None]) -> None:
    if not callable(listener):
        raise TypeError("listener must be callable")
    with _LISTENER_LOCK:
        if listener not in _EVENT_LISTENERS:
            _EVENT_LISTENERS.append(listener)


def remove_event_listener(listener: Callable[[str], None]) -> None:
    with _LISTENER_LOCK:
        if listener in _EVENT_LISTENERS:
            _EVENT_LISTENERS.remove(listener)


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------

def generate_event_id() -> str:
    return str(uuid.uuid4())


def create_event(values: Mapping[str, Any]) -> EventRecord:
    event = new_event(generate_event_id(), values, now=now_ms())
    with transaction() as conn:
        write_event_row(conn, event)
    logger.debug("Created event %s", event.id)
    notify_event_changed(event.id)
    return event


def update_event(event_id: str, values: Mapping[str, Any]) -> EventRecord:
    with transaction() as conn:
        current = fetch_event_row(conn, event_id)
        if current is None:
            raise EventNotFoundError(event_id)
        updated = current.with_values(values)
        stamp = max(now_ms(), current.updated_at)
        updated = replace(updated, updated_at=stamp)
        write_event_row(conn, updated)
    notify_event_changed(event_id)
    return updated


def delete_event(event_id: str) -> None:
    with transaction() as conn:
        cursor = conn.execute("DELETE FROM events WHERE id = ?", (event_id,))
        removed = cursor.rowcount
    if removed:
        logger.debug("Deleted event %s", event_id)
        notify_event_changed(event_id)


def get_event(event_id: str) -> Optional[EventRecord]:
    with _reading() as conn:
        return fetch_event_row(conn, event_id)


def list_events(filters: Optional[EventFilter] = None) -> List[EventRecord]:
    """Return events matching ``filters``, newest first."""

    filters = filters or EventFilter()
    clauses: List[str] = ["pain >= ?"]
    params: List[Any] = [int(filters.min_pain or 0)]
    if filters.days and filters.days > 0:
        clauses.append("start_at >= ?")
        params.append(now_ms() - int(filters.days) * DAY_MS)
    if filters.region_key:
        clauses.append("region_key = ?")
        params.append(filters.region_key)
    if filters.joint_key:
        clauses.append("joint_key = ?")
        params.append(filters.joint_key)
    sql = f"SELECT * FROM events WHERE {' AND '.join(clauses)} ORDER BY start_at DESC, id"
    with _reading() as conn:
        return [_row_to_event(row) for row in conn.execute(sql, params).fetchall()]


def list_events_for_export(options: Optional[ExportOptions] = None) -> List[EventRecord]:
    """Return events inside the export window, oldest first."""

    options = options or ExportOptions()
    start, end = timeframe_range(options.timeframe)
    clauses: List[str] = ["start_at <= ?"]
    params: List[Any] = [end]
    if start is not None:
        clauses.append("start_at >= ?")
        params.append(start)
    if options.region_key:
        clauses.append("region_key = ?")
        params.append(options.region_key)
    if options.joint_key:
        clauses.append("joint_key = ?")
        params.append(options.joint_key)
    sql = f"SELECT * FROM events WHERE {' AND '.join(clauses)} ORDER BY start_at ASC, id"
    with _reading() as conn:
        return [_row_to_event(row) for row in conn.execute(sql, params).fetchall()]


def fetch_all_events() -> List[EventRecord]:
    """Return the whole collection without any filtering, oldest first."""

    with _reading() as conn:
        cursor = conn.execute("SELECT * FROM events ORDER BY start_at ASC, id")
        return [_row_to_event(row) for row in cursor.fetchall()]


def count_events() -> int:
    with _reading() as conn:
        return int(conn.execute("SELECT COUNT(*) FROM events").fetchone()[0] or 0)


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------

def get_meta(key: MetaKey) -> Optional[str]:
    with _reading() as conn:
        row = conn.execute("SELECT value FROM meta WHERE key = ?", (MetaKey(key).value,)).fetchone()
        return str(row["value"]) if row else None


def set_meta(key: MetaKey, value: Optional[str]) -> None:
    with transaction() as conn:
        if value is None:
            conn.execute("DELETE FROM meta WHERE key = ?", (MetaKey(key).value,))
        else:
            conn.execute(
                "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
                (MetaKey(key).value, str(value)),
            )


def get_meta_number(key: MetaKey) -> Optional[int]:
    value = get_meta(key)
    if value is None:
        return None
    try:
        return int(float(value))
    except ValueError:
        return None


def set_meta_number(key: MetaKey, value: Optional[int]) -> None:
    set_meta(key, None if value is None else str(int(value)))


def clear_meta(*keys: MetaKey) -> None:
    """Remove the given metadata entries, or all of them when none are given."""

    with transaction() as conn:
        if not keys:
            conn.execute("DELETE FROM meta")
            return
        for key in keys:
            conn.execute("DELETE FROM meta WHERE key = ?", (MetaKey(key).value,))


# ---------------------------------------------------------------------------
# Module exports
# ---------------------------------------------------------------------------

__all__ = [
    "DB_PATH",
    "EVENT_COLUMN_DEFINITIONS",
    "META_COLUMN_DEFINITIONS",
    "MetaKey",
    "add_event_listener",
    "clear_meta",
    "count_events",
    "create_event",
    "delete_event",
    "fetch_all_events",
    "fetch_event_row",
    "generate_event_id",
    "get_connection",
    "get_event",
    "get_meta",
    "get_meta_number",
    "initialize_database",
    "list_events",
    "list_events_for_export",
    "notify_event_changed",
    "remove_event_listener",
    "set_database_path",
    "set_meta",
    "set_meta_number",
    "transaction",
    "update_event",
    "write_event_row",
]
