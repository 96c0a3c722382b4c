from __future__ import annotations

import pytest

import db
from core.envelope import build_envelope
from core.errors import InvalidFormatError
from core.events import Choice
from core.merge import import_envelope, incoming_timestamp, merge_events, resolve


def _entry(event_id: str, updated_at: int, **values):
    payload = {
        "id": event_id,
        "startAt": 1_000,
        "pain": 3,
        "createdAt": 1_000,
        "updatedAt": updated_at,
    }
    payload.update(values)
    return payload


def test_incoming_timestamp_prefers_updated_at():
    assert incoming_timestamp({"updatedAt": 5, "createdAt": 2}) == 5
    assert incoming_timestamp({"createdAt": 2}) == 2
    assert incoming_timestamp({}) == 0


def test_resolve_keeps_newer_local_copy(store):
    merge_events([_entry("e1", 5_000, pain=9)])
    existing = db.get_event("e1")

    assert resolve(_entry("e1", 5_000, pain=1), existing, now=9_000) is None
    assert resolve(_entry("e1", 4_000, pain=1), existing, now=9_000) is None

    winner = resolve({"id": "e1", "updatedAt": 6_000, "notes": "remote"}, existing, now=9_000)
    assert winner.notes == "remote"
    assert winner.pain == 9
    assert winner.updated_at == 6_000


def test_last_writer_wins_between_imports(store):
    merge_events([_entry("e1", 2_000, pain=2, notes="first")])

    older = merge_events([_entry("e1", 1_500, pain=8, notes="stale")])
    newer = merge_events([_entry("e1", 3_000, pain=6)])

    stored = db.get_event("e1")
    assert older.imported == 0
    assert newer.imported == 1
    assert stored.pain == 6
    assert stored.notes == "first"
    assert stored.updated_at == 3_000


def test_repeated_import_is_idempotent(store):
    entries = [_entry("e1", 2_000), _entry("e2", 2_500, symptomKey="other", symptomCustom="itch")]

    first = merge_events(entries)
    snapshot = db.fetch_all_events()
    second = merge_events(entries)

    assert first.imported == 2
    assert second.imported == 0
    assert db.fetch_all_events() == snapshot
    assert db.get_event("e2").symptom == Choice("other", "itch")


def test_entries_without_id_are_skipped(store):
    result = merge_events([{"startAt": 1}, _entry("e1", 2_000)])

    assert result.imported == 1
    assert result.skipped == 1
    assert db.count_events() == 1


def test_invalid_batch_leaves_store_unchanged(store):
    merge_events([_entry("keep", 1_000)])

    with pytest.raises(InvalidFormatError):
        merge_events([_entry("e1", 2_000), _entry("e2", 2_000, pain="high")])

    assert [event.id for event in db.fetch_all_events()] == ["keep"]


def test_export_import_round_trip(store, tmp_path):
    db.create_event({"pain": 4, "region_key": "knee", "trigger": Choice("other", "stairs")})
    db.create_event({"pain": 7, "side": "both"})
    envelope = build_envelope(db.fetch_all_events())
    original = db.fetch_all_events()

    db.set_database_path(tmp_path / "other.db")
    result = import_envelope(envelope)

    assert result.imported == 2
    assert db.fetch_all_events() == original


def test_import_envelope_rejects_unknown_schema(store):
    with pytest.raises(InvalidFormatError):
        import_envelope({"schemaVersion": 2, "events": [_entry("e1", 1)]})

    assert db.count_events() == 0


@pytest.mark.parametrize(
    "payload",
    [
        '{"schemaVersion": 1, "events": [{"id": "a", "startAt": NaN}]}',
        '{"schemaVersion": 1, "events": [{"id": "a", "startAt": 1, "updatedAt": Infinity}]}',
        '{"schemaVersion": 1, "events": [{"id": "a", "startAt": 100000000000000000000000000}]}',
        '{"schemaVersion": 1, "events": [{"id": "a", "startAt": 1, "pain": -1e300}]}',
    ],
)
def test_non_finite_or_oversized_numbers_are_invalid_format(store, payload):
    merge_events([_entry("keep", 1_000)])

    with pytest.raises(InvalidFormatError):
        import_envelope(payload)

    assert [event.id for event in db.fetch_all_events()] == ["keep"]


def test_partial_entry_merges_over_stored_record(store):
    merge_events([_entry("e1", 1_000, pain=4, notes="local")])

    result = merge_events([{"id": "e1", "updatedAt": 2_000, "notes": "remote"}])

    stored = db.get_event("e1")
    assert result.imported == 1
    assert stored.notes == "remote"
    assert stored.pain == 4
    assert stored.start_at == 1_000
    assert stored.updated_at == 2_000


def test_partial_entry_for_unknown_id_rolls_back_batch(store):
    merge_events([_entry("keep", 1_000)])

    with pytest.raises(InvalidFormatError):
        merge_events([_entry("new", 2_000), {"id": "ghost", "updatedAt": 2_000, "notes": "x"}])

    assert [event.id for event in db.fetch_all_events()] == ["keep"]
