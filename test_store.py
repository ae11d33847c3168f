#!/usr/bin/env python3
"""
Unit tests for the JSON entry store.
"""

import dataclasses
import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

import store as store_module
from common import STORE_FILE_NAME
from store import DuplicateKeyError, Entry, EntryNotFoundError, EntryStore


logging.basicConfig(level=logging.WARNING)

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _entry(key: str, fingerprint: str = "0123456789abcdef", offset: int = 0) -> Entry:
    when = T0 + timedelta(minutes=offset)
    return Entry(
        key=key,
        fingerprint=fingerprint,
        fingerprint_time=when,
        last_good_check=when,
        last_modified=when - timedelta(days=1),
        created=None,
    )


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / STORE_FILE_NAME


def test_construction_creates_empty_store_file(db_path: Path):
    EntryStore(db_path)
    assert json.loads(db_path.read_text(encoding="utf-8")) == []


def test_round_trip_persistence(db_path: Path):
    entries = [_entry("a.txt"), _entry("nested/b.bin", "fedcba9876543210", 5), _entry("c.txt", offset=9)]
    with EntryStore(db_path) as db:
        for entry in entries:
            db.insert(entry)

    reopened = EntryStore(db_path)
    assert reopened.list_entries() == sorted(entries, key=lambda e: e.key)
    assert reopened.get("nested/b.bin").fingerprint_time == T0 + timedelta(minutes=5)
    assert reopened.get("a.txt").created is None


def test_store_file_is_readable_json(db_path: Path):
    with EntryStore(db_path) as db:
        db.insert(_entry("a.txt"))

    records = json.loads(db_path.read_text(encoding="utf-8"))
    assert records == [
        {
            "key": "a.txt",
            "fingerprint": "0123456789abcdef",
            "fingerprint_time": T0.isoformat(),
            "last_good_check": T0.isoformat(),
            "last_modified": (T0 - timedelta(days=1)).isoformat(),
            "created": None,
        }
    ]


def test_insert_duplicate_key_raises(db_path: Path):
    db = EntryStore(db_path)
    db.insert(_entry("a.txt"))
    with pytest.raises(DuplicateKeyError):
        db.insert(_entry("a.txt", "ffffffffffffffff"))
    assert db.get("a.txt").fingerprint == "0123456789abcdef"


def test_insert_empty_key_raises(db_path: Path):
    with pytest.raises(ValueError):
        EntryStore(db_path).insert(_entry(""))


def test_update_absent_key_raises(db_path: Path):
    with pytest.raises(EntryNotFoundError):
        EntryStore(db_path).update(_entry("ghost.txt"))


def test_update_overwrites_fingerprint_and_times(db_path: Path):
    db = EntryStore(db_path)
    db.insert(_entry("a.txt"))
    later = T0 + timedelta(hours=3)
    updated = db.update(
        dataclasses.replace(_entry("a.txt"), fingerprint="1111111111111111",
                            fingerprint_time=later, last_good_check=later)
    )
    assert updated.key == "a.txt"
    assert db.get("a.txt") == updated
    assert updated.fingerprint == "1111111111111111"
    assert updated.last_good_check == later


def test_returned_entries_are_immutable(db_path: Path):
    db = EntryStore(db_path)
    db.insert(_entry("a.txt"))
    entry = db.get("a.txt")
    with pytest.raises(dataclasses.FrozenInstanceError):
        entry.fingerprint = "tampered"
    assert db.get("a.txt").fingerprint == "0123456789abcdef"


def test_delete_returns_removed_entry(db_path: Path):
    db = EntryStore(db_path)
    db.insert(_entry("a.txt"))
    assert db.delete("a.txt").key == "a.txt"
    assert db.get("a.txt") is None
    assert db.delete("a.txt") is None
    assert "a.txt" not in db
    assert len(db) == 0


def test_flush_is_noop_when_clean(db_path: Path):
    db = EntryStore(db_path)
    assert db.get("anything") is None
    db_path.write_text("sentinel", encoding="utf-8")
    db.flush()
    assert db_path.read_text(encoding="utf-8") == "sentinel"


def test_flush_clears_dirty_flag_and_leaves_no_temp_files(db_path: Path):
    db = EntryStore(db_path)
    db.insert(_entry("a.txt"))
    assert db.dirty
    db.flush()
    assert not db.dirty
    assert sorted(p.name for p in db_path.parent.iterdir()) == [STORE_FILE_NAME]


def test_failed_replace_keeps_previous_snapshot(db_path: Path, monkeypatch):
    with EntryStore(db_path) as db:
        db.insert(_entry("a.txt"))
    before = db_path.read_text(encoding="utf-8")

    def boom(src, dst):
        raise OSError("disk full")

    db = EntryStore(db_path)
    db.insert(_entry("b.txt"))
    monkeypatch.setattr(store_module.os, "replace", boom)
    with pytest.raises(OSError):
        db.flush()

    assert db_path.read_text(encoding="utf-8") == before
    assert sorted(p.name for p in db_path.parent.iterdir()) == [STORE_FILE_NAME]
    assert db.dirty


def test_corrupt_store_falls_back_to_empty(db_path: Path, caplog):
    db_path.write_text("{not json", encoding="utf-8")
    db = EntryStore(db_path)

    with caplog.at_level(logging.WARNING):
        assert db.list_entries() == []
    assert db.recovered
    assert "Could not read store" in caplog.text

    db.insert(_entry("a.txt"))
    db.flush()
    assert [e.key for e in EntryStore(db_path).list_entries()] == ["a.txt"]


def test_records_without_key_are_dropped(db_path: Path):
    good = _entry("a.txt").to_json()
    db_path.write_text(json.dumps([good, {"key": "", "fingerprint": "x"}, {"fingerprint": "y"}]), encoding="utf-8")
    db = EntryStore(db_path)
    assert [e.key for e in db.list_entries()] == ["a.txt"]
    assert not db.recovered


def test_invalidate_cache_flushes_and_reloads(db_path: Path):
    first = EntryStore(db_path)
    first.insert(_entry("a.txt"))
    first.invalidate_cache()

    second = EntryStore(db_path)
    assert second.get("a.txt") is not None
    second.insert(_entry("b.txt"))
    second.flush()

    # Cached view is stale until invalidated.
    assert first.get("b.txt") is None
    first.invalidate_cache()
    assert first.get("b.txt") is not None


def test_malformed_record_is_skipped_not_the_whole_store(db_path: Path, caplog):
    good = _entry("a.txt").to_json()
    no_fingerprint = dict(_entry("b.txt").to_json(), fingerprint=None)
    bad_time = dict(_entry("c.txt").to_json(), last_good_check="yesterday")
    db_path.write_text(json.dumps([good, no_fingerprint, bad_time]), encoding="utf-8")

    db = EntryStore(db_path)
    with caplog.at_level(logging.WARNING):
        assert [e.key for e in db.list_entries()] == ["a.txt"]
    assert not db.recovered
    assert "Skipping malformed record" in caplog.text


def test_offset_free_timestamps_load_as_utc(db_path: Path):
    record = _entry("a.txt").to_json()
    record["fingerprint_time"] = "2024-01-01T12:00:00"
    record["last_good_check"] = "2024-01-01T12:00:00"
    db_path.write_text(json.dumps([record]), encoding="utf-8")

    entry = EntryStore(db_path).get("a.txt")
    assert entry.fingerprint_time == T0
    assert entry.last_good_check.tzinfo is not None
    assert entry.last_good_check - T0 == timedelta(0)
