"""
Entry store: a JSON file of fingerprint records, cached in memory and flushed explicitly.
"""

import json
import logging
import os
import tempfile
import threading
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional


class StoreError(Exception):
    """Base class for store contract violations."""


class DuplicateKeyError(StoreError):
    """Raised when inserting a key that is already tracked."""


class EntryNotFoundError(StoreError):
    """Raised when updating a key that is not tracked."""


@dataclass(frozen=True)
class Entry:
    """One tracked file."""
    key: str
    fingerprint: str
    fingerprint_time: datetime
    last_good_check: datetime
    last_modified: Optional[datetime] = None
    created: Optional[datetime] = None

    def to_json(self) -> Dict[str, Optional[str]]:
        record = asdict(self)
        for name, value in record.items():
            if isinstance(value, datetime):
                record[name] = value.isoformat()
        return record

    @classmethod
    def from_json(cls, record: Dict[str, object]) -> "Entry":
        def when(name: str) -> Optional[datetime]:
            value = record.get(name)
            if not value:
                return None
            parsed = datetime.fromisoformat(value)
            # Hand-edited stores may drop the offset; stored times are UTC.
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed

        fingerprint = record.get("fingerprint")
        if not isinstance(fingerprint, str) or not fingerprint:
            raise ValueError(f"entry '{record.get('key')}' has no fingerprint")
        return cls(
            key=str(record["key"]),
            fingerprint=fingerprint,
            fingerprint_time=when("fingerprint_time"),
            last_good_check=when("last_good_check"),
            last_modified=when("last_modified"),
            created=when("created"),
        )


class EntryStore:
    """Key -> Entry mapping persisted as a JSON array at `path`.

    The cache is loaded lazily on first access and written back only by
    flush(), and only when something changed since the last flush. Entries
    are immutable, so everything handed out is safe to keep.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.recovered = False
        self._cache: Optional[Dict[str, Entry]] = None
        self._dirty = False
        self._lock = threading.RLock()

        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text("[]", encoding='utf-8')

    def __enter__(self) -> "EntryStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.flush()

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries())

    @property
    def dirty(self) -> bool:
        return self._dirty

    def get(self, key: str) -> Optional[Entry]:
        with self._lock:
            return self._entries().get(key)

    def insert(self, entry: Entry) -> Entry:
        if not entry.key:
            raise ValueError("Entry key cannot be empty.")
        with self._lock:
            entries = self._entries()
            if entry.key in entries:
                raise DuplicateKeyError(f"File entry with key '{entry.key}' already exists.")
            entries[entry.key] = entry
            self._dirty = True
            return entry

    def update(self, entry: Entry) -> Entry:
        """Overwrite the fingerprint and timestamp fields of an existing entry."""
        if not entry.key:
            raise ValueError("Entry key cannot be empty.")
        with self._lock:
            entries = self._entries()
            existing = entries.get(entry.key)
            if existing is None:
                raise EntryNotFoundError(f"File entry with key '{entry.key}' not found.")
            updated = replace(
                existing,
                fingerprint=entry.fingerprint,
                fingerprint_time=entry.fingerprint_time,
                last_good_check=entry.last_good_check,
                last_modified=entry.last_modified,
                created=entry.created,
            )
            entries[entry.key] = updated
            self._dirty = True
            return updated

    def delete(self, key: str) -> Optional[Entry]:
        with self._lock:
            removed = self._entries().pop(key, None)
            if removed is not None:
                self._dirty = True
            return removed

    def list_entries(self) -> List[Entry]:
        with self._lock:
            entries = self._entries()
            return [entries[key] for key in sorted(entries)]

    def flush(self) -> None:
        """Write the cache to disk if it changed; temp file + rename so a crash leaves the old file."""
        with self._lock:
            if not self._dirty or self._cache is None:
                return
            records = [self._cache[key].to_json() for key in sorted(self._cache)]
            payload = json.dumps(records, indent=2)
            with tempfile.NamedTemporaryFile(
                'w',
                delete=False,
                dir=self.path.parent,
                prefix=f"{self.path.name}.",
                suffix='.tmp',
                encoding='utf-8',
            ) as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
                temp_path = Path(handle.name)
            try:
                os.replace(temp_path, self.path)
            except OSError:
                temp_path.unlink(missing_ok=True)
                raise
            self._dirty = False
            logging.debug(f"Flushed {len(records)} entries to {self.path}")

    def invalidate_cache(self) -> None:
        """Flush pending changes, then drop the cache so the next access rereads the file."""
        with self._lock:
            if self._dirty:
                self.flush()
            self._cache = None

    def _entries(self) -> Dict[str, Entry]:
        if self._cache is None:
            self._cache = self._load()
        return self._cache

    def _load(self) -> Dict[str, Entry]:
        try:
            records = json.loads(self.path.read_text(encoding='utf-8'))
            if not isinstance(records, list):
                raise ValueError("expected a JSON array of entries")
            entries: Dict[str, Entry] = {}
            for record in records:
                if not isinstance(record, dict) or not record.get("key"):
                    continue
                try:
                    entry = Entry.from_json(record)
                except (ValueError, TypeError) as exc:
                    logging.warning(f"Skipping malformed record in {self.path}: {exc}")
                    continue
                entries[entry.key] = entry
            return entries
        except FileNotFoundError:
            return {}
        except (OSError, ValueError, KeyError, TypeError) as exc:
            self.recovered = True
            logging.warning(
                f"Could not read store {self.path} ({exc}); continuing with an empty store. "
                f"Previous records for this location will be replaced on the next flush."
            )
            return {}
