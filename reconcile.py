"""
Reconciliation engine: decide what a file's current state means for its stored entry.

Every call returns a Reconciliation describing the outcome; the store is mutated
here and nowhere else during a check run. Store errors (duplicate insert, update
of an absent key) are bugs in this table and are left to propagate.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from common import TIMESTAMP_TOLERANCE
from options import RunOptions
from store import Entry, EntryStore


class Outcome(str, Enum):
    ADDED = "ADDED"
    OK = "OK"
    UPDATED = "UPDATED"
    MISMATCH = "MISMATCH"
    MISMATCH_UPDATED = "MISMATCH_UPDATED"
    SKIPPED = "SKIPPED"
    MISSING = "MISSING"
    REMOVED = "REMOVED"
    UNREADABLE = "UNREADABLE"


@dataclass(frozen=True)
class FileState:
    """What is on disk right now for one tracked or trackable file."""
    fingerprint: str
    size: int
    modified: Optional[datetime] = None
    created: Optional[datetime] = None


@dataclass(frozen=True)
class Reconciliation:
    key: str
    outcome: Outcome
    reason: Optional[str] = None
    expected: Optional[str] = None
    actual: Optional[str] = None
    last_good_check: Optional[datetime] = None
    stored_modified: Optional[datetime] = None
    current_modified: Optional[datetime] = None
    stored_created: Optional[datetime] = None
    current_created: Optional[datetime] = None
    intentional: bool = False
    size: int = 0

    @property
    def is_mismatch(self) -> bool:
        return self.outcome in (Outcome.MISMATCH, Outcome.MISMATCH_UPDATED)

    @property
    def is_corruption(self) -> bool:
        """A mismatch that is not explained by a newer modification time."""
        return self.is_mismatch and not self.intentional

    def to_report(self) -> dict:
        record = {"key": self.key, "outcome": self.outcome.value}
        if self.reason:
            record["reason"] = self.reason
        if self.is_mismatch:
            record.update(
                {
                    "expected": self.expected,
                    "actual": self.actual,
                    "last_good_check": _iso(self.last_good_check),
                    "intentional": self.intentional,
                }
            )
        if self.size:
            record["size"] = self.size
        return record


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def times_close(first: Optional[datetime], second: Optional[datetime]) -> bool:
    """Equal within TIMESTAMP_TOLERANCE; two unknown times count as equal."""
    if first is None or second is None:
        return first is None and second is None
    return abs((first - second).total_seconds()) <= TIMESTAMP_TOLERANCE


def _later(now: datetime, previous: Optional[datetime]) -> datetime:
    if previous is not None and previous > now:
        return previous
    return now


def _accept(store: EntryStore, stored: Entry, state: FileState, now: datetime) -> Entry:
    return store.update(
        Entry(
            key=stored.key,
            fingerprint=state.fingerprint,
            fingerprint_time=_later(now, stored.fingerprint_time),
            last_good_check=_later(now, stored.last_good_check),
            last_modified=state.modified,
            created=state.created,
        )
    )


def reconcile(
    store: EntryStore,
    key: str,
    state: FileState,
    options: RunOptions,
    now: datetime,
) -> Reconciliation:
    """Reconcile one existing file against its entry (if any) in store."""
    stored = store.get(key)

    if stored is None:
        if not options.add:
            return Reconciliation(key, Outcome.SKIPPED, reason="Not in database (use --add)", size=state.size)
        store.insert(
            Entry(
                key=key,
                fingerprint=state.fingerprint,
                fingerprint_time=now,
                last_good_check=now,
                last_modified=state.modified,
                created=state.created,
            )
        )
        return Reconciliation(key, Outcome.ADDED, actual=state.fingerprint, size=state.size)

    fingerprint_matches = stored.fingerprint == state.fingerprint
    modified_same = times_close(stored.last_modified, state.modified)
    created_same = times_close(stored.created, state.created)
    content_unchanged = fingerprint_matches and (
        not options.timestamps or (modified_same and created_same)
    )

    if content_unchanged:
        if options.check:
            store.update(replace(stored, last_good_check=_later(now, stored.last_good_check)))
            return Reconciliation(key, Outcome.OK, size=state.size)
        reason = "Already in database" if options.add else "Already current"
        return Reconciliation(key, Outcome.SKIPPED, reason=reason, size=state.size)

    # A newer modification time with an untouched creation time reads as an
    # edit rather than bitrot, unless strict or timestamp mode says otherwise.
    intentional = (
        not options.strict
        and not options.timestamps
        and not modified_same
        and created_same
    )
    details = dict(
        expected=stored.fingerprint,
        actual=state.fingerprint,
        last_good_check=stored.last_good_check,
        stored_modified=stored.last_modified,
        current_modified=state.modified,
        stored_created=stored.created,
        current_created=state.created,
        intentional=intentional,
        size=state.size,
    )

    if options.check:
        if options.update:
            _accept(store, stored, state, now)
            return Reconciliation(key, Outcome.MISMATCH_UPDATED, **details)
        return Reconciliation(key, Outcome.MISMATCH, **details)

    if options.update:
        _accept(store, stored, state, now)
        return Reconciliation(key, Outcome.UPDATED, **details)

    return Reconciliation(
        key, Outcome.SKIPPED, reason="Changed, no check or update requested", size=state.size
    )


def reconcile_missing(store: EntryStore, key: str, options: RunOptions) -> Reconciliation:
    """Handle an entry whose backing file no longer exists."""
    stored = store.get(key)
    if stored is None:
        return Reconciliation(key, Outcome.SKIPPED, reason="File not found")
    if options.update:
        store.delete(key)
        return Reconciliation(key, Outcome.REMOVED, reason="File no longer exists",
                              expected=stored.fingerprint, last_good_check=stored.last_good_check)
    return Reconciliation(key, Outcome.MISSING, reason="File not found",
                          expected=stored.fingerprint, last_good_check=stored.last_good_check)

