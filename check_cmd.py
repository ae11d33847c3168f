"""
Check command: walk files, reconcile each against its store, and summarise the run.
"""

import logging
from pathlib import Path
from typing import Dict, List, Tuple

from common import (
    PROGRESS_EVERY,
    STORE_FILE_NAME,
    build_report,
    determine_exit_code,
    eligible_directories,
    eligible_files,
    fingerprint_file,
    format_time,
    new_stats,
    take_snapshot,
    utc_now,
)
from options import OptionsError, RunOptions
from reconcile import (
    FileState,
    Outcome,
    Reconciliation,
    reconcile,
    reconcile_missing,
    times_close,
)
from store import EntryStore


def resolve_target(options: RunOptions, root: Path) -> Tuple[Path, Path, str]:
    """Return (file path, store path, key) for a --file target.

    Per-directory mode keys by file name in the file's own directory; the
    shared store lives at root and keys by POSIX path relative to root.
    """
    target = options.file if options.file.is_absolute() else root / options.file
    target = target.resolve()
    if target.name == STORE_FILE_NAME:
        raise OptionsError(f"Refusing to track the database file itself: {target}")
    if target.is_dir():
        raise OptionsError(f"Not a file: {target}")

    if not options.single_database:
        return target, target.parent / STORE_FILE_NAME, target.name

    try:
        key = target.relative_to(root).as_posix()
    except ValueError:
        raise OptionsError(f"File {target} is not under the database root {root}") from None
    return target, root / STORE_FILE_NAME, key


def display_path(path: Path, root: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)


def _log_mismatch(result: Reconciliation, display: str, options: RunOptions) -> None:
    if result.intentional:
        if result.outcome is Outcome.MISMATCH_UPDATED:
            logging.info(f"[UPDATED] {display} - File modified ({format_time(result.current_modified)})")
        else:
            logging.info(
                f"[MODIFIED] {display} - File modified ({format_time(result.current_modified)}), "
                f"use --update to accept"
            )
        return

    modified_changed = not times_close(result.stored_modified, result.current_modified)
    created_changed = not times_close(result.stored_created, result.current_created)
    lines = [f"[MISMATCH] {display}"]
    if result.expected != result.actual:
        lines.append(f"  Expected hash: {result.expected}")
        lines.append(f"  Got hash:      {result.actual}")
    if options.timestamps:
        if not modified_changed:
            lines.append(f"  File modification date unchanged: {format_time(result.stored_modified)}")
        else:
            lines.append(f"  Expected modified: {format_time(result.stored_modified)}")
            lines.append(f"  Got modified:      {format_time(result.current_modified)}")
        if created_changed:
            lines.append(f"  Expected created:  {format_time(result.stored_created)}")
            lines.append(f"  Got created:       {format_time(result.current_created)}")
    elif not modified_changed:
        lines.append(f"  File modification date unchanged: {format_time(result.stored_modified)}")
        lines.append("  Possible corruption detected!")
    if options.strict and created_changed and not options.timestamps:
        lines.append(f"  Expected created:  {format_time(result.stored_created)}")
        lines.append(f"  Got created:       {format_time(result.current_created)}")
        lines.append("  Creation date change detected (strict mode prevents auto-update)")
    lines.append(f"  Last successful check: {format_time(result.last_good_check)}")
    if result.outcome is Outcome.MISMATCH_UPDATED:
        lines.append("  [UPDATED] Database entry updated")
    logging.warning("\n".join(lines))


def log_result(result: Reconciliation, display: str, options: RunOptions) -> None:
    """One line (or block) per outcome; OK and SKIPPED only show up with --verbose."""
    outcome = result.outcome
    if outcome is Outcome.ADDED:
        logging.info(f"[ADD] {display}")
    elif outcome is Outcome.OK:
        logging.debug(f"[OK] {display}")
    elif outcome is Outcome.UPDATED:
        logging.info(f"[UPDATE] {display}")
    elif result.is_mismatch:
        _log_mismatch(result, display, options)
    elif outcome is Outcome.SKIPPED:
        logging.debug(f"[SKIP] {display} - {result.reason}")
    elif outcome is Outcome.MISSING:
        logging.warning(f"[MISSING] {display} - {result.reason}")
    elif outcome is Outcome.REMOVED:
        logging.info(f"[REMOVED] {display} - {result.reason}")
    elif outcome is Outcome.UNREADABLE:
        logging.warning(f"[ERROR] {display} - {result.reason}")


def tally(result: Reconciliation, stats: Dict[str, int]) -> None:
    outcome = result.outcome
    if outcome is Outcome.ADDED:
        stats["added"] += 1
    elif outcome is Outcome.OK:
        stats["checked"] += 1
    elif outcome is Outcome.UPDATED:
        stats["updated"] += 1
    elif result.is_mismatch:
        stats["checked"] += 1
        stats["modified" if result.intentional else "mismatched"] += 1
        if outcome is Outcome.MISMATCH_UPDATED:
            stats["updated"] += 1
    elif outcome is Outcome.SKIPPED:
        stats["skipped"] += 1
    elif outcome is Outcome.MISSING:
        stats["missing"] += 1
    elif outcome is Outcome.REMOVED:
        stats["removed"] += 1
    elif outcome is Outcome.UNREADABLE:
        stats["errors"] += 1


def log_summary(options: RunOptions, stats: Dict[str, int], elapsed: float) -> None:
    lines = [
        "",
        "=== Summary ===",
        f"Files processed: {stats['processed']}",
    ]
    if options.add:
        lines.append(f"Files added: {stats['added']}")
    if options.update:
        lines.append(f"Files updated: {stats['updated']}")
    if options.check:
        lines.append(f"Files checked: {stats['checked']}")
        lines.append(f"Mismatches: {stats['mismatched']}")
    if stats["modified"]:
        lines.append(f"Files modified: {stats['modified']}")
    if stats["missing"]:
        lines.append(f"Files missing: {stats['missing']}")
    if stats["removed"]:
        lines.append(f"Files removed from database: {stats['removed']}")
    lines.append(f"Files skipped: {stats['skipped']}")
    if stats["errors"]:
        lines.append(f"Unreadable files: {stats['errors']}")
    if stats["store_errors"]:
        lines.append(f"Unreadable databases reset: {stats['store_errors']}")
    if stats["store_failures"]:
        lines.append(f"Databases not saved: {stats['store_failures']}")
    lines.append(f"Bytes fingerprinted: {stats['bytes']}")
    lines.append(f"Time elapsed: {elapsed:.2f}s")
    logging.info("\n".join(lines))

    if stats["mismatched"]:
        logging.warning(f"WARNING: {stats['mismatched']} file(s) failed integrity check!")
    if stats["missing"]:
        logging.warning(
            f"WARNING: {stats['missing']} file(s) are missing! "
            f"Use --update to remove them from the database."
        )


def run_checks(options: RunOptions, root: Path) -> Dict[str, object]:
    """Reconcile a single file, a directory, or a tree against their stores."""
    root = root.resolve()
    if not root.is_dir():
        raise OptionsError(f"Root directory does not exist: {root}")

    stats = new_stats()
    results: List[Dict[str, object]] = []
    run_started = utc_now()
    seen = 0
    last_progress_log = 0
    sweep_missing = options.check or options.update
    add_only = options.add and not sweep_missing

    def record(result: Reconciliation, path: Path) -> None:
        nonlocal seen, last_progress_log
        display = display_path(path, root)
        tally(result, stats)
        # OK and SKIPPED are counted only; the report lists everything else.
        if result.outcome not in (Outcome.OK, Outcome.SKIPPED):
            results.append(dict(result.to_report(), path=display))
        log_result(result, display, options)
        seen += 1
        if seen - last_progress_log >= PROGRESS_EVERY:
            logging.info(
                f"Progress: seen={seen}, processed={stats['processed']}, "
                f"mismatched={stats['mismatched']}, errors={stats['errors']}"
            )
            last_progress_log = seen

    def process_file(store: EntryStore, file_path: Path, key: str) -> None:
        try:
            snapshot = take_snapshot(file_path)
            if add_only and key in store:
                stats["processed"] += 1
                record(Reconciliation(key, Outcome.SKIPPED, reason="Already in database"), file_path)
                return
            fingerprint = fingerprint_file(file_path)
        except OSError as exc:
            record(Reconciliation(key, Outcome.UNREADABLE, reason=exc.strerror or str(exc)), file_path)
            return
        if not fingerprint.ok:
            record(Reconciliation(key, Outcome.UNREADABLE, reason=fingerprint.error), file_path)
            return

        stats["processed"] += 1
        stats["bytes"] += snapshot.size
        state = FileState(
            fingerprint=fingerprint.digest,
            size=snapshot.size,
            modified=snapshot.modified,
            created=snapshot.created,
        )
        record(reconcile(store, key, state, options, utc_now()), file_path)

    def close_store(store: EntryStore) -> None:
        store.flush()
        if store.recovered:
            stats["store_errors"] += 1

    def walk_local(directory: Path) -> None:
        logging.debug(f"Processing: {directory}")
        try:
            check_directory(directory)
        except OSError as exc:
            stats["store_failures"] += 1
            logging.error(f"[ERROR] {display_path(directory, root)} - Database not saved: {exc}")

        if options.recursive:
            for subdirectory in eligible_directories(directory):
                walk_local(subdirectory)

    def check_directory(directory: Path) -> None:
        files = eligible_files(directory)
        store = EntryStore(directory / STORE_FILE_NAME)
        try:
            for file_path in files:
                process_file(store, file_path, file_path.name)
            if sweep_missing:
                present = {file_path.name for file_path in files}
                for entry in store.list_entries():
                    missing_path = directory / entry.key
                    if entry.key in present or missing_path.exists():
                        continue
                    record(reconcile_missing(store, entry.key, options), missing_path)
        finally:
            close_store(store)

    def walk_shared(store: EntryStore, directory: Path) -> None:
        logging.debug(f"Processing: {directory}")
        for file_path in eligible_files(directory):
            process_file(store, file_path, file_path.relative_to(root).as_posix())
        if options.recursive:
            for subdirectory in eligible_directories(directory):
                walk_shared(store, subdirectory)

    logging.info("BitCheck - Data Integrity Monitor")
    logging.info(f"Mode: {options.mode.title()}")
    logging.info(f"Recursive: {options.recursive}")
    if options.single_database:
        logging.info("Single Database: True")

    if options.file is not None:
        target, store_path, key = resolve_target(options, root)
        logging.info(f"Single File: {target}")
        if not target.exists() and not (sweep_missing and store_path.exists()):
            raise OptionsError(f"File not found: {target}")
        store = EntryStore(store_path)
        try:
            if target.exists():
                process_file(store, target, key)
            elif key in store:
                record(reconcile_missing(store, key, options), target)
            else:
                raise OptionsError(f"File not found: {target}")
        finally:
            close_store(store)
    elif options.single_database:
        store_path = root / STORE_FILE_NAME
        logging.debug(f"Using single database: {store_path}")
        store = EntryStore(store_path)
        try:
            walk_shared(store, root)
            if sweep_missing:
                for entry in store.list_entries():
                    missing_path = root / entry.key
                    if not missing_path.exists():
                        record(reconcile_missing(store, entry.key, options), missing_path)
        finally:
            close_store(store)
    else:
        walk_local(root)

    run_finished = utc_now()
    log_summary(options, stats, (run_finished - run_started).total_seconds())
    exit_code = determine_exit_code(stats)
    return build_report(
        root=root,
        mode=options.mode,
        options=options.to_report(),
        stats=stats,
        results=results,
        run_started=run_started,
        run_finished=run_finished,
        exit_code=exit_code,
    )
