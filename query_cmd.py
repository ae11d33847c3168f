"""
Query commands: delete one entry, show one entry, list every entry. None of these fingerprint-and-reconcile.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List

from check_cmd import display_path, resolve_target
from common import (
    STORE_FILE_NAME,
    build_report,
    eligible_directories,
    fingerprint_file,
    format_time,
    new_stats,
    take_snapshot,
    utc_now,
)
from options import OptionsError, RunOptions
from store import EntryStore


def _finish(
    options: RunOptions,
    root: Path,
    stats: Dict[str, int],
    results: List[Dict[str, object]],
    run_started: datetime,
) -> Dict[str, object]:
    return build_report(
        root=root,
        mode=options.mode,
        options=options.to_report(),
        stats=stats,
        results=results,
        run_started=run_started,
        run_finished=utc_now(),
        exit_code=0,
    )


def delete_entry(options: RunOptions, root: Path) -> Dict[str, object]:
    """Remove the entry for options.file from its store. The file itself is left alone."""
    root = root.resolve()
    run_started = utc_now()
    stats = new_stats()
    target, store_path, key = resolve_target(options, root)

    logging.info("BitCheck - Data Integrity Monitor")
    logging.info("Mode: Delete")
    logging.info(f"Single File: {target}")

    removed = None
    if store_path.exists():
        with EntryStore(store_path) as store:
            removed = store.delete(key)

    if removed is None:
        logging.info(f"[NOT FOUND] {key} - Not in database")
        results = [{"key": key, "outcome": "NOT_FOUND"}]
    else:
        stats["removed"] += 1
        logging.info(f"[DELETED] {key}")
        results = [{"key": key, "outcome": "DELETED"}]
    logging.info(f"\n=== Summary ===\nFiles removed from database: {stats['removed']}")
    return _finish(options, root, stats, results, run_started)


def show_info(options: RunOptions, root: Path) -> Dict[str, object]:
    """Print the stored record for options.file next to what is on disk now."""
    root = root.resolve()
    run_started = utc_now()
    target, store_path, key = resolve_target(options, root)

    logging.info("BitCheck - Data Integrity Monitor")
    logging.info("Mode: Info")
    logging.info(f"Single File: {target}")

    entry = EntryStore(store_path).get(key) if store_path.exists() else None
    if entry is None:
        logging.info(f"[NOT TRACKED] {key}")
        if not target.exists():
            logging.info("  File not found on disk")
        return _finish(options, root, new_stats(), [{"key": key, "outcome": "NOT_TRACKED"}], run_started)

    lines = [
        f"[TRACKED] {key}",
        f"  Hash:          {entry.fingerprint}",
        f"  Hash Date:     {format_time(entry.fingerprint_time)}",
        f"  Last Check:    {format_time(entry.last_good_check)}",
        f"  Last Modified: {format_time(entry.last_modified)}",
        f"  Created:       {format_time(entry.created)}",
        "",
        "Current File Status:",
    ]
    record: Dict[str, object] = {"key": key, "outcome": "TRACKED", "hash": entry.fingerprint}
    try:
        snapshot = take_snapshot(target)
    except FileNotFoundError:
        lines.append("  [MISSING] File not found on disk")
        record["exists"] = False
    except OSError as exc:
        lines.append(f"  [ERROR] {exc.strerror or exc}")
        record["exists"] = True
    else:
        record["exists"] = True
        lines.append(f"  Size:          {snapshot.size} bytes")
        lines.append(f"  Modified:      {format_time(snapshot.modified)}")
        lines.append(f"  Created:       {format_time(snapshot.created)}")
        fingerprint = fingerprint_file(target)
        if not fingerprint.ok:
            lines.append(f"  Hash:          unreadable ({fingerprint.error})")
        else:
            matches = fingerprint.digest == entry.fingerprint
            record["matches"] = matches
            lines.append(f"  Hash:          {fingerprint.digest}")
            lines.append(f"  Hash matches:  {'yes' if matches else 'NO'}")
    logging.info("\n".join(lines))
    return _finish(options, root, new_stats(), [record], run_started)


def _list_store(store_path: Path, base: Path, root: Path, results: List[Dict[str, object]]) -> None:
    for entry in EntryStore(store_path).list_entries():
        file_path = base / entry.key
        shown = display_path(file_path, root)
        if file_path.exists():
            logging.info(f"  {shown}  {entry.fingerprint}  last check {format_time(entry.last_good_check)}")
            results.append({"key": entry.key, "path": shown, "outcome": "TRACKED"})
        else:
            logging.info(f"  [MISSING] {shown}  {entry.fingerprint}")
            results.append({"key": entry.key, "path": shown, "outcome": "MISSING"})


def list_entries(options: RunOptions, root: Path) -> Dict[str, object]:
    """List every tracked entry, marking those whose file is gone."""
    root = root.resolve()
    if not root.is_dir():
        raise OptionsError(f"Root directory does not exist: {root}")
    run_started = utc_now()
    stats = new_stats()
    results: List[Dict[str, object]] = []

    logging.info("BitCheck - Data Integrity Monitor")
    logging.info("Mode: List")

    def walk(directory: Path) -> None:
        store_path = directory / STORE_FILE_NAME
        if store_path.exists():
            _list_store(store_path, directory, root, results)
        if options.recursive:
            for subdirectory in eligible_directories(directory):
                walk(subdirectory)

    if options.single_database:
        store_path = root / STORE_FILE_NAME
        if store_path.exists():
            _list_store(store_path, root, root, results)
    else:
        walk(root)

    stats["missing"] = sum(1 for item in results if item["outcome"] == "MISSING")
    logging.info(f"\nTotal files tracked: {len(results)}")
    if stats["missing"]:
        logging.info(f"Missing files: {stats['missing']}")
    return _finish(options, root, stats, results, run_started)
