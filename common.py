"""
Shared code for bitcheck: constants, logging, fingerprinting, enumeration, stats, reporting.
"""

import json
import logging
import os
import stat
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import xxhash


STORE_FILE_NAME = ".bitcheck.db"
DEFAULT_CHUNK_SIZE = 8 * 1024 * 1024
TIMESTAMP_TOLERANCE = 1.0  # seconds
PROGRESS_EVERY = 1000
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class FileSnapshot:
    """Filesystem metadata captured just before a file is fingerprinted."""
    path: Path
    size: int
    modified: datetime
    created: Optional[datetime] = None


@dataclass
class FingerprintResult:
    """Result of a fingerprint computation."""
    path: Path
    digest: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.digest is not None


def setup_logging(log_file: Optional[Path] = None, verbose: bool = False) -> None:
    """Configure logging to file and console."""
    level = logging.DEBUG if verbose else logging.INFO
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        handlers.append(logging.FileHandler(log_file, mode='w', encoding='utf-8'))

    logging.basicConfig(
        level=level,
        format='%(message)s',
        handlers=handlers
    )


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_time(value: Optional[datetime]) -> str:
    if value is None:
        return "unknown"
    return f"{value.astimezone(timezone.utc).strftime(DATE_FORMAT)} UTC"


def is_hidden(path: Path) -> bool:
    """Dot-files everywhere, plus the hidden attribute on Windows."""
    if path.name.startswith('.'):
        return True
    attributes = getattr(os.stat(path, follow_symlinks=False), 'st_file_attributes', 0)
    return bool(attributes & getattr(stat, 'FILE_ATTRIBUTE_HIDDEN', 0))


def should_skip_file(file_path: Path) -> bool:
    """Skip the store file itself and hidden files."""
    if file_path.name.lower() == STORE_FILE_NAME:
        return True
    try:
        return is_hidden(file_path)
    except OSError:
        return False


def eligible_files(directory: Path) -> List[Path]:
    """Regular files directly inside directory, sorted, without following symlinks."""
    files: List[Path] = []
    try:
        with os.scandir(directory) as entries:
            for entry in entries:
                try:
                    if entry.is_file(follow_symlinks=False):
                        path = Path(entry.path)
                        if not should_skip_file(path):
                            files.append(path)
                except OSError as exc:
                    logging.warning(f"Skipping entry {entry.path}: {exc}")
    except OSError as exc:
        logging.warning(f"Skipping directory {directory}: {exc}")
    return sorted(files)


def eligible_directories(directory: Path) -> List[Path]:
    """Non-hidden subdirectories of directory, sorted."""
    dirs: List[Path] = []
    try:
        with os.scandir(directory) as entries:
            for entry in entries:
                try:
                    if entry.is_dir(follow_symlinks=False):
                        path = Path(entry.path)
                        if not is_hidden(path):
                            dirs.append(path)
                except OSError as exc:
                    logging.warning(f"Skipping entry {entry.path}: {exc}")
    except OSError as exc:
        logging.warning(f"Skipping directory {directory}: {exc}")
    return sorted(dirs)


def take_snapshot(file_path: Path) -> FileSnapshot:
    """Stat a file. Raises OSError if it cannot be stat'ed."""
    file_stat = file_path.stat()
    birth = getattr(file_stat, 'st_birthtime', None)
    return FileSnapshot(
        path=file_path,
        size=file_stat.st_size,
        modified=datetime.fromtimestamp(file_stat.st_mtime, timezone.utc),
        created=datetime.fromtimestamp(birth, timezone.utc) if birth is not None else None,
    )


def compute_fingerprint(file_path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """Compute the xxh64 fingerprint of a file as 16 hex characters."""
    hasher = xxhash.xxh64()
    with file_path.open('rb') as handle:
        for chunk in iter(lambda: handle.read(chunk_size), b''):
            hasher.update(chunk)
    return hasher.hexdigest()


def fingerprint_file(file_path: Path) -> FingerprintResult:
    """Fingerprint a file, returning a FingerprintResult instead of raising."""
    try:
        return FingerprintResult(path=file_path, digest=compute_fingerprint(file_path))
    except OSError as exc:
        return FingerprintResult(path=file_path, error=exc.strerror or str(exc))


def new_stats() -> Dict[str, int]:
    return {
        "processed": 0,
        "added": 0,
        "updated": 0,
        "checked": 0,
        "mismatched": 0,
        "modified": 0,
        "skipped": 0,
        "missing": 0,
        "removed": 0,
        "errors": 0,
        "store_errors": 0,
        "store_failures": 0,
        "bytes": 0,
    }


def determine_exit_code(stats: Dict[str, int]) -> int:
    """1 when corruption was seen, a tracked file is missing, or a database could not be saved."""
    if stats.get("mismatched", 0) or stats.get("missing", 0) or stats.get("store_failures", 0):
        return 1
    return 0


def build_report(
    root: Path,
    mode: str,
    options: Dict[str, object],
    stats: Dict[str, int],
    results: List[Dict[str, object]],
    run_started: datetime,
    run_finished: datetime,
    exit_code: int,
) -> Dict[str, object]:
    """Build JSON-compatible report."""
    return {
        "run_started": run_started.isoformat(),
        "run_finished": run_finished.isoformat(),
        "duration_seconds": (run_finished - run_started).total_seconds(),
        "root": str(root),
        "mode": mode,
        "options": options,
        "stats": stats,
        "results": results,
        "exit_code": exit_code,
    }


def write_report(report: Dict[str, object], report_path: Path) -> None:
    """Write report to file."""
    report_json = json.dumps(report, indent=2, sort_keys=True)
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(report_json, encoding='utf-8')
    logging.info(f"Report written to {report_path}")
