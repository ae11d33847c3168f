#!/usr/bin/env python3
"""
BitCheck – bitrot detection.

Fingerprints files, keeps the fingerprints in a small JSON database
(.bitcheck.db) next to them, and on later runs re-fingerprints to detect
silent corruption.

Operations:
  --add     Track files that are not in the database yet.
  --check   Re-fingerprint tracked files and report mismatches.
  --update  Accept new content for changed files and drop entries for deleted ones.

Use --help for full options and examples.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from check_cmd import run_checks
from common import STORE_FILE_NAME, setup_logging, write_report
from options import OptionsError, RunOptions, validate_options
from query_cmd import delete_entry, list_entries, show_info


def run(options: RunOptions, root: Path) -> Dict[str, object]:
    """Validate options and dispatch to the matching command; config and database I/O errors become exit code 1."""
    try:
        validate_options(options)
        if options.delete:
            return delete_entry(options, root)
        if options.info:
            return show_info(options, root)
        if options.list:
            return list_entries(options, root)
        return run_checks(options, root)
    except OptionsError as exc:
        logging.error(f"Error: {exc}")
        logging.error("Use --help for usage information.")
        return {"error": str(exc), "exit_code": 1}
    except OSError as exc:
        logging.error(f"Error: {exc}")
        return {"error": str(exc), "exit_code": 1}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='bitcheck',
        description='The simple and fast data integrity checker. '
                    f'Detect bitrot and file corruption; hashes are kept in {STORE_FILE_NAME}.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  bitcheck --add                       track new files in the current directory
  bitcheck --add --check --recursive   track new files and verify the whole tree
  bitcheck --check --update            verify and accept changed content
  bitcheck --add --recursive --single-db
  bitcheck --check --file photos/a.jpg
  bitcheck --info --file photos/a.jpg
  bitcheck --delete --file photos/a.jpg
  bitcheck --list --recursive
        """,
    )
    parser.add_argument('-a', '--add', action='store_true', help='Add new files to the database')
    parser.add_argument('-u', '--update', action='store_true',
                        help='Update any existing hashes that do not match and remove missing files')
    parser.add_argument('-c', '--check', action='store_true', help='Check existing hashes match')
    parser.add_argument('-r', '--recursive', action='store_true',
                        help='Recursively process all files in sub-folders')
    parser.add_argument('-s', '--strict', action='store_true',
                        help='Report all hash mismatches as corruption, even if the modification date changed')
    parser.add_argument('-t', '--timestamps', action='store_true',
                        help='Flag a file as changed if hash, created date, or modified date do not match')
    parser.add_argument('--single-db', dest='single_database', action='store_true',
                        help=f'Use one {STORE_FILE_NAME} at the root, keyed by relative path')
    parser.add_argument('-f', '--file', type=Path, help='Process a single file')
    parser.add_argument('--delete', action='store_true',
                        help='Remove the --file entry from the database (the file is not touched)')
    parser.add_argument('--info', action='store_true', help='Show the database record for --file')
    parser.add_argument('--list', action='store_true', help='List all tracked files')
    parser.add_argument('--root', type=Path, default=Path('.'),
                        help='Directory to process (default: current directory)')
    parser.add_argument('--report', type=Path, help='Also write a JSON report to this path')
    parser.add_argument('--log', type=Path, help='Write log output to this file')
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose output')
    return parser


def options_from_args(args: argparse.Namespace) -> RunOptions:
    return RunOptions(
        add=args.add,
        update=args.update,
        check=args.check,
        strict=args.strict,
        timestamps=args.timestamps,
        recursive=args.recursive,
        single_database=args.single_database,
        verbose=args.verbose,
        file=args.file,
        delete=args.delete,
        info=args.info,
        list=args.list,
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the script."""
    parser = build_parser()
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        parser.print_help()
        return 1
    args = parser.parse_args(argv)

    setup_logging(args.log, args.verbose)

    report = run(options_from_args(args), args.root)
    if args.report and "error" not in report:
        write_report(report, args.report)
    return int(report["exit_code"])


if __name__ == "__main__":
    sys.exit(main())
