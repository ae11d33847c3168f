"""
Run options and the up-front validation of conflicting flags.
"""

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Optional


class OptionsError(Exception):
    """A user-facing configuration error, detected before any file is touched."""


@dataclass(frozen=True)
class RunOptions:
    add: bool = False
    update: bool = False
    check: bool = False
    strict: bool = False
    timestamps: bool = False
    recursive: bool = False
    single_database: bool = False
    verbose: bool = False
    file: Optional[Path] = None
    delete: bool = False
    info: bool = False
    list: bool = False

    @property
    def mode(self) -> str:
        if self.delete:
            return "delete"
        if self.info:
            return "info"
        if self.list:
            return "list"
        return " ".join(
            name for name, enabled in (("add", self.add), ("update", self.update), ("check", self.check))
            if enabled
        ) or "none"

    def to_report(self) -> Dict[str, object]:
        record = asdict(self)
        record["file"] = str(self.file) if self.file is not None else None
        return record


def validate_options(options: RunOptions) -> None:
    """Raise OptionsError for flag combinations that cannot run."""
    operations = options.add or options.update or options.check

    if options.delete:
        if options.file is None:
            raise OptionsError("--delete can only be used with --file")
        if operations or options.info or options.list:
            raise OptionsError("--delete cannot be combined with other operations")

    if options.info:
        if options.file is None:
            raise OptionsError("--info can only be used with --file")
        if operations or options.list:
            raise OptionsError("--info cannot be combined with other operations")

    if options.list:
        if options.file is not None:
            raise OptionsError("--list cannot be used with --file")
        if operations:
            raise OptionsError("--list cannot be combined with other operations")

    if options.recursive and options.file is not None:
        raise OptionsError("--recursive cannot be used with --file")

    if not (operations or options.delete or options.info or options.list):
        raise OptionsError("At least one operation (--add, --update, or --check) must be specified.")
