"""Error taxonomy shared by every stage of a randomizer run."""

from __future__ import annotations

from pathlib import Path


class GoldSaucerError(Exception):
    """Base class for errors that abort a run."""

    exit_code = 1


class FormatError(GoldSaucerError):
    """An input file does not match the layout we expect."""

    exit_code = 2

    def __init__(self, path: Path | str, message: str):
        self.path = Path(path)
        self.message = message
        super().__init__(f"{self.path}: {message}")


class ConstraintViolation(GoldSaucerError):
    """A category could not satisfy one of its invariants."""

    exit_code = 3

    def __init__(self, category: str, invariant: str, detail: str = ""):
        self.category = category
        self.invariant = invariant
        self.detail = detail
        msg = f"{category}: invariant '{invariant}' not satisfied"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class FileIOError(GoldSaucerError):
    """Filesystem access failed while reading inputs or writing outputs."""

    exit_code = 4

    def __init__(self, path: Path | str, operation: str, cause: OSError | None = None):
        self.path = Path(path)
        self.operation = operation
        self.cause = cause
        reason = f": {cause.strerror or cause}" if cause is not None else ""
        super().__init__(f"Failed to {operation} {self.path}{reason}")
