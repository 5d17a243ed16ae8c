from __future__ import annotations


class TrainerError(Exception):
    """Base class for all trainer errors."""


class InvalidValue(TrainerError, ValueError):
    """Input that cannot be interpreted as a percentage at all.

    Off-grid or out-of-range numbers are never reported with this; they are
    snapped onto the grid instead.
    """


class ConstraintInfeasible(TrainerError):
    """The requested bounds leave no strictly ordered solution."""

    def __init__(self, message: str, *, index: int | None = None) -> None:
        super().__init__(message)
        self.index = index


class StorageUnavailable(TrainerError):
    """Reading from or writing to the key-value store failed."""


class MalformedImport(TrainerError, ValueError):
    """A shot configuration document does not match the expected schema."""
