"""Error kinds raised by the tracker engine.

Each error also inherits the closest builtin so callers that only know
about ``KeyError`` / ``IndexError`` / ``ValueError`` still catch it.
"""
from __future__ import annotations

from typing import Optional


class TrackerError(Exception):
    """Base class for every error raised by the tracker engine."""


class UnknownPartError(TrackerError, KeyError):
    """Requested field, array or sub-field is not declared in the schema."""

    def __init__(self, part: str, message: Optional[str] = None):
        self.part = part
        super().__init__(message or f"Unknown schema part: {part}")

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message.
        return str(self.args[0])


class NotArrayError(TrackerError, TypeError):
    """Operation needs an array-typed field but got something else."""


class NotObjectError(TrackerError, TypeError):
    """Operation needs an object (array element or item schema) but got something else."""


class MalformedPartResponseError(TrackerError, ValueError):
    """A partial model response lacks the expected top-level key."""


class IndexOutOfRangeError(TrackerError, IndexError):
    """Array item index out of bounds during a merge operation."""


class ParseError(TrackerError, ValueError):
    """Model output could not be turned into a structured value."""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw
