"""
Conversion Errors.

One exception class per failure kind. Each also derives from the builtin
exception normally raised for that situation, so callers catching
``ValueError`` or ``OSError`` keep working.
"""

from typing import Optional


class ConversionError(Exception):
    """Base class for all conversion failures."""

    kind = "ConversionError"

    def __init__(
        self,
        message: str,
        row: Optional[int] = None,
        offset: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.row = row
        self.offset = offset

    def with_row(self, row: int) -> "ConversionError":
        """Attach a row number if none is known yet."""
        if self.row is None:
            self.row = int(row)
        return self

    def __str__(self):
        where = []
        if self.row is not None:
            where.append(f"row {self.row}")
        if self.offset is not None:
            where.append(f"byte offset {self.offset}")
        suffix = f" ({', '.join(where)})" if where else ""
        return f"{self.kind}: {self.message}{suffix}"


class InputNotFound(ConversionError, FileNotFoundError):
    kind = "InputNotFound"


class CorruptTable(ConversionError, ValueError):
    """A required table or column is missing or malformed."""
    kind = "CorruptTable"


class UnsupportedLayout(ConversionError, ValueError):
    """Polarization basis or column layout has no random-groups mapping."""
    kind = "UnsupportedLayout"


class AstrometryFailure(ConversionError, ValueError):
    """Non-finite UVW or delay, usually from a bad time or position."""
    kind = "AstrometryFailure"


class IoFailure(ConversionError, OSError):
    kind = "IoFailure"


class InvalidState(ConversionError, RuntimeError):
    """Writer used after it was finalized or discarded."""
    kind = "InvalidState"


__all__ = [
    "ConversionError",
    "InputNotFound",
    "CorruptTable",
    "UnsupportedLayout",
    "AstrometryFailure",
    "IoFailure",
    "InvalidState",
]
