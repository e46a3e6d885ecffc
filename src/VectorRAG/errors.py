"""Exception types raised by the VectorRAG database.

Every error derives from :class:`VectorRAGError` and additionally from the
closest builtin, so callers that already guard ``ValueError``/``KeyError``/
``OSError`` around storage calls keep working unchanged.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

__all__ = (
    "ConfigMismatchError",
    "DimensionMismatchError",
    "FormatVersionMismatchError",
    "IngestionCancelledError",
    "InvalidConfigurationError",
    "RecordNotFoundError",
    "SnapshotCorruptError",
    "SnapshotIOError",
    "VectorRAGError",
)


class VectorRAGError(Exception):
    """Base class for all VectorRAG failures."""


class DimensionMismatchError(VectorRAGError, ValueError):
    """Raised when a vector's length differs from the configured dimension.

    Args:
        expected: Dimension fixed at database construction.
        actual: Length of the offending vector.
        context: Operation that received the vector (``"add"``, ``"search"``...).
    """

    def __init__(self, expected: int, actual: int, context: str = "vector") -> None:
        self.expected = expected
        self.actual = actual
        self.context = context
        super().__init__(
            f"{context}: vector dimension {actual} does not match configured dimension {expected}"
        )


class InvalidConfigurationError(VectorRAGError, ValueError):
    """Raised when configuration or per-query options fail validation."""


class RecordNotFoundError(VectorRAGError, KeyError):
    """Raised when a record id is unknown to the vector store."""

    def __init__(self, record_id: int) -> None:
        self.record_id = record_id
        super().__init__(record_id)

    def __str__(self) -> str:
        return f"record {self.record_id} not found"


class SnapshotIOError(VectorRAGError, OSError):
    """Raised when a snapshot cannot be written or read."""

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None) -> None:
        self.path = Path(path) if path is not None else None
        super().__init__(message if path is None else f"{message}: {path}")


class SnapshotCorruptError(SnapshotIOError):
    """Raised when a snapshot file exists but is not a valid VectorRAG snapshot."""


class FormatVersionMismatchError(VectorRAGError):
    """Raised when a snapshot was written with an unsupported format version."""

    def __init__(self, expected: int, actual: object) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"snapshot format version {actual!r} is not supported (expected {expected})")


class ConfigMismatchError(VectorRAGError):
    """Raised when a snapshot's LSH configuration differs from the live database."""

    def __init__(self, field: str, expected: object, actual: object) -> None:
        self.field = field
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"snapshot lsh.{field}={actual!r} does not match live configuration {expected!r}; "
            "a full reindex is required"
        )


class IngestionCancelledError(VectorRAGError):
    """Raised when document ingestion is cancelled before its commit."""
