"""
Core typed structures for the VectorRAG database.

This module defines the values exchanged between the storage, index, ranking
and facade layers: document metadata, pre-embedded ingestion inputs, stored
records, per-query search options, results and metrics snapshots. Values that
cross thread boundaries (metadata, options, results, snapshots) are frozen so
readers can share them without copying.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, FrozenSet, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from .errors import InvalidConfigurationError

__all__ = (
    "DocumentEmbedding",
    "DocumentMetadata",
    "MetadataPredicate",
    "MetricsSnapshot",
    "Record",
    "ScoreBreakdown",
    "SearchOptions",
    "SearchResult",
    "TextChunk",
    "VectorLike",
)

VectorLike = Union[Sequence[float], NDArray[np.floating]]

_WELL_KNOWN_FIELDS = ("department", "is_active", "source")


@dataclass(frozen=True, slots=True)
class DocumentMetadata:
    """Metadata attached to every chunk of a document.

    Attributes:
        department: Owning department (e.g. ``"Support"``).
        is_active: Whether the document is currently published.
        source: Free-form provenance label (e.g. ``"kb"``).
        attributes: Open key/value metadata; stored as a read-only mapping.
            Values must be JSON-serialisable so every record can be saved.

    Raises:
        TypeError: If a field has a type that cannot be written to a snapshot.

    Examples:
        >>> md = DocumentMetadata(department="Support", attributes={"lang": "en"})
        >>> md.get("department"), md.get("lang")
        ('Support', 'en')
    """

    department: Optional[str] = None
    is_active: bool = True
    source: Optional[str] = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in ("department", "source"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, str):
                raise TypeError(f"DocumentMetadata.{name} must be a string or None")
        attributes = dict(self.attributes)
        try:
            json.dumps(attributes, allow_nan=False)
        except (TypeError, ValueError) as exc:
            raise TypeError(f"DocumentMetadata.attributes must be JSON-serialisable: {exc}") from exc
        object.__setattr__(self, "attributes", MappingProxyType(attributes))

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a well-known field or an open attribute by name."""
        if key in _WELL_KNOWN_FIELDS:
            return getattr(self, key)
        return self.attributes.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        return {
            "department": self.department,
            "is_active": self.is_active,
            "source": self.source,
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> DocumentMetadata:
        return cls(
            department=payload.get("department"),
            is_active=bool(payload.get("is_active", True)),
            source=payload.get("source"),
            attributes=payload.get("attributes") or {},
        )


MetadataPredicate = Callable[[DocumentMetadata], bool]


@dataclass(slots=True)
class DocumentEmbedding:
    """Pre-embedded chunk accepted by ``VectorRAGDatabase.add_batch``.

    Attributes:
        external_id: Caller-facing identifier of the chunk's document.
        vector: Embedding of ``text``; must have the database dimension.
        text: Chunk text used for lexical scoring and as evidence.
        parent_external_id: Parent document id; defaults to ``external_id``.
        chunk_index: 0-based position of the chunk within its parent.
        metadata: Document metadata.
    """

    external_id: str
    vector: VectorLike
    text: str = ""
    parent_external_id: Optional[str] = None
    chunk_index: int = 0
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)

    @property
    def parent_id(self) -> str:
        return self.parent_external_id if self.parent_external_id is not None else self.external_id


@dataclass(frozen=True, slots=True, eq=False)
class Record:
    """A stored chunk as held by the vector store.

    Attributes:
        record_id: Dense internal identifier.
        external_id: External id of the owning document.
        parent_external_id: Parent document id used for grouping.
        chunk_index: 0-based index unique within the parent among active records.
        text: Chunk text.
        vector: Read-only float32 vector of the configured dimension.
        metadata: Document metadata.
        active: ``False`` once the record has been tombstoned.
        tokens: Normalised lexical tokens of ``text``.
    """

    record_id: int
    external_id: str
    parent_external_id: str
    chunk_index: int
    text: str
    vector: NDArray[np.float32]
    metadata: DocumentMetadata
    active: bool = True
    tokens: FrozenSet[str] = field(default=frozenset(), repr=False)

    @property
    def key(self) -> Tuple[str, int]:
        return (self.parent_external_id, self.chunk_index)


@dataclass(frozen=True, slots=True)
class TextChunk:
    """One span produced by a chunker.

    Attributes:
        index: 0-based chunk index.
        text: Chunk text.
        char_offset: ``(start, end)`` character span within the source text.
    """

    index: int
    text: str
    char_offset: Tuple[int, int]


@dataclass(frozen=True, slots=True)
class SearchOptions:
    """Immutable per-query options for ``VectorRAGDatabase.search``.

    Attributes:
        top_k: Maximum number of results.
        use_hybrid: Fuse vector and lexical scores when ``True``.
        text_query: Raw query text used for lexical scoring.
        alpha: Weight of the vector score in hybrid mode, within ``[0, 1]``.
        filter: Side-effect-free predicate over :class:`DocumentMetadata`.
        group_by_parent_document: Collapse chunks of a parent into one result.

    Examples:
        >>> SearchOptions(top_k=5, use_hybrid=True, text_query="reset password").alpha
        0.7
    """

    top_k: int = 5
    use_hybrid: bool = False
    text_query: Optional[str] = None
    alpha: float = 0.7
    filter: Optional[MetadataPredicate] = None
    group_by_parent_document: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.top_k, bool) or not isinstance(self.top_k, int) or self.top_k <= 0:
            raise InvalidConfigurationError("SearchOptions.top_k must be a positive integer")
        try:
            alpha = float(self.alpha)
        except (TypeError, ValueError) as exc:
            raise InvalidConfigurationError("SearchOptions.alpha must be a number") from exc
        if not 0.0 <= alpha <= 1.0:
            raise InvalidConfigurationError("SearchOptions.alpha must be within [0, 1]")
        object.__setattr__(self, "alpha", alpha)
        if self.filter is not None and not callable(self.filter):
            raise InvalidConfigurationError("SearchOptions.filter must be callable")


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    """Per-channel scores behind a result's combined score.

    Attributes:
        combined: Score used for ranking.
        vector_score: Cosine similarity in ``[-1, 1]``.
        lexical_score: Token overlap in ``[0, 1]``.
    """

    combined: float
    vector_score: float
    lexical_score: float


@dataclass(frozen=True, slots=True)
class SearchResult:
    """Output item returned to callers of ``VectorRAGDatabase.search``.

    Attributes:
        external_id: External id of the matched document.
        parent_external_id: Parent document id.
        score: Final combined score.
        evidence_chunk_index: Index of the chunk that produced the score.
        evidence_text: Text of that chunk.
        metadata: Metadata of that chunk.
        record_id: Internal id of that chunk.
        diagnostics: Vector/lexical breakdown of ``score``.
    """

    external_id: str
    parent_external_id: str
    score: float
    evidence_chunk_index: int
    evidence_text: str
    metadata: DocumentMetadata
    record_id: int
    diagnostics: ScoreBreakdown


@dataclass(frozen=True, slots=True)
class MetricsSnapshot:
    """Read-only view of the database counters.

    Attributes:
        records_active: Records currently searchable.
        records_total: Records ever created, tombstoned ones included.
        queries_total: Searches served, cache hits included.
        avg_query_latency: Running mean search latency in milliseconds.
    """

    records_active: int
    records_total: int
    queries_total: int
    avg_query_latency: float
