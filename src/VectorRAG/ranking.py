# === NAVMAP v1 ===
# {
#   "module": "VectorRAG.ranking",
#   "purpose": "Hybrid scoring, metadata filtering and result shaping",
#   "sections": [
#     {
#       "id": "hybridscorer",
#       "name": "HybridScorer",
#       "anchor": "class-hybridscorer",
#       "kind": "class"
#     },
#     {
#       "id": "metadatafilter",
#       "name": "MetadataFilter",
#       "anchor": "class-metadatafilter",
#       "kind": "class"
#     },
#     {
#       "id": "resultshaper",
#       "name": "ResultShaper",
#       "anchor": "class-resultshaper",
#       "kind": "class"
#     },
#     {
#       "id": "fuse-scores",
#       "name": "fuse_scores",
#       "anchor": "function-fuse-scores",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Scoring, filtering and result shaping for VectorRAG search."""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from .config import LexicalMeasure
from .errors import InvalidConfigurationError
from .tokenization import token_set
from .types import DocumentMetadata, MetadataPredicate, Record, ScoreBreakdown, SearchResult

# --- Globals ---

__all__ = (
    "HybridScorer",
    "MetadataFilter",
    "ResultShaper",
    "apply_filter",
    "cosine_scores",
    "fuse_scores",
    "lexical_overlap",
    "metadata_filter",
)

ScoredRecord = Tuple[Record, ScoreBreakdown]


# --- Helpers ---


def cosine_scores(
    query: NDArray[np.floating],
    vectors: NDArray[np.floating],
    norms: Optional[NDArray[np.floating]] = None,
) -> NDArray[np.float64]:
    """Return cosine similarity between ``query`` and each row of ``vectors``.

    Rows (or a query) with zero norm score ``0.0``. Results are clipped to
    ``[-1, 1]`` to absorb rounding.
    """
    rows = np.asarray(vectors, dtype=np.float64)
    if rows.shape[0] == 0:
        return np.empty(0, dtype=np.float64)
    q = np.asarray(query, dtype=np.float64)
    q_norm = float(np.linalg.norm(q))
    if q_norm == 0.0:
        return np.zeros(rows.shape[0], dtype=np.float64)
    row_norms = (
        np.linalg.norm(rows, axis=1) if norms is None else np.asarray(norms, dtype=np.float64)
    )
    dots = rows @ q
    denom = row_norms * q_norm
    scores = np.zeros(rows.shape[0], dtype=np.float64)
    mask = denom > 0.0
    scores[mask] = dots[mask] / denom[mask]
    return np.clip(scores, -1.0, 1.0)


def lexical_overlap(
    query_tokens: frozenset[str],
    chunk_tokens: frozenset[str],
    measure: LexicalMeasure = "jaccard",
) -> float:
    """Return the token overlap between a query and a chunk in ``[0, 1]``.

    Examples:
        >>> lexical_overlap(frozenset({"reset", "password"}), frozenset({"reset", "your", "password"}))
        0.6666666666666666
        >>> lexical_overlap(frozenset({"reset", "password"}), frozenset({"reset"}), "query_coverage")
        0.5
    """
    if not query_tokens or not chunk_tokens:
        return 0.0
    shared = len(query_tokens & chunk_tokens)
    if measure == "query_coverage":
        return shared / len(query_tokens)
    return shared / len(query_tokens | chunk_tokens)


def fuse_scores(vector_score: float, lexical_score: float, alpha: float) -> float:
    """Blend channel scores as ``alpha * vector + (1 - alpha) * lexical``.

    The endpoints return one channel exactly so ``alpha=1`` reproduces
    vector-only ranking bit for bit.
    """
    if alpha >= 1.0:
        return vector_score
    if alpha <= 0.0:
        return lexical_score
    return alpha * vector_score + (1.0 - alpha) * lexical_score


def apply_filter(records: Iterable[Record], predicate: Optional[MetadataPredicate]) -> List[Record]:
    """Keep the records whose metadata satisfies ``predicate``."""
    if predicate is None:
        return list(records)
    return [record for record in records if predicate(record.metadata)]


# --- Public Classes ---


class HybridScorer:
    """Score candidate records against a query vector and optional query text.

    Attributes:
        lexical_measure: ``jaccard`` or ``query_coverage``.

    Examples:
        >>> scorer = HybridScorer()
        >>> scorer.fuse(0.5, 1.0, use_hybrid=True, alpha=0.5, has_text=True)
        0.75
    """

    def __init__(self, lexical_measure: LexicalMeasure = "jaccard") -> None:
        if lexical_measure not in ("jaccard", "query_coverage"):
            raise InvalidConfigurationError(f"Unsupported lexical measure {lexical_measure!r}")
        self.lexical_measure = lexical_measure

    def fuse(
        self,
        vector_score: float,
        lexical_score: float,
        *,
        use_hybrid: bool,
        alpha: float,
        has_text: bool,
    ) -> float:
        if not use_hybrid or not has_text:
            return vector_score
        return fuse_scores(vector_score, lexical_score, alpha)

    def score(
        self,
        query_vector: NDArray[np.floating],
        query_text: Optional[str],
        record: Record,
        *,
        use_hybrid: bool = True,
        alpha: float = 0.7,
    ) -> ScoreBreakdown:
        """Score a single record; see :meth:`score_batch`."""
        return self.score_batch(
            query_vector,
            query_text,
            [record],
            np.asarray(record.vector, dtype=np.float32)[np.newaxis, :],
            use_hybrid=use_hybrid,
            alpha=alpha,
        )[0]

    def score_batch(
        self,
        query_vector: NDArray[np.floating],
        query_text: Optional[str],
        records: Sequence[Record],
        vectors: NDArray[np.floating],
        *,
        norms: Optional[NDArray[np.floating]] = None,
        use_hybrid: bool = True,
        alpha: float = 0.7,
    ) -> List[ScoreBreakdown]:
        """Score ``records`` whose vectors are the rows of ``vectors``.

        Args:
            query_vector: Query embedding (normalised or not).
            query_text: Raw query text; ``None`` or blank disables lexical scoring.
            records: Candidate records, aligned with ``vectors``.
            vectors: ``(len(records), dimension)`` matrix.
            norms: Optional precomputed row norms.
            use_hybrid: Blend in the lexical channel.
            alpha: Vector weight within ``[0, 1]``.

        Returns:
            One :class:`ScoreBreakdown` per record, in input order.
        """
        if not records:
            return []
        vector_scores = cosine_scores(query_vector, vectors, norms)
        query_tokens = token_set(query_text) if query_text else frozenset()
        has_text = bool(query_tokens)
        breakdowns: List[ScoreBreakdown] = []
        for record, vector_score in zip(records, vector_scores.tolist()):
            lexical = (
                lexical_overlap(query_tokens, record.tokens, self.lexical_measure)
                if has_text
                else 0.0
            )
            combined = self.fuse(
                vector_score, lexical, use_hybrid=use_hybrid, alpha=alpha, has_text=has_text
            )
            breakdowns.append(
                ScoreBreakdown(combined=combined, vector_score=vector_score, lexical_score=lexical)
            )
        return breakdowns


class MetadataFilter:
    """Equality predicate over document metadata with a stable cache token.

    A list or tuple value matches when the metadata value equals any member
    (or, for list-valued metadata, when the two lists intersect).

    Examples:
        >>> only_support = metadata_filter(department="Support")
        >>> only_support(DocumentMetadata(department="Support"))
        True
        >>> metadata_filter(department=["Sales", "Billing"])(DocumentMetadata(department="Support"))
        False
    """

    __slots__ = ("_expected", "_token")

    def __init__(self, expected: Mapping[str, Any]) -> None:
        if not expected:
            raise InvalidConfigurationError("metadata_filter requires at least one field")
        self._expected: Dict[str, Any] = {
            key: list(value) if isinstance(value, (list, tuple, set, frozenset)) else value
            for key, value in expected.items()
        }
        self._token = json.dumps(self._expected, sort_keys=True, default=repr)

    @property
    def cache_token(self) -> str:
        """Deterministic string describing the predicate."""
        return self._token

    def __call__(self, metadata: DocumentMetadata) -> bool:
        for key, expected in self._expected.items():
            value = metadata.get(key)
            if isinstance(expected, list):
                if isinstance(value, (list, tuple)):
                    if not any(item in value for item in expected):
                        return False
                elif value not in expected:
                    return False
            elif value != expected:
                return False
        return True

    def __repr__(self) -> str:
        return f"MetadataFilter({self._token})"


def metadata_filter(**expected: Any) -> MetadataFilter:
    """Build a :class:`MetadataFilter` matching every ``key=value`` given."""
    return MetadataFilter(expected)


class ResultShaper:
    """Order scored records, collapse parents and emit :class:`SearchResult` values."""

    def shape(
        self,
        scored: Sequence[ScoredRecord],
        *,
        top_k: int,
        group_by_parent_document: bool = False,
    ) -> List[SearchResult]:
        """Rank ``scored`` by descending score (ties by lower id) and truncate.

        With ``group_by_parent_document`` only the best chunk of each parent
        survives; it contributes its own score, index and text as evidence.
        """
        ordered = sorted(scored, key=lambda item: (-item[1].combined, item[0].record_id))
        results: List[SearchResult] = []
        seen_parents: set[str] = set()
        for record, breakdown in ordered:
            if group_by_parent_document:
                if record.parent_external_id in seen_parents:
                    continue
                seen_parents.add(record.parent_external_id)
            results.append(
                SearchResult(
                    external_id=record.external_id,
                    parent_external_id=record.parent_external_id,
                    score=breakdown.combined,
                    evidence_chunk_index=record.chunk_index,
                    evidence_text=record.text,
                    metadata=record.metadata,
                    record_id=record.record_id,
                    diagnostics=breakdown,
                )
            )
            if len(results) >= top_k:
                break
        return results
