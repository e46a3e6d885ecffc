# === NAVMAP v1 ===
# {
#   "module": "VectorRAG.lsh",
#   "purpose": "Random-hyperplane LSH index for approximate candidate generation",
#   "sections": [
#     {
#       "id": "candidateset",
#       "name": "CandidateSet",
#       "anchor": "class-candidateset",
#       "kind": "class"
#     },
#     {
#       "id": "lshindex",
#       "name": "LshIndex",
#       "anchor": "class-lshindex",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Random-hyperplane locality-sensitive hashing.

Each of ``bands`` hash families draws ``bits_per_band`` Gaussian hyperplanes
from a generator seeded with ``LshConfig.seed``; a vector's key in a band is
the packed sign pattern of its projections onto those hyperplanes. Vectors
with small angular distance agree on many sign bits and therefore collide in
at least one band with high probability.

The index only proposes candidates. Exact scoring happens in
:mod:`VectorRAG.ranking`, so a candidate set that is too large costs time and
one that is too small costs recall. Recall guards:

- When the index holds no more than ``max_candidates`` ids every id is
  proposed; bucketing cannot improve on an exhaustive pass at that size.
- When no bucket matches the query and ``full_scan_fallback`` is enabled, all
  ids are proposed provided the index holds at most ``full_scan_limit`` ids.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Literal, Optional, Set, Tuple

import numpy as np
from numpy.typing import NDArray

from .config import LshConfig
from .errors import DimensionMismatchError

logger = logging.getLogger(__name__)

__all__ = ("CandidateSet", "LshIndex")

CandidateSource = Literal["empty", "exhaustive", "buckets", "fallback"]
Signature = Tuple[bytes, ...]


@dataclass(frozen=True, slots=True)
class CandidateSet:
    """Candidate ids proposed for one query.

    Attributes:
        ids: Candidate record ids, best band agreement first.
        source: How the ids were produced (``buckets``, ``exhaustive``,
            ``fallback`` or ``empty``).
    """

    ids: Tuple[int, ...]
    source: CandidateSource

    @property
    def full_scan(self) -> bool:
        """``True`` when every indexed id was proposed."""
        return self.source in ("exhaustive", "fallback")

    def __len__(self) -> int:
        return len(self.ids)


class LshIndex:
    """Band-bucketed random-hyperplane index over record ids.

    Attributes:
        dimension: Vector length accepted by the index.
        config: LSH parameters.

    Examples:
        >>> index = LshIndex(4, LshConfig(bands=2, bits_per_band=4, seed=7))
        >>> index.insert(0, np.array([1.0, 0.0, 0.0, 0.0], dtype=np.float32))
        >>> index.candidates(np.array([1.0, 0.0, 0.0, 0.0], dtype=np.float32)).ids
        (0,)
    """

    def __init__(self, dimension: int, config: LshConfig) -> None:
        self.dimension = int(dimension)
        self.config = config
        rng = np.random.default_rng(config.seed)
        planes = rng.standard_normal((config.bands * config.bits_per_band, self.dimension))
        self._planes: NDArray[np.float64] = planes
        self._buckets: List[Dict[bytes, Set[int]]] = [{} for _ in range(config.bands)]
        self._signatures: Dict[int, Signature] = {}

    def __len__(self) -> int:
        return len(self._signatures)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._signatures

    def ids(self) -> List[int]:
        """Return every indexed id in ascending order."""
        return sorted(self._signatures)

    def signature(self, vector: NDArray[np.floating]) -> Signature:
        """Return the per-band bucket keys of ``vector``."""
        array = np.asarray(vector, dtype=np.float64)
        if array.shape != (self.dimension,):
            raise DimensionMismatchError(self.dimension, int(array.size), "lsh")
        bits = (self._planes @ array) >= 0.0
        return self._pack(bits.reshape(self.config.bands, self.config.bits_per_band))

    def signatures(self, matrix: NDArray[np.floating]) -> List[Signature]:
        """Vectorised :meth:`signature` over the rows of ``matrix``."""
        rows = np.asarray(matrix, dtype=np.float64)
        if rows.ndim != 2 or rows.shape[1] != self.dimension:
            raise DimensionMismatchError(self.dimension, int(rows.shape[-1]), "lsh")
        bits = (rows @ self._planes.T) >= 0.0
        shaped = bits.reshape(rows.shape[0], self.config.bands, self.config.bits_per_band)
        return [self._pack(sample) for sample in shaped]

    def insert(self, record_id: int, vector: NDArray[np.floating]) -> None:
        """Index ``record_id``; an id already present is rehashed."""
        self._attach(record_id, self.signature(vector))

    def insert_many(self, entries: Iterable[Tuple[int, NDArray[np.floating]]]) -> None:
        """Index several ``(record_id, vector)`` pairs in one projection."""
        pairs = list(entries)
        if not pairs:
            return
        matrix = np.stack([np.asarray(vector, dtype=np.float64) for _, vector in pairs])
        for (record_id, _), signature in zip(pairs, self.signatures(matrix)):
            self._attach(record_id, signature)

    def remove(self, record_id: int, vector: Optional[NDArray[np.floating]] = None) -> bool:
        """Drop ``record_id`` from every bucket; returns ``False`` if absent.

        ``vector`` is accepted for symmetry with :meth:`insert`; the stored
        signature is authoritative.
        """
        signature = self._signatures.pop(record_id, None)
        if signature is None:
            return False
        for band, key in zip(self._buckets, signature):
            members = band.get(key)
            if members is None:
                continue
            members.discard(record_id)
            if not members:
                del band[key]
        return True

    def clear(self) -> None:
        for band in self._buckets:
            band.clear()
        self._signatures.clear()

    def candidates(
        self, query: NDArray[np.floating], max_candidates: Optional[int] = None
    ) -> CandidateSet:
        """Return candidate ids for ``query``.

        Ids are ordered by the number of bands in which they share the query's
        bucket (descending), then by id, and truncated to ``max_candidates``.
        """
        budget = self.config.max_candidates if max_candidates is None else int(max_candidates)
        total = len(self._signatures)
        if total == 0:
            return CandidateSet(ids=(), source="empty")
        if total <= budget:
            return CandidateSet(ids=tuple(sorted(self._signatures)), source="exhaustive")

        agreement: Counter[int] = Counter()
        for band, key in zip(self._buckets, self.signature(query)):
            members = band.get(key)
            if members:
                agreement.update(members)

        if not agreement:
            limit = self.config.full_scan_limit
            if self.config.full_scan_fallback and (limit is None or total <= limit):
                logger.debug("lsh-full-scan", extra={"event": {"indexed": total}})
                return CandidateSet(ids=tuple(sorted(self._signatures)), source="fallback")
            return CandidateSet(ids=(), source="empty")

        ranked = sorted(agreement.items(), key=lambda item: (-item[1], item[0]))
        ids = tuple(record_id for record_id, _ in ranked[:budget])
        return CandidateSet(ids=ids, source="buckets")

    def bucket_stats(self) -> Dict[str, float]:
        """Return occupancy figures used for diagnostics."""
        sizes = [len(members) for band in self._buckets for members in band.values()]
        return {
            "indexed": float(len(self._signatures)),
            "buckets": float(len(sizes)),
            "max_bucket": float(max(sizes, default=0)),
            "mean_bucket": float(np.mean(sizes)) if sizes else 0.0,
        }

    def _attach(self, record_id: int, signature: Signature) -> None:
        if record_id in self._signatures:
            self.remove(record_id)
        self._signatures[record_id] = signature
        for band, key in zip(self._buckets, signature):
            band.setdefault(key, set()).add(record_id)

    @staticmethod
    def _pack(bits: NDArray[np.bool_]) -> Signature:
        packed = np.packbits(bits, axis=-1)
        return tuple(row.tobytes() for row in packed)
