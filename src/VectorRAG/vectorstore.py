# === NAVMAP v1 ===
# {
#   "module": "VectorRAG.vectorstore",
#   "purpose": "Dense vector and metadata storage with tombstones",
#   "sections": [
#     {
#       "id": "normalize-vector",
#       "name": "normalize_vector",
#       "anchor": "function-normalize-vector",
#       "kind": "function"
#     },
#     {
#       "id": "coerce-vector",
#       "name": "coerce_vector",
#       "anchor": "function-coerce-vector",
#       "kind": "function"
#     },
#     {
#       "id": "vectorstore",
#       "name": "VectorStore",
#       "anchor": "class-vectorstore",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Dense vector storage for VectorRAG records.

``VectorStore`` owns every record ever created until compaction. Vectors live
in one contiguous ``float32`` matrix (row ``i`` belongs to record id ``i``) so
the ranking layer can score a candidate set with a single matrix product; each
:class:`~VectorRAG.types.Record` also carries its own read-only copy so a
record handed to a caller never changes underneath it.

The store holds no search logic and performs no locking: the database facade
serialises writers and keeps the store in step with the LSH index.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

import numpy as np
from numpy.typing import NDArray

from .errors import DimensionMismatchError, RecordNotFoundError
from .tokenization import token_set
from .types import DocumentEmbedding, DocumentMetadata, Record, VectorLike

# --- Globals ---

logger = logging.getLogger(__name__)

__all__ = ("VectorStore", "coerce_vector", "normalize_vector")

_MIN_CAPACITY = 16


# --- Helpers ---


def coerce_vector(values: VectorLike, dimension: int, context: str = "vector") -> NDArray[np.float32]:
    """Return ``values`` as a fresh 1-D ``float32`` array of length ``dimension``.

    Raises:
        DimensionMismatchError: If the vector is not 1-D with ``dimension`` components.
        ValueError: If the vector contains NaN or infinite components.
    """
    array = np.array(values, dtype=np.float32, copy=True)
    if array.ndim != 1:
        raise DimensionMismatchError(dimension, int(array.size), context)
    if array.shape[0] != dimension:
        raise DimensionMismatchError(dimension, int(array.shape[0]), context)
    if not np.all(np.isfinite(array)):
        raise ValueError(f"{context}: vector contains non-finite components")
    return array


def normalize_vector(vector: NDArray[np.floating]) -> NDArray[np.float32]:
    """Scale ``vector`` to unit L2 norm; zero vectors are returned unchanged.

    Examples:
        >>> normalize_vector(np.array([3.0, 4.0])).tolist()
        [0.6000000238418579, 0.800000011920929]
    """
    array = np.asarray(vector, dtype=np.float32)
    norm = float(np.linalg.norm(array.astype(np.float64)))
    if norm == 0.0:
        return array.copy()
    return (array.astype(np.float64) / norm).astype(np.float32)


def _freeze(vector: NDArray[np.float32]) -> NDArray[np.float32]:
    vector.setflags(write=False)
    return vector


# --- Public Classes ---


class VectorStore:
    """Append-only record table with tombstones and in-place replacement.

    Attributes:
        dimension: Fixed vector length.
        normalize_on_add: Rescale vectors to unit norm on insert/replace.

    Examples:
        >>> store = VectorStore(3, initial_capacity=4)
        >>> rid = store.add(DocumentEmbedding(external_id="doc", vector=[1.0, 0.0, 0.0]))
        >>> store.get(rid).external_id
        'doc'
    """

    def __init__(
        self,
        dimension: int,
        *,
        initial_capacity: int = 1024,
        normalize_on_add: bool = True,
    ) -> None:
        self.dimension = int(dimension)
        self.normalize_on_add = bool(normalize_on_add)
        capacity = max(_MIN_CAPACITY, int(initial_capacity))
        self._matrix: NDArray[np.float32] = np.zeros((capacity, self.dimension), dtype=np.float32)
        self._norms: NDArray[np.float32] = np.zeros(capacity, dtype=np.float32)
        self._records: List[Record] = []
        self._active_by_key: Dict[Tuple[str, int], int] = {}
        self._active_by_parent: Dict[str, Set[int]] = {}
        self._active_count = 0

    # -- introspection -------------------------------------------------

    @property
    def capacity(self) -> int:
        return int(self._matrix.shape[0])

    @property
    def active_count(self) -> int:
        return self._active_count

    @property
    def total_count(self) -> int:
        """Records held in storage, tombstoned ones included."""
        return len(self._records)

    def __len__(self) -> int:
        return self._active_count

    def __contains__(self, record_id: object) -> bool:
        return isinstance(record_id, int) and 0 <= record_id < len(self._records)

    def get(self, record_id: int) -> Record:
        """Return the record stored under ``record_id`` (active or tombstoned)."""
        if record_id not in self:
            raise RecordNotFoundError(record_id)
        return self._records[record_id]

    def find(self, parent_external_id: str, chunk_index: int) -> Optional[int]:
        """Return the active record id for ``(parent, chunk_index)`` if any."""
        return self._active_by_key.get((parent_external_id, chunk_index))

    def ids_for_parent(self, parent_external_id: str) -> List[int]:
        """Return active record ids belonging to ``parent_external_id`` in id order."""
        return sorted(self._active_by_parent.get(parent_external_id, ()))

    def iterate_active(self) -> Iterator[Record]:
        """Lazily yield active records in id order."""
        for record in self._records:
            if record.active:
                yield record

    def iterate_all(self) -> Iterator[Record]:
        """Yield every stored record, tombstoned ones included, in id order."""
        return iter(self._records)

    def vectors(self, record_ids: Sequence[int]) -> NDArray[np.float32]:
        """Return a ``(len(record_ids), dimension)`` copy of the requested rows."""
        if not record_ids:
            return np.empty((0, self.dimension), dtype=np.float32)
        return self._matrix[np.asarray(record_ids, dtype=np.int64)]

    def norms(self, record_ids: Sequence[int]) -> NDArray[np.float32]:
        """Return the L2 norms of the requested rows."""
        if not record_ids:
            return np.empty(0, dtype=np.float32)
        return self._norms[np.asarray(record_ids, dtype=np.int64)]

    # -- mutation ------------------------------------------------------

    def add(self, embedding: DocumentEmbedding) -> int:
        """Append ``embedding`` as a new active record and return its id.

        Raises:
            DimensionMismatchError: If the vector length is wrong.
            ValueError: If ``(parent, chunk_index)`` is already active.
        """
        vector = self._prepare(embedding.vector, "add")
        parent = embedding.parent_id
        key = (parent, int(embedding.chunk_index))
        if key in self._active_by_key:
            raise ValueError(f"record for {key!r} is already active; use replace()")
        return self._append(
            external_id=embedding.external_id,
            parent_external_id=parent,
            chunk_index=int(embedding.chunk_index),
            text=embedding.text,
            vector=vector,
            metadata=embedding.metadata,
            active=True,
        )

    def replace(self, record_id: int, embedding: DocumentEmbedding) -> Record:
        """Replace the active record ``record_id`` in place, keeping its id.

        Returns:
            The record that was replaced.

        Raises:
            RecordNotFoundError: If the id is unknown or tombstoned.
            DimensionMismatchError: If the vector length is wrong.
        """
        previous = self.get(record_id)
        if not previous.active:
            raise RecordNotFoundError(record_id)
        vector = self._prepare(embedding.vector, "replace")
        parent = embedding.parent_id
        key = (parent, int(embedding.chunk_index))
        holder = self._active_by_key.get(key)
        if holder is not None and holder != record_id:
            raise ValueError(f"record for {key!r} is already active under id {holder}")
        record = self._build(
            record_id,
            external_id=embedding.external_id,
            parent_external_id=parent,
            chunk_index=int(embedding.chunk_index),
            text=embedding.text,
            vector=vector,
            metadata=embedding.metadata,
            active=True,
        )
        self.restore(record_id, record)
        return previous

    def tombstone(self, record_id: int) -> bool:
        """Mark ``record_id`` inactive; returns ``False`` if it already was."""
        record = self.get(record_id)
        if not record.active:
            return False
        self._unregister(record)
        self._records[record_id] = self._with_active(record, False)
        self._active_count -= 1
        return True

    def reactivate(self, record_id: int) -> None:
        """Undo :meth:`tombstone`; used by the facade's rollback journal."""
        record = self.get(record_id)
        if record.active:
            return
        if record.key in self._active_by_key:
            raise ValueError(f"record for {record.key!r} is already active")
        self._records[record_id] = self._with_active(record, True)
        self._register(record)
        self._active_count += 1

    def restore(self, record_id: int, record: Record) -> None:
        """Write ``record`` verbatim into slot ``record_id`` (no normalisation)."""
        current = self.get(record_id)
        if current.active:
            self._unregister(current)
            self._active_count -= 1
        self._records[record_id] = record
        self._write_row(record_id, record.vector)
        if record.active:
            self._register(record)
            self._active_count += 1

    def discard_last(self, record_id: int) -> None:
        """Remove the most recently appended record; used by rollback only."""
        if record_id != len(self._records) - 1:
            raise ValueError("only the most recently appended record can be discarded")
        record = self._records.pop()
        if record.active:
            self._unregister(record)
            self._active_count -= 1
        self._matrix[record_id] = 0.0
        self._norms[record_id] = 0.0

    def append_raw(
        self,
        *,
        external_id: str,
        parent_external_id: str,
        chunk_index: int,
        text: str,
        vector: VectorLike,
        metadata: DocumentMetadata,
        active: bool,
    ) -> int:
        """Append a record exactly as given; used when restoring snapshots."""
        coerced = coerce_vector(vector, self.dimension, "load")
        if active and (parent_external_id, chunk_index) in self._active_by_key:
            raise ValueError(
                f"duplicate active record for {(parent_external_id, chunk_index)!r}"
            )
        return self._append(
            external_id=external_id,
            parent_external_id=parent_external_id,
            chunk_index=chunk_index,
            text=text,
            vector=coerced,
            metadata=metadata,
            active=active,
        )

    def compacted(self) -> Tuple["VectorStore", Dict[int, int]]:
        """Return a new store holding only active records, densely renumbered.

        Returns:
            The compacted store and a mapping of old id to new id.
        """
        fresh = VectorStore(
            self.dimension,
            initial_capacity=max(self._active_count, _MIN_CAPACITY),
            normalize_on_add=self.normalize_on_add,
        )
        remap: Dict[int, int] = {}
        for record in self.iterate_active():
            remap[record.record_id] = fresh._append(
                external_id=record.external_id,
                parent_external_id=record.parent_external_id,
                chunk_index=record.chunk_index,
                text=record.text,
                vector=np.array(record.vector, dtype=np.float32),
                metadata=record.metadata,
                active=True,
            )
        return fresh, remap

    # -- internals -----------------------------------------------------

    def _prepare(self, values: VectorLike, context: str) -> NDArray[np.float32]:
        vector = coerce_vector(values, self.dimension, context)
        if self.normalize_on_add:
            vector = normalize_vector(vector)
        return vector

    def _append(
        self,
        *,
        external_id: str,
        parent_external_id: str,
        chunk_index: int,
        text: str,
        vector: NDArray[np.float32],
        metadata: DocumentMetadata,
        active: bool,
    ) -> int:
        record_id = len(self._records)
        self._ensure_capacity(record_id + 1)
        record = self._build(
            record_id,
            external_id=external_id,
            parent_external_id=parent_external_id,
            chunk_index=chunk_index,
            text=text,
            vector=vector,
            metadata=metadata,
            active=active,
        )
        self._records.append(record)
        self._write_row(record_id, record.vector)
        if active:
            self._register(record)
            self._active_count += 1
        return record_id

    def _build(
        self,
        record_id: int,
        *,
        external_id: str,
        parent_external_id: str,
        chunk_index: int,
        text: str,
        vector: NDArray[np.float32],
        metadata: Optional[DocumentMetadata],
        active: bool,
    ) -> Record:
        return Record(
            record_id=record_id,
            external_id=str(external_id),
            parent_external_id=str(parent_external_id),
            chunk_index=int(chunk_index),
            text=text or "",
            vector=_freeze(np.array(vector, dtype=np.float32, copy=True)),
            metadata=metadata if metadata is not None else DocumentMetadata(),
            active=active,
            tokens=token_set(text or ""),
        )

    @staticmethod
    def _with_active(record: Record, active: bool) -> Record:
        return Record(
            record_id=record.record_id,
            external_id=record.external_id,
            parent_external_id=record.parent_external_id,
            chunk_index=record.chunk_index,
            text=record.text,
            vector=record.vector,
            metadata=record.metadata,
            active=active,
            tokens=record.tokens,
        )

    def _write_row(self, record_id: int, vector: NDArray[np.float32]) -> None:
        self._matrix[record_id] = vector
        self._norms[record_id] = np.float32(np.linalg.norm(vector.astype(np.float64)))

    def _register(self, record: Record) -> None:
        self._active_by_key[record.key] = record.record_id
        self._active_by_parent.setdefault(record.parent_external_id, set()).add(record.record_id)

    def _unregister(self, record: Record) -> None:
        if self._active_by_key.get(record.key) == record.record_id:
            del self._active_by_key[record.key]
        members = self._active_by_parent.get(record.parent_external_id)
        if members is not None:
            members.discard(record.record_id)
            if not members:
                del self._active_by_parent[record.parent_external_id]

    def _ensure_capacity(self, required: int) -> None:
        capacity = self.capacity
        if required <= capacity:
            return
        new_capacity = max(required, capacity * 2)
        matrix = np.zeros((new_capacity, self.dimension), dtype=np.float32)
        matrix[:capacity] = self._matrix
        norms = np.zeros(new_capacity, dtype=np.float32)
        norms[:capacity] = self._norms
        self._matrix = matrix
        self._norms = norms
        logger.debug(
            "vectorstore-grow",
            extra={"event": {"from": capacity, "to": new_capacity}},
        )

