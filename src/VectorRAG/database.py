# === NAVMAP v1 ===
# {
#   "module": "VectorRAG.database",
#   "purpose": "Thread-safe facade coordinating storage, LSH, ranking, caching and persistence",
#   "sections": [
#     {
#       "id": "mutationjournal",
#       "name": "_MutationJournal",
#       "anchor": "class-mutationjournal",
#       "kind": "class"
#     },
#     {
#       "id": "vectorragdatabase",
#       "name": "VectorRAGDatabase",
#       "anchor": "class-vectorragdatabase",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Public entry point of the VectorRAG in-memory retrieval database.

``VectorRAGDatabase`` keeps a :class:`~VectorRAG.vectorstore.VectorStore` and an
:class:`~VectorRAG.lsh.LshIndex` in lock-step behind one writer-preferring
readers/writer lock:

- ``search`` holds the shared side, so any number of queries run in parallel.
- Every mutation (``add``, ``add_batch``, the commit phase of
  ``upsert_text_document``, ``tombstone``, ``delete_document``, ``compact``)
  and ``save``/``load`` hold the exclusive side.
- Text embedding happens before the lock is taken, so a slow embedding model
  never blocks readers.

Multi-step mutations record each step in a journal; if any step raises, the
journal is replayed backwards before the lock is released and the metrics are
left untouched, so callers observe either the whole mutation or none of it.

Usage:
    from VectorRAG import VectorRAGDatabase, SearchOptions, metadata_filter
    from VectorRAG.devtools import HashEmbeddingModel

    model = HashEmbeddingModel(64)
    db = VectorRAGDatabase(64)
    db.upsert_text_document("kb-1", "Reset your password via Settings.", {"department": "Support"}, model)
    hits = db.search(model.embed("how do I reset my password"), SearchOptions(top_k=3))
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .cache import QueryCache, make_cache_key
from .chunking import chunk_text
from .concurrency import ReadWriteLock
from .config import ChunkingOptions, DatabaseOptions, LshConfig, VectorRAGConfig
from .errors import IngestionCancelledError, InvalidConfigurationError, RecordNotFoundError
from .interfaces import AsyncEmbeddingModel, EmbeddingModel
from .lsh import LshIndex
from .observability import Observability
from .persistence import read_snapshot, restore_state, serialize_state, write_snapshot
from .ranking import HybridScorer, ResultShaper, apply_filter
from .types import (
    DocumentEmbedding,
    DocumentMetadata,
    MetricsSnapshot,
    Record,
    SearchOptions,
    SearchResult,
    TextChunk,
    VectorLike,
)
from .vectorstore import VectorStore, coerce_vector, normalize_vector

# --- Globals ---

logger = logging.getLogger(__name__)

__all__ = ("VectorRAGDatabase",)

MetadataLike = Union[DocumentMetadata, Mapping[str, Any], None]
PathLike = Union[str, Path]


# --- Helpers ---


def _coerce_metadata(metadata: MetadataLike) -> DocumentMetadata:
    if metadata is None:
        return DocumentMetadata()
    if isinstance(metadata, DocumentMetadata):
        return metadata
    if isinstance(metadata, Mapping):
        known = {"department", "is_active", "source", "attributes"}
        attributes = dict(metadata.get("attributes") or {})
        attributes.update({key: value for key, value in metadata.items() if key not in known})
        return DocumentMetadata(
            department=metadata.get("department"),
            is_active=bool(metadata.get("is_active", True)),
            source=metadata.get("source"),
            attributes=attributes,
        )
    raise TypeError(f"metadata must be DocumentMetadata or a mapping, not {type(metadata).__name__}")


class _MutationJournal:
    """Undo log for one exclusive-section mutation."""

    def __init__(self, store: VectorStore, index: LshIndex) -> None:
        self._store = store
        self._index = index
        self._entries: List[Tuple[Any, ...]] = []
        self.inserted = 0
        self.tombstoned = 0

    def added(self, record_id: int) -> None:
        self._entries.append(("add", record_id))
        self.inserted += 1

    def replaced(self, record_id: int, previous: Record) -> None:
        self._entries.append(("replace", record_id, previous))

    def tombstoned_record(self, record_id: int) -> None:
        self._entries.append(("tombstone", record_id))
        self.tombstoned += 1

    def __len__(self) -> int:
        return len(self._entries)

    def rollback(self) -> None:
        for entry in reversed(self._entries):
            action, record_id = entry[0], entry[1]
            if action == "add":
                self._index.remove(record_id)
                self._store.discard_last(record_id)
            elif action == "replace":
                previous: Record = entry[2]
                self._store.restore(record_id, previous)
                self._index.insert(record_id, previous.vector)
            elif action == "tombstone":
                self._store.reactivate(record_id)
                self._index.insert(record_id, self._store.get(record_id).vector)
        self._entries.clear()
        self.inserted = 0
        self.tombstoned = 0


# --- Public Classes ---


class VectorRAGDatabase:
    """In-memory vector database with LSH candidate generation and hybrid ranking.

    Attributes:
        dimension: Vector length of every record and query.
        config: Complete configuration the database was built with.
        observability: Metrics, tracing and logging facade.

    Examples:
        >>> db = VectorRAGDatabase(3, options=DatabaseOptions(initial_capacity=8))
        >>> rid = db.add(DocumentEmbedding(external_id="a", vector=[1.0, 0.0, 0.0], text="alpha"))
        >>> [hit.external_id for hit in db.search([1.0, 0.1, 0.0])]
        ['a']
    """

    def __init__(
        self,
        dimension: int,
        lsh: Optional[LshConfig] = None,
        options: Optional[DatabaseOptions] = None,
        *,
        observability: Optional[Observability] = None,
    ) -> None:
        self._config = VectorRAGConfig(
            dimension=dimension,
            lsh=lsh if lsh is not None else LshConfig(),
            options=options if options is not None else DatabaseOptions(),
        )
        self._lock = ReadWriteLock()
        self._observability = observability or Observability(logger=logger)
        self._store = self._new_store()
        self._index = LshIndex(self.dimension, self._config.lsh)
        self._scorer = HybridScorer(self._config.options.lexical_measure)
        self._shaper = ResultShaper()
        self._cache = QueryCache(self._config.options.query_cache_capacity)

    @classmethod
    def from_config(
        cls, config: VectorRAGConfig, *, observability: Optional[Observability] = None
    ) -> "VectorRAGDatabase":
        """Build a database from a complete :class:`VectorRAGConfig`."""
        if not isinstance(config, VectorRAGConfig):
            raise InvalidConfigurationError("from_config expects a VectorRAGConfig instance")
        return cls(config.dimension, config.lsh, config.options, observability=observability)

    # -- properties ----------------------------------------------------

    @property
    def dimension(self) -> int:
        return self._config.dimension

    @property
    def config(self) -> VectorRAGConfig:
        return self._config

    @property
    def observability(self) -> Observability:
        return self._observability

    # -- ingestion -----------------------------------------------------

    def add(self, record: DocumentEmbedding) -> int:
        """Insert or replace one pre-embedded chunk and return its record id.

        An active record with the same ``(parent_external_id, chunk_index)``
        is replaced in place and keeps its id.
        """
        return self.add_batch([record])[0]

    def add_batch(self, records: Sequence[DocumentEmbedding]) -> List[int]:
        """Insert or replace several chunks in a single critical section.

        Either every record is applied or, if any fails (for example with
        :class:`~VectorRAG.errors.DimensionMismatchError`), none is.
        """
        batch = list(records)
        if not batch:
            return []
        for position, embedding in enumerate(batch):
            coerce_vector(embedding.vector, self.dimension, f"add_batch[{position}]")
        with self._lock.write_locked():
            journal = _MutationJournal(self._store, self._index)
            try:
                ids = [self._upsert_locked(embedding, journal) for embedding in batch]
            except Exception:
                self._rollback(journal, "add_batch")
                raise
            self._commit_metrics(journal)
        self._observability.metrics.increment("records_upserted", float(len(batch)))
        return ids

    def upsert_text_document(
        self,
        external_id: str,
        text: str,
        metadata: MetadataLike,
        embedding_model: EmbeddingModel,
        *,
        chunking: Optional[ChunkingOptions] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[int]:
        """Chunk, embed and upsert ``text`` as document ``external_id``.

        Chunks are embedded outside the writer lock. Existing chunks of the
        document are replaced in place by index; chunks beyond the new chunk
        count are tombstoned. Empty text tombstones the whole document.

        Args:
            external_id: Document id; also the parent id of every chunk.
            text: Full document text.
            metadata: :class:`DocumentMetadata` or a mapping of metadata fields.
            embedding_model: Object implementing :class:`EmbeddingModel`.
            chunking: Chunking options; defaults to ``DatabaseOptions.default_chunking``.
            cancel_event: Checked before each chunk is embedded.

        Returns:
            Record ids of the document's active chunks, in chunk order.

        Raises:
            IngestionCancelledError: If ``cancel_event`` was set during embedding.
            DimensionMismatchError: If the model returned a vector of the wrong length.
        """
        document_metadata = _coerce_metadata(metadata)
        chunks = self._chunk(text, chunking)
        embeddings: List[DocumentEmbedding] = []
        for chunk in chunks:
            if cancel_event is not None and cancel_event.is_set():
                raise IngestionCancelledError(
                    f"Ingestion of {external_id!r} cancelled after {len(embeddings)} chunk(s)"
                )
            vector = embedding_model.embed(chunk.text)
            embeddings.append(self._chunk_embedding(external_id, chunk, vector, document_metadata))
        if cancel_event is not None and cancel_event.is_set():
            raise IngestionCancelledError(f"Ingestion of {external_id!r} cancelled before commit")
        return self._commit_document(external_id, embeddings)

    async def upsert_text_document_async(
        self,
        external_id: str,
        text: str,
        metadata: MetadataLike,
        embedding_model: Union[AsyncEmbeddingModel, EmbeddingModel],
        *,
        chunking: Optional[ChunkingOptions] = None,
    ) -> List[int]:
        """Async variant of :meth:`upsert_text_document`.

        Uses ``embedding_model.aembed`` when available, otherwise ``embed``
        (awaiting its result if it is awaitable). Cancelling the task while
        chunks are being embedded leaves the database untouched; the commit
        itself is short and runs to completion.
        """
        document_metadata = _coerce_metadata(metadata)
        chunks = self._chunk(text, chunking)
        embeddings: List[DocumentEmbedding] = []
        aembed = getattr(embedding_model, "aembed", None)
        for chunk in chunks:
            if aembed is not None:
                vector = await aembed(chunk.text)
            else:
                vector = embedding_model.embed(chunk.text)  # type: ignore[union-attr]
                if inspect.isawaitable(vector):
                    vector = await vector
            embeddings.append(self._chunk_embedding(external_id, chunk, vector, document_metadata))
        return self._commit_document(external_id, embeddings)

    # -- maintenance ---------------------------------------------------

    def tombstone(self, record_id: int) -> bool:
        """Exclude ``record_id`` from search.

        Returns:
            ``True`` if the record was active, ``False`` if it already was tombstoned.

        Raises:
            RecordNotFoundError: If ``record_id`` was never created.
        """
        with self._lock.write_locked():
            if record_id not in self._store:
                raise RecordNotFoundError(record_id)
            changed = self._store.tombstone(record_id)
            if changed:
                self._index.remove(record_id)
                self._observability.database.on_tombstone()
                self._publish_gauges()
        if changed:
            logger.debug("vectorrag-tombstone", extra={"event": {"record_id": record_id}})
        return changed

    def delete_document(self, parent_external_id: str) -> int:
        """Tombstone every active chunk of ``parent_external_id``; returns the count."""
        with self._lock.write_locked():
            journal = _MutationJournal(self._store, self._index)
            try:
                for record_id in self._store.ids_for_parent(parent_external_id):
                    self._tombstone_locked(record_id, journal)
            except Exception:
                self._rollback(journal, "delete_document")
                raise
            self._commit_metrics(journal)
        return journal.tombstoned

    def get(self, record_id: int) -> Record:
        """Return the record stored under ``record_id``, tombstoned or not."""
        with self._lock.read_locked():
            return self._store.get(record_id)

    def compact(self) -> Dict[int, int]:
        """Drop tombstoned records, renumber ids densely and rebuild the index.

        Returns:
            Mapping of old record id to new record id for every surviving record.
        """
        with self._observability.trace("compact"):
            with self._lock.write_locked():
                before = self._store.total_count
                store, remap = self._store.compacted()
                index = self._build_index(store)
                self._store, self._index = store, index
                self._cache.clear()
                self._publish_gauges()
        logger.info(
            "vectorrag-compacted",
            extra={"event": {"records_before": before, "records_after": len(remap)}},
        )
        return remap

    def clear_cache(self) -> None:
        self._cache.clear()

    def get_metrics(self) -> MetricsSnapshot:
        """Return the record/query counters; has no side effects."""
        return self._observability.database.snapshot()

    # -- search --------------------------------------------------------

    def search(
        self, query_vector: VectorLike, options: Optional[SearchOptions] = None
    ) -> List[SearchResult]:
        """Return up to ``options.top_k`` results for ``query_vector``.

        Raises:
            DimensionMismatchError: If the query has the wrong length.
        """
        opts = options if options is not None else SearchOptions()
        start = time.perf_counter()
        query = coerce_vector(query_vector, self.dimension, "query")
        if self._config.options.normalize_query_on_search:
            query = normalize_vector(query)

        cache_key = make_cache_key(query, opts) if self._cache.enabled else None
        if cache_key is not None:
            cached = self._cache.get(cache_key)
            if cached is not None:
                self._observability.metrics.increment("search_cache", outcome="hit")
                self._record_query(start)
                return list(cached)
            self._observability.metrics.increment("search_cache", outcome="miss")
        elif self._cache.enabled:
            self._observability.metrics.increment("search_cache", outcome="bypass")

        with self._lock.read_locked():
            candidates = self._index.candidates(query)
            records = [self._store.get(record_id) for record_id in candidates.ids]
            eligible = apply_filter((r for r in records if r.active), opts.filter)
            ids = [record.record_id for record in eligible]
            breakdowns = self._scorer.score_batch(
                query,
                opts.text_query,
                eligible,
                self._store.vectors(ids),
                norms=self._store.norms(ids),
                use_hybrid=opts.use_hybrid,
                alpha=opts.alpha,
            )
        results = self._shaper.shape(
            list(zip(eligible, breakdowns)),
            top_k=opts.top_k,
            group_by_parent_document=opts.group_by_parent_document,
        )
        if cache_key is not None:
            self._cache.put(cache_key, results)
        self._observability.metrics.observe(
            "search_candidates", float(len(candidates)), source=candidates.source
        )
        self._record_query(start)
        return results

    # -- persistence ---------------------------------------------------

    def save(self, target: PathLike) -> Path:
        """Write a snapshot to ``target`` (a file, or a directory to hold one).

        Returns:
            Path of the snapshot file written.

        Raises:
            SnapshotIOError: If the snapshot cannot be written.
        """
        with self._observability.trace("save"):
            with self._lock.write_locked():
                payload = serialize_state(
                    self._store,
                    lsh=self._config.lsh,
                    metrics=self._observability.database.snapshot(),
                )
                path = write_snapshot(target, payload)
        logger.info(
            "vectorrag-snapshot-saved",
            extra={"event": {"path": str(path), "records": len(payload["records"])}},
        )
        return path

    def load(self, source: PathLike) -> None:
        """Replace the whole database state with the snapshot at ``source``.

        The snapshot is validated and decoded completely before the swap; on
        any error the current state is left unchanged.

        Raises:
            SnapshotIOError: The snapshot cannot be read.
            SnapshotCorruptError: The snapshot is malformed.
            FormatVersionMismatchError: The snapshot format version is unsupported.
            DimensionMismatchError: The snapshot dimension differs.
            ConfigMismatchError: The snapshot LSH parameters differ.
        """
        with self._observability.trace("load"):
            payload = read_snapshot(source)
            store, metrics = restore_state(
                payload,
                dimension=self.dimension,
                lsh=self._config.lsh,
                initial_capacity=self._config.options.initial_capacity,
                normalize_on_add=self._config.options.normalize_vectors_on_add,
            )
            index = self._build_index(store)
            with self._lock.write_locked():
                self._store, self._index = store, index
                self._observability.database.restore(metrics)
                self._cache.clear()
                self._publish_gauges()
        logger.info(
            "vectorrag-snapshot-loaded",
            extra={"event": {"path": str(source), "records": store.total_count}},
        )

    async def save_async(self, target: PathLike) -> Path:
        """Run :meth:`save` in a worker thread."""
        return await asyncio.to_thread(self.save, target)

    async def load_async(self, source: PathLike) -> None:
        """Run :meth:`load` in a worker thread."""
        await asyncio.to_thread(self.load, source)

    # -- internals -----------------------------------------------------

    def _new_store(self) -> VectorStore:
        return VectorStore(
            self.dimension,
            initial_capacity=self._config.options.initial_capacity,
            normalize_on_add=self._config.options.normalize_vectors_on_add,
        )

    def _build_index(self, store: VectorStore) -> LshIndex:
        index = LshIndex(self.dimension, self._config.lsh)
        index.insert_many((record.record_id, record.vector) for record in store.iterate_active())
        return index

    def _chunk(self, text: str, chunking: Optional[ChunkingOptions]) -> List[TextChunk]:
        options = chunking if chunking is not None else self._config.options.default_chunking
        return chunk_text(text or "", options)

    def _chunk_embedding(
        self,
        external_id: str,
        chunk: TextChunk,
        vector: Sequence[float],
        metadata: DocumentMetadata,
    ) -> DocumentEmbedding:
        return DocumentEmbedding(
            external_id=external_id,
            vector=coerce_vector(vector, self.dimension, f"{external_id}#{chunk.index}"),
            text=chunk.text,
            parent_external_id=external_id,
            chunk_index=chunk.index,
            metadata=metadata,
        )

    def _commit_document(self, external_id: str, embeddings: List[DocumentEmbedding]) -> List[int]:
        with self._lock.write_locked():
            journal = _MutationJournal(self._store, self._index)
            try:
                ids = [self._upsert_locked(embedding, journal) for embedding in embeddings]
                for record_id in self._store.ids_for_parent(external_id):
                    if self._store.get(record_id).chunk_index >= len(embeddings):
                        self._tombstone_locked(record_id, journal)
            except Exception:
                self._rollback(journal, "upsert_text_document")
                raise
            self._commit_metrics(journal)
        logger.debug(
            "vectorrag-document-upserted",
            extra={
                "event": {
                    "external_id": external_id,
                    "chunks": len(embeddings),
                    "tombstoned": journal.tombstoned,
                }
            },
        )
        return ids

    def _upsert_locked(self, embedding: DocumentEmbedding, journal: _MutationJournal) -> int:
        existing = self._store.find(embedding.parent_id, int(embedding.chunk_index))
        if existing is not None:
            previous = self._store.replace(existing, embedding)
            journal.replaced(existing, previous)
            self._index.insert(existing, self._store.get(existing).vector)
            return existing
        record_id = self._store.add(embedding)
        journal.added(record_id)
        self._index.insert(record_id, self._store.get(record_id).vector)
        return record_id

    def _tombstone_locked(self, record_id: int, journal: _MutationJournal) -> None:
        if self._store.tombstone(record_id):
            journal.tombstoned_record(record_id)
            self._index.remove(record_id)

    def _commit_metrics(self, journal: _MutationJournal) -> None:
        if journal.inserted:
            self._observability.database.on_insert(journal.inserted)
        if journal.tombstoned:
            self._observability.database.on_tombstone(journal.tombstoned)
        self._publish_gauges()

    def _publish_gauges(self) -> None:
        metrics = self._observability.metrics
        metrics.set_gauge("records_active", self._store.active_count)
        metrics.set_gauge("records_stored", self._store.total_count)
        metrics.set_gauge("lsh_indexed", len(self._index))

    def _rollback(self, journal: _MutationJournal, operation: str) -> None:
        steps = len(journal)
        journal.rollback()
        self._observability.metrics.increment("mutation_rollbacks", operation=operation)
        logger.warning(
            "vectorrag-rollback",
            extra={"event": {"operation": operation, "steps": steps}},
        )

    def _record_query(self, start: float) -> None:
        latency_ms = (time.perf_counter() - start) * 1000.0
        self._observability.database.on_query(latency_ms)
        self._observability.metrics.observe("search_latency_ms", latency_ms)