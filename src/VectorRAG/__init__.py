# === NAVMAP v1 ===
# {
#   "module": "VectorRAG",
#   "purpose": "In-memory RAG support database public API",
#   "sections": []
# }
# === /NAVMAP ===

"""
VectorRAG is an in-memory vector database for retrieval-augmented generation.
It stores chunked, embedded documents with metadata and answers top-k queries
through random-hyperplane LSH candidate generation followed by exact cosine or
hybrid (cosine + lexical overlap) re-ranking.

Core modules and how they interrelate:

- ``config`` defines the frozen dataclasses configuring chunking, the LSH index
  and database options, plus a JSON/YAML file-backed ``VectorRAGConfigManager``.
- ``vectorstore`` owns record storage (a contiguous ``float32`` matrix plus
  metadata and tombstone flags); ``lsh`` owns the bucket index. Both share the
  record id space and are kept in step by ``database``.
- ``ranking`` scores candidates (cosine, token Jaccard, alpha fusion), applies
  metadata filters and collapses chunks by parent document.
- ``cache`` memoises search results; ``persistence`` writes and reads versioned
  JSON snapshots; ``observability`` collects metrics and timing spans.
- ``database`` exposes :class:`VectorRAGDatabase`, the thread-safe facade that
  ties everything together.
- ``devtools`` provides a deterministic hashing embedder for tests and demos.
"""

from __future__ import annotations

from .chunking import FixedCharsChunker, chunk_text
from .config import (
    ChunkingOptions,
    ChunkingStrategy,
    DatabaseOptions,
    LshConfig,
    VectorRAGConfig,
    VectorRAGConfigManager,
)
from .database import VectorRAGDatabase
from .errors import (
    ConfigMismatchError,
    DimensionMismatchError,
    FormatVersionMismatchError,
    IngestionCancelledError,
    InvalidConfigurationError,
    RecordNotFoundError,
    SnapshotCorruptError,
    SnapshotIOError,
    VectorRAGError,
)
from .interfaces import AsyncEmbeddingModel, EmbeddingModel
from .observability import Observability
from .ranking import MetadataFilter, metadata_filter
from .types import (
    DocumentEmbedding,
    DocumentMetadata,
    MetricsSnapshot,
    Record,
    ScoreBreakdown,
    SearchOptions,
    SearchResult,
    TextChunk,
)

# --- Globals ---

__all__ = (
    "AsyncEmbeddingModel",
    "ChunkingOptions",
    "ChunkingStrategy",
    "ConfigMismatchError",
    "DatabaseOptions",
    "DimensionMismatchError",
    "DocumentEmbedding",
    "DocumentMetadata",
    "EmbeddingModel",
    "FixedCharsChunker",
    "FormatVersionMismatchError",
    "IngestionCancelledError",
    "InvalidConfigurationError",
    "LshConfig",
    "MetadataFilter",
    "MetricsSnapshot",
    "Observability",
    "Record",
    "RecordNotFoundError",
    "ScoreBreakdown",
    "SearchOptions",
    "SearchResult",
    "SnapshotCorruptError",
    "SnapshotIOError",
    "TextChunk",
    "VectorRAGConfig",
    "VectorRAGConfigManager",
    "VectorRAGDatabase",
    "VectorRAGError",
    "chunk_text",
    "metadata_filter",
)
