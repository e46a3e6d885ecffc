"""Capability protocols the database depends on.

Ingestion never embeds text itself: callers pass an object satisfying
``EmbeddingModel`` (synchronous) or ``AsyncEmbeddingModel`` to
``VectorRAGDatabase.upsert_text_document``/``upsert_text_document_async``.
Implementations must return exactly ``dimension`` floats per call and may raise
any exception; failures propagate unchanged to the caller and leave the
database untouched.
"""

from __future__ import annotations

from typing import Awaitable, Protocol, Sequence, runtime_checkable

__all__ = ("AsyncEmbeddingModel", "EmbeddingModel")


@runtime_checkable
class EmbeddingModel(Protocol):
    """Synchronous text embedder.

    Attributes:
        dimension: Length of every vector returned by :meth:`embed`.
    """

    @property
    def dimension(self) -> int:
        ...

    def embed(self, text: str) -> Sequence[float]:
        """Return the embedding of ``text``."""
        ...


@runtime_checkable
class AsyncEmbeddingModel(Protocol):
    """Asynchronous text embedder used by ``upsert_text_document_async``."""

    @property
    def dimension(self) -> int:
        ...

    def aembed(self, text: str) -> Awaitable[Sequence[float]]:
        """Return an awaitable resolving to the embedding of ``text``."""
        ...
