"""Deterministic embedding model for tests, examples and validation harnesses.

``HashEmbeddingModel`` maps text to a bag of signed token hashes: every token
(see :func:`VectorRAG.tokenization.tokenize`) is hashed with SHA-256, the first
four digest bytes are read as a little-endian signed 32-bit integer ``h``, and the
token contributes ``+1`` (``h`` even) or ``-1`` (``h`` odd) to component
``(h & 0x7fffffff) % dimension``. The sum is L2-normalised. Tokens are the
same lowercased, punctuation-stripped tokens the lexical channel scores, so
``"Reset"`` and ``"reset,"`` share a component.

Texts sharing vocabulary therefore land close together under cosine similarity,
which is enough to exercise retrieval end to end without a neural model.
"""

from __future__ import annotations

import asyncio
import hashlib
from typing import List

import numpy as np
from numpy.typing import NDArray

from ..tokenization import tokenize

__all__ = ("HashEmbeddingModel",)


class HashEmbeddingModel:
    """Token-hashing embedder implementing both embedding protocols.

    Examples:
        >>> model = HashEmbeddingModel(64)
        >>> len(model.embed("reset your password"))
        64
        >>> model.embed("") == [0.0] * 64
        True
    """

    def __init__(self, dimension: int = 64) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self._dimension = int(dimension)

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, text: str) -> List[float]:
        return self.embed_array(text).tolist()

    async def aembed(self, text: str) -> List[float]:
        await asyncio.sleep(0)
        return self.embed(text)

    def embed_array(self, text: str) -> NDArray[np.float32]:
        """Return the embedding as a ``float32`` array."""
        aggregate = np.zeros(self._dimension, dtype=np.float64)
        for token in tokenize(text):
            bucket, sign = self._hash_token(token)
            aggregate[bucket] += sign
        norm = float(np.linalg.norm(aggregate))
        if norm > 0.0:
            aggregate /= norm
        return aggregate.astype(np.float32)

    def _hash_token(self, token: str) -> tuple[int, float]:
        digest = hashlib.sha256(token.encode("utf-8")).digest()
        value = int.from_bytes(digest[:4], "little", signed=True)
        return (value & 0x7FFFFFFF) % self._dimension, 1.0 if value % 2 == 0 else -1.0
