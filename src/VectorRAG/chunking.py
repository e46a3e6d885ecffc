"""Chunk generation for document ingestion."""
from __future__ import annotations

from typing import Callable, Dict, Iterator, List, Protocol

from .config import ChunkingOptions, ChunkingStrategy
from .errors import InvalidConfigurationError
from .types import TextChunk

__all__ = (
    "Chunker",
    "FixedCharsChunker",
    "chunk_text",
    "get_chunker",
    "register_chunker",
)


class Chunker(Protocol):
    """Strategy turning raw text into ordered chunks.

    Implementations must be pure: the same input always yields the same chunks.
    """

    def chunk(self, text: str) -> List[TextChunk]:
        ...


class FixedCharsChunker:
    """Split text into deterministic overlapping character windows."""

    def __init__(self, *, chunk_size: int = 300, chunk_overlap: int = 50) -> None:
        if chunk_size <= 0:
            raise InvalidConfigurationError("chunk_size must be positive")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise InvalidConfigurationError("chunk_overlap must be within [0, chunk_size)")
        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def chunk_overlap(self) -> int:
        return self._chunk_overlap

    def iter_chunks(self, text: str) -> Iterator[TextChunk]:
        length = len(text)
        step = self._chunk_size - self._chunk_overlap
        start = 0
        index = 0
        while start < length:
            end = min(length, start + self._chunk_size)
            yield TextChunk(index=index, text=text[start:end], char_offset=(start, end))
            if end == length:
                break
            start += step
            index += 1

    def chunk(self, text: str) -> List[TextChunk]:
        return list(self.iter_chunks(text))


ChunkerFactory = Callable[[ChunkingOptions], Chunker]

_REGISTRY: Dict[ChunkingStrategy, ChunkerFactory] = {
    ChunkingStrategy.FIXED_CHARS: lambda options: FixedCharsChunker(
        chunk_size=options.chunk_size, chunk_overlap=options.chunk_overlap
    ),
}


def register_chunker(strategy: ChunkingStrategy, factory: ChunkerFactory) -> None:
    """Install ``factory`` as the chunker for ``strategy``, replacing any previous one."""

    _REGISTRY[ChunkingStrategy(strategy)] = factory


def get_chunker(options: ChunkingOptions) -> Chunker:
    """Return a chunker configured for ``options``."""

    factory = _REGISTRY.get(options.strategy)
    if factory is None:
        raise InvalidConfigurationError(f"No chunker registered for {options.strategy.value!r}")
    return factory(options)


def chunk_text(text: str, options: ChunkingOptions) -> List[TextChunk]:
    """Split ``text`` according to ``options``; empty text yields no chunks.

    Examples:
        >>> [c.text for c in chunk_text("abcdefghij", ChunkingOptions(chunk_size=4, chunk_overlap=1))]
        ['abcd', 'defg', 'ghij']
    """

    if not text:
        return []
    return get_chunker(options).chunk(text)
