# === NAVMAP v1 ===
# {
#   "module": "VectorRAG.config",
#   "purpose": "Database configuration models and file-backed manager",
#   "sections": [
#     {
#       "id": "chunkingoptions",
#       "name": "ChunkingOptions",
#       "anchor": "class-chunkingoptions",
#       "kind": "class"
#     },
#     {
#       "id": "lshconfig",
#       "name": "LshConfig",
#       "anchor": "class-lshconfig",
#       "kind": "class"
#     },
#     {
#       "id": "databaseoptions",
#       "name": "DatabaseOptions",
#       "anchor": "class-databaseoptions",
#       "kind": "class"
#     },
#     {
#       "id": "vectorragconfig",
#       "name": "VectorRAGConfig",
#       "anchor": "class-vectorragconfig",
#       "kind": "class"
#     },
#     {
#       "id": "vectorragconfigmanager",
#       "name": "VectorRAGConfigManager",
#       "anchor": "class-vectorragconfigmanager",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Configuration surface area for the VectorRAG database.

The dataclasses defined here describe every tunable aspect of the engine. All
of them are frozen and validated eagerly in ``__post_init__`` so an invalid
value fails the construction attempt and nothing else:

- ``ChunkingOptions`` governs the reference chunker in
  :mod:`VectorRAG.chunking`. ``chunk_size`` and ``chunk_overlap`` are measured
  in characters.
- ``LshConfig`` shapes the random-hyperplane index in :mod:`VectorRAG.lsh`.
  ``bands`` raises recall and cost, ``bits_per_band`` narrows buckets, and
  ``seed`` makes the hyperplanes (and therefore bucket assignment)
  reproducible. ``max_candidates`` bounds the scored candidate set;
  ``full_scan_fallback``/``full_scan_limit`` control the linear pass used when
  no bucket matches a query.
- ``DatabaseOptions`` covers storage pre-sizing, the query cache bound,
  normalisation switches, the default chunking policy and the lexical overlap
  measure used by :mod:`VectorRAG.ranking`.
- ``VectorRAGConfig`` groups the dimension and both sections into the single
  value handed to :class:`VectorRAG.database.VectorRAGDatabase`.

``VectorRAGConfigManager`` loads a configuration file (JSON first, YAML as a
fallback), caches the parsed value and supports thread-safe reloads.
"""

from __future__ import annotations

import enum
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from threading import RLock
from typing import Any, Literal, Optional

from .errors import InvalidConfigurationError

# --- Globals ---

__all__ = (
    "ChunkingOptions",
    "ChunkingStrategy",
    "DatabaseOptions",
    "LshConfig",
    "VectorRAGConfig",
    "VectorRAGConfigManager",
)

LexicalMeasure = Literal["jaccard", "query_coverage"]


# --- Public Classes ---


class ChunkingStrategy(str, enum.Enum):
    """Available chunking strategies."""

    FIXED_CHARS = "fixed_chars"


@dataclass(frozen=True)
class ChunkingOptions:
    """Configuration for splitting raw text into indexable chunks.

    Key fields:
    - ``strategy``: Chunking strategy, ``fixed_chars`` by default.
    - ``chunk_size``: Characters per chunk (300 default).
    - ``chunk_overlap``: Characters shared by consecutive chunks (50 default).

    Examples:
        >>> options = ChunkingOptions(chunk_size=200, chunk_overlap=20)
        >>> options.strategy.value
        'fixed_chars'
    """

    strategy: ChunkingStrategy = ChunkingStrategy.FIXED_CHARS
    chunk_size: int = 300
    chunk_overlap: int = 50

    def __post_init__(self) -> None:
        try:
            strategy = ChunkingStrategy(self.strategy)
        except ValueError as exc:
            raise InvalidConfigurationError(
                f"ChunkingOptions.strategy {self.strategy!r} is not supported"
            ) from exc
        object.__setattr__(self, "strategy", strategy)
        _require_int("ChunkingOptions.chunk_size", self.chunk_size)
        _require_int("ChunkingOptions.chunk_overlap", self.chunk_overlap)
        if self.chunk_size <= 0:
            raise InvalidConfigurationError("ChunkingOptions.chunk_size must be positive")
        if self.chunk_overlap < 0 or self.chunk_overlap >= self.chunk_size:
            raise InvalidConfigurationError(
                "ChunkingOptions.chunk_overlap must be within [0, chunk_size)"
            )


@dataclass(frozen=True)
class LshConfig:
    """Configuration for the random-hyperplane LSH index.

    Key fields:
    - ``bands``: Independent hash families; candidates are unioned across them.
    - ``bits_per_band``: Hyperplanes (sign bits) per band.
    - ``max_candidates``: Upper bound on candidates handed to the scorer.
    - ``seed``: Seed for hyperplane generation.
    - ``full_scan_fallback``: Scan every indexed id when no bucket matches.
    - ``full_scan_limit``: Largest index size for which the fallback may run
      (``None`` removes the limit).

    Examples:
        >>> LshConfig(bands=12, bits_per_band=8, max_candidates=1024, seed=1337).bands
        12
    """

    bands: int = 12
    bits_per_band: int = 8
    max_candidates: int = 1024
    seed: int = 1337
    full_scan_fallback: bool = True
    full_scan_limit: Optional[int] = 50_000

    def __post_init__(self) -> None:
        for name in ("bands", "bits_per_band", "max_candidates", "seed"):
            _require_int(f"LshConfig.{name}", getattr(self, name))
        if self.bands <= 0:
            raise InvalidConfigurationError("LshConfig.bands must be positive")
        if self.bits_per_band <= 0:
            raise InvalidConfigurationError("LshConfig.bits_per_band must be positive")
        if self.max_candidates <= 0:
            raise InvalidConfigurationError("LshConfig.max_candidates must be positive")
        if self.seed < 0:
            raise InvalidConfigurationError("LshConfig.seed must be non-negative")
        if self.full_scan_limit is not None:
            _require_int("LshConfig.full_scan_limit", self.full_scan_limit)
            if self.full_scan_limit < 0:
                raise InvalidConfigurationError("LshConfig.full_scan_limit must be non-negative")


@dataclass(frozen=True)
class DatabaseOptions:
    """Storage, caching and ranking options for :class:`VectorRAGDatabase`.

    Key fields:
    - ``initial_capacity``: Rows pre-allocated in the vector matrix.
    - ``query_cache_capacity``: Cached searches kept; ``0`` disables caching.
    - ``normalize_vectors_on_add`` / ``normalize_query_on_search``: L2 switches.
    - ``default_chunking``: Chunking used by ``upsert_text_document``.
    - ``lexical_measure``: ``jaccard`` (default) or ``query_coverage``.
    """

    initial_capacity: int = 1024
    query_cache_capacity: int = 256
    normalize_vectors_on_add: bool = True
    normalize_query_on_search: bool = True
    default_chunking: ChunkingOptions = field(default_factory=ChunkingOptions)
    lexical_measure: LexicalMeasure = "jaccard"

    def __post_init__(self) -> None:
        _require_int("DatabaseOptions.initial_capacity", self.initial_capacity)
        _require_int("DatabaseOptions.query_cache_capacity", self.query_cache_capacity)
        if self.initial_capacity < 0:
            raise InvalidConfigurationError("DatabaseOptions.initial_capacity must be non-negative")
        if self.query_cache_capacity < 0:
            raise InvalidConfigurationError(
                "DatabaseOptions.query_cache_capacity must be non-negative"
            )
        if not isinstance(self.default_chunking, ChunkingOptions):
            raise InvalidConfigurationError(
                "DatabaseOptions.default_chunking must be a ChunkingOptions instance"
            )
        if self.lexical_measure not in ("jaccard", "query_coverage"):
            raise InvalidConfigurationError(
                f"DatabaseOptions.lexical_measure {self.lexical_measure!r} is not supported"
            )


@dataclass(frozen=True)
class VectorRAGConfig:
    """Complete configuration for a :class:`VectorRAGDatabase`.

    Components:
    - ``dimension``: Fixed vector length for every record and query.
    - ``lsh``: Index configuration.
    - ``options``: Storage, cache and ranking options.

    Examples:
        >>> config = VectorRAGConfig(dimension=64, lsh=LshConfig(bands=8))
        >>> config.options.query_cache_capacity
        256
    """

    dimension: int
    lsh: LshConfig = field(default_factory=LshConfig)
    options: DatabaseOptions = field(default_factory=DatabaseOptions)

    def __post_init__(self) -> None:
        _require_int("VectorRAGConfig.dimension", self.dimension)
        if self.dimension <= 0:
            raise InvalidConfigurationError("VectorRAGConfig.dimension must be positive")
        if not isinstance(self.lsh, LshConfig):
            raise InvalidConfigurationError("VectorRAGConfig.lsh must be an LshConfig instance")
        if not isinstance(self.options, DatabaseOptions):
            raise InvalidConfigurationError(
                "VectorRAGConfig.options must be a DatabaseOptions instance"
            )

    @staticmethod
    def from_dict(payload: Mapping[str, Any]) -> VectorRAGConfig:
        """Construct a config object from a dictionary payload.

        Args:
            payload: Mapping with ``dimension`` plus optional ``lsh`` and
                ``options`` sections; ``options.default_chunking`` may itself
                be a mapping.

        Returns:
            Fully validated `VectorRAGConfig` instance.

        Raises:
            InvalidConfigurationError: If the payload or a section is malformed.
        """
        if not isinstance(payload, Mapping):
            raise InvalidConfigurationError(
                "VectorRAGConfig.from_dict expected a mapping payload, "
                f"received {type(payload).__name__}"
            )

        def coerce_section(source: Mapping[str, Any], name: str) -> dict[str, Any]:
            section = source.get(name)
            if section is None:
                return {}
            if not isinstance(section, Mapping):
                raise InvalidConfigurationError(
                    f"VectorRAGConfig.{name} must be a mapping or null, "
                    f"received {type(section).__name__}"
                )
            return dict(section)

        if "dimension" not in payload:
            raise InvalidConfigurationError("VectorRAGConfig.dimension is required")
        options_payload = coerce_section(payload, "options")
        chunking_payload = options_payload.pop("default_chunking", None)
        try:
            if chunking_payload is not None:
                if isinstance(chunking_payload, ChunkingOptions):
                    options_payload["default_chunking"] = chunking_payload
                elif isinstance(chunking_payload, Mapping):
                    options_payload["default_chunking"] = ChunkingOptions(**chunking_payload)
                else:
                    raise InvalidConfigurationError(
                        "VectorRAGConfig.options.default_chunking must be a mapping"
                    )
            lsh = LshConfig(**coerce_section(payload, "lsh"))
            options = DatabaseOptions(**options_payload)
        except TypeError as exc:
            raise InvalidConfigurationError(f"Unknown configuration field: {exc}") from exc
        return VectorRAGConfig(dimension=payload["dimension"], lsh=lsh, options=options)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-safe mapping accepted by :meth:`from_dict`."""
        chunking = self.options.default_chunking
        return {
            "dimension": self.dimension,
            "lsh": {
                "bands": self.lsh.bands,
                "bits_per_band": self.lsh.bits_per_band,
                "max_candidates": self.lsh.max_candidates,
                "seed": self.lsh.seed,
                "full_scan_fallback": self.lsh.full_scan_fallback,
                "full_scan_limit": self.lsh.full_scan_limit,
            },
            "options": {
                "initial_capacity": self.options.initial_capacity,
                "query_cache_capacity": self.options.query_cache_capacity,
                "normalize_vectors_on_add": self.options.normalize_vectors_on_add,
                "normalize_query_on_search": self.options.normalize_query_on_search,
                "lexical_measure": self.options.lexical_measure,
                "default_chunking": {
                    "strategy": chunking.strategy.value,
                    "chunk_size": chunking.chunk_size,
                    "chunk_overlap": chunking.chunk_overlap,
                },
            },
        }


class VectorRAGConfigManager:
    """File-backed configuration manager with reload support.

    Internals:
    - ``_path``: Path to the JSON/YAML configuration file.
    - ``_lock``: Threading lock guarding concurrent reloads.
    - ``_config``: Cached :class:`VectorRAGConfig` instance.

    Examples:
        >>> manager = VectorRAGConfigManager(Path("vectorrag.yaml"))  # doctest: +SKIP
        >>> manager.get().dimension  # doctest: +SKIP
        64
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = RLock()
        self._config = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def get(self) -> VectorRAGConfig:
        """Return the currently cached configuration."""
        with self._lock:
            return self._config

    def reload(self) -> VectorRAGConfig:
        """Reload configuration from disk, replacing the cached instance.

        Raises:
            FileNotFoundError: If the configuration path is missing.
            InvalidConfigurationError: If the file is neither valid JSON nor YAML.
        """
        with self._lock:
            self._config = self._load()
            return self._config

    def _load(self) -> VectorRAGConfig:
        if not self._path.exists():
            raise FileNotFoundError(f"Configuration file {self._path} not found")
        raw = self._path.read_text(encoding="utf-8")
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            payload = self._load_yaml(raw)
        return VectorRAGConfig.from_dict(payload)

    def _load_yaml(self, raw: str) -> dict[str, Any]:
        import yaml

        try:
            data = yaml.safe_load(raw)
        except yaml.YAMLError as exc:
            raise InvalidConfigurationError(
                f"Failed to parse YAML configuration at {self._path}: {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise InvalidConfigurationError("YAML configuration must define a mapping")
        return data


# --- Helpers ---


def _require_int(name: str, value: object) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidConfigurationError(f"{name} must be an int, received {type(value).__name__}")
