# === NAVMAP v1 ===
# {
#   "module": "VectorRAG.persistence",
#   "purpose": "Versioned JSON snapshots of the database state",
#   "sections": [
#     {
#       "id": "serialize-state",
#       "name": "serialize_state",
#       "anchor": "function-serialize-state",
#       "kind": "function"
#     },
#     {
#       "id": "write-snapshot",
#       "name": "write_snapshot",
#       "anchor": "function-write-snapshot",
#       "kind": "function"
#     },
#     {
#       "id": "read-snapshot",
#       "name": "read_snapshot",
#       "anchor": "function-read-snapshot",
#       "kind": "function"
#     },
#     {
#       "id": "restore-state",
#       "name": "restore_state",
#       "anchor": "function-restore-state",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Snapshot persistence for :class:`VectorRAG.database.VectorRAGDatabase`.

A snapshot is one UTF-8 JSON document::

    {
      "format": "vectorrag-snapshot",
      "format_version": 1,
      "dimension": 64,
      "lsh": {"bands": 12, "bits_per_band": 8, "seed": 1337},
      "metrics": {...},
      "records": [{"id": 0, "active": true, "vector": "<base64 float32 LE>", ...}]
    }

Every record is written, tombstoned ones included, so ids survive a round
trip. Writes go to a temporary sibling that is fsynced and atomically renamed
over the target; a failed write never touches the previous snapshot.

Loading checks, in order: the file can be read, parses as JSON, carries the
supported ``format_version``, matches the envelope schema, and agrees with the
receiving database on dimension and LSH parameters. Only then is a
replacement store built; the caller swaps it in.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, TextIO, Tuple, Union

import numpy as np
from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError as JSONSchemaValidationError

from .config import LshConfig
from .errors import (
    ConfigMismatchError,
    DimensionMismatchError,
    FormatVersionMismatchError,
    SnapshotCorruptError,
    SnapshotIOError,
)
from .types import DocumentMetadata, MetricsSnapshot
from .vectorstore import VectorStore

# --- Globals ---

logger = logging.getLogger(__name__)

__all__ = (
    "FORMAT_NAME",
    "FORMAT_VERSION",
    "SNAPSHOT_FILENAME",
    "SNAPSHOT_SCHEMA",
    "atomic_write",
    "read_snapshot",
    "resolve_snapshot_path",
    "restore_state",
    "serialize_state",
    "write_snapshot",
)

FORMAT_NAME = "vectorrag-snapshot"
FORMAT_VERSION = 1
SNAPSHOT_FILENAME = "vectorrag.snapshot.json"

PathLike = Union[str, "os.PathLike[str]"]

SNAPSHOT_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "VectorRAG snapshot",
    "type": "object",
    "required": ["format", "format_version", "dimension", "lsh", "metrics", "records"],
    "properties": {
        "format": {"const": FORMAT_NAME},
        "format_version": {"type": "integer"},
        "saved_at": {"type": "string"},
        "dimension": {"type": "integer", "minimum": 1},
        "lsh": {
            "type": "object",
            "required": ["bands", "bits_per_band", "seed"],
            "properties": {
                "bands": {"type": "integer", "minimum": 1},
                "bits_per_band": {"type": "integer", "minimum": 1},
                "seed": {"type": "integer", "minimum": 0},
            },
        },
        "metrics": {
            "type": "object",
            "required": ["records_total", "queries_total", "avg_query_latency"],
            "properties": {
                "records_active": {"type": "integer", "minimum": 0},
                "records_total": {"type": "integer", "minimum": 0},
                "queries_total": {"type": "integer", "minimum": 0},
                "avg_query_latency": {"type": "number", "minimum": 0},
            },
        },
        "records": {
            "type": "array",
            "items": {
                "type": "object",
                "required": [
                    "id",
                    "external_id",
                    "parent_external_id",
                    "chunk_index",
                    "text",
                    "metadata",
                    "active",
                    "vector",
                ],
                "properties": {
                    "id": {"type": "integer", "minimum": 0},
                    "external_id": {"type": "string"},
                    "parent_external_id": {"type": "string"},
                    "chunk_index": {"type": "integer", "minimum": 0},
                    "text": {"type": "string"},
                    "active": {"type": "boolean"},
                    "vector": {"type": "string"},
                    "metadata": {
                        "type": "object",
                        "properties": {
                            "department": {"type": ["string", "null"]},
                            "is_active": {"type": "boolean"},
                            "source": {"type": ["string", "null"]},
                            "attributes": {"type": "object"},
                        },
                    },
                },
            },
        },
    },
}

Draft202012Validator.check_schema(SNAPSHOT_SCHEMA)
_SNAPSHOT_VALIDATOR = Draft202012Validator(SNAPSHOT_SCHEMA)


# --- Helpers ---


def resolve_snapshot_path(target: PathLike) -> Path:
    """Return the snapshot file for ``target``; directories get the default filename."""
    path = Path(target)
    if path.is_dir():
        return path / SNAPSHOT_FILENAME
    return path


@contextmanager
def atomic_write(path: Path) -> Iterator[TextIO]:
    """Write to a temporary file and atomically replace the destination."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f"{path.name}.tmp.{uuid.uuid4().hex}")
    try:
        with tmp.open("w", encoding="utf-8") as handle:
            yield handle
            handle.flush()
            os.fsync(handle.fileno())
        tmp.replace(path)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise


def _encode_vector(vector: np.ndarray) -> str:
    return base64.b64encode(np.asarray(vector, dtype="<f4").tobytes()).decode("ascii")


def _decode_vector(encoded: str, dimension: int, record_id: int) -> np.ndarray:
    try:
        raw = base64.b64decode(encoded.encode("ascii"), validate=True)
    except (ValueError, UnicodeEncodeError) as exc:
        raise SnapshotCorruptError(f"record {record_id}: vector is not valid base64") from exc
    if len(raw) % 4:
        raise SnapshotCorruptError(f"record {record_id}: vector byte length {len(raw)} is not float32")
    vector = np.frombuffer(raw, dtype="<f4").astype(np.float32)
    if vector.shape[0] != dimension:
        raise DimensionMismatchError(dimension, int(vector.shape[0]), f"snapshot record {record_id}")
    return vector


# --- Public Functions ---


def serialize_state(
    store: VectorStore,
    *,
    lsh: LshConfig,
    metrics: MetricsSnapshot,
) -> Dict[str, Any]:
    """Capture ``store`` and ``metrics`` as a JSON-safe snapshot payload."""
    records = [
        {
            "id": record.record_id,
            "external_id": record.external_id,
            "parent_external_id": record.parent_external_id,
            "chunk_index": record.chunk_index,
            "text": record.text,
            "metadata": record.metadata.to_dict(),
            "active": record.active,
            "vector": _encode_vector(record.vector),
        }
        for record in store.iterate_all()
    ]
    return {
        "format": FORMAT_NAME,
        "format_version": FORMAT_VERSION,
        "saved_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "dimension": store.dimension,
        "lsh": {"bands": lsh.bands, "bits_per_band": lsh.bits_per_band, "seed": lsh.seed},
        "metrics": {
            "records_active": metrics.records_active,
            "records_total": metrics.records_total,
            "queries_total": metrics.queries_total,
            "avg_query_latency": metrics.avg_query_latency,
        },
        "records": records,
    }


def write_snapshot(target: PathLike, payload: Mapping[str, Any]) -> Path:
    """Atomically write ``payload`` to ``target`` and return the file written.

    Raises:
        SnapshotIOError: If the file cannot be written; the previous snapshot
            (if any) is left in place.
    """
    path = resolve_snapshot_path(target)
    try:
        document = json.dumps(payload, separators=(",", ":"), sort_keys=True, allow_nan=False)
        with atomic_write(path) as handle:
            handle.write(document)
    except (OSError, TypeError, ValueError) as exc:
        raise SnapshotIOError(f"Failed to write snapshot: {exc}", path) from exc
    return path


def read_snapshot(source: PathLike) -> Dict[str, Any]:
    """Read, parse and validate the snapshot envelope at ``source``.

    Raises:
        SnapshotIOError: The file cannot be read.
        SnapshotCorruptError: The file is not valid JSON or violates the schema.
        FormatVersionMismatchError: The file declares another format version.
    """
    path = resolve_snapshot_path(source)
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise SnapshotIOError(f"Failed to read snapshot: {exc}", path) from exc
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SnapshotCorruptError(f"Snapshot is not valid JSON: {exc}", path) from exc
    if not isinstance(payload, dict):
        raise SnapshotCorruptError("Snapshot root must be a JSON object", path)
    version = payload.get("format_version")
    if isinstance(version, int) and not isinstance(version, bool) and version != FORMAT_VERSION:
        raise FormatVersionMismatchError(FORMAT_VERSION, version)
    try:
        _SNAPSHOT_VALIDATOR.validate(payload)
    except JSONSchemaValidationError as exc:
        location = " -> ".join(str(part) for part in exc.path)
        message = exc.message
        if location:
            message = f"{location}: {message}"
        raise SnapshotCorruptError(f"Snapshot validation failed: {message}", path) from exc
    return payload


def restore_state(
    payload: Mapping[str, Any],
    *,
    dimension: int,
    lsh: LshConfig,
    initial_capacity: int = 1024,
    normalize_on_add: bool = True,
) -> Tuple[VectorStore, MetricsSnapshot]:
    """Build a fresh store from a validated snapshot payload.

    Vectors are restored verbatim (no renormalisation) so search results are
    reproduced exactly.

    Raises:
        DimensionMismatchError: Snapshot dimension or a record vector differs.
        ConfigMismatchError: Snapshot LSH parameters differ from ``lsh``.
        SnapshotCorruptError: Record ids are not dense or keys collide.
    """
    snapshot_dimension = int(payload["dimension"])
    if snapshot_dimension != dimension:
        raise DimensionMismatchError(dimension, snapshot_dimension, "snapshot")
    stored_lsh = payload["lsh"]
    for field_name in ("bands", "bits_per_band", "seed"):
        expected = getattr(lsh, field_name)
        actual = stored_lsh[field_name]
        if actual != expected:
            raise ConfigMismatchError(field_name, expected, actual)

    records = payload["records"]
    store = VectorStore(
        dimension,
        initial_capacity=max(initial_capacity, len(records)),
        normalize_on_add=normalize_on_add,
    )
    for position, entry in enumerate(records):
        if entry["id"] != position:
            raise SnapshotCorruptError(
                f"record ids must be dense: expected {position}, found {entry['id']}"
            )
        vector = _decode_vector(entry["vector"], dimension, position)
        try:
            store.append_raw(
                external_id=entry["external_id"],
                parent_external_id=entry["parent_external_id"],
                chunk_index=entry["chunk_index"],
                text=entry["text"],
                vector=vector,
                metadata=DocumentMetadata.from_dict(entry["metadata"]),
                active=entry["active"],
            )
        except ValueError as exc:
            if isinstance(exc, DimensionMismatchError):
                raise
            raise SnapshotCorruptError(f"record {position}: {exc}") from exc

    stored_metrics = payload["metrics"]
    metrics = MetricsSnapshot(
        records_active=store.active_count,
        records_total=max(int(stored_metrics["records_total"]), store.total_count),
        queries_total=int(stored_metrics["queries_total"]),
        avg_query_latency=float(stored_metrics["avg_query_latency"]),
    )
    logger.debug(
        "vectorrag-snapshot-decoded",
        extra={"event": {"records": store.total_count, "active": store.active_count}},
    )
    return store, metrics
