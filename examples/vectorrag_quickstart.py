"""Quickstart harness for VectorRAG."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Sequence

from VectorRAG import (
    DocumentMetadata,
    SearchOptions,
    VectorRAGConfigManager,
    VectorRAGDatabase,
    metadata_filter,
)
from VectorRAG.devtools import HashEmbeddingModel

DEFAULT_CONFIG = {
    "dimension": 64,
    "lsh": {"bands": 12, "bits_per_band": 8, "max_candidates": 256, "seed": 1337},
    "options": {
        "query_cache_capacity": 64,
        "default_chunking": {"chunk_size": 200, "chunk_overlap": 40},
    },
}

CORPUS = [
    (
        "kb-password",
        "To reset your password open Settings, choose Security and click Reset password. "
        "A confirmation email arrives within five minutes.",
        DocumentMetadata(department="Support", source="kb"),
    ),
    (
        "kb-vpn",
        "Install the VPN client and sign in with your corporate account to reach internal tools.",
        DocumentMetadata(department="Support", source="kb"),
    ),
    (
        "sales-pricing",
        "Enterprise pricing includes volume discounts and annual billing for large teams.",
        DocumentMetadata(department="Sales", source="wiki"),
    ),
]


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the quickstart harness."""

    parser = argparse.ArgumentParser(
        description="Ingest a tiny support corpus, run a hybrid search and save a snapshot."
    )
    parser.add_argument(
        "--config",
        default="tmp/vectorrag_quickstart.config.json",
        help="Path to a VectorRAG config file (default: %(default)s).",
    )
    parser.add_argument(
        "--query",
        default="How do I reset my password?",
        help="Query string to issue once ingestion completes.",
    )
    parser.add_argument(
        "--department",
        default=None,
        help="Restrict results to one department.",
    )
    parser.add_argument(
        "--top-k",
        type=int,
        default=3,
        help="Number of results to return (default: %(default)s).",
    )
    parser.add_argument(
        "--snapshot",
        default="tmp/vectorrag_quickstart.snapshot.json",
        help="Where to save the database snapshot (default: %(default)s).",
    )
    return parser.parse_args(argv)


def _ensure_config(path: Path) -> None:
    """Write a default configuration when ``path`` is missing."""

    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        return
    path.write_text(json.dumps(DEFAULT_CONFIG, indent=2), encoding="utf-8")
    print(f"[vectorrag-quickstart] wrote default config -> {path}")


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the quickstart harness."""

    args = _parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    config_path = Path(args.config)
    _ensure_config(config_path)

    config = VectorRAGConfigManager(config_path).get()
    database = VectorRAGDatabase.from_config(config)
    model = HashEmbeddingModel(config.dimension)
    for external_id, text, metadata in CORPUS:
        database.upsert_text_document(external_id, text, metadata, model)

    options = SearchOptions(
        top_k=args.top_k,
        use_hybrid=True,
        text_query=args.query,
        filter=metadata_filter(department=args.department) if args.department else None,
        group_by_parent_document=True,
    )
    for rank, hit in enumerate(database.search(model.embed(args.query), options), start=1):
        print(
            f"{rank}. {hit.external_id} score={hit.score:.3f} "
            f"vector={hit.diagnostics.vector_score:.3f} lexical={hit.diagnostics.lexical_score:.3f}"
        )
        print(f"   {hit.evidence_text}")

    snapshot = database.save(Path(args.snapshot))
    print(f"[vectorrag-quickstart] snapshot -> {snapshot}")
    print(json.dumps(database.observability.metrics_snapshot()["database"], indent=2))
    return 0


if __name__ == "__main__":  # pragma: no cover - manual harness
    raise SystemExit(main())
