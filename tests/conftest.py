# === NAVMAP v1 ===
# {
#   "module": "tests.conftest",
#   "purpose": "Shared pytest fixtures for suite",
#   "sections": [
#     {
#       "id": "hash-model",
#       "name": "hash_model",
#       "anchor": "function-hash-model",
#       "kind": "function"
#     },
#     {
#       "id": "make-database",
#       "name": "make_database",
#       "anchor": "function-make-database",
#       "kind": "function"
#     },
#     {
#       "id": "support-corpus",
#       "name": "support_corpus",
#       "anchor": "function-support-corpus",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""
Pytest Configuration

Adds ``src`` to ``sys.path`` so the suite runs from a checkout without an
editable install, and provides the fixtures shared by the VectorRAG tests: a
deterministic hashing embedder, a database factory and a small support-desk
corpus.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from VectorRAG import (  # noqa: E402
    DatabaseOptions,
    DocumentMetadata,
    LshConfig,
    VectorRAGDatabase,
)
from VectorRAG.devtools import HashEmbeddingModel  # noqa: E402

DIMENSION = 64

SUPPORT_CORPUS: List[Dict[str, object]] = [
    {
        "external_id": "kb-password",
        "text": "To reset your password open Settings, choose Security and click Reset password.",
        "department": "Support",
    },
    {
        "external_id": "kb-vpn",
        "text": "Install the VPN client and sign in with your corporate account to reach internal tools.",
        "department": "Support",
    },
    {
        "external_id": "sales-pricing",
        "text": "Enterprise pricing includes volume discounts and annual billing for large teams.",
        "department": "Sales",
    },
]


@pytest.fixture
def hash_model() -> HashEmbeddingModel:
    """Deterministic token-hashing embedder with the suite dimension."""

    return HashEmbeddingModel(DIMENSION)


@pytest.fixture
def make_database() -> Callable[..., VectorRAGDatabase]:
    """Factory building databases with small, test-friendly defaults."""

    def _factory(
        dimension: int = DIMENSION,
        *,
        lsh: Optional[LshConfig] = None,
        options: Optional[DatabaseOptions] = None,
    ) -> VectorRAGDatabase:
        return VectorRAGDatabase(
            dimension,
            lsh or LshConfig(bands=8, bits_per_band=6, max_candidates=256, seed=1337),
            options or DatabaseOptions(initial_capacity=16, query_cache_capacity=32),
        )

    return _factory


@pytest.fixture
def support_corpus(
    make_database: Callable[..., VectorRAGDatabase], hash_model: HashEmbeddingModel
) -> VectorRAGDatabase:
    """Database preloaded with two Support articles and one Sales article."""

    db = make_database()
    for entry in SUPPORT_CORPUS:
        db.upsert_text_document(
            str(entry["external_id"]),
            str(entry["text"]),
            DocumentMetadata(department=str(entry["department"]), source="kb"),
            hash_model,
        )
    return db
