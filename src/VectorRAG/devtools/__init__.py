# === NAVMAP v1 ===
# {
#   "module": "VectorRAG.devtools.__init__",
#   "purpose": "Developer tooling helpers for VectorRAG.",
#   "sections": []
# }
# === /NAVMAP ===

"""Developer tooling helpers for VectorRAG.

Re-exports the deterministic embedding model so tests, notebooks and examples
can ingest text without an external embedding service. The core package never
imports from here.
"""

from .embeddings import HashEmbeddingModel

__all__ = ("HashEmbeddingModel",)
