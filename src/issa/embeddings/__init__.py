"""
Embeddings module for ISSA.

Vector representations of knowledge entries for the semantic half of the
hybrid search.
"""

import threading
from typing import TYPE_CHECKING, Optional

from issa.core.logging import logger

from issa.embeddings.types import Embedder, EmbeddingVector, l2_normalize
from issa.embeddings.vector_index import (
    PrecomputeReport,
    VectorHit,
    VectorIndex,
    cosine_similarity,
)

if TYPE_CHECKING:
    from issa.core.secure_config import Settings
    from issa.embeddings.transformer import TransformerEmbedder

_embedder_instance: Optional["TransformerEmbedder"] = None
_lock = threading.Lock()


def get_embedder(settings: Optional["Settings"] = None) -> "TransformerEmbedder":
    """Returns the process-wide transformer embedder.

    Double-checked locking: the model weighs hundreds of MB, concurrent
    first callers must share a single instance. torch and transformers
    are only imported here, so the rest of the engine works without
    paying their import cost.
    """
    global _embedder_instance
    if _embedder_instance is None:
        with _lock:
            if _embedder_instance is None:
                from issa.embeddings.transformer import TransformerEmbedder

                _embedder_instance = TransformerEmbedder(settings=settings)
                logger.info("Embedder singleton created", model=_embedder_instance.model_name)
    return _embedder_instance


__all__ = [
    "Embedder",
    "EmbeddingVector",
    "l2_normalize",
    "VectorIndex",
    "VectorHit",
    "PrecomputeReport",
    "cosine_similarity",
    "get_embedder",
]
