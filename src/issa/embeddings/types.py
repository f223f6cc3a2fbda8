"""
Standard types for the embeddings module.

Defines EmbeddingVector as the single stored embedding format and the
Embedder capability consumed by the vector index.
"""

from dataclasses import dataclass
from typing import List, Protocol, Sequence, Union, runtime_checkable

import numpy as np


@runtime_checkable
class Embedder(Protocol):
    """Pluggable text → vector capability.

    Any object with these members can back the vector index: the bundled
    TransformerEmbedder, a remote service client, or a test double.
    """

    @property
    def model_name(self) -> str:
        """Identifier stored next to every vector produced by this embedder."""
        ...

    def embed(self, text: str) -> List[float]:
        """Vector for one text. Same dimension for every call."""
        ...

    def is_ready(self) -> bool:
        """True once the underlying model can serve embed() calls."""
        ...


def l2_normalize(values: Union[np.ndarray, Sequence[float]]) -> np.ndarray:
    """float32 copy scaled to unit length. A zero vector stays zero."""
    data = np.asarray(values, dtype=np.float32).reshape(-1)
    norm = float(np.linalg.norm(data))
    if norm > 0:
        data = data / norm
    return data.astype(np.float32, copy=False)


@dataclass(frozen=True)
class EmbeddingVector:
    """Stored embedding of one knowledge entry.

    Attributes:
        entry_id: Knowledge entry id
        values: L2-normalized float32 array
        model: Name of the model that produced it
    """

    entry_id: int
    values: np.ndarray
    model: str

    @classmethod
    def create(
        cls, entry_id: int, values: Union[np.ndarray, Sequence[float]], model: str
    ) -> "EmbeddingVector":
        """Normalize raw model output into a stored vector."""
        return cls(entry_id=entry_id, values=l2_normalize(values), model=model)

    @property
    def dimension(self) -> int:
        return int(self.values.shape[0])

    def to_bytes(self) -> bytes:
        """float32 blob for the knowledge_embeddings table."""
        return self.values.astype(np.float32).tobytes()

    @classmethod
    def from_bytes(cls, entry_id: int, blob: bytes, model: str) -> "EmbeddingVector":
        return cls(
            entry_id=entry_id,
            values=np.frombuffer(blob, dtype=np.float32).copy(),
            model=model,
        )
