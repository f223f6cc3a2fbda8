"""
In-process vector index over knowledge entries.

One L2-normalized embedding per active entry, built from "title\\ncontent".
Search is an exhaustive cosine scan: the corpus is a few thousand entries
at most, so no approximate index is needed.

Concurrency: readers take a reference to the current vector map and never
lock; writers build a new map and swap it in under a lock (copy-on-write).
A long precompute therefore never blocks queries, which see every vector
published so far.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Union, cast

import numpy as np

from issa.core.database import DatabaseManager, FetchType
from issa.core.exceptions import (
    DatabaseError,
    DimensionMismatchError,
    EmbeddingUnavailableError,
    IssaError,
    ValidationError,
)
from issa.core.logging import logger
from issa.core.tracing import metrics
from issa.core.utils.datetime_utils import utc_now_iso
from issa.embeddings.types import Embedder, EmbeddingVector
from issa.models.knowledge import KnowledgeEntry

ArrayLike = Union[np.ndarray, Sequence[float]]


def cosine_similarity(a: ArrayLike, b: ArrayLike) -> float:
    """dot(a, b) / (|a| * |b|), 0.0 when either vector is zero.

    Raises:
        DimensionMismatchError: the vectors have different lengths
    """
    va = np.asarray(a, dtype=np.float32).reshape(-1)
    vb = np.asarray(b, dtype=np.float32).reshape(-1)
    if va.shape[0] != vb.shape[0]:
        raise DimensionMismatchError(
            f"Cannot compare vectors of dimension {va.shape[0]} and {vb.shape[0]}",
            context={"left": int(va.shape[0]), "right": int(vb.shape[0])},
        )

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


@dataclass(frozen=True)
class VectorHit:
    """One nearest-neighbor result."""

    entry_id: int
    score: float


@dataclass
class PrecomputeReport:
    """Outcome of a bulk embedding run."""

    processed: int = 0
    skipped: int = 0
    failed: int = 0
    duration_ms: float = 0.0

    @property
    def total(self) -> int:
        return self.processed + self.skipped + self.failed


ProgressCallback = Callable[[int, int], None]


def _unavailable(
    message: str, embedder: Embedder, cause: Exception
) -> EmbeddingUnavailableError:
    error = EmbeddingUnavailableError(message, context={"model": embedder.model_name}, cause=cause)
    if isinstance(cause, IssaError):
        for suggestion in cause.suggestions:
            error.add_suggestion(suggestion)
    return error


class VectorIndex:
    """Embedding store with cosine nearest-neighbor search."""

    def __init__(
        self, embedder: Optional[Embedder] = None, db: Optional[DatabaseManager] = None
    ):
        """
        Args:
            embedder: text → vector capability; search and precompute need it
            db: when given, vectors are persisted in knowledge_embeddings
        """
        self.embedder = embedder
        self.db = db
        self._vectors: Dict[int, EmbeddingVector] = {}
        self._dimension: Optional[int] = None
        self._write_lock = threading.Lock()
        # Ids removed or re-embedded while a precompute run is in flight, one set per run
        self._superseded: List[Set[int]] = []

        logger.info(
            "VectorIndex initialized",
            model=embedder.model_name if embedder else None,
            persistent=db is not None,
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def model_name(self) -> Optional[str]:
        return self.embedder.model_name if self.embedder is not None else None

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._vectors

    def is_ready(self) -> bool:
        """True when an embedder is attached and its model is loaded."""
        return self.embedder is not None and self.embedder.is_ready()

    def get_vector(self, entry_id: int) -> Optional[EmbeddingVector]:
        return self._vectors.get(entry_id)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "initialized": self.is_ready(),
            "model": self.model_name,
            "cached_embeddings": len(self._vectors),
            "vector_dimension": self._dimension,
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _require_embedder(self) -> Embedder:
        if self.embedder is None:
            raise EmbeddingUnavailableError("No embedding model configured for vector search")
        return self.embedder

    def _embed(self, text: str) -> np.ndarray:
        embedder = self._require_embedder()
        try:
            values = embedder.embed(text)
        except EmbeddingUnavailableError:
            raise
        except Exception as e:
            raise _unavailable(f"Embedding model failed: {e}", embedder, e)
        return np.asarray(values, dtype=np.float32).reshape(-1)

    def _publish(
        self, vector: EmbeddingVector, superseded: Optional[Set[int]] = None
    ) -> bool:
        """
        Swap in a new map containing vector.

        Args:
            vector: Vector to store
            superseded: Set of the precompute run publishing the vector. Without
                it the write comes from add() and newer than any running precompute.

        Returns:
            False when the entry was removed or re-embedded since the run started
        """
        with self._write_lock:
            if superseded is not None and vector.entry_id in superseded:
                return False
            if self._dimension is not None and vector.dimension != self._dimension:
                raise DimensionMismatchError(
                    f"Embedding of entry {vector.entry_id} has dimension {vector.dimension}, "
                    f"index holds {self._dimension}",
                    context={"entry_id": vector.entry_id},
                )
            updated = dict(self._vectors)
            updated[vector.entry_id] = vector
            self._vectors = updated
            self._dimension = vector.dimension
            if superseded is None:
                self._mark_superseded(vector.entry_id)
        return True

    def _mark_superseded(self, entry_id: int) -> None:
        # Caller holds _write_lock
        for run in self._superseded:
            run.add(entry_id)

    def _persist(self, vector: EmbeddingVector) -> None:
        if self.db is None:
            return
        try:
            self.db.execute(
                """
                INSERT INTO knowledge_embeddings (
                    knowledge_id, embedding, model_name, vector_dimension, created_at
                ) VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(knowledge_id) DO UPDATE SET
                    embedding = excluded.embedding,
                    model_name = excluded.model_name,
                    vector_dimension = excluded.vector_dimension,
                    created_at = excluded.created_at
                """,
                (
                    vector.entry_id,
                    vector.to_bytes(),
                    vector.model,
                    vector.dimension,
                    utc_now_iso(),
                ),
            )
        except DatabaseError as e:
            # The in-memory vector still serves queries in this process
            logger.warning(
                "Could not persist embedding", entry_id=vector.entry_id, error=e.message
            )

    def add(self, entry: KnowledgeEntry) -> EmbeddingVector:
        """
        Embed one entry and store (or overwrite) its vector.

        Raises:
            ValidationError: entry without id
            EmbeddingUnavailableError: no embedder or model failure
            DimensionMismatchError: model output differs from stored vectors
        """
        # Only precompute runs can be superseded
        return cast(EmbeddingVector, self._add(entry))

    def _add(
        self, entry: KnowledgeEntry, superseded: Optional[Set[int]] = None
    ) -> Optional[EmbeddingVector]:
        if entry.id is None:
            raise ValidationError("Cannot index an entry without id")

        values = self._embed(entry.to_embedding_text())
        vector = EmbeddingVector.create(entry.id, values, self._require_embedder().model_name)
        if not self._publish(vector, superseded):
            return None
        self._persist(vector)
        return vector

    def remove(self, entry_id: int) -> bool:
        """Drop the vector of an entry. Returns whether one existed."""
        with self._write_lock:
            existed = entry_id in self._vectors
            self._mark_superseded(entry_id)
            if existed:
                updated = dict(self._vectors)
                del updated[entry_id]
                self._vectors = updated

        if self.db is not None:
            try:
                self.db.execute(
                    "DELETE FROM knowledge_embeddings WHERE knowledge_id = ?", (entry_id,)
                )
            except DatabaseError as e:
                logger.warning(
                    "Could not delete stored embedding", entry_id=entry_id, error=e.message
                )

        if existed:
            logger.debug("Embedding removed", entry_id=entry_id)
        return existed

    def _load_model(self) -> Embedder:
        """Load the model up front when the embedder supports it."""
        embedder = self._require_embedder()
        load = getattr(embedder, "load", None)
        if callable(load) and not embedder.is_ready():
            try:
                load()
            except Exception as e:
                raise _unavailable(f"Could not load embedding model: {e}", embedder, e)
        return embedder

    def precompute(
        self,
        entries: Iterable[KnowledgeEntry],
        progress: Optional[ProgressCallback] = None,
        is_current: Optional[Callable[[int], bool]] = None,
    ) -> PrecomputeReport:
        """
        Embed every entry, overwriting existing vectors.

        Each vector is published as soon as it is computed. Entries without
        id are skipped, and so are entries removed or re-embedded through
        add() while the run is in flight. Entries whose embedding fails are
        counted as failed and the run continues, unless the model itself
        cannot be loaded.

        Args:
            entries: Entries to embed
            progress: Called with (done, total) after each entry
            is_current: Called with the entry id before embedding it; False skips it

        Raises:
            EmbeddingUnavailableError: no embedder attached or the model does not load
        """
        embedder = self._load_model()
        batch = list(entries)
        report = PrecomputeReport()
        start_time = time.perf_counter()
        superseded: Set[int] = set()

        logger.info("Embedding precompute started", entries=len(batch))

        with self._write_lock:
            self._superseded.append(superseded)
        try:
            for position, entry in enumerate(batch, start=1):
                if entry.id is None:
                    report.skipped += 1
                    logger.warning("Entry without id skipped", title=entry.title[:50])
                elif entry.id in superseded or (is_current and not is_current(entry.id)):
                    report.skipped += 1
                    logger.debug("Outdated entry skipped", entry_id=entry.id)
                else:
                    try:
                        if self._add(entry, superseded) is None:
                            report.skipped += 1
                        else:
                            report.processed += 1
                    except (EmbeddingUnavailableError, DimensionMismatchError) as e:
                        if not embedder.is_ready():
                            logger.error(
                                "Embedding model unavailable, run stopped", error=e.message
                            )
                            raise
                        report.failed += 1
                        logger.error("Could not embed entry", entry_id=entry.id, error=e.message)

                if progress is not None:
                    progress(position, len(batch))
        finally:
            with self._write_lock:
                self._superseded = [run for run in self._superseded if run is not superseded]

        report.duration_ms = (time.perf_counter() - start_time) * 1000
        metrics.increment("embeddings.precomputed", report.processed)
        logger.info(
            "Embedding precompute finished",
            processed=report.processed,
            skipped=report.skipped,
            failed=report.failed,
            duration_ms=report.duration_ms,
        )
        return report

    def load_persisted(self) -> int:
        """
        Load stored vectors of the current model for active entries.

        Vectors whose dimension differs from the index dimension are skipped.

        Returns:
            Number of vectors loaded
        """
        if self.db is None or self.embedder is None:
            return 0

        result = self.db.execute(
            """
            SELECT e.knowledge_id, e.embedding, e.model_name, e.vector_dimension
            FROM knowledge_embeddings e
            JOIN knowledge_base kb ON kb.id = e.knowledge_id
            WHERE e.model_name = ? AND kb.is_active = 1
            ORDER BY e.knowledge_id
            """,
            (self.embedder.model_name,),
            fetch=FetchType.ALL,
        )

        loaded = 0
        skipped = 0
        with self._write_lock:
            updated = dict(self._vectors)
            dimension = self._dimension
            for row in result.data or []:  # type: ignore[union-attr]
                vector = EmbeddingVector.from_bytes(
                    row["knowledge_id"], row["embedding"], row["model_name"]
                )
                if vector.dimension != row["vector_dimension"] or (
                    dimension is not None and vector.dimension != dimension
                ):
                    skipped += 1
                    continue
                dimension = vector.dimension
                updated[vector.entry_id] = vector
                loaded += 1
            self._vectors = updated
            self._dimension = dimension

        if skipped:
            logger.warning("Stored embeddings with mismatched dimension skipped", count=skipped)
        logger.info("Persisted embeddings loaded", count=loaded, model=self.embedder.model_name)
        return loaded

    def clear(self) -> None:
        """Forget every in-memory vector (stored rows are kept)."""
        with self._write_lock:
            self._vectors = {}
            self._dimension = None
        logger.info("VectorIndex cleared")

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, query_text: str, top_k: int = 5) -> List[VectorHit]:
        """
        Entries most similar to the query.

        The query is embedded once and compared with every stored vector.
        A comparison that fails on dimensions is skipped, not fatal.

        Returns:
            Up to top_k hits by descending similarity, ties by ascending id

        Raises:
            ValidationError: negative top_k
            EmbeddingUnavailableError: no embedder or model failure
        """
        if top_k < 0:
            raise ValidationError(f"top_k must be >= 0, got {top_k}", context={"top_k": top_k})

        snapshot = self._vectors
        if top_k == 0 or not snapshot:
            return []

        query_vector = self._embed(query_text)

        hits: List[VectorHit] = []
        for entry_id, vector in snapshot.items():
            try:
                score = cosine_similarity(query_vector, vector.values)
            except DimensionMismatchError as e:
                metrics.increment("embeddings.dimension_mismatches")
                logger.warning("Vector comparison skipped", entry_id=entry_id, error=e.message)
                continue
            hits.append(VectorHit(entry_id=entry_id, score=score))

        hits.sort(key=lambda hit: (-hit.score, hit.entry_id))

        logger.debug("Vector search", candidates=len(snapshot), results=min(top_k, len(hits)))
        return hits[:top_k]
