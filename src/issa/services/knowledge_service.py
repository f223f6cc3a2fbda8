"""
Knowledge Service - entry point of the retrieval engine.

Wires the store, the lexical index, the strategies, the reranker, the
vector index and the result cache, and exposes the operations used by the
conversational layer:

- search(): multi-strategy weighted search (keyword + fuzzy + intent)
- search_hybrid(): lexical + vector ranking fused with RRF
- get_context_for_query() / format_context_for_ai(): prompt context
- entry maintenance that keeps the indexes and the cache consistent
"""

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from issa.core.database import DatabaseManager
from issa.core.exceptions import (
    ConfigurationError,
    EmbeddingUnavailableError,
    IssaError,
    ValidationError,
)
from issa.core.logging import PerformanceLogger, logger
from issa.core.secure_config import Settings
from issa.core.tracing import MetricsCollector, metrics
from issa.embeddings import PrecomputeReport, VectorIndex, get_embedder
from issa.embeddings.types import Embedder
from issa.knowledge.store import KnowledgeStore, StoreEvent
from issa.models.knowledge import Intent, KnowledgeEntry
from issa.rag.retrieval.cache import ResultCache, cached_pipeline
from issa.rag.retrieval.fuzzy_matcher import FuzzyMatcher
from issa.rag.retrieval.hybrid_search import SEARCH_METHOD, HybridSearch
from issa.rag.retrieval.intent_search import IntentWeightedSearch
from issa.rag.retrieval.lexical_index import LexicalIndex
from issa.rag.retrieval.lexicon import SearchLexicon, load_lexicon
from issa.rag.retrieval.normalizer import QueryNormalizer, Stemmer
from issa.rag.retrieval.rerank import HybridReranker
from issa.rag.retrieval.results import LexicalHit, ScoredEntry, SearchQuery, SearchResult

NO_CONTEXT_MESSAGE = "Aucune information spécifique trouvée dans la base de connaissances."
CONTEXT_ERROR_MESSAGE = "Erreur lors de la récupération des informations."
CONTEXT_HEADER = "Informations pertinentes :\n\n"
CONTEXT_MAX_ENTRIES = 3


@dataclass
class KnowledgeContext:
    """Search result rendered for the language model prompt."""

    formatted_context: str
    relevant_entries: List[ScoredEntry] = field(default_factory=list)
    search_query: str = ""
    intent: Optional[str] = None
    category: Optional[str] = None


class KnowledgeService:
    """
    Hybrid knowledge retrieval over the knowledge base.

    IMPORTANT:
    - Every search degrades instead of failing: a broken strategy is
      logged and contributes nothing
    - Only invalid inputs (negative limits) raise ValidationError
    - Vector search is opt-in through enable_vector_search()
    - Any committed entry write flushes the result cache
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        db: Optional[DatabaseManager] = None,
        embedder: Optional[Embedder] = None,
        stemmer: Optional[Stemmer] = None,
        lexicon: Optional[SearchLexicon] = None,
    ) -> None:
        """
        Args:
            settings: Configuration (Settings() when omitted)
            db: Database; one is opened at database.path when omitted
            embedder: text → vector capability; the transformer embedder
                is created on enable_vector_search() when omitted
            stemmer: Root reduction (NLTK French Snowball by default)
            lexicon: Vocabulary (lexicon.path or the bundled file by default)
        """
        self.settings = settings or Settings()
        self.metrics = MetricsCollector()
        self.perf = PerformanceLogger(slow_ms=self.settings.get("logging.slow_query_ms"))

        self._owns_db = db is None
        self.db = db or DatabaseManager(self.settings.get("database.path"))
        self.lexicon = lexicon or load_lexicon(self.settings.get("lexicon.path"))
        self.store = KnowledgeStore(self.db)

        self.normalizer = QueryNormalizer(
            self.lexicon,
            stemmer,
            max_keywords=self.settings.get("search.max_keywords", 10),
            max_index_terms=self.settings.get("search.max_index_terms", 10),
            max_patterns=self.settings.get("search.max_fallback_patterns", 10),
            synonyms_per_keyword=self.settings.get("search.synonyms_per_keyword", 3),
        )
        self.lexical_index = LexicalIndex(
            self.db, self.store, limit=self.settings.get("search.lexical_limit", 10)
        )
        self.reranker = HybridReranker(rrf_k=self.settings.get("search.rrf_k", 60))

        self.cache_enabled = bool(self.settings.get("cache.enabled", True))
        self.cache = ResultCache(
            max_size=self.settings.get("cache.max_size", 1000),
            ttl=self.settings.get("cache.ttl_seconds", 3600),
        )

        strategies: Dict[str, Dict[str, Any]] = self.settings.get("search.strategies", {})
        self.hybrid = HybridSearch(
            store=self.store,
            lexical_index=self.lexical_index,
            normalizer=self.normalizer,
            fuzzy_matcher=FuzzyMatcher(self.settings.get("search.fuzzy_threshold", 0.7)),
            intent_search=IntentWeightedSearch(self.store, self.lexicon),
            reranker=self.reranker,
            strategy_weights={name: s.get("weight", 0.0) for name, s in strategies.items()},
            enabled_strategies={name: s.get("enabled", True) for name, s in strategies.items()},
            cache=self.cache if self.cache_enabled else None,
        )

        self.vector_index = VectorIndex(embedder, self.db)
        self._vector_enabled = False
        self._precompute_task: Optional["asyncio.Task[PrecomputeReport]"] = None

        if self.cache_enabled:
            self._context = cached_pipeline(self.cache, self._context_key)(self._build_context)
        else:
            self._context = self._build_context

        self.store.subscribe(self._on_store_event)

        logger.info(
            "KnowledgeService initialized",
            db_path=self.db.db_path,
            fts=self.db.fts_available,
            cache="enabled" if self.cache_enabled else "disabled",
            entries=self.store.count(),
        )

    # ------------------------------------------------------------------
    # Multi-strategy search
    # ------------------------------------------------------------------

    def _resolve_category(self, intent: Optional[str], category: Optional[str]) -> Optional[str]:
        if category:
            return category
        categories = self.lexicon.categories_for_intent(intent)
        return categories[0] if categories else None

    async def search(
        self,
        query: str,
        max_results: Optional[int] = None,
        min_relevance: Optional[float] = None,
        *,
        intent: Union[Intent, str, None] = None,
        category: Optional[str] = None,
        entities: Sequence[str] = (),
        deadline: Optional[float] = None,
    ) -> SearchResult:
        """
        Weighted multi-strategy search.

        Args:
            query: User question
            max_results: Result cap (search.max_results by default)
            min_relevance: Merged-score threshold (search.min_relevance by default)
            intent: Intent detected upstream (model or bare name)
            category: Explicit category; defaults to the first category mapped to the intent
            entities: Entity values extracted upstream
            deadline: time.monotonic() value after which no further strategy starts

        Raises:
            ValidationError: negative max_results or min_relevance
        """
        intent_name: Optional[str]
        if isinstance(intent, Intent):
            intent_name = intent.name
            entities = [*entities, *(entity.value for entity in intent.entities)]
        else:
            intent_name = intent

        search_query = SearchQuery(
            text=query,
            intent=intent_name,
            category=self._resolve_category(intent_name, category),
            entities=tuple(entities),
            max_results=(
                self.settings.get("search.max_results", 5) if max_results is None else max_results
            ),
            min_relevance=(
                self.settings.get("search.min_relevance", 0.3)
                if min_relevance is None
                else min_relevance
            ),
        )

        try:
            return await self.hybrid.search(search_query, deadline=deadline)
        except ValidationError:
            raise
        except Exception as e:
            self.metrics.increment("services.knowledge.search_errors")
            logger.error("Error in knowledge search", query=query[:50], error=str(e))
            return SearchResult.empty(search_query, SEARCH_METHOD)

    def format_context_for_ai(
        self, result: SearchResult, max_entries: int = CONTEXT_MAX_ENTRIES
    ) -> KnowledgeContext:
        """
        Render the top entries as numbered sources for the model prompt.

        Block layout:
            [Source i: title]
            content

            Mots-clés: k1, k2
            Pertinence: NN%
            ---
        """
        relevant = result.entries[: max(max_entries, 0)]
        blocks = [
            f"[Source {index}: {scored.entry.title}]\n"
            f"{scored.entry.content}\n\n"
            f"Mots-clés: {', '.join(scored.entry.keywords)}\n"
            f"Pertinence: {scored.relevance_score * 100:.0f}%\n"
            "---"
            for index, scored in enumerate(relevant, start=1)
        ]
        return KnowledgeContext(
            formatted_context="\n\n".join(blocks),
            relevant_entries=relevant,
            search_query=result.query.text,
            intent=result.query.intent,
            category=result.query.category,
        )

    # ------------------------------------------------------------------
    # Lexical and hybrid (RRF) search
    # ------------------------------------------------------------------

    def _lexical_hits(self, query: str) -> List[LexicalHit]:
        analysis = self.normalizer.analyze(query)
        return self.lexical_index.search(
            analysis.index_query,
            patterns=analysis.fallback_patterns,
            phrase=" ".join(analysis.keywords),
        )

    async def search_lexical(self, query: str) -> List[KnowledgeEntry]:
        """Full-text ranking (with substring fallback) of active entries."""
        return [hit.entry for hit in self._lexical_hits(query)]

    async def search_hybrid(self, query: str, top_k: int = 5) -> List[ScoredEntry]:
        """
        Lexical ranking fused with the vector ranking (RRF, k=60).

        The vector list holds 2 * top_k candidates. Without vector search,
        the fusion runs on the lexical list alone. If fusion fails, the
        plain lexical ranking is returned.

        Raises:
            ValidationError: negative top_k
        """
        if top_k < 0:
            raise ValidationError(f"top_k must be >= 0, got {top_k}", context={"top_k": top_k})

        with self.perf.measure("search_hybrid", query=query[:50], top_k=top_k) as timing:
            try:
                lexical = await self.search_lexical(query)
                vector = await self._vector_candidates(query, top_k * 2)
                fused = self.reranker.reciprocal_rank_fusion(lexical, vector, top_k)
                timing.update(lexical=len(lexical), vector=len(vector), results=len(fused))
                return fused
            except Exception as e:
                self.metrics.increment("services.knowledge.hybrid_fallbacks")
                logger.error("Hybrid search failed, using lexical ranking", error=str(e))
                timing["fallback"] = True
                return [
                    ScoredEntry(entry=hit.entry, relevance_score=hit.score, reason="lexical")
                    for hit in self._lexical_hits(query)[:top_k]
                ]

    async def _vector_candidates(self, query: str, limit: int) -> List[tuple]:
        """(entry, similarity) pairs from the vector index; empty when unavailable."""
        if not self._vector_enabled or limit == 0:
            return []
        try:
            hits = await asyncio.to_thread(self.vector_index.search, query, limit)
        except EmbeddingUnavailableError as e:
            self.metrics.increment("services.knowledge.vector_unavailable")
            logger.warning("Vector search unavailable", error=e.message)
            return []

        entries = self.store.get_entries([hit.entry_id for hit in hits])
        return [(entries[hit.entry_id], hit.score) for hit in hits if hit.entry_id in entries]

    # ------------------------------------------------------------------
    # Prompt context
    # ------------------------------------------------------------------

    def _context_key(self, query: str) -> str:
        return self.cache.make_key(self.normalizer.normalize(query), namespace="context")

    async def _build_context(self, query: str) -> str:
        results = await self.search_lexical(query)

        if not results:
            # Retry with each significant word, stop at the first one with hits
            words = [word for word in query.lower().split() if len(word) > 2]
            logger.info("Searching individual words", words=words)
            for word in words:
                results = await self.search_lexical(word)
                if results:
                    break

        unique: Dict[int, KnowledgeEntry] = {}
        for entry in results:
            if entry.id is not None and entry.id not in unique:
                unique[entry.id] = entry

        if not unique:
            logger.warning("No knowledge found", query=query[:50])
            return NO_CONTEXT_MESSAGE

        top_entries = list(unique.values())[:CONTEXT_MAX_ENTRIES]
        context = CONTEXT_HEADER + "".join(
            f"**{entry.title}**\n{entry.content}\n\n" for entry in top_entries
        )
        logger.info(
            "Context generated",
            query=query[:50],
            context_length=len(context),
            titles=[entry.title for entry in top_entries],
        )
        return context

    async def get_context_for_query(self, query: str) -> str:
        """
        Top three lexical matches rendered for the prompt, cached per query.

        Returns a fixed message when nothing matches, and an error message
        (not cached) if the lookup itself fails.
        """
        try:
            return await self._context(query)
        except Exception as e:
            logger.error("Error building knowledge context", query=query[:50], error=str(e))
            return CONTEXT_ERROR_MESSAGE

    async def warmup_cache(self, queries: Optional[Iterable[str]] = None) -> int:
        """Pre-compute the context of frequent questions. Returns how many were run."""
        selected = list(queries) if queries is not None else list(self.lexicon.warmup_queries)
        logger.info("Warming up cache", query_count=len(selected))

        for query in selected:
            await self.get_context_for_query(query)

        logger.info("Cache warmed up", stats=self.get_cache_stats())
        return len(selected)

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.get_stats()

    def get_metrics(self) -> Dict[str, Any]:
        """Engine counters (process-wide and this service's) and span timings."""
        return {
            "counters": {**metrics.get_metrics(), **self.metrics.get_metrics()},
            "timings": metrics.get_timings(),
        }

    def clear_cache(self) -> int:
        return self.cache.clear()

    # ------------------------------------------------------------------
    # Vector search
    # ------------------------------------------------------------------

    @property
    def vector_search_enabled(self) -> bool:
        return self._vector_enabled

    async def enable_vector_search(self) -> Dict[str, Any]:
        """
        Load the embedder and start serving vector queries.

        Persisted vectors of the same model are reloaded first; vectors
        still missing are computed in a worker thread while queries keep
        running against the ones already available.

        Returns:
            Vector stats plus loaded / pending counts
        """
        try:
            if self.vector_index.embedder is None:
                self.vector_index.embedder = get_embedder(self.settings)
            embedder = self.vector_index.embedder
            load = getattr(embedder, "load", None)
            if callable(load):
                await asyncio.to_thread(load)
        except (IssaError, ImportError) as e:
            self._vector_enabled = False
            logger.error("Could not enable vector search", error=str(e))
            return {**self.get_vector_stats(), "loaded": 0, "pending": 0}

        loaded = self.vector_index.load_persisted()
        self._vector_enabled = True

        missing = [e for e in self.store.read_active_entries() if e.id not in self.vector_index]
        if missing and not self.precompute_running:
            self._precompute_task = asyncio.create_task(
                asyncio.to_thread(
                    self.vector_index.precompute, missing, None, self._is_current_entry
                )
            )
            self._precompute_task.add_done_callback(self._on_precompute_done)

        logger.info(
            "Vector search enabled",
            model=embedder.model_name,
            loaded=loaded,
            pending=len(missing),
        )
        return {**self.get_vector_stats(), "loaded": loaded, "pending": len(missing)}

    def _is_current_entry(self, entry_id: int) -> bool:
        entry = self.store.get_entry(entry_id)
        return entry is not None and entry.is_active

    @property
    def precompute_running(self) -> bool:
        return self._precompute_task is not None and not self._precompute_task.done()

    @staticmethod
    def _on_precompute_done(task: "asyncio.Task[PrecomputeReport]") -> None:
        if task.cancelled():
            logger.warning("Embedding precompute cancelled")
        elif task.exception() is not None:
            logger.error("Embedding precompute failed", error=str(task.exception()))

    async def wait_for_vectors(self) -> Optional[PrecomputeReport]:
        """Wait for the background precompute started by enable_vector_search()."""
        if self._precompute_task is None:
            return None
        return await self._precompute_task

    def get_vector_stats(self) -> Dict[str, Any]:
        return {
            **self.vector_index.get_stats(),
            "enabled": self._vector_enabled,
            "precompute_running": self.precompute_running,
        }

    # ------------------------------------------------------------------
    # Entry maintenance
    # ------------------------------------------------------------------

    def _on_store_event(self, event: StoreEvent) -> None:
        """Keep the cache and the vector index in line with committed writes."""
        self.cache.clear()

        if event.kind == "deleted" or (event.entry is not None and not event.entry.is_active):
            self.vector_index.remove(event.entry_id)
            return

        if self._vector_enabled and event.entry is not None:
            try:
                self.vector_index.add(event.entry)
            except IssaError as e:
                logger.warning(
                    "Could not refresh entry embedding", entry_id=event.entry_id, error=e.message
                )

    def add_entry(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        return self.store.add_entry(entry)

    def update_entry(self, entry_id: int, **changes: Any) -> KnowledgeEntry:
        return self.store.update_entry(entry_id, **changes)

    def delete_entry(self, entry_id: int) -> None:
        self.store.delete_entry(entry_id)

    def load_entries(
        self, path: Union[str, Path], skip_existing: bool = False
    ) -> List[KnowledgeEntry]:
        """
        Add the entries listed in a YAML or JSON file.

        The file holds either a list of entries or a mapping with an
        "entries" list. With skip_existing, entries whose title is already
        stored are left out, so loading the same file twice adds nothing.

        Raises:
            ConfigurationError: unreadable file
            ValidationError: an entry does not validate (nothing is added)
        """
        file_path = Path(path)
        try:
            with open(file_path, encoding="utf-8") as f:
                if file_path.suffix.lower() == ".json":
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
        except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
            logger.error("Error reading knowledge file", path=str(file_path), error=str(e))
            raise ConfigurationError(f"Cannot read knowledge file {file_path}: {e}", cause=e)

        if isinstance(data, dict):
            data = data.get("entries")
        if not isinstance(data, list):
            raise ValidationError(
                f"{file_path} must contain a list of entries", context={"path": str(file_path)}
            )

        entries: List[KnowledgeEntry] = []
        for index, raw in enumerate(data):
            try:
                entries.append(KnowledgeEntry.model_validate(raw))
            except PydanticValidationError as e:
                raise ValidationError(
                    f"Invalid entry #{index} in {file_path}",
                    context={"index": index, "errors": e.errors(include_url=False)},
                    cause=e,
                )

        skipped = 0
        if skip_existing:
            titles = self.store.read_titles()
            fresh = [entry for entry in entries if entry.title not in titles]
            skipped = len(entries) - len(fresh)
            entries = fresh

        added = self.store.add_entries(entries)
        logger.info(
            "Knowledge file loaded", path=str(file_path), entries=len(added), skipped=skipped
        )
        return added

    def rebuild_index(self) -> int:
        """Rebuild the full-text index and flush cached results."""
        total = self.lexical_index.rebuild()
        self.cache.clear()
        return total

    def close(self) -> None:
        if self._owns_db:
            self.db.close()
        logger.info("KnowledgeService closed")
