"""
Multi-strategy knowledge search.

This module runs the three lexical-side strategies over one analyzed query
and merges them with the weighted reranker:

- keyword: full-text index (with substring fallback) + keyword scoring
- fuzzy: edit-distance matching over the candidate entries
- intent_based: category-weighted scoring of the categories mapped to the intent

Every strategy is a pure read. A strategy that fails is logged and
contributes nothing; the search always returns a best-effort ranking.
"""

import time
from typing import Callable, Dict, List, Optional, Tuple

from issa.core.exceptions import ValidationError
from issa.core.logging import logger
from issa.core.tracing import metrics, tracer
from issa.knowledge.store import KnowledgeStore
from issa.rag.retrieval.cache import ResultCache, cached_pipeline
from issa.rag.retrieval.fuzzy_matcher import FuzzyMatcher
from issa.rag.retrieval.intent_search import IntentWeightedSearch
from issa.rag.retrieval.lexical_index import LexicalIndex
from issa.rag.retrieval.normalizer import QueryAnalysis, QueryNormalizer
from issa.rag.retrieval.rerank import HybridReranker
from issa.rag.retrieval.results import ScoredEntry, SearchQuery, SearchResult
from issa.rag.retrieval.scoring import score_entry

DEFAULT_STRATEGY_WEIGHTS: Dict[str, float] = {
    "keyword": 0.4,
    "fuzzy": 0.3,
    "intent_based": 0.3,
}

SEARCH_METHOD = "multi_strategy"

Strategy = Callable[[SearchQuery, QueryAnalysis], List[ScoredEntry]]


class HybridSearch:
    """
    Weighted multi-strategy search.

    Strategies run in a fixed order (keyword, fuzzy, intent_based). When a
    deadline is given, remaining strategies are skipped once it has passed
    and the ranking is built from the strategies that completed.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        lexical_index: LexicalIndex,
        normalizer: QueryNormalizer,
        fuzzy_matcher: FuzzyMatcher,
        intent_search: IntentWeightedSearch,
        reranker: Optional[HybridReranker] = None,
        strategy_weights: Optional[Dict[str, float]] = None,
        enabled_strategies: Optional[Dict[str, bool]] = None,
        cache: Optional[ResultCache] = None,
    ):
        """
        Initialize the search.

        Args:
            store: Source of candidate entries
            lexical_index: Full-text index for the keyword strategy
            normalizer: Query analysis
            fuzzy_matcher: Approximate matching for the fuzzy strategy
            intent_search: Category-weighted strategy
            reranker: Fusion of strategy outputs
            strategy_weights: Weight per strategy name (defaults 0.4 / 0.3 / 0.3)
            enabled_strategies: Strategy name → enabled flag (all enabled by default)
            cache: Result cache wrapped around the ranking pipeline
        """
        self.store = store
        self.lexical_index = lexical_index
        self.normalizer = normalizer
        self.fuzzy_matcher = fuzzy_matcher
        self.intent_search = intent_search
        self.reranker = reranker or HybridReranker()
        self.strategy_weights = {**DEFAULT_STRATEGY_WEIGHTS, **(strategy_weights or {})}
        self.enabled_strategies = {name: True for name in DEFAULT_STRATEGY_WEIGHTS}
        self.enabled_strategies.update(enabled_strategies or {})
        self.cache = cache

        self._strategies: List[Tuple[str, Strategy]] = [
            ("keyword", self._keyword_search),
            ("fuzzy", self._fuzzy_search),
            ("intent_based", self._intent_search),
        ]

        if cache is not None:
            self._ranked = cached_pipeline(cache, self._cache_key)(self.rank)
        else:
            self._ranked = self.rank

        logger.info(
            "HybridSearch initialized",
            weights=self.strategy_weights,
            enabled=[n for n, on in self.enabled_strategies.items() if on],
            cache="enabled" if cache is not None else "disabled",
        )

    async def search(self, query: SearchQuery, deadline: Optional[float] = None) -> SearchResult:
        """
        Ranked entries for one query.

        Args:
            query: Text, intent, category, entities and result bounds
            deadline: time.monotonic() value after which no further strategy starts

        Returns:
            SearchResult with at most max_results entries, every one scoring
            at least min_relevance. total_found counts all entries above the
            threshold before truncation.

        Raises:
            ValidationError: negative max_results or min_relevance
        """
        if query.max_results < 0:
            raise ValidationError(
                f"max_results must be >= 0, got {query.max_results}",
                context={"max_results": query.max_results},
            )
        if query.min_relevance < 0:
            raise ValidationError(
                f"min_relevance must be >= 0, got {query.min_relevance}",
                context={"min_relevance": query.min_relevance},
            )

        start_time = time.perf_counter()
        analysis = self.normalizer.analyze(query.text)

        ranked = await self._ranked(query, analysis, deadline)
        relevant = [s for s in ranked if s.relevance_score >= query.min_relevance]

        processing_time_ms = (time.perf_counter() - start_time) * 1000
        metrics.increment("rag.search.queries")

        logger.info(
            "Knowledge search completed",
            query=query.text[:50],
            intent=query.intent,
            results_found=len(relevant),
            top_score=relevant[0].relevance_score if relevant else None,
            processing_time_ms=processing_time_ms,
        )

        return SearchResult(
            entries=relevant[: query.max_results],
            total_found=len(relevant),
            method=SEARCH_METHOD,
            processing_time_ms=processing_time_ms,
            query=query,
        )

    async def rank(
        self, query: SearchQuery, analysis: QueryAnalysis, deadline: Optional[float] = None
    ) -> List[ScoredEntry]:
        """
        Run the enabled strategies and merge them.

        Returns every merged entry (no relevance threshold, no truncation)
        so one cached ranking serves any max_results / min_relevance.
        """
        strategy_results: List[Tuple[List[ScoredEntry], float]] = []
        log = logger.bind(query=query.text[:50], intent=query.intent)

        for name, strategy in self._strategies:
            if not self.enabled_strategies.get(name, False):
                continue
            if name == "intent_based" and not query.intent:
                continue
            if deadline is not None and time.monotonic() >= deadline:
                metrics.increment("rag.search.deadline_exceeded")
                log.warning(
                    "Search deadline exceeded, skipping remaining strategies",
                    next_strategy=name,
                    completed=len(strategy_results),
                )
                break

            results = self._run_strategy(name, strategy, query, analysis)
            strategy_results.append((results, self.strategy_weights.get(name, 0.0)))

        return self.reranker.weighted_merge(strategy_results, min_relevance=0.0)

    def _run_strategy(
        self, name: str, strategy: Strategy, query: SearchQuery, analysis: QueryAnalysis
    ) -> List[ScoredEntry]:
        with tracer.span(f"strategy.{name}", {"query": query.text[:50]}):
            try:
                results = strategy(query, analysis)
            except Exception as e:
                metrics.increment(f"rag.search.strategy_errors.{name}")
                logger.error(f"Error in {name} search", error=str(e), query=query.text[:50])
                return []

        metrics.increment(f"rag.search.strategy_results.{name}", len(results))
        return results

    def _cache_key(
        self, query: SearchQuery, analysis: QueryAnalysis, deadline: Optional[float] = None
    ) -> Optional[str]:
        # Rankings cut short by a deadline are partial
        if deadline is not None or self.cache is None:
            return None
        text = analysis.normalized
        if query.entities:
            text += "|" + ",".join(sorted(query.entities))
        return self.cache.make_key(text, query.intent, query.category, namespace="search")

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _keyword_search(self, query: SearchQuery, analysis: QueryAnalysis) -> List[ScoredEntry]:
        hits = self.lexical_index.search(
            analysis.index_query,
            patterns=analysis.fallback_patterns,
            phrase=" ".join(analysis.keywords),
        )
        results = []
        for hit in hits:
            score, matched = score_entry(
                hit.entry, analysis.keywords, category=query.category, entities=query.entities
            )
            results.append(
                ScoredEntry(
                    entry=hit.entry,
                    relevance_score=score,
                    matched_keywords=matched,
                    reason="keyword",
                )
            )
        return results

    def _fuzzy_search(self, query: SearchQuery, analysis: QueryAnalysis) -> List[ScoredEntry]:
        if not analysis.keywords:
            return []
        if query.category:
            candidates = self.store.read_entries_by_category(query.category)
        else:
            candidates = self.store.read_active_entries()
        return self.fuzzy_matcher.search(analysis.keywords, candidates)

    def _intent_search(self, query: SearchQuery, analysis: QueryAnalysis) -> List[ScoredEntry]:
        return self.intent_search.search(query, analysis.keywords)
