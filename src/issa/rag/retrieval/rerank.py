"""
Rank fusion for search results.

Two modes:
- weighted merge: per-strategy scores multiplied by the strategy weight and
  summed per entry (multi-strategy knowledge search)
- reciprocal rank fusion: lexical and vector ranked lists fused by position,
  the vector term boosted by its similarity (hybrid path)
"""

from typing import Dict, List, Optional, Sequence, Tuple

from issa.core.logging import logger
from issa.models.knowledge import KnowledgeEntry
from issa.rag.retrieval.results import ScoredEntry

DEFAULT_RRF_K = 60


class HybridReranker:
    """
    Fuses per-strategy ranked lists into one ordering.

    Stateless apart from the RRF constant, so one instance serves
    concurrent queries.
    """

    def __init__(self, rrf_k: int = DEFAULT_RRF_K):
        if rrf_k <= 0:
            raise ValueError(f"rrf_k must be positive, got {rrf_k}")
        self.rrf_k = rrf_k

    def weighted_merge(
        self,
        strategy_results: Sequence[Tuple[List[ScoredEntry], float]],
        min_relevance: float = 0.3,
    ) -> List[ScoredEntry]:
        """
        Sum weighted strategy scores per entry.

        The first strategy that produced an entry keeps its reason; matched
        keywords are unioned. The sum is not clamped again, so an entry found
        by several strategies can score above 1.0.

        Args:
            strategy_results: (scored entries, strategy weight) per strategy
            min_relevance: Entries below this merged score are dropped

        Returns:
            Merged entries sorted by descending score, no duplicate ids
        """
        merged: Dict[int, ScoredEntry] = {}

        for results, weight in strategy_results:
            for scored in results:
                entry_id = scored.entry_id
                if entry_id is None:
                    continue

                contribution = scored.relevance_score * weight
                existing = merged.get(entry_id)
                if existing is None:
                    merged[entry_id] = scored.copy(relevance_score=contribution)
                    continue

                existing.relevance_score += contribution
                for keyword in scored.matched_keywords:
                    if keyword not in existing.matched_keywords:
                        existing.matched_keywords.append(keyword)

        ranked = [s for s in merged.values() if s.relevance_score >= min_relevance]
        ranked.sort(key=lambda s: s.relevance_score, reverse=True)

        logger.debug(
            "Weighted merge",
            strategies=len(strategy_results),
            candidates=len(merged),
            kept=len(ranked),
        )
        return ranked

    def rrf_contribution(self, rank: int, similarity: Optional[float] = None) -> float:
        """
        Contribution of one list position: 1 / (k + rank + 1).

        Vector positions are multiplied by (1 + similarity).
        """
        term = 1.0 / (self.rrf_k + rank + 1)
        if similarity is not None:
            term *= 1.0 + similarity
        return term

    def reciprocal_rank_fusion(
        self,
        lexical: Sequence[KnowledgeEntry],
        vector: Sequence[Tuple[KnowledgeEntry, float]],
        top_k: int,
    ) -> List[ScoredEntry]:
        """
        Fuse the lexical ranking with the vector ranking.

        Args:
            lexical: Entries in lexical rank order
            vector: (entry, similarity) in vector rank order
            top_k: Number of results to keep

        Returns:
            Top entries by fused score. Equal scores keep first-seen order
            (lexical list first, then vector list).
        """
        scores: Dict[int, float] = {}
        entries: Dict[int, KnowledgeEntry] = {}

        for rank, entry in enumerate(lexical):
            if entry.id is None:
                continue
            entries.setdefault(entry.id, entry)
            scores[entry.id] = scores.get(entry.id, 0.0) + self.rrf_contribution(rank)

        for rank, (entry, similarity) in enumerate(vector):
            if entry.id is None:
                continue
            entries.setdefault(entry.id, entry)
            scores[entry.id] = scores.get(entry.id, 0.0) + self.rrf_contribution(
                rank, similarity
            )

        # sorted() is stable: ties stay in insertion order
        ordered = sorted(entries, key=lambda entry_id: scores[entry_id], reverse=True)

        fused = [
            ScoredEntry(entry=entries[entry_id], relevance_score=scores[entry_id], reason="rrf")
            for entry_id in ordered[:top_k]
        ]

        logger.debug(
            "Reciprocal rank fusion",
            lexical=len(lexical),
            vector=len(vector),
            fused=len(fused),
            top_k=top_k,
        )
        return fused
