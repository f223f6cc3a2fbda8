"""
Category-biased retrieval driven by the conversational intent.

The intent label is resolved to an ordered list of categories through the
lexicon; every active entry of those categories is scored with the shared
keyword rules, then multiplied by the category weight.
"""

from typing import List, Optional, Sequence, Tuple

from issa.core.logging import logger
from issa.knowledge.store import KnowledgeStore
from issa.rag.retrieval.lexicon import SearchLexicon
from issa.rag.retrieval.results import ScoredEntry, SearchQuery
from issa.rag.retrieval.scoring import score_entry


class IntentWeightedSearch:
    """Intent → categories → weighted keyword scores."""

    def __init__(self, store: KnowledgeStore, lexicon: SearchLexicon):
        self.store = store
        self.lexicon = lexicon

    def categories_for(self, intent: Optional[str]) -> Tuple[str, ...]:
        """Mapped categories in priority order; empty for unknown intents."""
        return self.lexicon.categories_for_intent(intent)

    def search(self, query: SearchQuery, keywords: Sequence[str]) -> List[ScoredEntry]:
        """
        Score the entries of every category mapped to query.intent.

        Unmapped or absent intent yields an empty list.
        """
        categories = self.categories_for(query.intent)
        if not categories:
            return []

        reason = f"intent_based:{query.intent}"
        results: List[ScoredEntry] = []

        for category in categories:
            weight = self.lexicon.category_weight(category)
            for entry in self.store.read_entries_by_category(category):
                score, matched = score_entry(
                    entry, keywords, category=query.category, entities=query.entities
                )
                results.append(
                    ScoredEntry(
                        entry=entry,
                        relevance_score=score * weight,
                        matched_keywords=matched,
                        reason=reason,
                    )
                )

        logger.debug(
            "Intent search completed",
            intent=query.intent,
            categories=len(categories),
            results=len(results),
        )
        return results
