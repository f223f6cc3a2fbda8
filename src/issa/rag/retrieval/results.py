"""
Value types produced by the retrieval strategies.
"""

from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

from issa.models.knowledge import KnowledgeEntry


@dataclass
class ScoredEntry:
    """
    Entry with relevance score.

    relevance_score semantics depend on reason:
    - keyword / intent_based:* / fuzzy_match: per-strategy score (≤ 1.0)
    - multi_strategy: weighted sum across strategies (may exceed 1.0)
    - rrf: reciprocal rank fusion score
    """

    entry: KnowledgeEntry
    relevance_score: float
    matched_keywords: List[str] = field(default_factory=list)
    reason: str = ""

    @property
    def entry_id(self) -> Optional[int]:
        return self.entry.id

    def copy(self, **changes) -> "ScoredEntry":
        """Shallow copy with an independent matched_keywords list."""
        changes.setdefault("matched_keywords", list(self.matched_keywords))
        return replace(self, **changes)


@dataclass
class LexicalHit:
    """Row returned by the lexical index. score: higher is better."""

    entry: KnowledgeEntry
    score: float
    source: str = "fts"  # 'fts', 'title_recall', 'phrase' or 'pattern'


@dataclass(frozen=True)
class SearchQuery:
    """Parameters of one multi-strategy search."""

    text: str
    intent: Optional[str] = None
    category: Optional[str] = None
    entities: Tuple[str, ...] = ()
    max_results: int = 5
    min_relevance: float = 0.3


@dataclass
class SearchResult:
    """Final ranked answer of the multi-strategy search."""

    entries: List[ScoredEntry]
    total_found: int
    method: str
    processing_time_ms: float
    query: SearchQuery

    @classmethod
    def empty(
        cls, query: SearchQuery, method: str, processing_time_ms: float = 0.0
    ) -> "SearchResult":
        return cls(
            entries=[],
            total_found=0,
            method=method,
            processing_time_ms=processing_time_ms,
            query=query,
        )
