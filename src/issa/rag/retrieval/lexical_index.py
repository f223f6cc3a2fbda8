"""
Full-text search over the knowledge base.

Ranked search runs on the SQLite FTS5 projection (knowledge_fts) with BM25.
When the index returns nothing, or cannot be used at all, a substring
fallback scans the active entries: first the whole cleaned phrase, then
each fallback pattern in order until one of them hits.
"""

import re
from typing import List, Optional, Sequence

from issa.core.database import DatabaseManager, FetchType
from issa.core.exceptions import DatabaseError, IndexUnavailableError
from issa.core.logging import logger
from issa.core.tracing import metrics
from issa.knowledge.store import KnowledgeStore, row_to_entry
from issa.models.knowledge import KnowledgeEntry
from issa.rag.retrieval.results import LexicalHit
from issa.rag.retrieval.text import normalize_text

_CLEAN_PATTERN = re.compile(r"[^\w\s]+")

# BM25 column weights: category, title, content, keywords
_BM25_WEIGHTS = (1.0, 3.0, 1.0, 2.0)

# Fallback scores by matched field, in tie-breaking priority order
_FIELD_SCORES = (("title", 0.4), ("keywords", 0.3), ("category", 0.2), ("content", 0.1))


def clean_query(query: str) -> List[str]:
    """Split a query into MATCH-safe terms (punctuation removed)."""
    return _CLEAN_PATTERN.sub(" ", query or "").split()


def build_match_expression(terms: Sequence[str]) -> str:
    """
    OR-of-terms FTS5 expression.

    Every term is double-quoted so FTS5 operators (AND, NOT, NEAR, column
    filters) typed by users are searched literally.
    """
    return " OR ".join('"' + term.replace('"', '""') + '"' for term in terms)


class LexicalIndex:
    """
    Ranked lexical search with substring fallback.

    The FTS table is maintained by triggers on knowledge_base, so it is
    always in sync with committed writes. Only active entries are returned.
    """

    def __init__(self, db: DatabaseManager, store: KnowledgeStore, *, limit: int = 10):
        self.db = db
        self.store = store
        self.limit = limit

        logger.info("LexicalIndex initialized", fts_available=db.fts_available, limit=limit)

    def is_available(self) -> bool:
        return self.db.fts_available

    def search(
        self,
        index_query: str,
        limit: Optional[int] = None,
        patterns: Optional[Sequence[str]] = None,
        phrase: Optional[str] = None,
    ) -> List[LexicalHit]:
        """
        Ranked search that never raises on storage errors.

        Args:
            index_query: Space separated terms (QueryAnalysis.index_query)
            limit: Maximum hits (defaults to the configured limit)
            patterns: Ordered fallback substrings; the query terms when omitted
            phrase: Cleaned phrase tried first by the fallback; the query terms when omitted

        Returns:
            Hits ordered by relevance. Empty when the query is empty after cleanup.
        """
        limit = self.limit if limit is None else limit
        terms = clean_query(index_query)
        if not terms or limit <= 0:
            return []

        try:
            hits = self.search_fts(index_query, limit)
        except IndexUnavailableError as e:
            metrics.increment("rag.lexical.index_unavailable")
            logger.warning("Full-text index unavailable, using fallback", error=e.message)
            hits = []

        if hits:
            return self._with_title_recall(hits, terms, limit)

        fallback_patterns = list(patterns) if patterns else terms
        return self.search_fallback(phrase or " ".join(terms), fallback_patterns, limit)

    def search_fts(self, index_query: str, limit: int) -> List[LexicalHit]:
        """
        BM25-ranked search on knowledge_fts.

        Raises:
            IndexUnavailableError: FTS5 missing or the query failed in SQLite
        """
        terms = clean_query(index_query)
        if not terms:
            return []
        if not self.db.fts_available:
            raise IndexUnavailableError("FTS5 is not available in this SQLite build")

        weights = ", ".join(str(w) for w in _BM25_WEIGHTS)
        query = f"""
            SELECT kb.*, bm25(knowledge_fts, {weights}) AS rank_score
            FROM knowledge_fts
            JOIN knowledge_base kb ON kb.id = knowledge_fts.rowid
            WHERE knowledge_fts MATCH ? AND kb.is_active = 1
            ORDER BY rank_score, kb.id
            LIMIT ?
        """
        try:
            result = self.db.execute(
                query, (build_match_expression(terms), limit), fetch=FetchType.ALL
            )
        except DatabaseError as e:
            error = IndexUnavailableError(
                f"Full-text query failed: {e.message}",
                context={"query": index_query[:100]},
                cause=e,
            )
            error.add_suggestion("Run 'issa reindex' to rebuild the full-text index")
            raise error

        metrics.increment("rag.lexical.fts_queries")
        # bm25() is negative, lower is better
        return [
            LexicalHit(row_to_entry(row), -float(row["rank_score"]), "fts")
            for row in result.data or []  # type: ignore[union-attr]
        ]

    def _with_title_recall(
        self, hits: List[LexicalHit], terms: Sequence[str], limit: int
    ) -> List[LexicalHit]:
        """Append active entries whose title contains a query term but were not ranked."""
        seen = {hit.entry.id for hit in hits}
        recall_terms = [normalize_text(t) for t in terms if len(t) > 2]
        if len(hits) >= limit or not recall_terms:
            return hits[:limit]

        extra: List[LexicalHit] = []
        for entry in self.store.read_active_entries():
            if entry.id in seen:
                continue
            title = normalize_text(entry.title)
            if any(term and term in title for term in recall_terms):
                extra.append(LexicalHit(entry, 0.0, "title_recall"))

        if extra:
            logger.debug("Title recall added entries", count=len(extra))
        return (hits + extra)[:limit]

    def search_fallback(
        self, phrase: str, patterns: Sequence[str], limit: Optional[int] = None
    ) -> List[LexicalHit]:
        """
        Accent-insensitive substring search over active entries.

        1. Whole phrase against title, keywords, category, content
        2. Otherwise each pattern (length > 2) in order; stops at the first
           pattern with hits

        Ties are broken by matched field: title > keywords > category > content.
        """
        limit = self.limit if limit is None else limit
        entries = self.store.read_active_entries()
        if not entries or limit <= 0:
            return []

        metrics.increment("rag.lexical.fallback_queries")
        hits = self._match_substring(entries, normalize_text(phrase), "phrase")
        if hits:
            return hits[:limit]

        for pattern in patterns:
            normalized = normalize_text(pattern)
            if len(normalized) <= 2:
                continue
            hits = self._match_substring(entries, normalized, "pattern")
            if hits:
                logger.debug("Fallback pattern matched", pattern=normalized, hits=len(hits))
                return hits[:limit]

        return []

    def _match_substring(
        self, entries: List[KnowledgeEntry], needle: str, source: str
    ) -> List[LexicalHit]:
        if not needle:
            return []

        hits: List[LexicalHit] = []
        for entry in entries:
            fields = {
                "title": normalize_text(entry.title),
                "keywords": normalize_text(" ".join(entry.keywords)),
                "category": normalize_text(entry.category),
                "content": normalize_text(entry.content),
            }
            for field_name, field_score in _FIELD_SCORES:
                if needle in fields[field_name]:
                    hits.append(LexicalHit(entry, field_score, source))
                    break

        # Stable: entries keep id order within the same field priority
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits

    def rebuild(self) -> int:
        """
        Rebuild the FTS projection from knowledge_base.

        Returns:
            Number of entries now indexed (active or not)
        """
        if not self.db.fts_available:
            raise IndexUnavailableError("FTS5 is not available in this SQLite build")

        with self.db.transaction() as conn:
            conn.execute("INSERT INTO knowledge_fts(knowledge_fts) VALUES ('rebuild')")
            total = conn.execute("SELECT COUNT(*) FROM knowledge_base").fetchone()[0]

        logger.info("Full-text index rebuilt", entries=total)
        return int(total)
