"""
Fuzzy matching for misspelled queries.

Scores entries by edit distance so "assurence" still finds "assurance":
- every keyword is compared with every window of the same length in the
  entry text (title + content + keywords)
- literal containment short-circuits to 1.0
- per-keyword similarities above the threshold are averaged, weighted by
  keyword length

Levenshtein distances come from rapidfuzz.
"""

from typing import Dict, List, Sequence

from rapidfuzz.distance import Levenshtein

from issa.core.logging import logger
from issa.models.knowledge import KnowledgeEntry
from issa.rag.retrieval.results import ScoredEntry
from issa.rag.retrieval.text import normalize_text


class FuzzyMatcher:
    """
    Edit-distance scoring of entries against query keywords.

    This is NOT semantic similarity - only character edits are
    considered. Synonyms are the normalizer's job.
    """

    def __init__(self, threshold: float = 0.7):
        """
        Args:
            threshold: Minimum fuzzy score for an entry to be returned
        """
        self.threshold = threshold
        logger.info("FuzzyMatcher initialized", threshold=threshold)

    def similarity(self, term: str, text: str) -> float:
        """
        Best normalized similarity between term and any window of text.

        similarity = (max_len - distance) / max_len, 1.0 on containment.
        Both arguments must already be normalized.
        """
        if not term:
            return 0.0
        if term in text:
            return 1.0

        size = len(term)
        if len(text) <= size:
            windows = {text}
        else:
            windows = {text[i : i + size] for i in range(len(text) - size + 1)}

        # Windows are never longer than the term, so max_len is the term length
        max_len = size
        best = max_len
        for window in windows:
            # score_cutoff lets rapidfuzz stop as soon as it cannot beat best
            distance = Levenshtein.distance(term, window, score_cutoff=best - 1)
            if distance < best:
                best = distance
                if best == 1:
                    # 0 means containment, already handled above
                    break

        return (max_len - best) / max_len

    def keyword_similarities(
        self, keywords: Sequence[str], entry: KnowledgeEntry
    ) -> Dict[str, float]:
        """Best window similarity of every keyword against the entry text."""
        text = normalize_text(entry.to_search_text())
        return {keyword: self.similarity(keyword, text) for keyword in keywords if keyword}

    def fuzzy_score(self, keywords: Sequence[str], entry: KnowledgeEntry) -> float:
        """
        Length-weighted mean of keyword similarities, in [0, 1].

        Args:
            keywords: Normalized query keywords
            entry: Candidate entry

        Returns:
            Σ len(k) * similarity(k) / Σ len(k), 0.0 without keywords. A keyword
            only counts when it is contained or its similarity exceeds the threshold.
        """
        return self._weighted(self.keyword_similarities(keywords, entry))

    def _weighted(self, similarities: Dict[str, float]) -> float:
        total_length = sum(len(keyword) for keyword in similarities)
        if total_length == 0:
            return 0.0
        # Near misses add nothing but stay in the denominator
        weighted = sum(
            len(keyword) * score
            for keyword, score in similarities.items()
            if score == 1.0 or score > self.threshold
        )
        return weighted / total_length

    def search(
        self, keywords: Sequence[str], entries: Sequence[KnowledgeEntry]
    ) -> List[ScoredEntry]:
        """
        Score candidate entries and keep those at or above the threshold.

        Returns:
            Entries sorted by fuzzy score, descending
        """
        if not keywords:
            return []

        results: List[ScoredEntry] = []
        for entry in entries:
            similarities = self.keyword_similarities(keywords, entry)
            score = self._weighted(similarities)
            if score < self.threshold:
                continue
            matched = [k for k, s in similarities.items() if s >= self.threshold]
            results.append(
                ScoredEntry(
                    entry=entry,
                    relevance_score=score,
                    matched_keywords=matched,
                    reason="fuzzy_match",
                )
            )

        results.sort(key=lambda r: r.relevance_score, reverse=True)
        logger.debug(
            "Fuzzy search", keywords=len(keywords), candidates=len(entries), results=len(results)
        )
        return results
