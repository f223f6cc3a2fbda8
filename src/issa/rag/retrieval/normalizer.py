"""
Query normalization and expansion.

Turns a free-text French question into the terms every strategy consumes:
- normalized text (case, accents, punctuation)
- keywords without stop words
- Snowball stems
- thesaurus synonyms
- a bounded full-text query and bounded substring fallback patterns
"""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Protocol, Tuple, runtime_checkable

from nltk.stem.snowball import SnowballStemmer

from issa.core.logging import logger
from issa.rag.retrieval.lexicon import SearchLexicon
from issa.rag.retrieval.text import normalize_text


@runtime_checkable
class Stemmer(Protocol):
    """Pluggable root-reduction capability: word → word."""

    def stem(self, word: str) -> str:
        ...


class FrenchStemmer:
    """Snowball French stemmer from NLTK (no corpus download needed)."""

    def __init__(self) -> None:
        self._stemmer = SnowballStemmer("french")

    def stem(self, word: str) -> str:
        return self._stemmer.stem(word)


@dataclass(frozen=True)
class QueryAnalysis:
    """Everything derived from one query. Built fresh per query, never mutated."""

    original: str
    normalized: str
    keywords: Tuple[str, ...]
    stems: Tuple[str, ...]
    synonyms: FrozenSet[str]
    expanded_terms: FrozenSet[str]
    language: str
    index_query: str
    fallback_patterns: Tuple[str, ...]


def _ordered_unique(items: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(item for item in items if item))


class QueryNormalizer:
    """
    Normalization engine.

    All operations are pure reads of the shared SearchLexicon, so one
    instance serves concurrent queries.
    """

    def __init__(
        self,
        lexicon: SearchLexicon,
        stemmer: Optional[Stemmer] = None,
        *,
        max_keywords: int = 10,
        max_index_terms: int = 10,
        max_patterns: int = 10,
        synonyms_per_keyword: int = 3,
    ):
        self.lexicon = lexicon
        self.stemmer: Stemmer = stemmer if stemmer is not None else FrenchStemmer()
        self.max_keywords = max_keywords
        self.max_index_terms = max_index_terms
        self.max_patterns = max_patterns
        self.synonyms_per_keyword = synonyms_per_keyword

    def normalize(self, text: str) -> str:
        return normalize_text(text)

    def extract_keywords(self, text: str) -> List[str]:
        """
        Significant tokens of the query, in order of appearance.

        Drops tokens of 2 characters or less and stop words, removes
        duplicates and caps the list at max_keywords.
        """
        tokens = self.normalize(text).split()
        keywords = _ordered_unique(
            token
            for token in tokens
            if len(token) > 2 and token not in self.lexicon.stop_words
        )
        return keywords[: self.max_keywords]

    def stem(self, word: str) -> str:
        """Root of a word; the word itself if the stemmer fails."""
        try:
            stemmed = self.stemmer.stem(word)
        except Exception as e:
            logger.debug("Stemming failed, keeping word", word=word, error=str(e))
            return word
        return stemmed or word

    def _stem_phrase(self, phrase: str) -> str:
        return " ".join(self.stem(word) for word in phrase.split())

    def get_synonyms(self, term: str) -> List[str]:
        """
        Bidirectional thesaurus lookup.

        Direct synonyms first, then the thesaurus keys that list the term.
        Empty list when the term is unknown.
        """
        normalized = self.normalize(term)
        if not normalized:
            return []
        direct = self.lexicon.synonyms.get(normalized, ())
        reverse = self.lexicon.reverse_synonyms.get(normalized, ())
        return [s for s in _ordered_unique([*direct, *reverse]) if s != normalized]

    def expand(self, text: str) -> FrozenSet[str]:
        """keywords ∪ stems ∪ synonyms ∪ stems of synonyms."""
        keywords = self.extract_keywords(text)
        return self._expand(keywords, [self.stem(k) for k in keywords])

    def _expand(self, keywords: List[str], stems: List[str]) -> FrozenSet[str]:
        synonyms = self._synonyms_of(keywords)
        return frozenset(
            [*keywords, *stems, *synonyms, *(self._stem_phrase(s) for s in synonyms)]
        )

    def _synonyms_of(self, keywords: List[str]) -> List[str]:
        return _ordered_unique(s for keyword in keywords for s in self.get_synonyms(keyword))

    def build_index_query(self, text: str) -> str:
        """Keywords then stems, deduplicated and capped, space separated."""
        keywords = self.extract_keywords(text)
        return self._index_query(keywords, [self.stem(k) for k in keywords])

    def _index_query(self, keywords: List[str], stems: List[str]) -> str:
        terms = _ordered_unique([*keywords, *stems])[: self.max_index_terms]
        return " ".join(terms)

    def build_fallback_patterns(self, text: str) -> List[str]:
        """Each keyword followed by its first synonyms, capped at max_patterns."""
        return self._fallback_patterns(self.extract_keywords(text))

    def _fallback_patterns(self, keywords: List[str]) -> List[str]:
        patterns: List[str] = []
        for keyword in keywords:
            patterns.append(keyword)
            patterns.extend(self.get_synonyms(keyword)[: self.synonyms_per_keyword])
        return _ordered_unique(patterns)[: self.max_patterns]

    def detect_language(self, text: str) -> str:
        """'fr' when a French function word is present, 'other' otherwise."""
        tokens = set(self.normalize(text).split())
        return "fr" if tokens & self.lexicon.function_words else "other"

    def analyze(self, text: str) -> QueryAnalysis:
        """Run the whole normalization pipeline once."""
        normalized = self.normalize(text)
        keywords = self.extract_keywords(text)
        stems = [self.stem(k) for k in keywords]
        synonyms = self._synonyms_of(keywords)

        analysis = QueryAnalysis(
            original=text,
            normalized=normalized,
            keywords=tuple(keywords),
            stems=tuple(stems),
            synonyms=frozenset(synonyms),
            expanded_terms=self._expand(keywords, stems),
            language=self.detect_language(text),
            index_query=self._index_query(keywords, stems),
            fallback_patterns=tuple(self._fallback_patterns(keywords)),
        )

        logger.debug(
            "Query analyzed",
            query=text[:50],
            keywords=len(keywords),
            synonyms=len(synonyms),
            language=analysis.language,
        )
        return analysis
