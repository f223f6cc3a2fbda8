"""
Retrieval module for ISSA's knowledge engine.

Implements the multi-strategy search (keyword + fuzzy + intent, weighted
merge) and the lexical side of the hybrid RRF path, with supporting
components for normalization, caching and re-ranking.
"""

from issa.rag.retrieval.text import normalize_text
from issa.rag.retrieval.lexicon import SearchLexicon, load_lexicon
from issa.rag.retrieval.normalizer import FrenchStemmer, QueryAnalysis, QueryNormalizer, Stemmer
from issa.rag.retrieval.results import LexicalHit, ScoredEntry, SearchQuery, SearchResult
from issa.rag.retrieval.scoring import score_entry
from issa.rag.retrieval.lexical_index import LexicalIndex
from issa.rag.retrieval.fuzzy_matcher import FuzzyMatcher
from issa.rag.retrieval.intent_search import IntentWeightedSearch
from issa.rag.retrieval.rerank import HybridReranker
from issa.rag.retrieval.cache import ResultCache, cached_pipeline
from issa.rag.retrieval.hybrid_search import HybridSearch

__all__ = [
    # Main search
    "HybridSearch",
    "SearchQuery",
    "SearchResult",
    "ScoredEntry",
    # Normalization
    "normalize_text",
    "QueryNormalizer",
    "QueryAnalysis",
    "Stemmer",
    "FrenchStemmer",
    "SearchLexicon",
    "load_lexicon",
    # Strategies
    "LexicalIndex",
    "LexicalHit",
    "FuzzyMatcher",
    "IntentWeightedSearch",
    "score_entry",
    # Fusion and cache
    "HybridReranker",
    "ResultCache",
    "cached_pipeline",
]
