"""
RAG (Retrieval-Augmented Generation) module for ISSA.

Retrieves the knowledge base entries that ground the assistant's answers:
multi-strategy lexical search, rank fusion and result caching.
"""

from issa.rag.retrieval import (
    HybridSearch,
    HybridReranker,
    ResultCache,
    ScoredEntry,
    SearchQuery,
    SearchResult,
)

__all__ = [
    "HybridSearch",
    "HybridReranker",
    "ResultCache",
    "ScoredEntry",
    "SearchQuery",
    "SearchResult",
]
