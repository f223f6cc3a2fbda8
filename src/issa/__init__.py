"""
ISSA - Hybrid knowledge retrieval for the Takaful assistant.

Finds the knowledge base entries relevant to a user question with keyword,
fuzzy, intent-weighted and vector search, and renders them as prompt
context.
"""

from issa._version import __version__, __version_info__

# Core components
from issa.core import (
    logger,
    Settings,
    IssaError,
    ValidationError,
    ConfigurationError,
    NotFoundError,
    EmbeddingUnavailableError,
)

# Models
from issa.models import KnowledgeCategory, KnowledgeEntry, Intent, IntentEntity

# Retrieval
from issa.rag import (
    HybridReranker,
    HybridSearch,
    ResultCache,
    ScoredEntry,
    SearchQuery,
    SearchResult,
)

# Main service
from issa.services import KnowledgeContext, KnowledgeService

__all__ = [
    # Version info
    "__version__",
    "__version_info__",
    # Core
    "logger",
    "Settings",
    # Exceptions
    "IssaError",
    "ValidationError",
    "ConfigurationError",
    "NotFoundError",
    "EmbeddingUnavailableError",
    # Models
    "KnowledgeCategory",
    "KnowledgeEntry",
    "Intent",
    "IntentEntity",
    # Retrieval
    "HybridReranker",
    "HybridSearch",
    "ResultCache",
    "ScoredEntry",
    "SearchQuery",
    "SearchResult",
    # Services
    "KnowledgeService",
    "KnowledgeContext",
]


def get_config():
    """
    Get the current ISSA configuration.

    Example:
        >>> config = get_config()
        >>> config.get("search.min_relevance")
        0.3

    Returns:
        Settings: Configuration instance
    """
    return Settings()
