"""
ISSA Services module.

Business logic that coordinates the retrieval components.
DOES NOT expose HTTP endpoints.
"""

from issa.services.knowledge_service import KnowledgeContext, KnowledgeService

__all__ = [
    "KnowledgeService",
    "KnowledgeContext",
]
