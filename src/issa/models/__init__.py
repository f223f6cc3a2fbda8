"""
ISSA data models.
"""

from issa.models.base import IssaBaseModel, TimestampMixin
from issa.models.knowledge import KnowledgeCategory, KnowledgeEntry, Intent, IntentEntity

__all__ = [
    "IssaBaseModel",
    "TimestampMixin",
    "KnowledgeCategory",
    "KnowledgeEntry",
    "Intent",
    "IntentEntity",
]
