"""
Knowledge base persistence.
"""

from issa.knowledge.store import KnowledgeStore, StoreEvent, StoreListener, row_to_entry

__all__ = ["KnowledgeStore", "StoreEvent", "StoreListener", "row_to_entry"]
