"""
Knowledge store over SQLite.

Owns the knowledge_base table. Every write runs in a single transaction;
the full-text projection is maintained by SQL triggers inside that same
transaction, so readers never see an entry without its index row.
Subscribers are notified after commit (vector index, result cache).
"""

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Literal, Optional, Set

from pydantic import ValidationError as PydanticValidationError

from issa.core.database import DatabaseManager, FetchType
from issa.core.exceptions import NotFoundError, ValidationError
from issa.core.logging import logger
from issa.core.utils.datetime_utils import (
    format_iso,
    parse_iso_datetime,
    parse_optional_datetime,
    utc_now,
)
from issa.models.knowledge import KnowledgeEntry


StoreEventKind = Literal["added", "updated", "deleted"]


@dataclass(frozen=True)
class StoreEvent:
    """Write notification sent to subscribers after commit."""

    kind: StoreEventKind
    entry_id: int
    entry: Optional[KnowledgeEntry] = None  # None for deletions


StoreListener = Callable[[StoreEvent], None]

_SELECT_COLUMNS = (
    "id, category, title, content, keywords, tags, priority, is_active, metadata, "
    "created_at, updated_at"
)


def row_to_entry(row: Dict[str, Any]) -> KnowledgeEntry:
    """Build a KnowledgeEntry from a knowledge_base row."""
    return KnowledgeEntry(
        id=row["id"],
        category=row["category"],
        title=row["title"],
        content=row["content"],
        keywords=json.loads(row["keywords"] or "[]"),
        tags=json.loads(row["tags"] or "[]"),
        priority=row["priority"],
        is_active=bool(row["is_active"]),
        metadata=json.loads(row["metadata"] or "{}"),
        created_at=parse_iso_datetime(row["created_at"]),
        updated_at=parse_optional_datetime(row["updated_at"]),
    )


class KnowledgeStore:
    """
    CRUD access to knowledge entries.

    Reads are lock-free; writes go through DatabaseManager.transaction().
    """

    def __init__(self, db: DatabaseManager):
        self.db = db
        self._listeners: List[StoreListener] = []

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: StoreListener) -> None:
        """Register a callback invoked after each committed write."""
        self._listeners.append(listener)

    def _notify(self, event: StoreEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                # The write is already committed; a failing subscriber must not undo it
                logger.error(
                    "Store listener failed",
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    kind=event.kind,
                    entry_id=event.entry_id,
                    error=str(e),
                )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read_active_entries(self) -> List[KnowledgeEntry]:
        result = self.db.execute(
            f"SELECT {_SELECT_COLUMNS} FROM knowledge_base WHERE is_active = 1 ORDER BY id",
            fetch=FetchType.ALL,
        )
        return [row_to_entry(row) for row in result.data or []]

    def read_entries_by_category(self, category: str) -> List[KnowledgeEntry]:
        result = self.db.execute(
            f"SELECT {_SELECT_COLUMNS} FROM knowledge_base "
            "WHERE category = ? AND is_active = 1 ORDER BY id",
            (category,),
            fetch=FetchType.ALL,
        )
        return [row_to_entry(row) for row in result.data or []]

    def get_entry(self, entry_id: int) -> Optional[KnowledgeEntry]:
        result = self.db.execute(
            f"SELECT {_SELECT_COLUMNS} FROM knowledge_base WHERE id = ?",
            (entry_id,),
            fetch=FetchType.ONE,
        )
        return row_to_entry(result.data) if result.data else None  # type: ignore[arg-type]

    def get_entries(self, entry_ids: List[int]) -> Dict[int, KnowledgeEntry]:
        """Fetch several active entries at once, keyed by id."""
        if not entry_ids:
            return {}
        placeholders = ", ".join("?" for _ in entry_ids)
        result = self.db.execute(
            f"SELECT {_SELECT_COLUMNS} FROM knowledge_base "
            f"WHERE is_active = 1 AND id IN ({placeholders})",
            tuple(entry_ids),
            fetch=FetchType.ALL,
        )
        return {row["id"]: row_to_entry(row) for row in result.data or []}

    def read_titles(self) -> Set[str]:
        """Titles of every stored entry, active or not."""
        result = self.db.execute("SELECT title FROM knowledge_base", fetch=FetchType.ALL)
        return {row["title"] for row in result.data or []}

    def count(self, active_only: bool = True) -> int:
        query = "SELECT COUNT(*) AS total FROM knowledge_base"
        if active_only:
            query += " WHERE is_active = 1"
        result = self.db.execute(query, fetch=FetchType.ONE)
        return int(result.data["total"]) if result.data else 0  # type: ignore[index]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_entry(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        """
        Insert a new entry and return it with its assigned id.

        The id on the incoming entry, if any, is ignored.
        """
        created_at = entry.created_at or utc_now()
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO knowledge_base (
                    category, title, content, keywords, tags, priority,
                    is_active, metadata, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.category,
                    entry.title,
                    entry.content,
                    json.dumps(entry.keywords, ensure_ascii=False),
                    json.dumps(entry.tags, ensure_ascii=False),
                    entry.priority,
                    1 if entry.is_active else 0,
                    json.dumps(entry.metadata, ensure_ascii=False, default=str),
                    format_iso(created_at),
                    format_iso(entry.updated_at) if entry.updated_at else None,
                ),
            )
            new_id = cursor.lastrowid

        stored = entry.model_copy(update={"id": new_id, "created_at": created_at})
        logger.info("Knowledge entry added", entry_id=new_id, category=stored.category)
        self._notify(StoreEvent("added", new_id, stored))
        return stored

    def add_entries(self, entries: List[KnowledgeEntry]) -> List[KnowledgeEntry]:
        return [self.add_entry(entry) for entry in entries]

    def update_entry(self, entry_id: int, **changes: Any) -> KnowledgeEntry:
        """
        Apply field changes to an existing entry.

        Raises:
            NotFoundError: unknown id
            ValidationError: changes produce an invalid entry
        """
        current = self.get_entry(entry_id)
        if current is None:
            raise NotFoundError(f"Knowledge entry {entry_id} not found", context={"id": entry_id})

        changes.pop("id", None)
        data = current.model_dump()
        data.update(changes)
        try:
            updated = KnowledgeEntry.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid changes for entry {entry_id}",
                context={"id": entry_id, "errors": e.errors(include_url=False)},
                cause=e,
            )
        updated.touch()

        with self.db.transaction() as conn:
            conn.execute(
                """
                UPDATE knowledge_base SET
                    category = ?, title = ?, content = ?, keywords = ?, tags = ?,
                    priority = ?, is_active = ?, metadata = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    updated.category,
                    updated.title,
                    updated.content,
                    json.dumps(updated.keywords, ensure_ascii=False),
                    json.dumps(updated.tags, ensure_ascii=False),
                    updated.priority,
                    1 if updated.is_active else 0,
                    json.dumps(updated.metadata, ensure_ascii=False, default=str),
                    format_iso(updated.updated_at),  # type: ignore[arg-type]
                    entry_id,
                ),
            )

        logger.info("Knowledge entry updated", entry_id=entry_id, fields=sorted(changes))
        self._notify(StoreEvent("updated", entry_id, updated))
        return updated

    def delete_entry(self, entry_id: int) -> None:
        """
        Delete an entry; its embedding row goes with it (ON DELETE CASCADE).

        Raises:
            NotFoundError: unknown id
        """
        with self.db.transaction() as conn:
            cursor = conn.execute("DELETE FROM knowledge_base WHERE id = ?", (entry_id,))
            if cursor.rowcount == 0:
                raise NotFoundError(
                    f"Knowledge entry {entry_id} not found", context={"id": entry_id}
                )

        logger.info("Knowledge entry deleted", entry_id=entry_id)
        self._notify(StoreEvent("deleted", entry_id))
