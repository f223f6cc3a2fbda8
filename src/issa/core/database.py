"""
Sistema de persistencia SQLite para ISSA.

ESTRUCTURA DEL MÓDULO:
======================
- DatabaseManager: conexiones, esquema y transacciones
- classify_sqlite_error: traduce sqlite3.Error a la jerarquía DatabaseError

La lógica de negocio (entradas de conocimiento, índice léxico, vectores)
vive en knowledge/ y rag/, que usan esta infraestructura.
"""

import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from issa.core.exceptions import (
    DatabaseError,
    IssaError,
    SQLiteBusyError,
    SQLiteConstraintError,
    SQLiteCorruptError,
)
from issa.core.id_generator import generate_id
from issa.core.logging import logger


SCHEMAS_DIR = Path(__file__).parent / "database_schemas"


def classify_sqlite_error(sqlite_error: sqlite3.Error) -> DatabaseError:
    """
    Classify SQLite specific errors and return appropriate exception.

    - SQLITE_BUSY (5): DB temporarily locked → SQLiteBusyError (RETRYABLE)
    - SQLITE_CORRUPT (11): DB corrupt → SQLiteCorruptError (NOT RETRYABLE)
    - SQLITE_CONSTRAINT (19): Constraint violation → SQLiteConstraintError (NOT RETRYABLE)
    - Others: Generic DB error → DatabaseError
    """
    error_msg = str(sqlite_error)
    error_code = getattr(sqlite_error, 'sqlite_errorcode', None)
    context = {"sqlite_code": error_code, "original_error": error_msg}

    if error_code == 5 or 'database is locked' in error_msg.lower() or 'busy' in error_msg.lower():
        exc: DatabaseError = SQLiteBusyError(
            f"Database temporarily locked: {error_msg}", context=context, cause=sqlite_error
        )
        exc.add_suggestion("Retry the write once the other writer finishes")
        exc.add_suggestion("Check for long open transactions")
        return exc

    elif error_code == 11 or 'corrupt' in error_msg.lower() or 'disk image' in error_msg.lower():
        exc = SQLiteCorruptError(
            f"Database corruption detected: {error_msg}", context=context, cause=sqlite_error
        )
        exc.add_suggestion("Restore from most recent backup")
        exc.add_suggestion("Run 'PRAGMA integrity_check' for diagnostics")
        exc.add_suggestion("Run 'issa reindex' if only the full-text index is affected")
        return exc

    elif error_code == 19 or any(
        constraint in error_msg.lower()
        for constraint in ['unique', 'foreign key', 'check', 'not null']
    ):
        exc = SQLiteConstraintError(
            f"Database constraint violation: {error_msg}", context=context, cause=sqlite_error
        )
        exc.add_suggestion("Verify that data meets constraints")
        return exc

    exc = DatabaseError(f"SQLite error: {error_msg}", context=context, cause=sqlite_error)
    exc.add_suggestion("Verify database configuration")
    exc.add_suggestion("Check file and directory permissions")
    return exc


class FetchType(Enum):
    """Tipos de fetch para queries."""

    ONE = "one"
    ALL = "all"
    NONE = "none"


@dataclass
class QueryResult:
    """Resultado de una query."""

    data: Optional[Union[Dict[str, Any], List[Dict[str, Any]]]]
    rows_affected: int
    last_row_id: Optional[int]


class DatabaseManager:
    """
    Gestor centralizado de base de datos SQLite.

    Modelo de concurrencia:
    1. Una conexión por hilo (threading.local), lecturas sin bloqueo
    2. Escrituras serializadas con un lock de proceso (un solo escritor)
    3. WAL en ficheros: los lectores nunca ven escrituras a medias
    4. ":memory:" usa una URI shared-cache privada mantenida viva
       por una conexión ancla, para que todos los hilos vean los mismos datos
    """

    def __init__(self, db_path: Optional[str] = None):
        logger.info("DatabaseManager initializing...")
        self.db_path = db_path or self._get_default_path()
        self._local = threading.local()
        self._write_lock = threading.RLock()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._closed = False
        self.fts_available = False

        if self.db_path == ":memory:":
            self._target = f"file:issa-{generate_id()}?mode=memory&cache=shared"
            self._uri = True
        else:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._target = self.db_path
            self._uri = False

        try:
            # Anchor keeps shared in-memory databases alive
            self._anchor = self._get_connection()
            if not self._uri:
                self._anchor.execute("PRAGMA journal_mode = WAL")
            self._init_schema()
            self.fts_available = self._init_fts_schema()
        except sqlite3.Error as e:
            logger.error("DatabaseManager initialization failed", error=str(e))
            raise classify_sqlite_error(e)

        logger.info("DatabaseManager ready", db_path=self.db_path, fts=self.fts_available)

    def _get_default_path(self) -> str:
        """Default database path: ./data/issa.db"""
        return str(Path("./data") / "issa.db")

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get the connection owned by the current thread.

        isolation_level=None: autocommit for reads, explicit BEGIN in transaction().
        check_same_thread=False only so close() can release every connection.
        """
        if self._closed:
            raise DatabaseError("DatabaseManager is closed")

        conn = getattr(self._local, "connection", None)
        if conn is None:
            conn = sqlite3.connect(
                self._target, uri=self._uri, check_same_thread=False, isolation_level=None
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA busy_timeout = 5000")
            self._local.connection = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    def _run_script(self, name: str) -> None:
        script = (SCHEMAS_DIR / name).read_text(encoding="utf-8")
        with self._write_lock:
            self._get_connection().executescript(script)

    def _init_schema(self) -> None:
        """
        Inicializa el esquema base.

        Tablas:
        1. knowledge_base - entradas de conocimiento (JSON para keywords/tags/metadata)
        2. knowledge_embeddings - un vector por entrada y modelo
        """
        schemas_path = SCHEMAS_DIR / "schemas.sql"
        if not schemas_path.exists():
            logger.error("schemas.sql not found", path=str(schemas_path))
            raise DatabaseError(f"Schema file not found: {schemas_path}")
        self._run_script("schemas.sql")

    def _init_fts_schema(self) -> bool:
        """
        Crea la tabla FTS5 y sus triggers.

        Returns:
            False si SQLite no tiene FTS5; la búsqueda léxica degradará
            a la búsqueda por subcadenas.
        """
        try:
            self._run_script("fts_schema.sql")
        except sqlite3.OperationalError as e:
            logger.warning("FTS5 unavailable, lexical search will use fallback", error=str(e))
            return False
        return True

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager para escrituras atómicas.

        BEGIN IMMEDIATE toma el lock de escritura de SQLite al inicio;
        el RLock serializa escritores del mismo proceso.
        """
        with self._write_lock:
            conn = self._get_connection()
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(conn)
                raise classify_sqlite_error(e)
            except IssaError:
                self._rollback(conn)
                raise
            except Exception as e:
                self._rollback(conn)
                raise DatabaseError(f"Transaction failed: {e}", cause=e)

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        # SQLite already rolled back on some errors (SQLITE_FULL, SQLITE_IOERR)
        if conn.in_transaction:
            conn.execute("ROLLBACK")

    def execute(
        self, query: str, params: tuple[Any, ...] = (), fetch: Optional[FetchType] = None
    ) -> QueryResult:
        """
        Execute a single statement.

        Reads (FetchType.ONE / ALL) run lock-free on the thread's connection.
        Writes (fetch None / NONE) run inside transaction().

        Raises:
            DatabaseError: classified SQLite failure
        """
        if fetch in (FetchType.ONE, FetchType.ALL):
            conn = self._get_connection()
            try:
                cursor = conn.execute(query, params)
                if fetch == FetchType.ONE:
                    row = cursor.fetchone()
                    return QueryResult(
                        data=dict(row) if row else None,
                        rows_affected=cursor.rowcount,
                        last_row_id=None,
                    )
                rows = cursor.fetchall()
                return QueryResult(
                    data=[dict(row) for row in rows], rows_affected=len(rows), last_row_id=None
                )
            except sqlite3.Error as e:
                raise classify_sqlite_error(e)

        with self.transaction() as conn:
            cursor = conn.execute(query, params)
            return QueryResult(
                data=None, rows_affected=cursor.rowcount, last_row_id=cursor.lastrowid
            )

    def close(self) -> None:
        """Close every connection opened by this manager."""
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            conn.close()
        self._closed = True
        logger.info("DatabaseManager closed", db_path=self.db_path)
