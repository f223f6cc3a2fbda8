"""
Jerarquía de excepciones unificada para ISSA.
ÚNICA FUENTE de excepciones del motor de conocimiento.
"""

from typing import Dict, Any, Optional, List
from datetime import datetime
from issa.core.id_generator import generate_id
from issa.core.utils.datetime_utils import utc_now, format_iso


class IssaError(Exception):
    """
    Error base del sistema ISSA.

    Características:
    1. Serialización estructurada
    2. Contexto rico
    3. Sugerencias de resolución
    4. ID único para tracking
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        self.id: str = generate_id()
        self.timestamp: datetime = utc_now()
        self.message: str = message
        self.code: str = code or self.__class__.__name__
        self.context: Dict[str, Any] = context or {}
        self.cause: Optional[Exception] = cause
        self.suggestions: List[str] = []
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serializa a diccionario para logs y salida de CLI.

        Returns:
            {
                "error_id": "hex32chars",
                "code": "IndexUnavailableError",
                "message": "no such module: fts5",
                "timestamp": "2024-01-20T10:30:00Z",
                "context": {...}
            }
        """
        result: Dict[str, Any] = {
            "error_id": self.id,
            "code": self.code,
            "message": self.message,
            "timestamp": format_iso(self.timestamp),
            "context": self.context,
        }

        if self.cause:
            result["cause"] = {"type": type(self.cause).__name__, "message": str(self.cause)}

        if self.suggestions:
            result["suggestions"] = self.suggestions

        return result

    def add_suggestion(self, suggestion: str) -> None:
        """
        Añade sugerencia de resolución al error.

        Example:
            error = IndexUnavailableError("FTS5 not compiled in")
            error.add_suggestion("Ejecutar 'issa reindex'")
        """
        if not suggestion or not isinstance(suggestion, str):
            return

        if suggestion not in self.suggestions:
            self.suggestions.append(suggestion)

    def is_retryable(self) -> bool:
        """Indica si el error es reintentable."""
        return False


class DatabaseError(IssaError):
    """Error relacionado con la base de datos SQLite."""

    def is_retryable(self) -> bool:
        """Los errores de BD a veces son reintentables (locks, timeouts)."""
        return True


class SQLiteBusyError(DatabaseError):
    """Error SQLite BUSY - base de datos bloqueada temporalmente por otro escritor."""

    def is_retryable(self) -> bool:
        return True


class SQLiteCorruptError(DatabaseError):
    """Error SQLite CORRUPT - requiere intervención manual."""

    def is_retryable(self) -> bool:
        return False


class SQLiteConstraintError(DatabaseError):
    """Error SQLite CONSTRAINT - violación de restricciones (error de datos)."""

    def is_retryable(self) -> bool:
        return False


class IndexUnavailableError(DatabaseError):
    """
    El índice full-text no puede responder a la consulta.

    Causas típicas: SQLite compilado sin FTS5, tabla FTS corrupta
    o expresión MATCH inválida. La búsqueda léxica degrada a la
    búsqueda por subcadenas en lugar de propagar este error.
    """

    def is_retryable(self) -> bool:
        return False


class ConfigurationError(IssaError):
    """Error de configuración del sistema."""

    pass


class DimensionMismatchError(ConfigurationError):
    """
    Dos vectores de dimensiones distintas se compararon.

    Solo invalida esa comparación concreta, nunca la búsqueda completa.
    """

    pass


class ValidationError(IssaError):
    """
    Error de validación de parámetros de entrada.

    Se lanza antes de ejecutar cualquier estrategia (top_k negativo,
    min_relevance negativo, entrada sin título...).
    """

    pass


class NotFoundError(IssaError):
    """Error cuando una entrada de conocimiento no existe."""

    pass


class ExternalServiceError(IssaError):
    """
    Error de servicio externo (descarga o carga del modelo de embeddings).
    """

    def is_retryable(self) -> bool:
        """Los errores de servicios externos generalmente son reintentables."""
        return True


class EmbeddingUnavailableError(IssaError):
    """
    El modelo de embeddings no está cargado o la búsqueda vectorial está desactivada.

    La estrategia vectorial contribuye una lista vacía cuando ocurre.
    """

    pass
