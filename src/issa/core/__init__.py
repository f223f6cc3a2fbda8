"""
ISSA Core module.

Exports the fundamental system components.
"""

# Configuration
from issa.core.secure_config import Settings, ConfigValidator

# Database
from issa.core.database import DatabaseManager, FetchType, QueryResult, classify_sqlite_error

# Exceptions
from issa.core.exceptions import (
    IssaError,
    DatabaseError,
    SQLiteBusyError,
    SQLiteCorruptError,
    SQLiteConstraintError,
    IndexUnavailableError,
    ConfigurationError,
    DimensionMismatchError,
    ValidationError,
    NotFoundError,
    ExternalServiceError,
    EmbeddingUnavailableError,
)

# Logging
from issa.core.logging import AsyncLogger, PerformanceLogger, logger

# Tracing and metrics
from issa.core.tracing import tracer, metrics, LocalTracer, MetricsCollector

# ID generator
from issa.core.id_generator import generate_id

__all__ = [
    "Settings",
    "ConfigValidator",
    "DatabaseManager",
    "FetchType",
    "QueryResult",
    "classify_sqlite_error",
    "IssaError",
    "DatabaseError",
    "SQLiteBusyError",
    "SQLiteCorruptError",
    "SQLiteConstraintError",
    "IndexUnavailableError",
    "ConfigurationError",
    "DimensionMismatchError",
    "ValidationError",
    "NotFoundError",
    "ExternalServiceError",
    "EmbeddingUnavailableError",
    "AsyncLogger",
    "PerformanceLogger",
    "logger",
    "tracer",
    "metrics",
    "LocalTracer",
    "MetricsCollector",
    "generate_id",
]
