"""
Sistema de logging asíncrono para ISSA.

Un único sink de loguru (fichero rotado, escritura en cola) compartido por
todos los componentes del motor de búsqueda.
"""

import os
import time
import yaml
from pathlib import Path
from typing import Any, Dict, Iterator, Optional
from contextlib import contextmanager
from loguru import logger as loguru_logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {extra[component]} | {message} | {extra}"


class AsyncLogger:
    """
    Logger de componente sobre loguru.

    Formato: timestamp | level | component | message | contexto
    La escritura va en cola (enqueue=True): una consulta nunca espera al disco.
    """

    # Handler único compartido entre todas las instancias
    _handler_id: Optional[int] = None
    _log_file = "issa.log"

    def __init__(
        self,
        component: str,
        debug_mode: bool = False,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.component = component
        self.debug_mode = debug_mode
        self.context: Dict[str, Any] = dict(context or {})
        self._ensure_sink()

    @classmethod
    def _ensure_sink(cls) -> None:
        """Añade el sink de fichero la primera vez (rotación a 10MB, zip)."""
        if cls._handler_id is None:
            cls._handler_id = loguru_logger.add(
                cls._log_file,
                format=LOG_FORMAT,
                rotation="10 MB",
                compression="zip",
                enqueue=True,
            )

    def bind(self, **context) -> "AsyncLogger":
        """
        Logger hijo con contexto fijo añadido a cada mensaje.

        Uso:
            log = logger.bind(query_id="abc")
            log.info("Strategy finished", strategy="fuzzy")
        """
        return AsyncLogger(self.component, self.debug_mode, {**self.context, **context})

    def log(self, level: str, message: str, **context):
        loguru_logger.bind(component=self.component, **self.context).log(
            level, message, **context
        )

    def debug(self, message: str, **context):
        self.log("DEBUG", message, **context)

    def info(self, message: str, **context):
        self.log("INFO", message, **context)

    def warning(self, message: str, **context):
        self.log("WARNING", message, **context)

    def error(self, message: str, include_trace: Optional[bool] = None, **context):
        """
        Log nivel ERROR con stack trace opcional.

        Args:
            message: Mensaje de error
            include_trace: Si incluir stack trace (None = según debug_mode)
            **context: Contexto adicional
        """
        should_include_trace = include_trace if include_trace is not None else self.debug_mode

        if should_include_trace:
            import traceback

            context["stack_trace"] = traceback.format_exc()

        self.log("ERROR", message, **context)


class PerformanceLogger:
    """
    Duración de las operaciones del motor.

    Las operaciones que superan slow_ms se registran como WARNING.
    """

    def __init__(self, slow_ms: Optional[float] = None):
        self.logger = AsyncLogger("performance")
        self.slow_ms = slow_ms

    @contextmanager
    def measure(self, operation: str, **context) -> Iterator[Dict[str, Any]]:
        """
        Context manager que mide una operación.

        El dict entregado permite adjuntar datos conocidos al final
        (número de resultados, estrategia usada...).

        Uso:
        ```
        with perf.measure("search_hybrid", query=text) as timing:
            results = fuse(...)
            timing["results"] = len(results)
        ```
        """
        details: Dict[str, Any] = {}
        start = time.perf_counter()
        try:
            yield details
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            fields = {**context, **details, "operation": operation, "duration_ms": duration_ms}
            if self.slow_ms is not None and duration_ms > self.slow_ms:
                self.logger.warning("Slow operation", slow_ms=self.slow_ms, **fields)
            else:
                self.logger.info("Operation completed", **fields)


def _read_logging_section() -> dict:
    """Sección logging del fichero .issa del directorio actual ({} si no existe)."""
    config_path = Path(".issa")
    if not config_path.exists():
        return {}
    try:
        with open(config_path, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError):
        return {}
    section = config.get("logging", {})
    return section if isinstance(section, dict) else {}


def _get_debug_mode(section: dict) -> bool:
    if "debug_mode" in section:
        return bool(section["debug_mode"])
    return os.getenv("ISSA_DEBUG", "false").lower() == "true"


_logging_section = _read_logging_section()

AsyncLogger._log_file = _logging_section.get("file") or os.getenv("ISSA_LOG_FILE") or "issa.log"

# Logger global configurado
logger = AsyncLogger("issa", debug_mode=_get_debug_mode(_logging_section))
