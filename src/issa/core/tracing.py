"""
Local observability for the retrieval engine.

No external telemetry: spans go to the debug log and every counter lives
in the process that produced it.
"""

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Any, Optional, Iterator

from issa.core.logging import AsyncLogger
from issa.core.id_generator import generate_id


@dataclass
class TimingSummary:
    """Aggregated durations of one span name."""

    count: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0
    errors: int = 0

    @property
    def mean_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0


class MetricsCollector:
    """
    Counters, gauges and timing summaries.

    Updated from concurrent queries and from the embedding worker thread,
    hence the lock.
    """

    def __init__(self) -> None:
        self.metrics: Dict[str, float] = {}
        self.timings: Dict[str, TimingSummary] = {}
        self.logger = AsyncLogger("metrics")
        self._lock = threading.Lock()

    def increment(self, name: str, value: float = 1.0) -> None:
        with self._lock:
            self.metrics[name] = self.metrics.get(name, 0) + value

    def gauge(self, name: str, value: float) -> None:
        with self._lock:
            self.metrics[name] = value

    def record_timing(self, name: str, duration_ms: float, failed: bool = False) -> None:
        with self._lock:
            summary = self.timings.setdefault(name, TimingSummary())
            summary.count += 1
            summary.total_ms += duration_ms
            summary.max_ms = max(summary.max_ms, duration_ms)
            if failed:
                summary.errors += 1

    def get_metrics(self) -> Dict[str, float]:
        with self._lock:
            return self.metrics.copy()

    def get_timings(self) -> Dict[str, Dict[str, float]]:
        """Timing summaries as plain dicts (count, total_ms, mean_ms, max_ms, errors)."""
        with self._lock:
            return {
                name: {
                    "count": summary.count,
                    "total_ms": summary.total_ms,
                    "mean_ms": summary.mean_ms,
                    "max_ms": summary.max_ms,
                    "errors": summary.errors,
                }
                for name, summary in self.timings.items()
            }

    def reset(self, prefix: str = "") -> None:
        """Drops every counter and timing whose name starts with prefix."""
        with self._lock:
            for name in [n for n in self.metrics if n.startswith(prefix)]:
                del self.metrics[name]
            for name in [n for n in self.timings if n.startswith(prefix)]:
                del self.timings[name]


class LocalTracer:
    """
    Per-operation spans.

    LocalTracer vs MetricsCollector:
    - LocalTracer: one debug line per span, useful for "why was this
      query slow"
    - MetricsCollector: aggregates (counters, timing summaries) without
      per-query context

    Usage:
        with tracer.span("strategy.fuzzy", {"entries": 120}):
            hits = matcher.search(keywords, entries)
    """

    def __init__(
        self, service_name: str = "issa", collector: Optional[MetricsCollector] = None
    ) -> None:
        self.service_name = service_name
        self.collector = collector
        self.logger = AsyncLogger("tracing")

    @contextmanager
    def span(self, name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[None]:
        """Measure the block; an exception is recorded on the span and re-raised."""
        span_id = generate_id()
        start = time.perf_counter()
        error: Optional[BaseException] = None

        try:
            yield
        except BaseException as e:
            error = e
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            if self.collector is not None:
                self.collector.record_timing(name, duration_ms, failed=error is not None)

            fields: Dict[str, Any] = {**(attributes or {})}
            if error is not None:
                fields["error_type"] = type(error).__name__
            self.logger.debug(
                f"Span completed: {name}",
                span_id=span_id,
                service=self.service_name,
                duration_ms=duration_ms,
                **fields,
            )


# Global instances
metrics = MetricsCollector()
tracer = LocalTracer(collector=metrics)
