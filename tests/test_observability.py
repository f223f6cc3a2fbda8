import pytest
from loguru import logger as loguru_logger

from issa.core.logging import AsyncLogger, PerformanceLogger
from issa.core.tracing import LocalTracer, MetricsCollector


@pytest.fixture
def records():
    """Log records emitted while the test runs."""
    captured = []
    sink_id = loguru_logger.add(lambda message: captured.append(message.record), level="DEBUG")
    yield captured
    loguru_logger.remove(sink_id)


class TestMetricsCollector:
    def test_counters_and_gauges(self):
        collector = MetricsCollector()
        collector.increment("rag.search.queries")
        collector.increment("rag.search.queries", 2)
        collector.gauge("embeddings.cached", 13)

        assert collector.get_metrics() == {"rag.search.queries": 3, "embeddings.cached": 13}

    def test_timings(self):
        collector = MetricsCollector()
        collector.record_timing("strategy.fuzzy", 10.0)
        collector.record_timing("strategy.fuzzy", 30.0, failed=True)

        summary = collector.get_timings()["strategy.fuzzy"]
        assert summary["count"] == 2
        assert summary["mean_ms"] == pytest.approx(20.0)
        assert summary["max_ms"] == pytest.approx(30.0)
        assert summary["errors"] == 1

    def test_reset_by_prefix(self):
        collector = MetricsCollector()
        collector.increment("rag.cache.hits")
        collector.increment("embeddings.precomputed")
        collector.record_timing("rag.strategy", 1.0)

        collector.reset("rag.")

        assert collector.get_metrics() == {"embeddings.precomputed": 1}
        assert collector.get_timings() == {}


class TestLocalTracer:
    def test_span_feeds_collector(self):
        collector = MetricsCollector()
        tracer = LocalTracer(collector=collector)

        with tracer.span("strategy.keyword", {"query": "takaful"}):
            pass

        assert collector.get_timings()["strategy.keyword"]["count"] == 1

    def test_failing_span_reraises_and_is_counted(self, records):
        collector = MetricsCollector()
        tracer = LocalTracer(collector=collector)

        with pytest.raises(RuntimeError):
            with tracer.span("strategy.fuzzy"):
                raise RuntimeError("boom")

        assert collector.get_timings()["strategy.fuzzy"]["errors"] == 1
        span_records = [r for r in records if r["message"] == "Span completed: strategy.fuzzy"]
        assert span_records[-1]["extra"]["error_type"] == "RuntimeError"


class TestLogging:
    def test_bound_context_is_attached(self, records):
        log = AsyncLogger("search").bind(query="hajj")
        log.info("Strategy finished", strategy="fuzzy")

        record = records[-1]
        assert record["extra"]["component"] == "search"
        assert record["extra"]["query"] == "hajj"
        assert record["extra"]["strategy"] == "fuzzy"

    def test_bind_does_not_change_parent(self):
        parent = AsyncLogger("search")
        parent.bind(query="hajj")
        assert parent.context == {}

    def test_measure_collects_late_details(self, records):
        with PerformanceLogger().measure("search_hybrid", top_k=3) as timing:
            timing["results"] = 2

        record = records[-1]
        assert record["message"] == "Operation completed"
        assert record["extra"]["operation"] == "search_hybrid"
        assert record["extra"]["results"] == 2
        assert record["extra"]["top_k"] == 3
        assert record["extra"]["duration_ms"] >= 0

    def test_slow_operation_is_a_warning(self, records):
        with PerformanceLogger(slow_ms=-1).measure("search_hybrid"):
            pass

        assert records[-1]["message"] == "Slow operation"
        assert records[-1]["level"].name == "WARNING"
