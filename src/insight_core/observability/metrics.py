"""
Prometheus metrics for the insight extraction engine.
"""
from prometheus_client import Counter, Histogram, start_http_server, CollectorRegistry
import structlog

logger = structlog.get_logger()


class MetricsCollector:
    """Collect and export Prometheus metrics for extraction runs."""

    def __init__(self, port: int = 9108):
        self.port = port

        # Custom registry keeps collectors isolated per instance
        self.registry = CollectorRegistry()

        self._init_metrics()

    def start_server(self) -> bool:
        """Start HTTP exporter on the configured port."""
        try:
            start_http_server(self.port, registry=self.registry)
            logger.info("Prometheus metrics server started", port=self.port)
            return True
        except OSError as e:
            logger.warning("Failed to start metrics server", port=self.port, error=str(e))
            return False

    def _init_metrics(self):
        """Initialize Prometheus metrics."""

        self.extraction_runs_total = Counter(
            'extraction_runs_total',
            'Total extraction runs',
            ['category', 'source'],  # source: cache, fresh
            registry=self.registry
        )

        self.insights_returned_total = Counter(
            'insights_returned_total',
            'Total insights returned to callers',
            ['category'],  # actions, decisions
            registry=self.registry
        )

        self.extraction_duration_seconds = Histogram(
            'extraction_duration_seconds',
            'Time spent extracting insights for one conversation window',
            ['category'],
            buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
            registry=self.registry
        )

        self.cache_errors_total = Counter(
            'cache_errors_total',
            'Cache store failures by operation',
            ['operation'],  # get, set, remove, keys
            registry=self.registry
        )

        self.refine_fallbacks_total = Counter(
            'refine_fallbacks_total',
            'Refinement calls that fell back to unrefined items',
            ['category'],
            registry=self.registry
        )

        self.priority_messages_total = Counter(
            'priority_messages_total',
            'Priority messages surfaced by level',
            ['level'],  # urgent, high
            registry=self.registry
        )

    def record_extraction(self, category: str, source: str, returned: int, duration_s: float = None):
        """Record one extraction run."""
        self.extraction_runs_total.labels(category=category, source=source).inc()
        self.insights_returned_total.labels(category=category).inc(returned)
        if duration_s is not None:
            self.extraction_duration_seconds.labels(category=category).observe(duration_s)

    def record_cache_error(self, operation: str):
        """Record cache store failure."""
        self.cache_errors_total.labels(operation=operation).inc()

    def record_refine_fallback(self, category: str):
        """Record refinement fallback."""
        self.refine_fallbacks_total.labels(category=category).inc()

    def record_priority_message(self, level: str):
        """Record surfaced priority message."""
        self.priority_messages_total.labels(level=level).inc()
