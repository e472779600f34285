"""
Prometheus metrics for the acquisition pipeline.
Simply import this module at app startup; collectors land in the global REGISTRY.
"""

from prometheus_client import Counter, Histogram


# --- Fetch Metrics ---

FETCH_TOTAL = Counter(
    "nse_fetch_total",
    "Total upstream HTTP fetches",
    ["endpoint", "outcome"],
)

FETCH_LATENCY_MS = Histogram(
    "nse_fetch_latency_ms",
    "Upstream HTTP fetch latency in milliseconds",
    ["endpoint"],
    buckets=[10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000, 60000],
)

# --- Sink Metrics ---

SINK_WRITES_TOTAL = Counter(
    "nse_sink_writes_total",
    "Writes to the cache store, message bus and relational store",
    ["sink", "status"],
)

# --- Task / Enrichment Metrics ---

TASK_RESULTS_TOTAL = Counter(
    "nse_task_results_total",
    "Routed tasks by handler and outcome",
    ["handler", "outcome"],
)

ENRICH_CALLS_TOTAL = Counter(
    "nse_enrich_calls_total",
    "Per-leg analytics calls",
    ["outcome"],
)


class MetricsRegistry:
    """Centralized access to pipeline metrics.

    Components record through this object rather than the module globals so
    tests can swap it for a mock.
    """

    fetch_total = FETCH_TOTAL
    fetch_latency_ms = FETCH_LATENCY_MS
    sink_writes_total = SINK_WRITES_TOTAL
    task_results_total = TASK_RESULTS_TOTAL
    enrich_calls_total = ENRICH_CALLS_TOTAL

    def sink(self, sink: str, status: str) -> None:
        self.sink_writes_total.labels(sink=sink, status=status).inc()


# Singleton instance
metrics_registry = MetricsRegistry()
