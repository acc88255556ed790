"""Prometheus metrics for pixo-sync.

All collectors live on a private ``CollectorRegistry`` so importing the
package never pollutes the default process registry.

Example:
    ```python
    from pixo_sync.metrics import mutations_total

    mutations_total.labels(action="like", source="seed", outcome="applied").inc()
    ```
"""

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

registry = CollectorRegistry()

HTTP_LATENCY_BUCKETS = (
    0.005,  # 5ms
    0.01,   # 10ms
    0.025,  # 25ms
    0.05,   # 50ms
    0.1,    # 100ms
    0.25,   # 250ms
    0.5,    # 500ms
    1.0,    # 1s
    2.5,    # 2.5s
    5.0,    # 5s
)


gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total number of requests sent to the remote backend",
    labelnames=["operation", "status"],
    registry=registry,
)
"""Labels:
    operation: Gateway operation (e.g. "toggle_like", "get_comments")
    status: "success", "conflict", "error" or "transient"
"""

gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Latency of remote backend requests",
    labelnames=["operation"],
    buckets=HTTP_LATENCY_BUCKETS,
    registry=registry,
)

mutations_total = Counter(
    "mutations_total",
    "Optimistic mutations by action, entity source and outcome",
    labelnames=["action", "source", "outcome"],
    registry=registry,
)
"""Labels:
    action: "like", "collect", "follow", "comment", "delete", "message"
    source: "remote" or "seed"
    outcome: MutationOutcome value
"""

override_store_operations_total = Counter(
    "override_store_operations_total",
    "Local override store reads and writes",
    labelnames=["operation", "status"],
    registry=registry,
)

realtime_events_total = Counter(
    "realtime_events_total",
    "Realtime frames received, by handling result",
    labelnames=["event"],
    registry=registry,
)
"""Labels:
    event: "dispatched", "ignored", "malformed", "handler_error", "closed"
"""


def generate_metrics_output() -> bytes:
    """Render all metrics in Prometheus exposition format."""
    return generate_latest(registry)


__all__ = [
    "registry",
    "gateway_requests_total",
    "gateway_request_duration_seconds",
    "mutations_total",
    "override_store_operations_total",
    "realtime_events_total",
    "generate_metrics_output",
    "HTTP_LATENCY_BUCKETS",
]
