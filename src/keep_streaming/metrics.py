"""
Prometheus instrumentation for the read and write engines.

Metrics live in the global prometheus_client REGISTRY; expose them with
``prometheus_client.start_http_server`` in the host application.
"""

from prometheus_client import Counter, Histogram

READ_CHUNKS_TOTAL = Counter(
    "keep_streaming_read_chunks_total",
    "Chunks delivered to read consumers",
    ["kind"],
)

READ_BYTES_TOTAL = Counter(
    "keep_streaming_read_bytes_total",
    "Bytes delivered to read consumers",
    ["kind"],
)

RETRIES_TOTAL = Counter(
    "keep_streaming_retries_total",
    "Retries scheduled by retry strategies",
    ["direction", "phase"],  # direction=read|write, phase=exists|stream
)

OPERATIONS_TOTAL = Counter(
    "keep_streaming_operations_total",
    "Operations that reached a terminal state",
    ["direction", "outcome"],  # outcome=finished|errored
)

WRITE_LATENCY_MS = Histogram(
    "keep_streaming_write_latency_ms",
    "Write latency from lock request to terminal state, in milliseconds",
    buckets=[1, 2.5, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000],
)

FIFO_RECONNECTS_TOTAL = Counter(
    "keep_streaming_fifo_reconnects_total",
    "FIFO read streams reopened after a writer disconnected",
)


class MetricsRegistry:
    """Groups the keep-streaming metrics for callers and tests."""

    read_chunks_total = READ_CHUNKS_TOTAL
    read_bytes_total = READ_BYTES_TOTAL
    retries_total = RETRIES_TOTAL
    operations_total = OPERATIONS_TOTAL
    write_latency_ms = WRITE_LATENCY_MS
    fifo_reconnects_total = FIFO_RECONNECTS_TOTAL


# Singleton instance
metrics_registry = MetricsRegistry()
