"""Prometheus metrics definitions for s3storage.

All metrics use the ``s3storage_`` prefix. Nothing is registered in the
global prometheus_client registry until ``init_metrics()`` is called, so
importing the package has no side effects; until then the ``record_*``
helpers are no-ops.
"""

from __future__ import annotations

from prometheus_client import Counter

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

# ---------------------------------------------------------------------------
# Object operation counter  (labels: operation, status)
# ---------------------------------------------------------------------------
operations_total: Counter | None = None

# ---------------------------------------------------------------------------
# Byte counters
# ---------------------------------------------------------------------------
bytes_read_total: Counter | None = None
bytes_written_total: Counter | None = None

STATUS_OK = "ok"
STATUS_NOT_FOUND = "not_found"
STATUS_ERROR = "error"


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    Safe to call more than once; only the first call registers collectors.
    """
    global _initialized
    global operations_total, bytes_read_total, bytes_written_total

    if _initialized:
        return

    operations_total = Counter(
        "s3storage_operations_total",
        "Total object store operations by type and outcome",
        ["operation", "status"],
    )

    bytes_read_total = Counter(
        "s3storage_bytes_read_total",
        "Total object bytes read from the object store",
    )

    bytes_written_total = Counter(
        "s3storage_bytes_written_total",
        "Total object bytes written to the object store",
    )

    _initialized = True


def record_operation(operation: str, status: str) -> None:
    if operations_total is not None:
        operations_total.labels(operation=operation, status=status).inc()


def record_bytes_read(count: int) -> None:
    if bytes_read_total is not None:
        bytes_read_total.inc(count)


def record_bytes_written(count: int) -> None:
    if bytes_written_total is not None:
        bytes_written_total.inc(count)
