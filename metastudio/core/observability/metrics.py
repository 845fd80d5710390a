from __future__ import annotations

import re
from collections import Counter
from typing import Dict

from prometheus_client import Counter as PromCounter
from prometheus_client import Histogram

# Named counters (in-process snapshot for tests and /api/v1/metrics)
_NAMED = Counter()

OPERATIONS_TOTAL = PromCounter(
    "metastudio_operations_total",
    "Engine operations by outcome",
    ["operation", "status"],
)

ALIAS_RESOLUTIONS_TOTAL = PromCounter(
    "metastudio_alias_resolutions_total",
    "Alias resolutions by outcome",
    ["outcome"],
)

LINEAGE_TRAVERSAL_NODES = Histogram(
    "metastudio_lineage_traversal_nodes",
    "Nodes visited per lineage traversal",
    ["direction"],
    buckets=(1, 5, 10, 50, 100, 500, 1000, 5000, 10000),
)

HTTP_REQUESTS_TOTAL = PromCounter(
    "metastudio_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "metastudio_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)


def normalize_path(path: str) -> str:
    """Reduce high-cardinality paths for metrics labels."""
    p = path or "/"
    p = re.sub(r"/[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}", "/:uuid", p)
    p = re.sub(r"^(/api/v1/tenants)/[^/]+", r"\1/:tenant", p)
    return p


def record_operation(operation: str, status: str) -> None:
    OPERATIONS_TOTAL.labels(operation=operation, status=status).inc()
    _NAMED[f"{operation}|{status}"] += 1


def inc_named(name: str, value: int = 1) -> None:
    if not name:
        return
    _NAMED[name] += int(value)


def snapshot_named() -> Dict[str, int]:
    return dict(_NAMED)


def reset_metrics() -> None:
    """
    Test helper: clears in-process counters to avoid cross-test leakage.
    Prometheus collectors are process-global and are left alone.
    """
    _NAMED.clear()
