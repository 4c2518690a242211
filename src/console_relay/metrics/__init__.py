"""Prometheus metrics for the console relay.

Usage:
    from console_relay.metrics import start_metrics_server, SENDS

    # Start metrics server (call once at startup)
    start_metrics_server(port=8000, status=coordinator.status)

    SENDS.labels(destination="error", status="success").inc()
"""

from console_relay.metrics.relay import (
    CURSOR_POSITION,
    ENTRIES_PROCESSED,
    FAILOVERS,
    HEALTH_CHECKS,
    MONITOR_ALERTS,
    PULL_QUERY_FAILURES,
    PULL_TICKS,
    SENDS,
    TAILING_MODE,
)
from console_relay.metrics.server import start_metrics_server, stop_metrics_server

__all__ = [
    "start_metrics_server",
    "stop_metrics_server",
    "CURSOR_POSITION",
    "ENTRIES_PROCESSED",
    "FAILOVERS",
    "HEALTH_CHECKS",
    "MONITOR_ALERTS",
    "PULL_QUERY_FAILURES",
    "PULL_TICKS",
    "SENDS",
    "TAILING_MODE",
]
