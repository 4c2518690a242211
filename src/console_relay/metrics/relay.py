"""Prometheus metrics for the console relay.

All metrics use the 'console_relay_' prefix.
"""

from prometheus_client import Counter, Enum, Gauge

# Tailing path
ENTRIES_PROCESSED = Counter(
    "console_relay_entries_processed_total",
    "Log entries classified and passed the cursor",
    ["destination"],  # general, warn, error, none
)

SENDS = Counter(
    "console_relay_sends_total",
    "Attempts to forward an entry to a channel",
    ["destination", "status"],  # status: success, error, dropped
)

CURSOR_POSITION = Gauge(
    "console_relay_cursor_timestamp_seconds",
    "Receipt timestamp of the last processed entry (unix seconds)",
)

PULL_QUERY_FAILURES = Counter(
    "console_relay_pull_query_failures_total",
    "Pull ticks whose log store query failed",
)

PULL_TICKS = Counter(
    "console_relay_pull_ticks_total",
    "Pull ticks by outcome",
    ["outcome"],  # processed, idle, error, skipped
)

# Failover coordinator
TAILING_MODE = Enum(
    "console_relay_tailing_mode",
    "Currently active tailing mode",
    states=["stopped", "push", "pull"],
)

FAILOVERS = Counter(
    "console_relay_failovers_total",
    "Switches from push to pull mode",
    ["reason"],  # unavailable, terminated
)

# Health monitor
HEALTH_CHECKS = Counter(
    "console_relay_health_checks_total",
    "Health probe results per base URL",
    ["status"],  # ok, degraded
)

MONITOR_ALERTS = Counter(
    "console_relay_monitor_alerts_total",
    "Staleness alerts sent by the health monitor",
)
