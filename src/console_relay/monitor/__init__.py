"""Health monitor for the HTTP surfaces and console log freshness."""

from .health import CheckReport, HealthMonitor, ProbeResult, has_recent_entry

__all__ = ["HealthMonitor", "CheckReport", "ProbeResult", "has_recent_entry"]
