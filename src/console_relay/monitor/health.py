"""External health monitor.

Periodically probes HTTP health surfaces and checks that console entries are
still arriving. When nothing has been received inside the freshness window
it sends one alert per check cycle. The monitor shares no mutable state with
the relay; a monitor failure cannot affect tailing.
"""

import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import httpx
import schedule
import structlog

from ..metrics import HEALTH_CHECKS, MONITOR_ALERTS
from ..relay.entry import LogEntry, parse_timestamp, utcnow
from ..relay.processor import Sink
from ..relay.store import LogStore, LogStoreError

log = structlog.get_logger()

RECENT_ENDPOINT = "/console/recent"
DEFAULT_ENDPOINTS = ["/health", RECENT_ENDPOINT]

# Keys checked, in order, for an entry's timestamp in JSON responses
_TIMESTAMP_KEYS = ("receivedAt", "received_at", "minecraftTimestamp", "timestamp")


@dataclass
class ProbeResult:
    """Result of probing one endpoint."""

    endpoint: str
    ok: bool
    status: int = 0
    error: str | None = None
    body: Any = None


@dataclass
class CheckReport:
    """All probe results for one base URL."""

    base_url: str
    results: dict[str, ProbeResult] = field(default_factory=dict)
    recent_found: bool = False

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results.values())

    @property
    def summary(self) -> str:
        return ",".join(
            f"{endpoint}:{'OK' if r.ok else 'ERR'}" for endpoint, r in self.results.items()
        )


def _entry_timestamp(item: LogEntry | Mapping[str, Any]) -> datetime | None:
    if isinstance(item, LogEntry):
        return item.received_at
    for key in _TIMESTAMP_KEYS:
        ts = parse_timestamp(item.get(key))
        if ts is not None:
            return ts
    return None


def has_recent_entry(
    entries: Iterable[LogEntry | Mapping[str, Any]],
    window: timedelta,
    now: datetime,
) -> bool:
    """Whether any entry was received within window before now."""
    cutoff = now - window
    for item in entries:
        ts = _entry_timestamp(item)
        if ts is not None and ts >= cutoff:
            return True
    return False


class HealthMonitor:
    """Polls health endpoints and alerts on stale console output."""

    def __init__(
        self,
        sink: Sink,
        alert_channel_id: str | None,
        base_urls: list[str],
        endpoints: list[str] | None = None,
        freshness_minutes: float = 10.0,
        interval_seconds: float = 30.0,
        store: LogStore | None = None,
        client: httpx.Client | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.sink = sink
        self.alert_channel_id = alert_channel_id
        self.base_urls = base_urls
        self.endpoints = endpoints or list(DEFAULT_ENDPOINTS)
        self.freshness = timedelta(minutes=freshness_minutes)
        self.interval_seconds = interval_seconds
        self.store = store
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=5.0)
        self.clock = clock

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._scheduler = schedule.Scheduler()

    def probe(self, base_url: str, endpoint: str) -> ProbeResult:
        url = base_url.rstrip("/") + endpoint
        try:
            response = self.client.get(url)
        except httpx.RequestError as e:
            return ProbeResult(endpoint=endpoint, ok=False, error=str(e))

        if not response.is_success:
            return ProbeResult(
                endpoint=endpoint, ok=False, status=response.status_code, error="non-2xx"
            )
        try:
            body = response.json()
        except ValueError:
            body = None
        return ProbeResult(endpoint=endpoint, ok=True, status=response.status_code, body=body)

    def check_base_url(self, base_url: str) -> CheckReport:
        """Probe every endpoint of one base URL."""
        report = CheckReport(base_url=base_url)
        for endpoint in self.endpoints:
            report.results[endpoint] = self.probe(base_url, endpoint)

        recent = report.results.get(RECENT_ENDPOINT)
        if recent is not None and recent.ok and isinstance(recent.body, dict):
            logs = recent.body.get("logs")
            if isinstance(logs, list):
                report.recent_found = has_recent_entry(
                    (item for item in logs if isinstance(item, dict)),
                    self.freshness,
                    self.clock(),
                )
        return report

    def _store_has_recent(self) -> bool:
        if self.store is None:
            return False
        try:
            entries = self.store.recent(limit=100)
        except LogStoreError as e:
            log.warning("Health monitor store query failed", error=str(e))
            return False
        return has_recent_entry(entries, self.freshness, self.clock())

    def run_checks(self) -> list[CheckReport]:
        """Run one check cycle, sending at most one alert."""
        reports = []
        for base_url in self.base_urls:
            report = self.check_base_url(base_url)
            HEALTH_CHECKS.labels(status="ok" if report.ok else "degraded").inc()
            log.info(
                "Health check",
                base_url=base_url,
                ok=report.ok,
                summary=report.summary,
                recent_found=report.recent_found,
            )
            reports.append(report)

        if any(r.recent_found for r in reports) or self._store_has_recent():
            return reports

        minutes = int(self.freshness.total_seconds() // 60)
        sources = ", ".join(r.base_url for r in reports) or "log store"
        message = f"Health monitor: no recent console logs from {sources} (last {minutes}m)"
        log.warning("No recent console logs", sources=sources, window_minutes=minutes)
        self._alert(message)
        return reports

    def _alert(self, message: str) -> None:
        if not self.alert_channel_id:
            return
        MONITOR_ALERTS.inc()
        try:
            if not self.sink.send(self.alert_channel_id, message):
                log.warning("Health alert not delivered", channel_id=self.alert_channel_id)
        except Exception:
            log.exception("Health alert failed", channel_id=self.alert_channel_id)

    def _run_checks_safely(self) -> None:
        try:
            self.run_checks()
        except Exception:
            log.exception("Health check cycle failed")

    def run(self) -> None:
        """Check immediately, then on every interval until stop() is called. Blocks."""
        log.info(
            "Health monitor started",
            base_urls=self.base_urls,
            interval=self.interval_seconds,
        )
        self._run_checks_safely()
        self._scheduler.every(self.interval_seconds).seconds.do(self._run_checks_safely)
        while not self._stop_event.is_set():
            self._scheduler.run_pending()
            self._stop_event.wait(1)
        self._scheduler.clear()

    def start(self) -> threading.Thread:
        thread = threading.Thread(target=self.run, name="health-monitor", daemon=True)
        self._thread = thread
        thread.start()
        return thread

    def stop(self) -> None:
        self._stop_event.set()

    def close(self, timeout: float = 5.0) -> None:
        """Stop, wait for the current cycle to finish, then release the HTTP client and store."""
        self.stop()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                log.warning("Health monitor did not stop in time", timeout=timeout)
                return
        if self._owns_client:
            self.client.close()
        if self.store is not None:
            self.store.close()
