"""Tests for the health monitor."""

from datetime import timedelta

import httpx
from conftest import T0, FakeSink, FakeStore, make_entry

from console_relay.monitor import HealthMonitor, has_recent_entry
from console_relay.relay.store import LogStoreError

WINDOW = timedelta(minutes=10)


def recent_logs(*minutes_ago: float) -> dict:
    return {
        "logs": [
            {"message": "hi", "receivedAt": (T0 - timedelta(minutes=m)).isoformat()}
            for m in minutes_ago
        ]
    }


def make_monitor(routes: dict[str, httpx.Response], sink: FakeSink, **kwargs) -> HealthMonitor:
    """Monitor whose HTTP client answers from routes keyed by full URL."""

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url not in routes:
            raise httpx.ConnectError("connection refused", request=request)
        return routes[url]

    kwargs.setdefault("base_urls", ["http://game.test"])
    return HealthMonitor(
        sink=sink,
        alert_channel_id="alerts",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        clock=lambda: T0,
        **kwargs,
    )


class TestHasRecentEntry:
    def test_entry_inside_window(self):
        assert has_recent_entry(recent_logs(20, 3)["logs"], WINDOW, T0)

    def test_all_entries_stale(self):
        assert not has_recent_entry(recent_logs(11, 30)["logs"], WINDOW, T0)

    def test_empty(self):
        assert not has_recent_entry([], WINDOW, T0)

    def test_log_entries_and_fallback_keys(self):
        assert has_recent_entry([make_entry("INFO", "x", -60)], WINDOW, T0)
        assert has_recent_entry([{"timestamp": T0.isoformat()}], WINDOW, T0)

    def test_unparseable_timestamps_ignored(self):
        assert not has_recent_entry([{"receivedAt": "yesterday"}, {}], WINDOW, T0)


class TestHealthMonitor:
    def test_fresh_logs_no_alert(self, sink):
        monitor = make_monitor(
            {
                "http://game.test/health": httpx.Response(200, json={"status": "ok"}),
                "http://game.test/console/recent": httpx.Response(200, json=recent_logs(2)),
            },
            sink,
        )

        (report,) = monitor.run_checks()

        assert report.ok
        assert report.recent_found
        assert report.summary == "/health:OK,/console/recent:OK"
        assert sink.calls == []

    def test_stale_logs_alert(self, sink):
        monitor = make_monitor(
            {
                "http://game.test/health": httpx.Response(200, json={"status": "ok"}),
                "http://game.test/console/recent": httpx.Response(200, json=recent_logs(45)),
            },
            sink,
        )

        monitor.run_checks()

        assert sink.calls == [
            ("alerts", "Health monitor: no recent console logs from http://game.test (last 10m)")
        ]

    def test_one_alert_per_cycle(self, sink):
        monitor = make_monitor({}, sink, base_urls=["http://a.test", "http://b.test"])

        reports = monitor.run_checks()

        assert [r.ok for r in reports] == [False, False]
        assert len(sink.calls) == 1
        assert "http://a.test, http://b.test" in sink.calls[0][1]

    def test_failed_probe_reported(self, sink):
        monitor = make_monitor(
            {
                "http://game.test/health": httpx.Response(503),
                "http://game.test/console/recent": httpx.Response(200, json=recent_logs(1)),
            },
            sink,
        )

        (report,) = monitor.run_checks()

        assert not report.ok
        assert report.results["/health"].status == 503
        assert report.summary == "/health:ERR,/console/recent:OK"
        # Logs are fresh, so a failed probe alone does not alert
        assert sink.calls == []

    def test_unreachable_endpoint(self, sink):
        monitor = make_monitor({}, sink)

        result = monitor.probe("http://game.test", "/health")

        assert not result.ok
        assert "connection refused" in result.error

    def test_store_fallback_counts_as_fresh(self, sink):
        store = FakeStore()
        store.insert("INFO", "tick", -30)
        monitor = make_monitor({}, sink, store=store)

        monitor.run_checks()

        assert sink.calls == []

    def test_store_failure_treated_as_stale(self, sink):
        store = FakeStore()
        store.insert("INFO", "tick", -30)
        store.query_errors.append(LogStoreError("down"))
        monitor = make_monitor({}, sink, store=store)

        monitor.run_checks()

        assert len(sink.calls) == 1

    def test_no_alert_channel(self, sink):
        monitor = make_monitor({}, sink)
        monitor.alert_channel_id = None

        monitor.run_checks()

        assert sink.calls == []

    def test_alert_failure_does_not_raise(self, sink):
        sink.error = RuntimeError("discord down")
        monitor = make_monitor({}, sink)

        monitor.run_checks()

        assert len(sink.calls) == 1

    def test_custom_freshness_window(self, sink):
        monitor = make_monitor(
            {"http://game.test/console/recent": httpx.Response(200, json=recent_logs(4))},
            sink,
            endpoints=["/console/recent"],
            freshness_minutes=3,
        )

        monitor.run_checks()

        assert sink.calls[0][1].endswith("(last 3m)")


class TestMonitorLifecycle:
    def test_close_joins_thread_and_releases_resources(self, sink):
        store = FakeStore()
        monitor = HealthMonitor(
            sink=sink,
            alert_channel_id=None,
            base_urls=[],
            interval_seconds=3600,
            store=store,
            clock=lambda: T0,
        )
        thread = monitor.start()

        monitor.close(timeout=10)

        assert not thread.is_alive()
        assert monitor.client.is_closed
        assert store.closed

    def test_close_leaves_injected_client_open(self, sink):
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        monitor = HealthMonitor(sink=sink, alert_channel_id=None, base_urls=[], client=client)

        monitor.close()

        assert not client.is_closed
        client.close()
