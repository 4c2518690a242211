"""Shared fakes for the log store, insert feed, sink and provisioner."""

import logging
import queue
from datetime import datetime, timedelta, timezone

import pytest

from console_relay.relay.channels import ProvisioningError
from console_relay.relay.entry import LogEntry
from console_relay.relay.store import FeedTerminated, FeedUnavailable

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

_CLOSED = object()


def make_entry(level: str, message: str, seconds: float, entry_id: int | None = None) -> LogEntry:
    """Entry received `seconds` after T0."""
    return LogEntry(
        id=entry_id,
        level=level,
        message=message,
        received_at=T0 + timedelta(seconds=seconds),
    )


class FakeFeed:
    """Insert feed driven by the test through a queue."""

    def __init__(self):
        self.queue: queue.Queue = queue.Queue()
        self.closed = False

    def deliver(self, entry: LogEntry) -> None:
        self.queue.put(entry)

    def fail(self, error: Exception | None = None) -> None:
        self.queue.put(error or FeedTerminated("connection lost"))

    def __iter__(self):
        while not self.closed:
            try:
                item = self.queue.get(timeout=0.05)
            except queue.Empty:
                continue
            if item is _CLOSED:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    def close(self) -> None:
        self.closed = True
        self.queue.put(_CLOSED)


class FakeStore:
    """In-memory log store."""

    def __init__(self, feed_available: bool = True):
        self.entries: list[LogEntry] = []
        self.feed = FakeFeed()
        self.feed_available = feed_available
        self.query_errors: list[Exception] = []
        self.queries: list[tuple[datetime | None, int]] = []
        self.subscriptions = 0
        self.closed = False

    def insert(self, level: str, message: str, seconds: float, notify: bool = False) -> LogEntry:
        entry = make_entry(level, message, seconds, entry_id=len(self.entries) + 1)
        self.entries.append(entry)
        if notify:
            self.feed.deliver(entry)
        return entry

    def subscribe_inserts(self) -> FakeFeed:
        self.subscriptions += 1
        if not self.feed_available:
            raise FeedUnavailable("change feed not supported")
        return self.feed

    def query_after(self, cursor: datetime | None, limit: int) -> list[LogEntry]:
        self.queries.append((cursor, limit))
        if self.query_errors:
            raise self.query_errors.pop(0)
        matching = [e for e in self.entries if cursor is None or e.received_at > cursor]
        return sorted(matching, key=lambda e: e.received_at)[:limit]

    def recent(self, limit: int = 100) -> list[LogEntry]:
        if self.query_errors:
            raise self.query_errors.pop(0)
        return sorted(self.entries, key=lambda e: e.received_at, reverse=True)[:limit]

    def close(self) -> None:
        self.closed = True


class FakeSink:
    """Records sends; can be told to fail."""

    def __init__(self):
        self.calls: list[tuple[str, str]] = []
        self.result = True
        self.error: Exception | None = None

    def send(self, channel_id: str, text: str) -> bool:
        self.calls.append((channel_id, text))
        if self.error is not None:
            raise self.error
        return self.result


class FakeProvisioner:
    """Provisioner backed by a dict of existing channels."""

    def __init__(self, existing: dict[str, str] | None = None, fail_names: set[str] | None = None):
        self.channels: dict[tuple[str, str], str] = {
            ("guild-1", name): channel_id for name, channel_id in (existing or {}).items()
        }
        self.fail_names = fail_names or set()
        self.created: list[str] = []
        self.calls = 0

    def ensure_destination(self, community_id: str, name: str, topic: str | None = None) -> str:
        self.calls += 1
        if name in self.fail_names:
            raise ProvisioningError(f"missing Manage Channels permission for {name}")
        key = (community_id, name)
        if key not in self.channels:
            self.channels[key] = f"id-{name}"
            self.created.append(name)
        return self.channels[key]


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture(autouse=True)
def restore_root_logging():
    """Undo handler changes made by configure_logging (the CLI calls it)."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
