"""Pull tailer: polls the log store for entries after the cursor."""

import threading
import time
from dataclasses import dataclass

import structlog

from ..metrics import PULL_QUERY_FAILURES, PULL_TICKS
from .processor import EntryProcessor, RelayState
from .store import LogStore, LogStoreError

log = structlog.get_logger()

DEFAULT_INTERVAL_SECONDS = 10.0
DEFAULT_PAGE_SIZE = 100


@dataclass(frozen=True)
class TickResult:
    """Outcome of one pull tick."""

    processed: int = 0
    error: Exception | None = None
    skipped: bool = False
    caught_up: bool = True


class PullTailer:
    """Fixed-interval polling fallback.

    Each tick reads at most one page of entries newer than the cursor and
    processes them in order. Ticks never overlap; a tick attempted while
    another is still draining is skipped.
    """

    def __init__(
        self,
        store: LogStore,
        processor: EntryProcessor,
        state: RelayState,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self.store = store
        self.processor = processor
        self.state = state
        self.interval = interval
        self.page_size = page_size
        self._tick_lock = threading.Lock()

    def tick(self, stop_event: threading.Event | None = None) -> TickResult:
        """Query and process one page after the cursor.

        When stop_event is set mid-page the rest of the page is left for the
        next run; the cursor stays on the last processed entry.
        """
        if not self._tick_lock.acquire(blocking=False):
            log.debug("Pull tick still draining, skipping")
            PULL_TICKS.labels(outcome="skipped").inc()
            return TickResult(skipped=True)

        try:
            try:
                entries = self.store.query_after(
                    self.state.cursor.last_received_at, self.page_size
                )
            except LogStoreError as e:
                # Cursor untouched; the next tick retries from the same point
                log.warning("Pull query failed", error=str(e))
                PULL_QUERY_FAILURES.inc()
                PULL_TICKS.labels(outcome="error").inc()
                return TickResult(error=e)

            processed = 0
            for entry in entries:
                if stop_event is not None and stop_event.is_set():
                    remaining = len(entries) - processed
                    log.info("Stopping mid-page", processed=processed, remaining=remaining)
                    break
                self.processor.process(entry)
                processed += 1

            PULL_TICKS.labels(outcome="processed" if processed else "idle").inc()
            if processed:
                log.debug("Pull tick processed entries", count=processed)
            return TickResult(processed=processed, caught_up=len(entries) < self.page_size)
        finally:
            self._tick_lock.release()

    def run(self, stop_event: threading.Event) -> None:
        """Tick at a fixed rate until stop_event is set.

        A full page is followed by an immediate tick. Intervals missed while
        a tick was draining are coalesced rather than replayed.
        """
        log.info("Pull tailing started", interval=self.interval, page_size=self.page_size)
        next_due = time.monotonic()
        while not stop_event.is_set():
            try:
                result = self.tick(stop_event)
            except Exception as e:
                log.exception("Unexpected error in pull tick")
                result = TickResult(error=e)
            if result.error is None and not result.caught_up:
                next_due = time.monotonic()
                continue

            next_due += self.interval
            now = time.monotonic()
            if next_due <= now:
                missed = int((now - next_due) // self.interval) + 1
                log.debug("Coalescing missed pull ticks", missed=missed)
                next_due += missed * self.interval
            stop_event.wait(next_due - now)
