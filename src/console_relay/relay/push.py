"""Push tailer: processes entries as the log store announces them."""

import threading

import structlog

from .processor import EntryProcessor
from .store import FeedError, FeedTerminated, InsertFeed, LogStore

log = structlog.get_logger()


class PushTailer:
    """Consumes the live insert feed one entry at a time.

    Entries are handled synchronously in delivery order on the thread
    that calls run(). Feed failures are never retried here; run() returns
    the error and the coordinator decides what happens next.
    """

    def __init__(self, store: LogStore, processor: EntryProcessor):
        self.store = store
        self.processor = processor
        self._feed: InsertFeed | None = None
        self._stopping = threading.Event()
        self._lock = threading.Lock()

    def run(self) -> FeedError | None:
        """Tail the feed until it fails or stop() is called.

        Returns:
            The terminal feed error, or None after a requested stop
        """
        try:
            feed = self.store.subscribe_inserts()
        except FeedError as e:
            log.warning("Insert feed unavailable", error=str(e))
            return e

        with self._lock:
            if self._stopping.is_set():
                feed.close()
                return None
            self._feed = feed

        log.info("Push tailing started")
        try:
            for entry in feed:
                self.processor.process(entry)
                if self._stopping.is_set():
                    break
        except FeedError as e:
            if self._stopping.is_set():
                return None
            log.warning("Insert feed terminated", error=str(e))
            return e
        finally:
            with self._lock:
                self._feed = None
            feed.close()

        if self._stopping.is_set():
            return None
        return FeedTerminated("insert feed ended")

    def stop(self) -> None:
        """Ask run() to return; safe to call from another thread."""
        self._stopping.set()
        with self._lock:
            if self._feed is not None:
                self._feed.close()
