"""Failover coordinator: owns which tailing mode is active.

Modes move one way per process: STOPPED -> PUSH -> PULL -> STOPPED. Once
the push feed fails the relay stays in pull mode until the process restarts.
Only one mode runs at a time, which keeps a single writer on the cursor
across the handoff.
"""

import threading
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any

import structlog

from ..metrics import FAILOVERS, TAILING_MODE
from .channels import ChannelResolver, ChannelSet
from .entry import utcnow
from .processor import RelayState
from .pull import PullTailer
from .push import PushTailer
from .store import FeedUnavailable

log = structlog.get_logger()


class TailingMode(Enum):
    STOPPED = "stopped"
    PUSH = "push"
    PULL = "pull"


class ModeEvent(Enum):
    START = "start"
    FEED_FAILED = "feed_failed"  # Feed unavailable, terminated, or disabled
    STOP = "stop"


class InvalidTransition(Exception):
    """Raised for a mode change the state machine does not allow."""


_TRANSITIONS: dict[tuple[TailingMode, ModeEvent], TailingMode] = {
    (TailingMode.STOPPED, ModeEvent.START): TailingMode.PUSH,
    # Push disabled or never started: go straight to polling
    (TailingMode.STOPPED, ModeEvent.FEED_FAILED): TailingMode.PULL,
    (TailingMode.PUSH, ModeEvent.FEED_FAILED): TailingMode.PULL,
    (TailingMode.PUSH, ModeEvent.STOP): TailingMode.STOPPED,
    (TailingMode.PULL, ModeEvent.STOP): TailingMode.STOPPED,
    (TailingMode.STOPPED, ModeEvent.STOP): TailingMode.STOPPED,
}


def next_mode(current: TailingMode, event: ModeEvent) -> TailingMode:
    """Return the mode that follows current on event.

    Raises:
        InvalidTransition: If the event is not allowed in the current mode
    """
    try:
        return _TRANSITIONS[(current, event)]
    except KeyError:
        raise InvalidTransition(f"{event.value} not allowed in {current.value} mode") from None


class FailoverCoordinator:
    """Runs push tailing, falling back to pull tailing when the feed fails."""

    def __init__(
        self,
        state: RelayState,
        pull: PullTailer,
        push: PushTailer | None = None,
        resolver: ChannelResolver | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.state = state
        self.pull = pull
        self.push = push
        self.resolver = resolver
        self.clock = clock
        self.mode = TailingMode.STOPPED
        self.failover_error: Exception | None = None

        self._mode_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._started = False
        self._thread: threading.Thread | None = None
        TAILING_MODE.state(self.mode.value)

    def _transition(self, event: ModeEvent) -> TailingMode:
        with self._mode_lock:
            previous = self.mode
            self.mode = next_mode(previous, event)
        TAILING_MODE.state(self.mode.value)
        log.info("Tailing mode changed", previous=previous.value, mode=self.mode.value)
        return self.mode

    def start(self) -> threading.Thread:
        """Run the coordinator on a background thread."""
        thread = threading.Thread(target=self.run, name="console-relay", daemon=True)
        self._thread = thread
        thread.start()
        return thread

    def run(self) -> None:
        """Resolve channels, then tail until stop() is called. Blocks."""
        with self._mode_lock:
            if self._started:
                raise RuntimeError("coordinator already started")
            self._started = True

        if self.resolver is not None:
            self.state.channels = self._resolve_channels(self.resolver)

        # Cold start: skip the historical backlog
        if self.state.cursor.seed(self.clock()):
            log.info("Cursor seeded", cursor=self.state.cursor.last_received_at)

        if self.push is not None and not self._stop_event.is_set():
            self._transition(ModeEvent.START)
            error = self._run_push(self.push)
            if self._stop_event.is_set():
                self._transition(ModeEvent.STOP)
                return
            self.failover_error = error
            reason = "unavailable" if isinstance(error, FeedUnavailable) else "terminated"
            FAILOVERS.labels(reason=reason).inc()
            log.warning(
                "Push tailing failed, switching to pull",
                reason=reason,
                error=str(error),
                cursor=self.state.cursor.last_received_at,
            )

        if self._stop_event.is_set():
            self._transition(ModeEvent.STOP)
            return

        self._transition(ModeEvent.FEED_FAILED)
        try:
            self.pull.run(self._stop_event)
        finally:
            self._transition(ModeEvent.STOP)

    def _resolve_channels(self, resolver: ChannelResolver) -> ChannelSet:
        try:
            return resolver.resolve(self.state.community_id)
        except Exception:
            # Tailing still starts; every category is dropped until a refresh succeeds
            log.exception("Channel resolution failed", community_id=self.state.community_id)
            return ChannelSet()

    def _run_push(self, push: PushTailer) -> Exception | None:
        try:
            return push.run()
        except Exception as e:
            log.exception("Push tailer crashed")
            return e

    def stop(self, grace: float = 5.0) -> bool:
        """Stop the active mode, waiting up to grace seconds for an in-flight send.

        Returns:
            True if the worker thread exited within the grace period
        """
        log.info("Stopping console relay", mode=self.mode.value)
        self._stop_event.set()
        if self.push is not None:
            self.push.stop()
        if self._thread is None:
            return True
        self._thread.join(grace)
        if self._thread.is_alive():
            log.warning("Relay worker did not stop within grace period", grace=grace)
            return False
        return True

    def status(self) -> dict[str, Any]:
        """Snapshot for the /health endpoint."""
        cursor = self.state.cursor.last_received_at
        return {
            "status": "ok" if self.mode is not TailingMode.STOPPED else "stopped",
            "mode": self.mode.value,
            "cursor": cursor.isoformat() if cursor else None,
            "failover_error": str(self.failover_error) if self.failover_error else None,
        }
