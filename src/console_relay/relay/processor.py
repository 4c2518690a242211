"""Per-entry processing shared by both tailing modes."""

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

import structlog

from ..metrics import CURSOR_POSITION, ENTRIES_PROCESSED, SENDS
from .channels import ChannelResolver, ChannelSet
from .classifier import Classification, ForwardingPolicy, classify
from .discord import DestinationNotFound, SinkError
from .entry import Cursor, LogEntry

log = structlog.get_logger()


class Sink(Protocol):
    def send(self, channel_id: str, text: str) -> bool:
        """Deliver text to a channel; True on success."""
        ...


@dataclass
class RelayState:
    """Mutable state owned by one relay instance.

    Created when the relay starts and handed to each component. Only the
    active tailing mode writes the cursor.
    """

    community_id: str | None = None
    cursor: Cursor = field(default_factory=Cursor)
    channels: ChannelSet = field(default_factory=ChannelSet)


class EntryProcessor:
    """Classifies an entry, sends it, then advances the cursor.

    Send failures are logged and never stop the cursor from advancing:
    forwarding is best-effort, the resumption point is not.
    """

    def __init__(
        self,
        state: RelayState,
        sink: Sink,
        policy: ForwardingPolicy,
        resolver: ChannelResolver | None = None,
        on_classified: Callable[[LogEntry, Classification], None] | None = None,
    ):
        self.state = state
        self.sink = sink
        self.policy = policy
        self.resolver = resolver
        self.on_classified = on_classified
        self._lock = threading.Lock()

    def process(self, entry: LogEntry) -> Classification:
        # Serializes callers so a late tick can never interleave with another
        with self._lock:
            classification = classify(entry, self.policy)
            if self.on_classified is not None:
                self.on_classified(entry, classification)
            ENTRIES_PROCESSED.labels(destination=classification.destination.value).inc()

            if classification.forwarded:
                self._send(classification)

            if self.state.cursor.advance(entry.received_at):
                CURSOR_POSITION.set(entry.received_at.timestamp())
            return classification

    def _send(self, classification: Classification) -> None:
        destination = classification.destination
        channel_id = self.state.channels.get(destination)
        if channel_id is None:
            log.debug("No channel for destination, dropping", destination=destination.value)
            SENDS.labels(destination=destination.value, status="dropped").inc()
            return

        try:
            ok = self.sink.send(channel_id, classification.text)
        except DestinationNotFound as e:
            log.warning(
                "Destination channel missing, refreshing channels",
                destination=destination.value,
                channel_id=e.channel_id,
            )
            SENDS.labels(destination=destination.value, status="error").inc()
            self._refresh_channels()
            return
        except SinkError as e:
            log.warning("Failed to forward entry", destination=destination.value, error=str(e))
            SENDS.labels(destination=destination.value, status="error").inc()
            return

        if ok:
            SENDS.labels(destination=destination.value, status="success").inc()
        else:
            log.warning("Failed to forward entry", destination=destination.value)
            SENDS.labels(destination=destination.value, status="error").inc()

    def _refresh_channels(self) -> None:
        if self.resolver is None:
            return
        try:
            self.state.channels = self.resolver.refresh(self.state.community_id)
        except Exception:
            log.exception("Channel refresh failed", community_id=self.state.community_id)
