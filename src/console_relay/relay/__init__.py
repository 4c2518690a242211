"""Console log relay.

Tails the log store (live feed first, polling as fallback), classifies
entries and forwards selected levels to Discord channels.
"""

from .channels import ChannelResolver, ChannelSet, DiscordProvisioner, ProvisioningError
from .classifier import Classification, Destination, ForwardingPolicy, classify, format_entry
from .coordinator import FailoverCoordinator, InvalidTransition, ModeEvent, TailingMode, next_mode
from .discord import DestinationNotFound, DiscordClient, SinkError
from .entry import Cursor, LogEntry
from .processor import EntryProcessor, RelayState
from .pull import PullTailer, TickResult
from .push import PushTailer
from .store import (
    FeedError,
    FeedTerminated,
    FeedUnavailable,
    LogStoreError,
    PostgresLogStore,
)

__all__ = [
    # Coordinator
    "FailoverCoordinator",
    "TailingMode",
    "ModeEvent",
    "InvalidTransition",
    "next_mode",
    # Tailers
    "PushTailer",
    "PullTailer",
    "TickResult",
    "EntryProcessor",
    "RelayState",
    # Entries
    "LogEntry",
    "Cursor",
    # Classifier
    "classify",
    "format_entry",
    "Classification",
    "Destination",
    "ForwardingPolicy",
    # Channels
    "ChannelResolver",
    "ChannelSet",
    "DiscordProvisioner",
    "ProvisioningError",
    # Discord
    "DiscordClient",
    "SinkError",
    "DestinationNotFound",
    # Store
    "PostgresLogStore",
    "LogStoreError",
    "FeedError",
    "FeedUnavailable",
    "FeedTerminated",
]
