"""Destination channel provisioning and resolution.

The resolver looks up (or creates) the three console channels for a guild
once and caches their IDs. A channel that cannot be provisioned is left
unset, and entries for it are dropped rather than treated as fatal.
"""

import threading
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
import structlog

from ..config import DiscordConfig
from .classifier import Destination
from .discord import CHANNEL_TYPE_CATEGORY, CHANNEL_TYPE_TEXT, DiscordClient

log = structlog.get_logger()

DEFAULT_CATEGORY_NAME = "Console Logs"

# destination -> (channel name, channel topic)
DEFAULT_CHANNELS: dict[Destination, tuple[str, str]] = {
    Destination.GENERAL: ("console-logs", "All console output"),
    Destination.ERROR: ("console-errors", "ERROR level console output"),
    Destination.WARN: ("console-warnings", "WARN level console output"),
}


class ProvisioningError(Exception):
    """Raised when a destination can be neither found nor created."""


@dataclass(frozen=True)
class ChannelSet:
    """Resolved channel IDs; None means entries for that category are dropped."""

    general_id: str | None = None
    warn_id: str | None = None
    error_id: str | None = None

    def get(self, destination: Destination) -> str | None:
        if destination is Destination.GENERAL:
            return self.general_id
        if destination is Destination.WARN:
            return self.warn_id
        if destination is Destination.ERROR:
            return self.error_id
        return None

    @property
    def complete(self) -> bool:
        return None not in (self.general_id, self.warn_id, self.error_id)


class Provisioner(Protocol):
    def ensure_destination(self, community_id: str, name: str, topic: str | None = None) -> str:
        """Return the ID of the named destination, creating it if missing."""
        ...


def _find_channel(
    channels: list[dict[str, Any]], name: str, channel_type: int
) -> dict[str, Any] | None:
    for channel in channels:
        if not isinstance(channel, dict):
            continue
        if channel.get("type") == channel_type and channel.get("name") == name:
            return channel
    return None


def _channel_id(channel: Any) -> str:
    """ID of a channel object returned by Discord.

    Raises:
        ValueError: If the response is not a channel object with an id
    """
    if not isinstance(channel, dict) or not channel.get("id"):
        raise ValueError(f"unexpected channel object: {channel!r:.200}")
    return str(channel["id"])


class DiscordProvisioner:
    """Finds or creates text channels under a shared category in a guild.

    Matching is by exact name and channel type, so repeated calls never
    create duplicates.
    """

    def __init__(self, client: DiscordClient, category_name: str = DEFAULT_CATEGORY_NAME):
        self.client = client
        self.category_name = category_name

    def ensure_destination(self, community_id: str, name: str, topic: str | None = None) -> str:
        try:
            channels = self.client.list_channels(community_id)
        except (httpx.HTTPError, ValueError) as e:
            raise ProvisioningError(f"cannot list channels for guild {community_id}: {e}") from e
        if not isinstance(channels, list):
            raise ProvisioningError(f"unexpected channel list for guild {community_id}")

        existing = _find_channel(channels, name, CHANNEL_TYPE_TEXT)
        try:
            if existing is not None:
                return _channel_id(existing)

            parent_id = self._ensure_category(community_id, channels)
            created = self.client.create_channel(
                community_id, name, CHANNEL_TYPE_TEXT, topic=topic, parent_id=parent_id
            )
            return _channel_id(created)
        except (httpx.HTTPError, ValueError) as e:
            raise ProvisioningError(f"cannot create channel {name}: {e}") from e

    def _ensure_category(self, guild_id: str, channels: list[dict[str, Any]]) -> str | None:
        existing = _find_channel(channels, self.category_name, CHANNEL_TYPE_CATEGORY)
        try:
            if existing is not None:
                return _channel_id(existing)
            created = self.client.create_channel(
                guild_id, self.category_name, CHANNEL_TYPE_CATEGORY
            )
            return _channel_id(created)
        except (httpx.HTTPError, ValueError) as e:
            # Channels still get created, just without a parent category
            log.warning("Failed to create category", name=self.category_name, error=str(e))
            return None


class ChannelResolver:
    """Resolves and caches the ChannelSet for a guild."""

    def __init__(
        self,
        provisioner: Provisioner | None,
        overrides: dict[Destination, str] | None = None,
        names: dict[Destination, tuple[str, str]] | None = None,
    ):
        self.provisioner = provisioner
        self.overrides = dict(overrides or {})
        self.names = names or DEFAULT_CHANNELS
        self._cache: dict[str | None, ChannelSet] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(
        cls, config: DiscordConfig, provisioner: Provisioner | None
    ) -> "ChannelResolver":
        """Build a resolver honoring explicit channel overrides."""
        overrides: dict[Destination, str] = {}
        if config.console_channel_id:
            # One explicit channel takes every category
            for destination in DEFAULT_CHANNELS:
                overrides[destination] = config.console_channel_id
        else:
            if config.general_channel_id:
                overrides[Destination.GENERAL] = config.general_channel_id
            if config.warn_channel_id:
                overrides[Destination.WARN] = config.warn_channel_id
            if config.error_channel_id:
                overrides[Destination.ERROR] = config.error_channel_id
        return cls(provisioner, overrides=overrides)

    def resolve(self, community_id: str | None) -> ChannelSet:
        """Return the cached ChannelSet, provisioning it on first use."""
        with self._lock:
            cached = self._cache.get(community_id)
            if cached is not None:
                return cached
            channels = self._provision(community_id)
            self._cache[community_id] = channels
            return channels

    def refresh(self, community_id: str | None) -> ChannelSet:
        """Drop the cached ChannelSet and resolve it again."""
        with self._lock:
            self._cache.pop(community_id, None)
        return self.resolve(community_id)

    def _provision(self, community_id: str | None) -> ChannelSet:
        ids: dict[Destination, str | None] = {}
        for destination, (name, topic) in self.names.items():
            if destination in self.overrides:
                ids[destination] = self.overrides[destination]
                continue
            if self.provisioner is None or community_id is None:
                ids[destination] = None
                continue
            try:
                ids[destination] = self.provisioner.ensure_destination(community_id, name, topic)
            except ProvisioningError as e:
                log.warning(
                    "Destination unavailable, dropping its entries",
                    destination=destination.value,
                    name=name,
                    error=str(e),
                )
                ids[destination] = None

        channels = ChannelSet(
            general_id=ids.get(Destination.GENERAL),
            warn_id=ids.get(Destination.WARN),
            error_id=ids.get(Destination.ERROR),
        )
        log.info(
            "Resolved console channels",
            community_id=community_id,
            general=channels.general_id,
            warn=channels.warn_id,
            error=channels.error_id,
        )
        return channels
