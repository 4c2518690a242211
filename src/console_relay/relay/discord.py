"""Discord bot REST client used as the notification sink and channel provisioner."""

from typing import Any

import httpx
import structlog

log = structlog.get_logger()

DISCORD_API_BASE = "https://discord.com/api/v10"

# Discord rejects message content longer than this
MAX_CONTENT_LENGTH = 2000

CHANNEL_TYPE_TEXT = 0
CHANNEL_TYPE_CATEGORY = 4


class SinkError(Exception):
    """Raised when a message cannot be delivered to a destination."""


class DestinationNotFound(SinkError):
    """Raised when the destination channel no longer exists."""

    def __init__(self, channel_id: str):
        super().__init__(f"Discord channel {channel_id} not found")
        self.channel_id = channel_id


class DiscordClient:
    """Minimal Discord bot client over the REST API."""

    def __init__(
        self,
        token: str,
        base_url: str = DISCORD_API_BASE,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.client = httpx.Client(
            base_url=base_url,
            headers={
                "Authorization": f"Bot {token}",
                "User-Agent": "DiscordBot (console-relay, 0.1.0)",
            },
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def send(self, channel_id: str, text: str) -> bool:
        """Send a plain text message to a channel.

        Args:
            channel_id: Target channel ID
            text: Message content, clamped to Discord's length limit

        Returns:
            True if successful, False otherwise

        Raises:
            DestinationNotFound: If Discord reports the channel does not exist
        """
        try:
            response = self.client.post(
                f"/channels/{channel_id}/messages",
                json={"content": text[:MAX_CONTENT_LENGTH]},
            )
            if response.status_code == 404:
                raise DestinationNotFound(channel_id)
            response.raise_for_status()
            log.debug("Discord message sent", channel_id=channel_id)
            return True
        except httpx.HTTPStatusError as e:
            log.error(
                "Discord API error", channel_id=channel_id, status=e.response.status_code
            )
            return False
        except httpx.RequestError as e:
            log.error("Discord request failed", channel_id=channel_id, error=str(e))
            return False

    def list_channels(self, guild_id: str) -> list[dict[str, Any]]:
        """List all channels in a guild.

        Raises:
            httpx.HTTPError: On network or HTTP failure
        """
        response = self.client.get(f"/guilds/{guild_id}/channels")
        response.raise_for_status()
        channels: list[dict[str, Any]] = response.json()
        return channels

    def create_channel(
        self,
        guild_id: str,
        name: str,
        channel_type: int = CHANNEL_TYPE_TEXT,
        topic: str | None = None,
        parent_id: str | None = None,
    ) -> dict[str, Any]:
        """Create a guild channel and return the channel object.

        Raises:
            httpx.HTTPError: On network or HTTP failure (403 without Manage Channels)
        """
        payload: dict[str, Any] = {"name": name, "type": channel_type}
        if topic:
            payload["topic"] = topic
        if parent_id:
            payload["parent_id"] = parent_id

        response = self.client.post(f"/guilds/{guild_id}/channels", json=payload)
        response.raise_for_status()
        channel: dict[str, Any] = response.json()
        log.info("Discord channel created", guild_id=guild_id, name=name, id=channel.get("id"))
        return channel
