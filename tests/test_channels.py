"""Tests for channel provisioning and resolution."""

import json

import httpx
import pytest
from conftest import FakeProvisioner

from console_relay.config import DiscordConfig
from console_relay.relay.channels import (
    ChannelResolver,
    ChannelSet,
    DiscordProvisioner,
    ProvisioningError,
)
from console_relay.relay.classifier import Destination
from console_relay.relay.discord import CHANNEL_TYPE_CATEGORY, CHANNEL_TYPE_TEXT, DiscordClient


class FakeGuild:
    """Discord guild channel endpoints over httpx.MockTransport."""

    def __init__(self, channels: list[dict] | None = None, forbid: set[str] | None = None):
        self.channels = list(channels or [])
        self.forbid = forbid or set()
        self.created: list[dict] = []
        self._next_id = 1000

    def handler(self, request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bot test-token"
        if request.method == "GET" and request.url.path.endswith("/guilds/guild-1/channels"):
            return httpx.Response(200, json=self.channels)
        if request.method == "POST" and request.url.path.endswith("/guilds/guild-1/channels"):
            payload = json.loads(request.content)
            if payload["name"] in self.forbid:
                return httpx.Response(403, json={"message": "Missing Permissions"})
            self._next_id += 1
            channel = {"id": str(self._next_id), **payload}
            self.channels.append(channel)
            self.created.append(channel)
            return httpx.Response(201, json=channel)
        return httpx.Response(404, json={"message": "Unknown"})

    def client(self) -> DiscordClient:
        return DiscordClient(
            "test-token",
            base_url="https://discord.test/api",
            transport=httpx.MockTransport(self.handler),
        )


class TestChannelSet:
    def test_get_by_destination(self):
        channels = ChannelSet(general_id="1", warn_id="2", error_id="3")
        assert channels.get(Destination.GENERAL) == "1"
        assert channels.get(Destination.WARN) == "2"
        assert channels.get(Destination.ERROR) == "3"
        assert channels.get(Destination.NONE) is None
        assert channels.complete is True

    def test_incomplete(self):
        assert ChannelSet(general_id="1").complete is False


class TestChannelResolver:
    """Resolution, caching and degradation."""

    def test_resolve_twice_is_idempotent(self):
        """The second resolve returns the same ids and creates nothing."""
        provisioner = FakeProvisioner()
        resolver = ChannelResolver(provisioner)

        first = resolver.resolve("guild-1")
        created = list(provisioner.created)
        second = resolver.resolve("guild-1")

        assert first == second
        assert first.complete
        assert sorted(created) == ["console-errors", "console-logs", "console-warnings"]
        assert provisioner.created == created

    def test_fresh_resolver_reuses_existing_channels(self):
        provisioner = FakeProvisioner()
        first = ChannelResolver(provisioner).resolve("guild-1")
        second = ChannelResolver(provisioner).resolve("guild-1")

        assert first == second
        assert len(provisioner.created) == 3

    def test_provisioning_failure_degrades(self):
        """A channel that cannot be created is left unset."""
        provisioner = FakeProvisioner(fail_names={"console-errors"})
        channels = ChannelResolver(provisioner).resolve("guild-1")

        assert channels.error_id is None
        assert channels.general_id == "id-console-logs"
        assert channels.warn_id == "id-console-warnings"

    def test_no_provisioner_leaves_everything_unset(self):
        channels = ChannelResolver(None).resolve("guild-1")
        assert channels == ChannelSet()

    def test_override_bypasses_provisioning(self):
        provisioner = FakeProvisioner()
        resolver = ChannelResolver(provisioner, overrides={Destination.ERROR: "999"})

        channels = resolver.resolve("guild-1")

        assert channels.error_id == "999"
        assert "console-errors" not in provisioner.created

    def test_console_channel_routes_everything(self):
        config = DiscordConfig(token="t", console_channel_id="42")
        provisioner = FakeProvisioner()

        channels = ChannelResolver.from_config(config, provisioner).resolve(None)

        assert channels == ChannelSet(general_id="42", warn_id="42", error_id="42")
        assert provisioner.calls == 0

    def test_single_overrides_from_config(self):
        config = DiscordConfig(token="t", guild_id="guild-1", warn_channel_id="7")
        provisioner = FakeProvisioner()

        channels = ChannelResolver.from_config(config, provisioner).resolve("guild-1")

        assert channels.warn_id == "7"
        assert channels.general_id == "id-console-logs"

    def test_refresh_provisions_again(self):
        provisioner = FakeProvisioner()
        resolver = ChannelResolver(provisioner)
        resolver.resolve("guild-1")
        calls = provisioner.calls

        resolver.refresh("guild-1")

        assert provisioner.calls == calls + 3


class TestDiscordProvisioner:
    """Find-or-create against the Discord API."""

    def test_creates_category_and_channel(self):
        guild = FakeGuild()
        provisioner = DiscordProvisioner(guild.client())

        channel_id = provisioner.ensure_destination("guild-1", "console-errors", "ERROR output")

        category, channel = guild.created
        assert category["type"] == CHANNEL_TYPE_CATEGORY
        assert category["name"] == "Console Logs"
        assert channel["type"] == CHANNEL_TYPE_TEXT
        assert channel["parent_id"] == category["id"]
        assert channel["topic"] == "ERROR output"
        assert channel_id == channel["id"]

    def test_existing_channel_matched_by_exact_name(self):
        guild = FakeGuild(
            channels=[
                {"id": "1", "name": "console-logs-old", "type": CHANNEL_TYPE_TEXT},
                {"id": "2", "name": "console-logs", "type": CHANNEL_TYPE_CATEGORY},
                {"id": "3", "name": "console-logs", "type": CHANNEL_TYPE_TEXT},
            ]
        )
        provisioner = DiscordProvisioner(guild.client())

        assert provisioner.ensure_destination("guild-1", "console-logs") == "3"
        assert guild.created == []

    def test_full_resolve_twice_creates_no_duplicates(self):
        guild = FakeGuild()
        provisioner = DiscordProvisioner(guild.client())

        first = ChannelResolver(provisioner).resolve("guild-1")
        second = ChannelResolver(provisioner).resolve("guild-1")

        assert first == second
        # One category plus three text channels
        assert len(guild.created) == 4

    def test_category_failure_creates_unparented_channel(self):
        guild = FakeGuild(forbid={"Console Logs"})
        provisioner = DiscordProvisioner(guild.client())

        provisioner.ensure_destination("guild-1", "console-logs")

        (channel,) = guild.created
        assert "parent_id" not in channel

    def test_create_failure_degrades_resolver(self):
        """Missing permissions leave the destination unset, never raise."""
        guild = FakeGuild(forbid={"console-warnings"})
        channels = ChannelResolver(DiscordProvisioner(guild.client())).resolve("guild-1")

        assert channels.warn_id is None
        assert channels.general_id is not None
        assert channels.error_id is not None

    def test_unreachable_guild_degrades_resolver(self):
        client = DiscordClient(
            "test-token",
            base_url="https://discord.test/api",
            transport=httpx.MockTransport(lambda request: httpx.Response(404)),
        )
        channels = ChannelResolver(DiscordProvisioner(client)).resolve("guild-1")

        assert channels == ChannelSet()

    def test_non_json_channel_list_degrades(self):
        """A gateway error page instead of JSON leaves the destination unset."""
        client = DiscordClient(
            "test-token",
            base_url="https://discord.test/api",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, text="<html>gateway</html>")
            ),
        )
        provisioner = DiscordProvisioner(client)

        with pytest.raises(ProvisioningError):
            provisioner.ensure_destination("guild-1", "console-logs")
        assert ChannelResolver(provisioner).resolve("guild-1") == ChannelSet()

    def test_created_channel_without_id_degrades(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json=[])
            return httpx.Response(201, json={"name": "console-logs"})

        client = DiscordClient(
            "test-token",
            base_url="https://discord.test/api",
            transport=httpx.MockTransport(handler),
        )

        with pytest.raises(ProvisioningError):
            DiscordProvisioner(client).ensure_destination("guild-1", "console-logs")
