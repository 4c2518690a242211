"""Wiring: builds the relay and health monitor from configuration and runs them."""

import signal
import threading
from dataclasses import dataclass
from typing import Any

import structlog

from .config import Config
from .metrics import start_metrics_server, stop_metrics_server
from .monitor import HealthMonitor
from .relay.channels import ChannelResolver, DiscordProvisioner
from .relay.classifier import ForwardingPolicy
from .relay.coordinator import FailoverCoordinator
from .relay.discord import DiscordClient
from .relay.processor import EntryProcessor, RelayState
from .relay.pull import PullTailer
from .relay.push import PushTailer
from .relay.store import PostgresLogStore

log = structlog.get_logger()


@dataclass
class Relay:
    """A built relay and the resources it owns."""

    coordinator: FailoverCoordinator
    client: DiscordClient
    store: PostgresLogStore
    monitor: HealthMonitor | None = None
    grace_seconds: float = 5.0

    def start(self) -> None:
        self.coordinator.start()
        if self.monitor is not None:
            self.monitor.start()

    def stop(self) -> None:
        if self.monitor is not None:
            self.monitor.close()
        if not self.coordinator.stop(grace=self.grace_seconds):
            # The worker still holds the client and store; the daemon thread dies with the process
            log.warning("Leaving relay resources open for the running worker")
            return
        self.client.close()
        self.store.close()


def make_store(config: Config) -> PostgresLogStore:
    return PostgresLogStore(
        config.postgres.dsn,
        table=config.postgres.table,
        notify_channel=config.postgres.notify_channel,
    )


def build_monitor(config: Config, sink: Any) -> HealthMonitor | None:
    """Build the health monitor, or None when no base URLs are configured."""
    if not config.monitor.base_urls:
        return None
    return HealthMonitor(
        sink=sink,
        alert_channel_id=config.discord.alert_channel_id,
        base_urls=config.monitor.base_urls,
        endpoints=config.monitor.endpoints,
        freshness_minutes=config.monitor.freshness_minutes,
        interval_seconds=config.monitor.interval_seconds,
        # Separate store instance: the monitor never touches the tailing connection
        store=make_store(config),
    )


def build_relay(
    config: Config,
    push_enabled: bool | None = None,
    monitor_enabled: bool = True,
) -> Relay | None:
    """Build the relay from configuration.

    Returns:
        The relay, or None when Discord is not configured (nothing to run)
    """
    if not config.relay_enabled:
        log.info("Console relay not configured, skipping")
        return None

    client = DiscordClient(config.discord.token or "")
    store = make_store(config)

    state = RelayState(community_id=config.discord.guild_id)
    provisioner = DiscordProvisioner(client) if config.discord.guild_id else None
    resolver = ChannelResolver.from_config(config.discord, provisioner)
    processor = EntryProcessor(
        state,
        client,
        ForwardingPolicy(config.relay.forward_levels),
        resolver=resolver,
    )

    use_push = config.relay.push_enabled if push_enabled is None else push_enabled
    coordinator = FailoverCoordinator(
        state,
        pull=PullTailer(
            store,
            processor,
            state,
            interval=config.relay.poll_interval_seconds,
            page_size=config.relay.page_size,
        ),
        push=PushTailer(store, processor) if use_push else None,
        resolver=resolver,
    )

    return Relay(
        coordinator=coordinator,
        client=client,
        store=store,
        monitor=build_monitor(config, client) if monitor_enabled else None,
        grace_seconds=config.relay.shutdown_grace_seconds,
    )


def run_relay(
    config: Config,
    push_enabled: bool | None = None,
    monitor_enabled: bool = True,
) -> None:
    """Run the relay until interrupted. A startup no-op when not configured."""
    relay = build_relay(config, push_enabled=push_enabled, monitor_enabled=monitor_enabled)
    if relay is None:
        return

    if config.metrics_port:
        start_metrics_server(port=config.metrics_port, status=relay.coordinator.status)

    stop_event = threading.Event()
    signal.signal(signal.SIGTERM, lambda signum, frame: stop_event.set())

    log.info(
        "Starting console relay",
        guild_id=config.discord.guild_id,
        forward_levels=sorted(config.relay.forward_levels),
        monitor=relay.monitor is not None,
    )
    relay.start()

    try:
        while not stop_event.is_set():
            stop_event.wait(1)
    except KeyboardInterrupt:
        log.info("Received shutdown signal")
    finally:
        relay.stop()
        if config.metrics_port:
            stop_metrics_server()
