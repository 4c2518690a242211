"""CLI for console-relay.

Usage:
    console-relay run
    console-relay tail --since 30m
    console-relay channels
    console-relay monitor --once
    console-relay send 1234567890 "hello"
    console-relay init-db
"""

from datetime import timedelta
from pathlib import Path

import click
import structlog

from console_relay.config import DEFAULT_CONFIG_PATH, Config
from console_relay.logging import configure_logging
from console_relay.monitor import HealthMonitor
from console_relay.relay.channels import ChannelResolver, DiscordProvisioner
from console_relay.relay.classifier import ForwardingPolicy, classify
from console_relay.relay.discord import DestinationNotFound, DiscordClient
from console_relay.relay.entry import utcnow
from console_relay.relay.store import LogStoreError
from console_relay.service import make_store, run_relay

log = structlog.get_logger()


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=DEFAULT_CONFIG_PATH,
    help="Config file path",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, config_path: Path, verbose: bool) -> None:
    """Forward console logs from the log store to Discord."""
    ctx.ensure_object(dict)
    config = Config.from_file(config_path)
    configure_logging("console-relay", "DEBUG" if verbose else config.log_level)
    ctx.obj["config"] = config


@main.command("run")
@click.option("--no-push", is_flag=True, help="Skip the live feed and poll from the start")
@click.option("--no-monitor", is_flag=True, help="Don't run the health monitor")
@click.pass_context
def run(ctx: click.Context, no_push: bool, no_monitor: bool) -> None:
    """Run the relay until interrupted.

    Requires DISCORD_TOKEN and CONSOLE_GUILD_ID (or explicit channel IDs).
    """
    config: Config = ctx.obj["config"]
    if not config.relay_enabled:
        click.echo("Relay not configured (DISCORD_TOKEN and CONSOLE_GUILD_ID); nothing to do.")
        return

    click.echo("Starting console relay...")
    click.echo(f"  Guild: {config.discord.guild_id or '-'}")
    click.echo(f"  Forward levels: {', '.join(sorted(config.relay.forward_levels))}")
    click.echo(f"  Push feed: {not no_push and config.relay.push_enabled}")
    click.echo(f"  Poll interval: {config.relay.poll_interval_seconds:g}s")
    click.echo("")

    run_relay(config, push_enabled=False if no_push else None, monitor_enabled=not no_monitor)


@main.command("tail")
@click.option("--since", default="10m", help="Start this far back (e.g., 30m, 2h, 1d)")
@click.option("--limit", default=100, help="Max entries to show")
@click.pass_context
def tail(ctx: click.Context, since: str, limit: int) -> None:
    """Show how recent entries would be routed, without sending anything."""
    config: Config = ctx.obj["config"]
    policy = ForwardingPolicy(config.relay.forward_levels)
    store = make_store(config)

    try:
        entries = store.query_after(utcnow() - parse_duration(since), limit)
    except LogStoreError as e:
        click.echo(f"Error: log store query failed: {e}")
        raise SystemExit(1) from e
    finally:
        store.close()

    if not entries:
        click.echo("No entries.")
        return

    for entry in entries:
        result = classify(entry, policy)
        click.echo(f"{result.destination.value:<8} {result.text}")


@main.command("channels")
@click.pass_context
def channels(ctx: click.Context) -> None:
    """Resolve (and create if missing) the console channels."""
    config: Config = ctx.obj["config"]
    client = DiscordClient(get_token(config))
    provisioner = DiscordProvisioner(client) if config.discord.guild_id else None

    try:
        resolver = ChannelResolver.from_config(config.discord, provisioner)
        channel_set = resolver.resolve(config.discord.guild_id)
    finally:
        client.close()

    click.echo(f"General:  {channel_set.general_id or '(unavailable)'}")
    click.echo(f"Warnings: {channel_set.warn_id or '(unavailable)'}")
    click.echo(f"Errors:   {channel_set.error_id or '(unavailable)'}")
    if not channel_set.complete:
        raise SystemExit(1)


@main.command("monitor")
@click.option("--once", is_flag=True, help="Run a single check cycle and exit")
@click.pass_context
def monitor(ctx: click.Context, once: bool) -> None:
    """Run the health monitor on its own."""
    config: Config = ctx.obj["config"]
    if not config.monitor.base_urls:
        click.echo("Error: MONITOR_BASE_URLS not set")
        raise SystemExit(1)

    client = DiscordClient(get_token(config))
    store = make_store(config)
    health = HealthMonitor(
        sink=client,
        alert_channel_id=config.discord.alert_channel_id,
        base_urls=config.monitor.base_urls,
        endpoints=config.monitor.endpoints,
        freshness_minutes=config.monitor.freshness_minutes,
        interval_seconds=config.monitor.interval_seconds,
        store=store,
    )

    try:
        if once:
            for report in health.run_checks():
                status = "OK" if report.ok else "DEGRADED"
                click.echo(f"{report.base_url}: {status} ({report.summary})")
                click.echo(f"  recent console logs: {'yes' if report.recent_found else 'no'}")
            return
        health.run()
    except KeyboardInterrupt:
        log.info("Received shutdown signal")
        health.stop()
    finally:
        health.close()
        client.close()


@main.command("send")
@click.argument("channel_id")
@click.argument("message")
@click.pass_context
def send(ctx: click.Context, channel_id: str, message: str) -> None:
    """Send a raw message to a Discord channel."""
    config: Config = ctx.obj["config"]
    client = DiscordClient(get_token(config))
    try:
        ok = client.send(channel_id, message)
    except DestinationNotFound:
        ok = False
        click.echo(f"Channel {channel_id} not found")
    finally:
        client.close()

    if ok:
        click.echo("Message sent!")
    else:
        click.echo("Failed to send message")
        raise SystemExit(1)


@main.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create the log table and the insert-notification trigger."""
    config: Config = ctx.obj["config"]
    store = make_store(config)
    try:
        store.ensure_schema()
    except LogStoreError as e:
        click.echo(f"Error: {e}")
        raise SystemExit(1) from e
    finally:
        store.close()
    click.echo(f"Log store ready: table {config.postgres.table}, trigger {store.trigger_name}")


# --- Utility Functions ---


def get_token(config: Config) -> str:
    """Get the Discord bot token or exit with error."""
    if not config.discord.token:
        click.echo("Error: DISCORD_TOKEN environment variable not set")
        raise SystemExit(1)
    return config.discord.token


def parse_duration(s: str) -> timedelta:
    """Parse a duration string like '24h' or '7d' to timedelta."""
    s = s.strip().lower()
    if s.endswith("h"):
        return timedelta(hours=int(s[:-1]))
    elif s.endswith("d"):
        return timedelta(days=int(s[:-1]))
    elif s.endswith("m"):
        return timedelta(minutes=int(s[:-1]))
    elif s.endswith("s"):
        return timedelta(seconds=int(s[:-1]))
    else:
        raise ValueError(f"Invalid duration format: {s}. Use e.g., 30s, 10m, 24h, 7d")


if __name__ == "__main__":
    main()
