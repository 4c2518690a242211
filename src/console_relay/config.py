"""Configuration loading for console-relay.

Values come from the environment first; an optional YAML file fills in
anything the environment leaves unset.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG_PATH = Path.home() / ".console-relay" / "config.yaml"

DEFAULT_FORWARD_LEVELS = frozenset({"ERROR", "WARN"})
DEFAULT_MONITOR_ENDPOINTS = ("/health", "/console/recent")

# Lower bounds applied to configured timers
MIN_POLL_INTERVAL_SECONDS = 1.0
MIN_MONITOR_INTERVAL_SECONDS = 5.0


@dataclass
class PostgresConfig:
    """Postgres connection configuration for the log store."""

    host: str
    port: int
    database: str
    user: str
    password: str
    table: str = "console_logs"
    notify_channel: str = "console_log_inserts"

    @property
    def dsn(self) -> str:
        """Return connection string."""
        return (
            f"host={self.host} port={self.port} dbname={self.database} "
            f"user={self.user} password={self.password}"
        )


@dataclass
class DiscordConfig:
    """Discord bot credentials and destination overrides."""

    token: str | None = None
    guild_id: str | None = None
    # Routes every category to a single channel when set
    console_channel_id: str | None = None
    general_channel_id: str | None = None
    warn_channel_id: str | None = None
    error_channel_id: str | None = None
    alert_channel_id: str | None = None

    @property
    def has_overrides(self) -> bool:
        return any(
            (
                self.console_channel_id,
                self.general_channel_id,
                self.warn_channel_id,
                self.error_channel_id,
            )
        )


@dataclass
class RelayConfig:
    """Tailing and forwarding settings."""

    forward_levels: frozenset[str] = DEFAULT_FORWARD_LEVELS
    poll_interval_seconds: float = 10.0
    page_size: int = 100
    push_enabled: bool = True
    shutdown_grace_seconds: float = 5.0


@dataclass
class MonitorConfig:
    """Health monitor settings."""

    base_urls: list[str] = field(default_factory=list)
    endpoints: list[str] = field(default_factory=lambda: list(DEFAULT_MONITOR_ENDPOINTS))
    interval_seconds: float = 30.0
    freshness_minutes: float = 10.0


@dataclass
class Config:
    """Application configuration."""

    postgres: PostgresConfig
    discord: DiscordConfig = field(default_factory=DiscordConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    metrics_port: int | None = None
    log_level: str = "INFO"

    @property
    def relay_enabled(self) -> bool:
        """Whether enough is configured for the relay to run at all."""
        return bool(self.discord.token) and bool(
            self.discord.guild_id or self.discord.has_overrides
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Config":
        """Load configuration from environment variables."""
        return cls._build(os.environ if environ is None else environ, {})

    @classmethod
    def from_file(cls, path: Path, environ: Mapping[str, str] | None = None) -> "Config":
        """Load configuration from YAML file, with env var overrides."""
        data: dict[str, Any] = {}
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        return cls._build(os.environ if environ is None else environ, data)

    @classmethod
    def _build(cls, env: Mapping[str, str], data: Mapping[str, Any]) -> "Config":
        pg = data.get("postgres") or {}
        dc = data.get("discord") or {}
        channels = dc.get("channels") or {}
        rl = data.get("relay") or {}
        mon = data.get("monitor") or {}

        def pick(env_name: str, file_value: Any, default: Any = None) -> Any:
            value = env.get(env_name)
            if value not in (None, ""):
                return value
            if file_value not in (None, ""):
                return file_value
            return default

        postgres = PostgresConfig(
            host=pick("POSTGRES_HOST", pg.get("host"), "localhost"),
            port=int(pick("POSTGRES_PORT", pg.get("port"), 5432)),
            database=pick("POSTGRES_DB", pg.get("database"), "console_relay"),
            user=pick("POSTGRES_USER", pg.get("user"), "console_relay"),
            password=pick("POSTGRES_PASSWORD", pg.get("password"), ""),
            table=pick("CONSOLE_LOG_TABLE", pg.get("table"), "console_logs"),
            notify_channel=pick(
                "CONSOLE_NOTIFY_CHANNEL", pg.get("notify_channel"), "console_log_inserts"
            ),
        )

        discord = DiscordConfig(
            token=pick("DISCORD_TOKEN", dc.get("token")),
            guild_id=_as_id(pick("CONSOLE_GUILD_ID", dc.get("guild_id"))),
            console_channel_id=_as_id(pick("CONSOLE_CHANNEL_ID", dc.get("console_channel_id"))),
            general_channel_id=_as_id(pick("CONSOLE_LOGS_CHANNEL_ID", channels.get("general"))),
            warn_channel_id=_as_id(pick("CONSOLE_WARNINGS_CHANNEL_ID", channels.get("warn"))),
            error_channel_id=_as_id(pick("CONSOLE_ERRORS_CHANNEL_ID", channels.get("error"))),
            alert_channel_id=_as_id(
                pick(
                    "MONITOR_ALERT_CHANNEL_ID",
                    dc.get("alert_channel_id"),
                    env.get("CONSOLE_CHANNEL_ID")
                    or dc.get("console_channel_id")
                    or env.get("COMMAND_LOG_CHANNEL_ID"),
                )
            ),
        )

        relay = RelayConfig(
            forward_levels=parse_levels(
                pick("CONSOLE_FORWARD_LEVELS", rl.get("forward_levels"), "ERROR,WARN")
            ),
            poll_interval_seconds=max(
                MIN_POLL_INTERVAL_SECONDS,
                float(pick("CONSOLE_POLL_INTERVAL", rl.get("poll_interval"), 10)),
            ),
            page_size=max(1, int(pick("CONSOLE_PAGE_SIZE", rl.get("page_size"), 100))),
            push_enabled=_as_bool(pick("CONSOLE_PUSH_ENABLED", rl.get("push"), True)),
            shutdown_grace_seconds=float(
                pick("CONSOLE_SHUTDOWN_GRACE", rl.get("shutdown_grace"), 5)
            ),
        )

        monitor = MonitorConfig(
            base_urls=_as_list(pick("MONITOR_BASE_URLS", mon.get("base_urls"), [])),
            endpoints=_as_list(
                pick("MONITOR_ENDPOINTS", mon.get("endpoints"), list(DEFAULT_MONITOR_ENDPOINTS))
            ),
            interval_seconds=max(
                MIN_MONITOR_INTERVAL_SECONDS,
                float(pick("MONITOR_INTERVAL", mon.get("interval"), 30)),
            ),
            freshness_minutes=float(
                pick("MONITOR_FRESHNESS_MINUTES", mon.get("freshness_minutes"), 10)
            ),
        )

        metrics_port = pick("METRICS_PORT", data.get("metrics_port"))

        return cls(
            postgres=postgres,
            discord=discord,
            relay=relay,
            monitor=monitor,
            metrics_port=int(metrics_port) if metrics_port is not None else None,
            log_level=str(pick("LOG_LEVEL", data.get("log_level"), "INFO")).upper(),
        )


def parse_levels(value: str | list[str] | tuple[str, ...] | frozenset[str]) -> frozenset[str]:
    """Parse a forwarding level set from 'ERROR,WARN' or a list of names."""
    items = value.split(",") if isinstance(value, str) else value
    return frozenset(str(item).strip().upper() for item in items if str(item).strip())


def _as_list(value: str | list[str]) -> list[str]:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item) for item in value]


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in ("0", "false", "no", "off")


def _as_id(value: Any) -> str | None:
    # Discord snowflakes in YAML files load as ints
    return str(value) if value not in (None, "") else None
