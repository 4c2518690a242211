"""Log entry and cursor value types."""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

LEVEL_INFO = "INFO"
LEVEL_WARN = "WARN"
LEVEL_ERROR = "ERROR"

DEFAULT_SOURCE = "Server"
DEFAULT_SERVER_TAG = "main"


def normalize_level(level: str | None) -> str:
    """Uppercase a level name, defaulting to INFO when missing."""
    if not level or not str(level).strip():
        return LEVEL_INFO
    return str(level).strip().upper()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or datetime into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        try:
            ts = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass(frozen=True)
class LogEntry:
    """One console log entry as stored in the log store."""

    message: str
    received_at: datetime
    level: str = LEVEL_INFO
    source: str = DEFAULT_SOURCE
    server_tag: str = DEFAULT_SERVER_TAG
    origin_timestamp: datetime | None = None
    id: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "level", normalize_level(self.level))
        if not self.source:
            object.__setattr__(self, "source", DEFAULT_SOURCE)
        if not self.server_tag:
            object.__setattr__(self, "server_tag", DEFAULT_SERVER_TAG)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "LogEntry":
        """Build an entry from a JSON document (camelCase or snake_case keys).

        Raises:
            ValueError: If message or receipt timestamp is missing
        """
        message = data.get("message")
        if message is None:
            raise ValueError("log entry has no message")
        received_at = parse_timestamp(data.get("receivedAt", data.get("received_at")))
        if received_at is None:
            raise ValueError("log entry has no receipt timestamp")
        return cls(
            message=str(message),
            received_at=received_at,
            level=data.get("level") or LEVEL_INFO,
            source=data.get("source") or DEFAULT_SOURCE,
            server_tag=data.get("server") or data.get("server_tag") or DEFAULT_SERVER_TAG,
            origin_timestamp=parse_timestamp(
                data.get("minecraftTimestamp", data.get("origin_timestamp"))
            ),
            id=data.get("id"),
        )


@dataclass
class Cursor:
    """Receipt timestamp of the last entry handed to the sink.

    The value only moves forward. Both tailing modes advance the same
    instance, one at a time.
    """

    last_received_at: datetime | None = None

    def advance(self, received_at: datetime) -> bool:
        """Move the cursor to received_at if that is later than the current value.

        Returns:
            True if the cursor moved
        """
        if self.last_received_at is not None and received_at <= self.last_received_at:
            return False
        self.last_received_at = received_at
        return True

    def seed(self, now: datetime) -> bool:
        """Set the cursor to now if it has never been set."""
        if self.last_received_at is not None:
            return False
        self.last_received_at = now
        return True
