"""Entry classifier and formatter.

Maps a log entry to a destination channel and renders it as a single line.
Pure functions, no network or database access.
"""

from dataclasses import dataclass
from datetime import timezone
from enum import Enum

from ..config import DEFAULT_FORWARD_LEVELS
from .entry import LEVEL_ERROR, LEVEL_WARN, LogEntry

# Discord messages cap at 2000 characters; a rendered line never exceeds it
MAX_LINE_LENGTH = 2000
MAX_MESSAGE_LENGTH = 1950
TRUNCATION_MARKER = "..."


class Destination(Enum):
    """Where a classified entry is sent."""

    GENERAL = "general"
    WARN = "warn"
    ERROR = "error"
    NONE = "none"  # Not forwarded, cursor still advances


@dataclass(frozen=True)
class ForwardingPolicy:
    """Levels eligible for forwarding."""

    forward_levels: frozenset[str] = DEFAULT_FORWARD_LEVELS

    def allows(self, level: str) -> bool:
        return level.upper() in self.forward_levels


@dataclass(frozen=True)
class Classification:
    """Result of classifying a log entry."""

    destination: Destination
    text: str

    @property
    def forwarded(self) -> bool:
        return self.destination is not Destination.NONE


def destination_for_level(level: str) -> Destination:
    """Pick the channel category for a level, ignoring forwarding policy."""
    level = level.upper()
    if level == LEVEL_ERROR:
        return Destination.ERROR
    if level == LEVEL_WARN:
        return Destination.WARN
    return Destination.GENERAL


def truncate_message(message: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    """Cut message to limit characters, appending a marker when cut."""
    if len(message) <= limit:
        return message
    return message[:limit] + TRUNCATION_MARKER


def format_entry(entry: LogEntry) -> str:
    """Render an entry as `[receivedAt] [server] [LEVEL] message`."""
    when = entry.received_at.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    when = when.replace("+00:00", "Z")
    prefix = f"[{when}] [{entry.server_tag}] [{entry.level}] "
    limit = min(MAX_MESSAGE_LENGTH, MAX_LINE_LENGTH - len(prefix) - len(TRUNCATION_MARKER))
    return prefix + truncate_message(entry.message, max(limit, 0))


def classify(entry: LogEntry, policy: ForwardingPolicy) -> Classification:
    """Classify an entry under the given forwarding policy.

    Args:
        entry: The log entry to classify
        policy: Levels that may be forwarded

    Returns:
        Classification with Destination.NONE when the level is not forwarded
    """
    destination = destination_for_level(entry.level)
    if not policy.allows(entry.level):
        destination = Destination.NONE
    return Classification(destination=destination, text=format_entry(entry))
