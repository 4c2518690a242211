"""Tests for the entry classifier and formatter."""

from datetime import datetime, timedelta, timezone

from conftest import make_entry

from console_relay.relay.classifier import (
    MAX_LINE_LENGTH,
    MAX_MESSAGE_LENGTH,
    TRUNCATION_MARKER,
    Destination,
    ForwardingPolicy,
    classify,
    destination_for_level,
    format_entry,
    truncate_message,
)
from console_relay.relay.entry import LogEntry

DEFAULT_POLICY = ForwardingPolicy(frozenset({"ERROR", "WARN"}))


class TestClassify:
    """Destination selection under a forwarding policy."""

    def test_info_not_forwarded(self):
        """INFO is outside the default policy."""
        result = classify(make_entry("INFO", "Server started", 0), DEFAULT_POLICY)
        assert result.destination is Destination.NONE
        assert result.forwarded is False

    def test_error_goes_to_error_channel(self):
        result = classify(make_entry("ERROR", "boom", 0), DEFAULT_POLICY)
        assert result.destination is Destination.ERROR
        assert result.forwarded is True

    def test_warn_goes_to_warn_channel(self):
        result = classify(make_entry("WARN", "low mem", 0), DEFAULT_POLICY)
        assert result.destination is Destination.WARN

    def test_info_forwarded_to_general_when_allowed(self):
        """Levels other than ERROR/WARN use the general channel."""
        policy = ForwardingPolicy(frozenset({"INFO"}))
        result = classify(make_entry("INFO", "ready", 0), policy)
        assert result.destination is Destination.GENERAL

    def test_lowercase_level_normalized(self):
        result = classify(make_entry("error", "boom", 0), DEFAULT_POLICY)
        assert result.destination is Destination.ERROR

    def test_text_rendered_even_when_not_forwarded(self):
        result = classify(make_entry("INFO", "ready", 0), DEFAULT_POLICY)
        assert result.text.endswith("[INFO] ready")

    def test_unknown_level_maps_to_general(self):
        assert destination_for_level("DEBUG") is Destination.GENERAL
        assert destination_for_level("FATAL") is Destination.GENERAL


class TestFormat:
    """Single-line rendering."""

    def test_line_format(self):
        entry = LogEntry(
            message="Can't keep up!",
            received_at=datetime(2025, 1, 1, 12, 0, 0, 123000, tzinfo=timezone.utc),
            level="WARN",
            server_tag="survival",
        )
        assert format_entry(entry) == (
            "[2025-01-01T12:00:00.123Z] [survival] [WARN] Can't keep up!"
        )

    def test_non_utc_timestamp_rendered_in_utc(self):
        plus_two = timezone(timedelta(hours=2))
        entry = LogEntry(
            message="x", received_at=datetime(2025, 1, 1, 14, 0, tzinfo=plus_two)
        )
        assert format_entry(entry).startswith("[2025-01-01T12:00:00.000Z] [main] [INFO]")

    def test_long_message_truncated_with_marker(self):
        """A 3000 character message is cut to the bound plus a marker."""
        entry = make_entry("ERROR", "x" * 3000, 0)
        text = classify(entry, DEFAULT_POLICY).text
        message = text.split("] ", 3)[-1]

        assert len(message) == MAX_MESSAGE_LENGTH + len(TRUNCATION_MARKER)
        assert message.endswith(TRUNCATION_MARKER)
        assert len(text) < 2000

    def test_short_message_untouched(self):
        assert truncate_message("hello") == "hello"

    def test_message_at_bound_untouched(self):
        message = "y" * MAX_MESSAGE_LENGTH
        assert truncate_message(message) == message

    def test_long_server_tag_keeps_marker_within_line_limit(self):
        """The whole rendered line, marker included, fits one Discord message."""
        entry = LogEntry(
            message="x" * 3000,
            received_at=make_entry("ERROR", "", 0).received_at,
            level="ERROR",
            server_tag="survival-01",
        )
        text = format_entry(entry)

        assert len(text) <= MAX_LINE_LENGTH
        assert text.endswith("x" + TRUNCATION_MARKER)
