"""Log store access: range queries and the live insert feed.

The store is a Postgres table. New rows are announced by an AFTER INSERT
trigger that publishes the row id with NOTIFY; the insert feed LISTENs on
that channel and loads each row by id, since NOTIFY payloads are too small
for arbitrarily long messages.
"""

import select
from collections.abc import Callable, Iterator
from datetime import datetime
from typing import Any, Protocol

import psycopg2
import structlog
from psycopg2 import sql

from .entry import LogEntry

log = structlog.get_logger()

SCHEMA = """
CREATE TABLE IF NOT EXISTS {table} (
    id BIGSERIAL PRIMARY KEY,
    level TEXT NOT NULL DEFAULT 'INFO',
    message TEXT NOT NULL,
    source TEXT NOT NULL DEFAULT 'Server',
    server TEXT NOT NULL DEFAULT 'main',
    origin_timestamp TIMESTAMPTZ,
    received_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp()
);

CREATE INDEX IF NOT EXISTS {received_index} ON {table} (received_at);
CREATE INDEX IF NOT EXISTS {server_index} ON {table} (server, received_at DESC);

CREATE OR REPLACE FUNCTION {function}() RETURNS trigger AS $$
BEGIN
    PERFORM pg_notify({channel}, NEW.id::text);
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS {trigger} ON {table};
CREATE TRIGGER {trigger}
    AFTER INSERT ON {table}
    FOR EACH ROW EXECUTE FUNCTION {function}();
"""

_COLUMNS = sql.SQL("id, level, message, source, server, origin_timestamp, received_at")


class LogStoreError(Exception):
    """Raised when a log store query fails."""


class FeedError(Exception):
    """Terminal failure of the live insert feed."""


class FeedUnavailable(FeedError):
    """The store cannot provide an insert feed at all."""


class FeedTerminated(FeedError):
    """An open insert feed stopped delivering entries."""


class InsertFeed(Protocol):
    def __iter__(self) -> Iterator[LogEntry]: ...

    def close(self) -> None: ...


class LogStore(Protocol):
    def subscribe_inserts(self) -> InsertFeed:
        """Open the live feed.

        Raises:
            FeedUnavailable: If the store cannot provide a feed
        """
        ...

    def query_after(self, cursor: datetime | None, limit: int) -> list[LogEntry]:
        """Entries received strictly after cursor, oldest first.

        Raises:
            LogStoreError: On query failure
        """
        ...

    def recent(self, limit: int = 100) -> list[LogEntry]:
        """Most recent entries, newest first."""
        ...

    def close(self) -> None: ...


def row_to_entry(row: tuple[Any, ...]) -> LogEntry:
    entry_id, level, message, source, server, origin_timestamp, received_at = row
    return LogEntry(
        id=entry_id,
        level=level,
        message=message,
        source=source,
        server_tag=server,
        origin_timestamp=origin_timestamp,
        received_at=received_at,
    )


class PostgresLogStore:
    """Log store backed by a Postgres table."""

    def __init__(
        self,
        dsn: str,
        table: str = "console_logs",
        notify_channel: str = "console_log_inserts",
        connect: Callable[[str], Any] = psycopg2.connect,
    ):
        self.dsn = dsn
        self.table = table
        self.notify_channel = notify_channel
        self._connect = connect
        self._conn: Any = None

    @property
    def trigger_name(self) -> str:
        return f"{self.table}_notify_insert"

    def connect(self) -> Any:
        """Open a new autocommit connection."""
        conn = self._connect(self.dsn)
        conn.autocommit = True
        return conn

    def _connection(self) -> Any:
        if self._conn is None or self._conn.closed:
            self._conn = self.connect()
        return self._conn

    def _reset(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            except psycopg2.Error:
                pass
        self._conn = None

    def _fetch(self, query: sql.Composable, params: tuple[Any, ...]) -> list[tuple[Any, ...]]:
        try:
            conn = self._connection()
            with conn.cursor() as cur:
                cur.execute(query, params)
                rows: list[tuple[Any, ...]] = cur.fetchall()
            return rows
        except psycopg2.Error as e:
            # Reconnect on the next call
            self._reset()
            raise LogStoreError(str(e)) from e

    def query_after(self, cursor: datetime | None, limit: int) -> list[LogEntry]:
        if cursor is None:
            query = sql.SQL(
                "SELECT {columns} FROM {table} ORDER BY received_at ASC, id ASC LIMIT %s"
            ).format(columns=_COLUMNS, table=sql.Identifier(self.table))
            rows = self._fetch(query, (limit,))
        else:
            query = sql.SQL(
                "SELECT {columns} FROM {table} WHERE received_at > %s "
                "ORDER BY received_at ASC, id ASC LIMIT %s"
            ).format(columns=_COLUMNS, table=sql.Identifier(self.table))
            rows = self._fetch(query, (cursor, limit))
        return [row_to_entry(row) for row in rows]

    def recent(self, limit: int = 100) -> list[LogEntry]:
        query = sql.SQL(
            "SELECT {columns} FROM {table} ORDER BY received_at DESC, id DESC LIMIT %s"
        ).format(columns=_COLUMNS, table=sql.Identifier(self.table))
        return [row_to_entry(row) for row in self._fetch(query, (limit,))]

    def fetch_by_id(self, conn: Any, entry_id: int) -> LogEntry | None:
        """Load one entry on the given connection."""
        query = sql.SQL("SELECT {columns} FROM {table} WHERE id = %s").format(
            columns=_COLUMNS, table=sql.Identifier(self.table)
        )
        with conn.cursor() as cur:
            cur.execute(query, (entry_id,))
            row = cur.fetchone()
        return row_to_entry(row) if row is not None else None

    def trigger_installed(self, conn: Any) -> bool:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT 1 FROM pg_trigger WHERE tgname = %s AND NOT tgisinternal",
                (self.trigger_name,),
            )
            return cur.fetchone() is not None

    def ensure_schema(self) -> None:
        """Create the log table, indexes and insert-notification trigger."""
        statement = sql.SQL(SCHEMA).format(
            table=sql.Identifier(self.table),
            received_index=sql.Identifier(f"idx_{self.table}_received_at"),
            server_index=sql.Identifier(f"idx_{self.table}_server"),
            function=sql.Identifier(f"{self.table}_notify_insert_fn"),
            trigger=sql.Identifier(self.trigger_name),
            channel=sql.Literal(self.notify_channel),
        )
        try:
            conn = self._connection()
            with conn.cursor() as cur:
                cur.execute(statement)
        except psycopg2.Error as e:
            self._reset()
            raise LogStoreError(str(e)) from e
        log.info("Ensured log store schema", table=self.table, trigger=self.trigger_name)

    def subscribe_inserts(self) -> "PostgresInsertFeed":
        feed = PostgresInsertFeed(self)
        feed.open()
        return feed

    def close(self) -> None:
        self._reset()


class PostgresInsertFeed:
    """LISTEN-based feed of newly inserted entries.

    Iteration blocks until the feed is closed or fails. Any failure after
    open() surfaces as FeedTerminated; the feed never reconnects itself.
    """

    def __init__(self, store: PostgresLogStore, poll_timeout: float = 1.0):
        self.store = store
        self.poll_timeout = poll_timeout
        self._conn: Any = None
        self._closed = False
        self._iterating = False

    def open(self) -> None:
        try:
            conn = self.store.connect()
        except psycopg2.Error as e:
            raise FeedUnavailable(f"cannot connect for LISTEN: {e}") from e

        try:
            if not self.store.trigger_installed(conn):
                conn.close()
                raise FeedUnavailable(
                    f"insert trigger {self.store.trigger_name} is not installed"
                )
            with conn.cursor() as cur:
                cur.execute(sql.SQL("LISTEN {}").format(sql.Identifier(self.store.notify_channel)))
        except psycopg2.Error as e:
            conn.close()
            raise FeedUnavailable(f"LISTEN not supported: {e}") from e

        self._conn = conn
        log.info("Listening for inserts", channel=self.store.notify_channel)

    def __enter__(self) -> "PostgresInsertFeed":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __iter__(self) -> Iterator[LogEntry]:
        if self._conn is None:
            raise FeedTerminated("feed is not open")
        conn = self._conn
        self._iterating = True
        try:
            while not self._closed:
                try:
                    if select.select([conn], [], [], self.poll_timeout) == ([], [], []):
                        continue
                    conn.poll()
                except (psycopg2.Error, OSError, ValueError) as e:
                    if self._closed:
                        return
                    raise FeedTerminated(f"LISTEN connection lost: {e}") from e

                while conn.notifies and not self._closed:
                    notify = conn.notifies.pop(0)
                    yield self._load(conn, notify.payload)
        finally:
            self._release()

    def _load(self, conn: Any, payload: str) -> LogEntry:
        try:
            entry_id = int(payload)
        except ValueError as e:
            raise FeedTerminated(f"undecodable notification payload: {payload!r}") from e
        try:
            entry = self.store.fetch_by_id(conn, entry_id)
        except psycopg2.Error as e:
            raise FeedTerminated(f"cannot load entry {entry_id}: {e}") from e
        if entry is None:
            raise FeedTerminated(f"notified entry {entry_id} does not exist")
        return entry

    def close(self) -> None:
        """Stop iteration; the connection is released by the iterating thread."""
        self._closed = True
        if not self._iterating:
            self._release()

    def _release(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None and not conn.closed:
            try:
                conn.close()
            except psycopg2.Error:
                pass
