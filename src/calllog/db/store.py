"""Call history store with the reads and writes the dispatcher issues.

This module provides the CallLogStore class that the background worker runs
operations against. It uses aiosqlite, so every statement executes on the
connection's own thread and the event loop never blocks.

SQLite failures are sorted into two groups. Storage faults (disk full, disk
I/O error, corrupted file, missing store) are raised as StorageFault
subclasses. Anything else (syntax errors, misuse) is re-raised unchanged so
programming mistakes are never mistaken for environmental trouble.

Usage:
    from calllog.db.store import CallLogStore

    store = CallLogStore("data/calllog.db")
    await store.initialize()

    results = await store.query_calls(predicate)
    with results:
        for row in results:
            print(row["number"], row["date"])
"""

from __future__ import annotations

import sqlite3
from collections.abc import AsyncIterator, Iterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import quote

import aiosqlite

from calllog.core.errors import (
    ResultSetClosedError,
    StorageCorruptError,
    StorageFault,
    StorageFullError,
    StorageIOError,
    StoreUnavailableError,
)
from calllog.core.logging import get_logger
from calllog.db.models import init_database
from calllog.query.criteria import DEFAULT_SORT_ORDER, CallType, Mutation, Predicate

logger = get_logger(__name__)

CALL_PROJECTION = (
    "id",
    "number",
    "cached_name",
    "type",
    "date",
    "duration",
    "account_id",
    "is_new",
    "is_read",
)

VOICEMAIL_STATUS_PROJECTION = (
    "source_package",
    "settings_uri",
    "voicemail_access_uri",
    "configuration_state",
    "data_channel_state",
    "notification_channel_state",
)

# Lower-cased sqlite3 message fragments that identify a storage fault
_FAULT_PATTERNS: tuple[tuple[str, type[StorageFault]], ...] = (
    ("database or disk is full", StorageFullError),
    ("disk i/o error", StorageIOError),
    ("malformed", StorageCorruptError),
    ("not a database", StorageCorruptError),
    ("unable to open database", StoreUnavailableError),
    ("no such table", StoreUnavailableError),
)


def storage_fault_for(error: sqlite3.Error, operation: str) -> StorageFault | None:
    """Map a sqlite3 error to its StorageFault, or None if it is not one.

    Args:
        error: The error raised by sqlite3 / aiosqlite
        operation: Store method that failed (for the message)

    Returns:
        A StorageFault to raise in its place, or None for programming errors
    """
    if isinstance(error, sqlite3.ProgrammingError | sqlite3.InterfaceError):
        return None
    message = str(error).lower()
    for fragment, fault_type in _FAULT_PATTERNS:
        if fragment in message:
            return fault_type(f"Call log {operation} failed: {error}", operation=operation)
    return None


@dataclass
class Call:
    """Call log entry."""

    number: str
    type: CallType
    date: int
    duration: int = 0
    cached_name: str | None = None
    account_id: str | None = None
    is_new: bool = True
    is_read: bool = False
    id: int | None = None


@dataclass
class VoicemailStatus:
    """Channel state reported by one voicemail source."""

    source_package: str
    settings_uri: str | None = None
    voicemail_access_uri: str | None = None
    configuration_state: int = 0
    data_channel_state: int = 0
    notification_channel_state: int = 0


class ResultSet:
    """Forward-readable rows produced by one completed fetch.

    Whoever owns a result set closes it. The dispatcher hands ownership to
    its listener only when the listener accepts it.
    """

    def __init__(self, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> None:
        self.columns = tuple(columns)
        self._rows: list[tuple[Any, ...]] | None = [tuple(row) for row in rows]

    @property
    def closed(self) -> bool:
        return self._rows is None

    def __len__(self) -> int:
        return len(self._require_open())

    def __bool__(self) -> bool:
        return not self.closed

    def __iter__(self) -> Iterator[dict[str, Any]]:
        for row in self._require_open():
            yield dict(zip(self.columns, row, strict=True))

    def close(self) -> None:
        """Release the rows. Closing twice is harmless."""
        self._rows = None

    def __enter__(self) -> ResultSet:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _require_open(self) -> list[tuple[Any, ...]]:
        if self._rows is None:
            raise ResultSetClosedError("Result set was read after it was closed")
        return self._rows

    def __repr__(self) -> str:
        state = "closed" if self.closed else f"{len(self._rows or ())} rows"
        return f"ResultSet(columns={self.columns!r}, {state})"


class CallLogStore:
    """Async access to the call history database.

    Attributes:
        db_path: Path to the SQLite database file
        busy_timeout_ms: How long SQLite waits on a locked database
    """

    def __init__(self, db_path: str | Path, busy_timeout_ms: int = 10000):
        """Initialize the store.

        Args:
            db_path: Path to the SQLite database file
            busy_timeout_ms: SQLite busy timeout in milliseconds
        """
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms

    async def initialize(self) -> None:
        """Create the database and its tables if needed."""
        await init_database(self.db_path)

    @asynccontextmanager
    async def _db(self, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        """Get a configured connection, translating storage failures.

        The file is opened read-write without create, so a missing store
        surfaces as StoreUnavailableError instead of an empty new database.
        """
        uri = f"file:{quote(self.db_path.as_posix())}?mode=rw"
        try:
            async with aiosqlite.connect(uri, uri=True) as db:
                await db.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
                db.row_factory = aiosqlite.Row
                yield db
        except aiosqlite.Error as e:
            fault = storage_fault_for(e, operation)
            if fault is None:
                raise
            raise fault from e

    # =========================================================================
    # Reads
    # =========================================================================

    async def query_calls(self, predicate: Predicate) -> ResultSet:
        """Fetch call log rows matching `predicate`, newest first.

        Args:
            predicate: Filter and row cap built by FilterBuilder

        Returns:
            ResultSet with CALL_PROJECTION columns

        Raises:
            StorageFault: If the store fails at the storage level
        """
        sql = f"SELECT {', '.join(CALL_PROJECTION)} FROM calls"
        parameters: tuple[Any, ...] = predicate.parameters
        if predicate.where:
            sql += f" WHERE {predicate.where}"
        sql += f" ORDER BY {DEFAULT_SORT_ORDER}"
        if predicate.limit is not None:
            sql += " LIMIT ?"
            parameters += (predicate.limit,)

        async with self._db("query_calls") as db:
            cursor = await db.execute(sql, parameters)
            rows = await cursor.fetchall()

        logger.debug("calls_queried", where=predicate.where, rows=len(rows))
        return ResultSet(CALL_PROJECTION, rows)

    async def query_voicemail_status(self) -> ResultSet:
        """Fetch the status row of every voicemail source."""
        async with self._db("query_voicemail_status") as db:
            cursor = await db.execute(
                f"SELECT {', '.join(VOICEMAIL_STATUS_PROJECTION)} FROM voicemail_status"
            )
            rows = await cursor.fetchall()
        return ResultSet(VOICEMAIL_STATUS_PROJECTION, rows)

    # =========================================================================
    # Writes
    # =========================================================================

    async def update_calls(self, mutation: Mutation) -> int:
        """Apply `mutation` to every matching call.

        Returns:
            Number of rows updated
        """
        sql = f"UPDATE calls SET {mutation.set_clause}"
        if mutation.predicate.where:
            sql += f" WHERE {mutation.predicate.where}"

        async with self._db("update_calls") as db:
            cursor = await db.execute(sql, mutation.parameters)
            await db.commit()
            updated = cursor.rowcount

        logger.debug("calls_updated", where=mutation.predicate.where, rows=updated)
        return updated

    async def add_call(self, call: Call) -> int:
        """Insert a call log entry.

        Returns:
            The new row id
        """
        async with self._db("add_call") as db:
            cursor = await db.execute(
                """
                INSERT INTO calls (
                    number, cached_name, type, date, duration,
                    account_id, is_new, is_read
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    call.number,
                    call.cached_name,
                    int(call.type),
                    call.date,
                    call.duration,
                    call.account_id,
                    1 if call.is_new else 0,
                    1 if call.is_read else 0,
                ),
            )
            await db.commit()
            row_id = cursor.lastrowid

        if row_id is None:
            raise StoreUnavailableError("Call log insert returned no row id", operation="add_call")
        return row_id

    async def set_voicemail_status(self, status: VoicemailStatus) -> None:
        """Insert or replace the status row for one voicemail source."""
        async with self._db("set_voicemail_status") as db:
            await db.execute(
                """
                INSERT INTO voicemail_status (
                    source_package, settings_uri, voicemail_access_uri,
                    configuration_state, data_channel_state, notification_channel_state
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(source_package) DO UPDATE SET
                    settings_uri = excluded.settings_uri,
                    voicemail_access_uri = excluded.voicemail_access_uri,
                    configuration_state = excluded.configuration_state,
                    data_channel_state = excluded.data_channel_state,
                    notification_channel_state = excluded.notification_channel_state
                """,
                (
                    status.source_package,
                    status.settings_uri,
                    status.voicemail_access_uri,
                    status.configuration_state,
                    status.data_channel_state,
                    status.notification_channel_state,
                ),
            )
            await db.commit()
