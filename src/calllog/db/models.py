"""Schema of the call history database.

Two tables:
- calls: one row per call log entry (incoming, outgoing, missed, voicemail, ...)
- voicemail_status: one row per voicemail source and the state of its channels

init_database() is the only code path that creates the file. The store opens
it read-write without create, so a store that was never initialized reads as
unavailable rather than as an empty call log.

Usage:
    from calllog.db.models import init_database

    await init_database("data/calllog.db")
"""

import stat
from pathlib import Path

import aiosqlite

from calllog.core.errors import StoreUnavailableError
from calllog.core.logging import get_logger

logger = get_logger(__name__)

# Bump together with a migration when the tables change
SCHEMA_VERSION = 1

REQUIRED_TABLES = ("calls", "voicemail_status")

# Call history is personal data
_OWNER_ONLY = stat.S_IRUSR | stat.S_IWUSR

SCHEMA_SQL = """
-- WAL lets readers proceed while an update is being written
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS calls (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    number TEXT NOT NULL DEFAULT '',
    cached_name TEXT,                       -- Contact name at the time of the call
    type INTEGER NOT NULL,                  -- 1 incoming, 2 outgoing, 3 missed, 4 voicemail, ...
    date INTEGER NOT NULL,                  -- Epoch milliseconds
    duration INTEGER NOT NULL DEFAULT 0,    -- Seconds
    account_id TEXT,                        -- Backend account behind the SIM slot
    is_new INTEGER NOT NULL DEFAULT 1,      -- 1 until the user has seen the call log
    is_read INTEGER NOT NULL DEFAULT 0      -- 1 once a missed call has been acknowledged
);

-- Every fetch is ordered newest first
CREATE INDEX IF NOT EXISTS idx_calls_date ON calls(date DESC);

-- Mark-as-old / mark-as-read updates filter on these
CREATE INDEX IF NOT EXISTS idx_calls_type_new ON calls(type, is_new);

CREATE TABLE IF NOT EXISTS voicemail_status (
    source_package TEXT PRIMARY KEY,
    settings_uri TEXT,
    voicemail_access_uri TEXT,
    configuration_state INTEGER NOT NULL DEFAULT 0,
    data_channel_state INTEGER NOT NULL DEFAULT 0,
    notification_channel_state INTEGER NOT NULL DEFAULT 0
);
"""


async def init_database(db_path: str | Path) -> None:
    """Create the database file and its tables. Safe to run repeatedly.

    Args:
        db_path: Path to the SQLite database file

    Raises:
        StoreUnavailableError: If the file cannot be created or initialized
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        async with aiosqlite.connect(path) as db:
            cursor = await db.execute("PRAGMA journal_mode=WAL")
            row = await cursor.fetchone()
            if row and str(row[0]).lower() != "wal":
                logger.warning("wal_unavailable", journal_mode=row[0], db_path=str(path))

            await db.executescript(SCHEMA_SQL)
            await db.commit()
    except aiosqlite.Error as e:
        logger.error("store_init_failed", db_path=str(path), error=str(e))
        raise StoreUnavailableError(
            f"Could not initialize the call log at {path}: {e}. "
            "Check that the directory is writable and the file is a SQLite database.",
            operation="init_database",
        ) from e

    for file in (path, Path(f"{path}-wal"), Path(f"{path}-shm")):
        if file.exists():
            file.chmod(_OWNER_ONLY)

    logger.info("store_initialized", db_path=str(path), schema_version=SCHEMA_VERSION)


async def verify_schema(db_path: str | Path) -> bool:
    """Whether `db_path` exists and holds every table the store needs."""
    if not Path(db_path).exists():
        return False

    try:
        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            tables = {name for (name,) in await cursor.fetchall()}
    except aiosqlite.Error as e:
        logger.error("schema_check_failed", db_path=str(db_path), error=str(e))
        return False

    missing = sorted(set(REQUIRED_TABLES) - tables)
    if missing:
        logger.warning("schema_tables_missing", missing=missing, db_path=str(db_path))
        return False
    return True
