"""
db/schema_control.py -- Bring a database up to the code's schema version, exactly once.

Protocol (one transaction per attempt):
  1. Create schema_versions if it does not exist.
  2. Read the highest recorded version and its lock flag.
  3. Locked -> another process is mid-migration. End the transaction, sleep
     with exponential backoff, and re-read. Give up with SchemaLockedError
     after a bounded number of attempts.
  4. Recorded version == len(scripts) - 1 -> nothing to do.
  5. Behind -> lock the current row, run the NEXT script only, record the new
     version unlocked, and repeat until caught up.
  6. Ahead -> this build is older than the database. Fail fast.

The full catch-up runs inside one transaction, so a crash mid-way leaves the
database at the last consistent version rather than half-migrated. Each lock
poll starts a fresh transaction so it observes other writers' commits, and
each transaction holds the write lock from its first statement, so a second
process starting at the same time waits and then finds the work done.

Scripts are append-only (see db/schema.py).
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from db.connection import Connection, utcnow

logger = logging.getLogger("queryboard.schema")

_LOCK_RETRIES = 8
_LOCK_BACKOFF_SECONDS = 0.25

_sql = {
    "table_exists": """
        select  name
        from    sqlite_master
        where   type = 'table'
        and     name = 'schema_versions'
    """,
    "create_table": """
        CREATE TABLE schema_versions (
            version INT NOT NULL PRIMARY KEY,
            script TEXT NOT NULL,
            locked BOOLEAN NOT NULL,
            run_date DATETIME NOT NULL
        )
    """,
    "last": """
        select version, locked from schema_versions order by version desc limit 1
    """,
    "lock": """
        update schema_versions set locked = 1 where version = :version
    """,
    "insert": """
        insert into schema_versions (version, script, locked, run_date)
        values (:version, :script, :locked, :run_date)
    """,
}


class SchemaVersionError(RuntimeError):
    """The database schema is newer than the scripts this build ships."""


class SchemaLockedError(RuntimeError):
    """Another process held the migration lock for longer than we were willing to wait."""


def ensure_schema(
    cnn: Connection,
    scripts: list[str],
    retries: int = _LOCK_RETRIES,
    backoff: float = _LOCK_BACKOFF_SECONDS,
) -> int:
    """Migrate cnn to len(scripts) - 1 and return that version.

    Raises SchemaVersionError if the database is ahead of the code and
    SchemaLockedError if the lock never clears.
    """
    delay = backoff
    for attempt in range(retries + 1):
        with cnn.transaction():
            _ensure_schema_table(cnn)
            version = _ensure_schema_version(cnn, scripts)
        if version is not None:
            return version
        if attempt < retries:
            logger.info("schema_versions table locked in %s. Waiting %.2fs...", cnn.filename, delay)
            time.sleep(delay)
            delay *= 2

    raise SchemaLockedError(
        f"The schema in {cnn.filename} stayed locked after {retries + 1} attempts. "
        "If no other process is migrating it, a previous migration crashed while holding the lock."
    )


def schema_version(cnn: Connection) -> int:
    """Return the recorded schema version, or -1 for a database that has never been migrated."""
    if not cnn.execute(_sql["table_exists"]):
        return -1
    rows = cnn.execute(_sql["last"])
    return rows[0].version if rows else -1


def _ensure_schema_table(cnn: Connection) -> None:
    if cnn.execute(_sql["table_exists"]):
        return

    logger.info("Creating schema_versions table in %s", cnn.filename)
    cnn.execute(_sql["create_table"])


def _ensure_schema_version(cnn: Connection, scripts: list[str]) -> Optional[int]:
    """Apply pending scripts one at a time. Returns None if the table is locked."""
    current = len(scripts) - 1

    while True:
        rows = cnn.execute(_sql["last"])
        db_version = -1
        if rows:
            if rows[0].locked:
                return None
            db_version = rows[0].version

        if db_version == current:
            return current

        if db_version > current:
            raise SchemaVersionError(
                f"The schema in {cnn.filename} version {db_version} is newer than "
                f"the code schema version {current}"
            )

        if db_version >= 0:
            cnn.execute(_sql["lock"], {"version": db_version})
        db_version += 1

        logger.info("Updating schema in %s to version %d", cnn.filename, db_version)
        cnn.execute(scripts[db_version])
        cnn.execute(
            _sql["insert"],
            {
                "version": db_version,
                "script": scripts[db_version],
                "locked": False,
                "run_date": utcnow(),
            },
        )
