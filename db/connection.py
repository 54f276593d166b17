"""
db/connection.py -- Synchronous SQLAlchemy wrapper around the embedded SQLite file.

Pattern: one Connection per database file. Entity modules compile their SQL
once with prepare_query() / prepare_update() and call the returned functions
with a dict of bound parameters. Route and entity code never touches the
engine directly.

Transactions:
  transaction() (or begin_transaction(fn)) runs everything inside it on one
  SQLAlchemy connection. Nested calls on the same thread join the outer
  transaction; only the outermost level commits, and any exception rolls back
  every statement since the outermost BEGIN before propagating.

  pysqlite's own transaction handling does not BEGIN before DDL, which would
  leave half-applied migrations behind. The connect hook disables it
  (isolation_level=None) and the begin hook emits BEGIN IMMEDIATE explicitly,
  following the recipe in the SQLAlchemy SQLite dialect documentation.

  IMMEDIATE takes the write lock up front, waiting up to _BUSY_TIMEOUT for it.
  A deferred BEGIN would read under a WAL snapshot and then fail outright
  with "database is locked" when it tried to write after another process
  had committed. Concurrent writers on a file database are therefore
  serialized, not rejected.

  An in-memory database is one DBAPI connection shared by every thread
  (StaticPool), so SQLite cannot isolate them. Statements and transactions
  on it are serialized by a process lock instead.

Marshalling:
  Parameters are encoded on the way in: bool -> 0/1, datetime -> UTC ISO 8601
  with microseconds, date -> ISO date. Rows come back raw. Decoding is the job
  of each entity module's row mapper, using parse_datetime() / parse_bool().

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from auth/ or api/.
"""

from __future__ import annotations

import logging
import secrets
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, NamedTuple, Optional, TypeVar

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Connection as SAConnection
from sqlalchemy.engine import Engine, Row
from sqlalchemy.pool import StaticPool

from core.config import MEMORY_DATA_DIR, get_settings

logger = logging.getLogger("queryboard.db")

MEMORY = ":memory:"
SYSTEM_DB_NAME = "system.db"

# Seconds sqlite3 waits on a locked database file before raising.
_BUSY_TIMEOUT = 5.0

T = TypeVar("T")


class UpdateResult(NamedTuple):
    """Outcome of a prepared insert / update / delete."""

    changes: int
    last_insert_id: Optional[int]


# ---------------------------------------------------------------------------
# Engine hooks
# ---------------------------------------------------------------------------


def _on_connect(dbapi_conn, connection_record) -> None:
    """Configure every new DBAPI connection.

    PRAGMAs are per-connection in SQLite, so they are set here rather than
    once at engine creation. WAL is a no-op for in-memory databases.
    """
    dbapi_conn.isolation_level = None
    dbapi_conn.execute("PRAGMA foreign_keys=ON")
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _on_begin(conn: SAConnection) -> None:
    conn.exec_driver_sql("BEGIN IMMEDIATE")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _marshal_value(value: Any) -> Any:
    # bool is checked first: it is a subclass of int.
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
    if isinstance(value, date):
        return value.isoformat()
    return value


def marshal(params: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    """Return a copy of params with bools and dates encoded for SQLite."""
    if not params:
        return {}
    return {key: _marshal_value(value) for key, value in params.items()}


def parse_datetime(value: Any) -> Optional[datetime]:
    """Decode a stored ISO 8601 string into an aware UTC datetime.

    Naive strings (written by hand in a SQL console, for instance) are
    treated as UTC. None stays None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_bool(value: Any) -> bool:
    """Decode SQLite's 0/1 (or a stray 'true'/'false' string) into a bool."""
    if isinstance(value, str):
        return value.lower() in ("1", "true")
    return bool(value)


def random_token(bits: int) -> str:
    """Return a URL-safe string carrying `bits` bits of cryptographic randomness.

    Used for session ids, CSRF tokens, and generated temporary passwords.
    Bits are rounded up to whole bytes, never down.
    """
    if bits <= 0:
        raise ValueError(f"random_token needs a positive bit count, got {bits}")
    return secrets.token_urlsafe((bits + 7) // 8)


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


class Connection:
    """A lazily opened SQLite database.

    Usage:
        cnn = Connection("/var/lib/queryboard/system.db")
        get_user = cnn.prepare_query("select * from users where username = :username")
        rows = get_user({"username": "admin"})
        with cnn.transaction():
            ...
        cnn.close()

    Connection(":memory:") skips directory creation and keeps one shared
    in-memory database alive until close(). Its statements and transactions
    are serialized across threads.
    """

    def __init__(self, filename: str) -> None:
        self.filename = filename
        self._engine: Optional[Engine] = None
        self._open_lock = threading.Lock()
        self._local = threading.local()
        # Held for the whole of a standalone statement or outermost transaction
        # on an in-memory database. Reentrant so a thread can nest freely.
        self._memory_lock = threading.RLock()

    @property
    def in_memory(self) -> bool:
        return self.filename == MEMORY

    def open(self) -> Engine:
        """Create the engine on first use. Safe to call repeatedly."""
        if self._engine is None:
            with self._open_lock:
                if self._engine is None:
                    self._engine = self._create_engine()
        return self._engine

    def _create_engine(self) -> Engine:
        if self.in_memory:
            # StaticPool hands every checkout the same DBAPI connection, so the
            # in-memory database survives between statements.
            engine = create_engine(
                "sqlite://",
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            Path(self.filename).parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(
                f"sqlite:///{self.filename}",
                connect_args={"check_same_thread": False, "timeout": _BUSY_TIMEOUT},
            )
        event.listen(engine, "connect", _on_connect)
        event.listen(engine, "begin", _on_begin)
        logger.debug("Opened database %s", self.filename)
        return engine

    def _active(self) -> Optional[SAConnection]:
        return getattr(self._local, "conn", None)

    @property
    def in_transaction(self) -> bool:
        return self._active() is not None

    @contextmanager
    def _serialized(self) -> Iterator[None]:
        if not self.in_memory:
            yield
            return
        with self._memory_lock:
            yield

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed block atomically, joining an outer transaction if one is open."""
        if self._active() is not None:
            yield
            return

        with self._serialized(), self.open().connect() as conn:
            self._local.conn = conn
            try:
                with conn.begin():
                    yield
            finally:
                self._local.conn = None

    def begin_transaction(self, fn: Callable[[], T]) -> T:
        """Call fn() inside transaction() and return its result."""
        with self.transaction():
            return fn()

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _run(self, fn: Callable[[SAConnection], T]) -> T:
        conn = self._active()
        if conn is not None:
            return fn(conn)
        with self._serialized(), self.open().begin() as conn:
            return fn(conn)

    def execute(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> list[Row]:
        """Run an ad hoc statement. Application queries should use prepare_query()."""
        statement = text(sql)

        def run(conn: SAConnection) -> list[Row]:
            result = conn.execute(statement, marshal(params))
            return result.fetchall() if result.returns_rows else []

        return self._run(run)

    def prepare_query(self, sql: str) -> Callable[..., list[Row]]:
        """Compile a SELECT once; return a function mapping params to rows."""
        statement = text(sql)

        def query(params: Optional[Mapping[str, Any]] = None) -> list[Row]:
            return self._run(lambda conn: conn.execute(statement, marshal(params)).fetchall())

        return query

    def prepare_update(self, sql: str) -> Callable[..., UpdateResult]:
        """Compile an INSERT / UPDATE / DELETE once; return a function reporting affected rows."""
        statement = text(sql)

        def update(params: Optional[Mapping[str, Any]] = None) -> UpdateResult:
            def run(conn: SAConnection) -> UpdateResult:
                result = conn.execute(statement, marshal(params))
                return UpdateResult(changes=result.rowcount, last_insert_id=result.lastrowid)

            return self._run(run)

        return update

    def close(self) -> None:
        """Dispose of the engine. An in-memory database is discarded; the next call reopens a fresh one."""
        with self._open_lock:
            if self._engine is not None:
                self._engine.dispose()
                self._engine = None


def _system_db_filename() -> str:
    data_dir = get_settings().data_dir
    if data_dir == MEMORY_DATA_DIR:
        return MEMORY
    return str(Path(data_dir) / SYSTEM_DB_NAME)


# The system database: users, passwords, sessions, settings. Opened lazily on
# first statement, so importing this module never touches the filesystem.
sysdb = Connection(_system_db_filename())
