"""
tests/test_connection.py -- Tests for db/connection.py.

Each test builds its own in-memory Connection so nothing touches sysdb.

Covers:
  - Parameter marshalling (bool -> 0/1, datetime -> UTC ISO 8601) and the
    read-side decoders
  - prepare_query / prepare_update
  - Transactions: commit, rollback on exception, nested calls joining the outer one
  - Connection setup: foreign keys and WAL on a file-backed database,
    lazy directory creation
  - random_token(), including bit counts that are not whole bytes
  - Concurrency: a file-backed writer waits for the lock; in-memory threads
    are serialized
"""

from __future__ import annotations

import threading
import time
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from db.connection import Connection, marshal, parse_bool, parse_datetime, random_token


@pytest.fixture
def cnn():
    c = Connection(":memory:")
    c.execute("create table items (id INTEGER PRIMARY KEY, name TEXT NOT NULL, flag BOOLEAN, at DATETIME)")
    yield c
    c.close()


class TestMarshalling:
    def test_bool_and_datetime_are_encoded(self) -> None:
        at = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
        params = marshal({"flag": True, "off": False, "at": at, "day": date(2024, 5, 1), "n": 3})
        assert params == {
            "flag": 1,
            "off": 0,
            "at": "2024-05-01T12:30:00.000000+00:00",
            "day": "2024-05-01",
            "n": 3,
        }

    def test_non_utc_datetime_is_converted_to_utc(self) -> None:
        at = datetime(2024, 5, 1, 14, 30, tzinfo=timezone(timedelta(hours=2)))
        assert marshal({"at": at})["at"] == "2024-05-01T12:30:00.000000+00:00"

    def test_round_trip_through_the_database(self, cnn: Connection) -> None:
        at = datetime(2024, 5, 1, 12, 30, 15, 123456, tzinfo=timezone.utc)
        cnn.execute("insert into items (name, flag, at) values (:name, :flag, :at)", {"name": "a", "flag": True, "at": at})
        row = cnn.execute("select flag, at from items")[0]
        assert row.flag == 1
        assert parse_bool(row.flag) is True
        assert parse_datetime(row.at) == at

    def test_decoders_handle_missing_and_naive_values(self) -> None:
        assert parse_datetime(None) is None
        assert parse_datetime("2024-05-01T12:30:00").tzinfo is timezone.utc
        assert parse_bool("true") is True
        assert parse_bool(0) is False


class TestPreparedStatements:
    def test_prepare_update_reports_changes(self, cnn: Connection) -> None:
        insert = cnn.prepare_update("insert into items (name) values (:name)")
        first = insert({"name": "a"})
        insert({"name": "b"})
        assert first.changes == 1
        assert first.last_insert_id == 1

        rename = cnn.prepare_update("update items set name = :name where id = :id")
        assert rename({"id": 1, "name": "z"}).changes == 1
        assert rename({"id": 99, "name": "z"}).changes == 0

    def test_prepare_query_is_reusable(self, cnn: Connection) -> None:
        cnn.execute("insert into items (name) values ('a')")
        get = cnn.prepare_query("select name from items where id = :id")
        assert [r.name for r in get({"id": 1})] == ["a"]
        assert get({"id": 2}) == []


class TestTransactions:
    def test_commit(self, cnn: Connection) -> None:
        with cnn.transaction():
            cnn.execute("insert into items (name) values ('a')")
        assert len(cnn.execute("select * from items")) == 1

    def test_exception_rolls_back_and_propagates(self, cnn: Connection) -> None:
        with pytest.raises(RuntimeError, match="boom"):
            with cnn.transaction():
                cnn.execute("insert into items (name) values ('a')")
                raise RuntimeError("boom")
        assert cnn.execute("select * from items") == []

    def test_nested_transaction_joins_outer(self, cnn: Connection) -> None:
        """A failure after a nested block commits nothing, including the nested block's writes."""

        def inner() -> str:
            cnn.execute("insert into items (name) values ('inner')")
            return "done"

        with pytest.raises(RuntimeError):
            with cnn.transaction():
                assert cnn.begin_transaction(inner) == "done"
                assert cnn.in_transaction
                raise RuntimeError("outer failed")

        assert cnn.execute("select * from items") == []
        assert not cnn.in_transaction

    def test_begin_transaction_returns_result(self, cnn: Connection) -> None:
        result = cnn.begin_transaction(lambda: cnn.prepare_update("insert into items (name) values ('a')")())
        assert result.changes == 1


class TestConnectionSetup:
    def test_file_database_creates_directory_lazily(self, tmp_path) -> None:
        path = tmp_path / "nested" / "dir" / "test.db"
        cnn = Connection(str(path))
        assert not path.parent.exists()
        try:
            cnn.execute("create table t (id INT)")
            assert path.exists()
            assert cnn.execute("PRAGMA journal_mode")[0][0] == "wal"
        finally:
            cnn.close()

    def test_foreign_keys_are_enforced(self, cnn: Connection) -> None:
        cnn.execute("create table children (id INT, item_id INT REFERENCES items(id))")
        with pytest.raises(IntegrityError):
            cnn.execute("insert into children (id, item_id) values (1, 42)")

    def test_close_discards_in_memory_database(self) -> None:
        cnn = Connection(":memory:")
        cnn.execute("create table t (id INT)")
        cnn.close()
        rows = cnn.execute("select name from sqlite_master where name = 't'")
        assert rows == []
        cnn.close()


class TestRandomToken:
    def test_token_length_and_uniqueness(self) -> None:
        tokens = {random_token(256) for _ in range(50)}
        assert len(tokens) == 50
        # 32 bytes -> 43 URL-safe base64 characters, no padding
        assert all(len(t) == 43 for t in tokens)
        assert all("=" not in t and "+" not in t and "/" not in t for t in tokens)

    def test_partial_bytes_round_up(self) -> None:
        # 129 bits needs 17 bytes -> 23 characters; 16 bytes would give 22
        assert len(random_token(129)) == 23
        assert len(random_token(1)) == 2

    def test_non_positive_bits_rejected(self) -> None:
        with pytest.raises(ValueError, match="positive bit count"):
            random_token(0)


class TestConcurrency:
    def test_file_transaction_takes_the_write_lock_up_front(self, tmp_path) -> None:
        """A second writer waits for the first to commit instead of failing on a stale snapshot."""
        path = str(tmp_path / "race.db")
        first, second = Connection(path), Connection(path)
        first.execute("create table items (id INTEGER PRIMARY KEY, name TEXT NOT NULL)")

        reading = threading.Event()
        errors: list[Exception] = []

        def read_then_write() -> None:
            try:
                with first.transaction():
                    count = len(first.execute("select * from items"))
                    reading.set()
                    time.sleep(0.2)
                    first.execute("insert into items (name) values (:name)", {"name": f"first-{count}"})
            except Exception as exc:
                errors.append(exc)

        worker = threading.Thread(target=read_then_write)
        worker.start()
        assert reading.wait(5)
        with second.transaction():
            count = len(second.execute("select * from items"))
            second.execute("insert into items (name) values (:name)", {"name": f"second-{count}"})
        worker.join()

        try:
            assert errors == []
            names = [r.name for r in first.execute("select name from items order by id")]
            assert names == ["first-0", "second-1"]
        finally:
            first.close()
            second.close()

    def test_in_memory_threads_do_not_share_a_transaction(self) -> None:
        """A standalone write from another thread is not swept into a rolled-back transaction."""
        cnn = Connection(":memory:")
        cnn.execute("create table items (id INTEGER PRIMARY KEY, name TEXT NOT NULL)")
        errors: list[Exception] = []

        def standalone_write() -> None:
            try:
                cnn.execute("insert into items (name) values ('other-thread')")
            except Exception as exc:
                errors.append(exc)

        writer = threading.Thread(target=standalone_write)
        try:
            with pytest.raises(RuntimeError):
                with cnn.transaction():
                    cnn.execute("insert into items (name) values ('rolled-back')")
                    writer.start()
                    # the writer blocks until this transaction ends
                    writer.join(0.2)
                    assert writer.is_alive()
                    raise RuntimeError("abort")
            writer.join(5)

            assert errors == []
            assert [r.name for r in cnn.execute("select name from items")] == ["other-thread"]
        finally:
            cnn.close()
