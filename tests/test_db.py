import sqlite3

import pytest

from posledger.db import ensure_schema, q, retry_on_busy, transaction, x


def _count_items(conn):
    return q(conn, "SELECT COUNT(1) AS n FROM items")[0]["n"]


def _insert_item(conn, code):
    x(conn, "INSERT INTO items (code, name, unit, created_at) VALUES (?, ?, 'KG', '2026-01-01')", (code, code))


class TestTransaction:

    def test_commits_on_success(self, conn):
        with transaction(conn):
            _insert_item(conn, "A")
        assert not conn.in_transaction
        assert _count_items(conn) == 1

    def test_rolls_back_on_error(self, conn):
        with pytest.raises(RuntimeError):
            with transaction(conn):
                _insert_item(conn, "A")
                raise RuntimeError("boom")
        assert not conn.in_transaction
        assert _count_items(conn) == 0

    def test_nested_joins_outer(self, conn):
        with pytest.raises(RuntimeError):
            with transaction(conn):
                with transaction(conn):
                    _insert_item(conn, "A")
                # inner block finished but nothing is committed yet
                assert conn.in_transaction
                raise RuntimeError("boom")
        assert _count_items(conn) == 0


class TestRetryOnBusy:

    def test_retries_once_when_locked(self, conn):
        calls = []

        @retry_on_busy
        def flaky(c):
            calls.append(1)
            if len(calls) == 1:
                raise sqlite3.OperationalError("database is locked")
            return "ok"

        assert flaky(conn) == "ok"
        assert len(calls) == 2

    def test_gives_up_after_second_failure(self, conn):
        calls = []

        @retry_on_busy
        def busy(c):
            calls.append(1)
            raise sqlite3.OperationalError("database is busy")

        with pytest.raises(sqlite3.OperationalError):
            busy(conn)
        assert len(calls) == 2

    def test_other_errors_are_not_retried(self, conn):
        calls = []

        @retry_on_busy
        def broken(c):
            calls.append(1)
            raise sqlite3.OperationalError("no such table: nope")

        with pytest.raises(sqlite3.OperationalError):
            broken(conn)
        assert len(calls) == 1

    def test_no_retry_inside_outer_transaction(self, conn):
        calls = []

        @retry_on_busy
        def flaky(c):
            calls.append(1)
            raise sqlite3.OperationalError("database is locked")

        with pytest.raises(sqlite3.OperationalError):
            with transaction(conn):
                flaky(conn)
        assert len(calls) == 1


def test_ensure_schema_is_idempotent(conn):
    _insert_item(conn, "A")
    ensure_schema(conn)
    ensure_schema(conn)
    assert _count_items(conn) == 1
    cols = [r["name"] for r in conn.execute("PRAGMA table_info(batches)").fetchall()]
    assert "loss_qty" in cols
