from __future__ import annotations

import functools
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator

import streamlit as st

from posledger.schema import SCHEMA_SQL

logger = logging.getLogger(__name__)

_LOCKS: dict[int, threading.RLock] = {}
_LOCKS_GUARD = threading.Lock()


def connect(db_path: Path | str, *, timeout: float = 5.0) -> sqlite3.Connection:
    # Autocommit mode: only transaction() groups statements.
    conn = sqlite3.connect(str(db_path), check_same_thread=False, isolation_level=None, timeout=timeout)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    if str(db_path) != ":memory:":
        conn.execute("PRAGMA journal_mode = WAL;")
    return conn


@st.cache_resource
def get_conn(db_path: Path) -> sqlite3.Connection:
    return connect(db_path)


def _conn_lock(conn: sqlite3.Connection) -> threading.RLock:
    # The Streamlit app shares one cached connection between sessions.
    with _LOCKS_GUARD:
        return _LOCKS.setdefault(id(conn), threading.RLock())


def _column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({table});").fetchall()
    cols = [r["name"] for r in rows]
    return column in cols


def ensure_schema(conn: sqlite3.Connection) -> None:
    with _conn_lock(conn):
        # Create base schema (for new installs)
        conn.executescript(SCHEMA_SQL)

        # ---- migrations for existing installs ----
        # Loss accumulator on batches (reporting only; loss_records is authoritative)
        if not _column_exists(conn, "batches", "loss_qty"):
            conn.execute("ALTER TABLE batches ADD COLUMN loss_qty REAL NOT NULL DEFAULT 0;")

        # Payment method on shift entries (needed for the shift payment breakdown)
        if not _column_exists(conn, "shift_entries", "payment_method"):
            conn.execute("ALTER TABLE shift_entries ADD COLUMN payment_method TEXT;")

        # Closes now commit Open -> Closed in one step; release claims an interrupted
        # two-step close left behind.
        conn.execute("UPDATE shifts SET status='Open' WHERE status='Closing';")


def q(conn: sqlite3.Connection, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
    with _conn_lock(conn):
        cur = conn.execute(sql, tuple(params))
        rows = cur.fetchall()
        cur.close()
    return rows


def x(conn: sqlite3.Connection, sql: str, params: Iterable[Any] = ()) -> int:
    with _conn_lock(conn):
        cur = conn.execute(sql, tuple(params))
        last = cur.lastrowid
        cur.close()
    return int(last or 0)


def update(conn: sqlite3.Connection, sql: str, params: Iterable[Any] = ()) -> int:
    """Execute an UPDATE and return the number of rows it touched."""
    with _conn_lock(conn):
        cur = conn.execute(sql, tuple(params))
        n = cur.rowcount
        cur.close()
    return int(n)


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """
    BEGIN IMMEDIATE ... COMMIT around the block, ROLLBACK on any exception.

    Nested use joins the outer transaction, so a service that calls another
    service commits (or rolls back) everything together.
    """
    lock = _conn_lock(conn)
    with lock:
        if conn.in_transaction:
            yield conn
            return

        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()


def is_busy(exc: sqlite3.OperationalError) -> bool:
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


def retry_on_busy(fn):
    """
    Retry an outermost service call once when SQLite reports the database
    as locked/busy. The failed attempt has already been rolled back.
    """

    @functools.wraps(fn)
    def wrapper(conn, *args, **kwargs):
        try:
            return fn(conn, *args, **kwargs)
        except sqlite3.OperationalError as e:
            if conn.in_transaction or not is_busy(e):
                raise
            logger.warning("%s: database busy (%s), retrying once", fn.__name__, e)
            return fn(conn, *args, **kwargs)

    return wrapper
