import pytest

from posledger.config import invalidate_company_profile
from posledger.db import connect, ensure_schema
from posledger.services.items import register_item


@pytest.fixture
def conn(tmp_path):
    c = connect(tmp_path / "test.db")
    ensure_schema(c)
    invalidate_company_profile()
    yield c
    c.close()


@pytest.fixture
def beef(conn):
    return register_item(conn, code="BEEF", name="Beef", unit="KG")


@pytest.fixture
def onion(conn):
    return register_item(conn, code="ONION", name="Onions", unit="KG")


@pytest.fixture
def other_conn(tmp_path, conn):
    """A second connection to the same database file, like a second till."""
    c = connect(tmp_path / "test.db", timeout=2.0)
    yield c
    c.close()
