from __future__ import annotations

from typing import Optional

from posledger.db import q, x
from posledger.errors import InvalidInput, NotFound
from posledger.models import Item
from posledger.utils import iso_now


def register_item(conn, *, code: str, name: str, unit: str = "KG") -> Item:
    """Insert the item if its code is new; return the stored item either way."""
    code = str(code).strip().upper()
    if not code:
        raise InvalidInput("Item code is required.")
    if not str(name).strip():
        raise InvalidInput("Item name is required.")

    x(
        conn,
        "INSERT OR IGNORE INTO items (code, name, unit, created_at) VALUES (?, ?, ?, ?)",
        (code, str(name).strip(), str(unit).strip().upper() or "KG", iso_now()),
    )
    return get_item_by_code(conn, code)


def get_item(conn, item_id: int) -> Item:
    rows = q(conn, "SELECT * FROM items WHERE id=?", (int(item_id),))
    if not rows:
        raise NotFound(f"Item {item_id} not found.")
    return Item.from_row(rows[0])


def get_item_by_code(conn, code: str) -> Item:
    rows = q(conn, "SELECT * FROM items WHERE code=?", (str(code).strip().upper(),))
    if not rows:
        raise NotFound(f"Item '{code}' not found.")
    return Item.from_row(rows[0])


def list_items(conn, *, search: Optional[str] = None) -> list[Item]:
    if search:
        like = f"%{search.strip()}%"
        rows = q(conn, "SELECT * FROM items WHERE name LIKE ? OR code LIKE ? ORDER BY name", (like, like))
    else:
        rows = q(conn, "SELECT * FROM items ORDER BY name")
    return [Item.from_row(r) for r in rows]
