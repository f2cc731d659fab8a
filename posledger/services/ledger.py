from __future__ import annotations

import logging
import math
from collections import defaultdict
from typing import Optional

from posledger.db import q, retry_on_busy, transaction, x
from posledger.errors import InsufficientStock, InvalidInput, InvalidQuantity
from posledger.models import Balance, MovementEntry, MovementRow, MovementType
from posledger.services.items import get_item
from posledger.utils import as_iso_date, iso_now, qty

logger = logging.getLogger(__name__)

_EPS = 1e-9

# Which sign each movement type must carry.
_OUTBOUND = {MovementType.ISSUE, MovementType.RETURN, MovementType.LOSS}


def _validate_delta(mtype: MovementType, delta: float) -> float:
    try:
        d = float(delta)
    except (TypeError, ValueError):
        raise InvalidQuantity("Quantity must be a number.")
    if not math.isfinite(d):
        raise InvalidQuantity("Quantity must be finite.")
    d = qty(d)

    if mtype is MovementType.OPENING_BALANCE:
        if d < 0:
            raise InvalidQuantity("Opening balance cannot be negative.")
    elif d == 0:
        raise InvalidQuantity(f"{mtype.value} quantity must be non-zero.")
    elif mtype is MovementType.PURCHASE and d < 0:
        raise InvalidQuantity("Purchase quantity must be > 0.")
    elif mtype in _OUTBOUND and d > 0:
        raise InvalidQuantity(f"{mtype.value} must be posted as a negative delta.")
    return d


def _lowest_balance_from(conn, item_id: int, movement_date: str) -> float:
    """Lowest closing balance on or after movement_date (the opening if no later entries)."""
    running = _sum_before(conn, item_id, movement_date)
    lowest = running
    rows = q(
        conn,
        """
        SELECT movement_date, SUM(delta) AS day_delta
        FROM movements
        WHERE item_id=? AND movement_date>=?
        GROUP BY movement_date
        ORDER BY movement_date
        """,
        (int(item_id), movement_date),
    )
    for r in rows:
        running += float(r["day_delta"])
        lowest = min(lowest, running)
    return lowest


@retry_on_busy
def append(
    conn,
    item_id: int,
    movement_date,
    mtype,
    delta: float,
    *,
    unit_value: Optional[float] = None,
    batch_id: Optional[int] = None,
    reason: Optional[str] = None,
    require_stock: bool = False,
) -> MovementEntry:
    """
    Append one immutable ledger line.

    With require_stock=True a negative delta is rejected (InsufficientStock)
    when it would take the item's balance below zero on its date or on any
    later date that already has entries.
    """
    mtype = MovementType(mtype)
    d = _validate_delta(mtype, delta)
    day = as_iso_date(movement_date)
    if unit_value is not None:
        unit_value = float(unit_value)
        if unit_value < 0:
            raise InvalidQuantity("Unit value cannot be negative.")

    with transaction(conn):
        get_item(conn, item_id)

        if require_stock and d < 0:
            lowest = _lowest_balance_from(conn, int(item_id), day)
            if lowest + d < -_EPS:
                raise InsufficientStock(
                    f"{mtype.value} of {-d:g} would take item {item_id} below zero (lowest balance {lowest:g})."
                )

        entry_id = x(
            conn,
            """
            INSERT INTO movements (item_id, movement_date, type, delta, unit_value, batch_id, reason, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                int(item_id),
                day,
                mtype.value,
                d,
                unit_value,
                int(batch_id) if batch_id is not None else None,
                (reason or "").strip() or None,
                iso_now(),
            ),
        )

    logger.info("ledger: item=%s %s %s %+g", item_id, day, mtype.value, d)
    return MovementEntry(
        id=int(entry_id),
        item_id=int(item_id),
        movement_date=day,
        type=mtype,
        delta=d,
        unit_value=unit_value,
        batch_id=int(batch_id) if batch_id is not None else None,
        reason=(reason or "").strip() or None,
    )


def _sum_before(conn, item_id: int, day: str) -> float:
    r = q(
        conn,
        "SELECT COALESCE(SUM(delta),0) AS s FROM movements WHERE item_id=? AND movement_date<?",
        (int(item_id), day),
    )[0]
    return float(r["s"])


def compute_balance(conn, item_id: int, on_date) -> Balance:
    day = as_iso_date(on_date)
    get_item(conn, item_id)

    opening = _sum_before(conn, item_id, day)
    r = q(
        conn,
        "SELECT COALESCE(SUM(delta),0) AS s FROM movements WHERE item_id=? AND movement_date=?",
        (int(item_id), day),
    )[0]
    closing = opening + float(r["s"])
    logger.debug("balance: item=%s %s opening=%g closing=%g", item_id, day, opening, closing)
    return Balance(item_id=int(item_id), date=day, opening=qty(opening), closing=qty(closing))


def aggregate(conn, item_id: int, date_from, date_to) -> list[MovementRow]:
    """
    One row per date in [date_from, date_to] that has entries, oldest first.
    Each row's opening is the previous row's closing.
    """
    d_from, d_to = as_iso_date(date_from), as_iso_date(date_to)
    if d_from > d_to:
        raise InvalidInput("date_from must be on or before date_to.")
    get_item(conn, item_id)

    rows = q(
        conn,
        """
        SELECT movement_date, type,
               SUM(delta) AS qty,
               SUM(CASE WHEN unit_value IS NULL THEN 0 ELSE delta * unit_value END) AS value
        FROM movements
        WHERE item_id=? AND movement_date BETWEEN ? AND ?
        GROUP BY movement_date, type
        ORDER BY movement_date
        """,
        (int(item_id), d_from, d_to),
    )

    by_day: dict[str, dict[MovementType, tuple[float, float]]] = defaultdict(dict)
    for r in rows:
        by_day[str(r["movement_date"])][MovementType(r["type"])] = (float(r["qty"]), float(r["value"]))

    out: list[MovementRow] = []
    opening = _sum_before(conn, item_id, d_from)
    for day in sorted(by_day):
        t = by_day[day]

        def _q(mt: MovementType) -> float:
            return t.get(mt, (0.0, 0.0))[0]

        purchased = _q(MovementType.PURCHASE)
        issued = -_q(MovementType.ISSUE)
        returned = -_q(MovementType.RETURN)
        lost = -_q(MovementType.LOSS)
        adjusted = _q(MovementType.ADJUSTMENT) + _q(MovementType.OPENING_BALANCE) - lost
        closing = opening + purchased - returned - issued + adjusted

        out.append(
            MovementRow(
                date=day,
                opening=qty(opening),
                purchased=qty(purchased),
                issued=qty(issued),
                returned=qty(returned),
                adjusted=qty(adjusted),
                lost=qty(lost),
                closing=qty(closing),
                total_value=round(t.get(MovementType.PURCHASE, (0.0, 0.0))[1], 2),
            )
        )
        opening = closing
    return out


def list_entries(
    conn,
    *,
    item_id: Optional[int] = None,
    date_from=None,
    date_to=None,
    mtype=None,
) -> list[MovementEntry]:
    where, params = ["1=1"], []
    if item_id is not None:
        where.append("item_id=?")
        params.append(int(item_id))
    if date_from is not None:
        where.append("movement_date>=?")
        params.append(as_iso_date(date_from))
    if date_to is not None:
        where.append("movement_date<=?")
        params.append(as_iso_date(date_to))
    if mtype is not None:
        where.append("type=?")
        params.append(MovementType(mtype).value)

    rows = q(
        conn,
        f"SELECT * FROM movements WHERE {' AND '.join(where)} ORDER BY movement_date, id",
        params,
    )
    return [MovementEntry.from_row(r) for r in rows]
