from __future__ import annotations

import logging
import math
from typing import Optional

from posledger.db import q, retry_on_busy, transaction, update, x
from posledger.errors import InsufficientStock, InvalidAdjustment, InvalidInput, InvalidQuantity, NotFound
from posledger.models import Batch, BatchStatus, DepletionResult, MovementType
from posledger.services import ledger
from posledger.services.items import get_item
from posledger.utils import as_iso_date, iso_now, iso_today, qty

logger = logging.getLogger(__name__)

_EPS = 1e-9


def positive_qty(quantity, label: str = "Quantity") -> float:
    try:
        v = float(quantity)
    except (TypeError, ValueError):
        raise InvalidQuantity(f"{label} must be a number.")
    if not math.isfinite(v) or qty(v) <= 0:
        raise InvalidQuantity(f"{label} must be > 0.")
    return qty(v)


def _money(value, label: str) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{label} must be a number.")
    if not math.isfinite(v) or v < 0:
        raise InvalidInput(f"{label} cannot be negative.")
    return v


def get_batch(conn, batch_id: int) -> Batch:
    rows = q(conn, "SELECT * FROM batches WHERE id=?", (int(batch_id),))
    if not rows:
        raise NotFound(f"Batch {batch_id} not found.")
    return Batch.from_row(rows[0])


def list_batches(conn, *, item_id: Optional[int] = None, include_sold_out: bool = True) -> list[Batch]:
    where, params = ["1=1"], []
    if item_id is not None:
        where.append("item_id=?")
        params.append(int(item_id))
    if not include_sold_out:
        where.append("status=?")
        params.append(BatchStatus.AVAILABLE.value)
    rows = q(conn, f"SELECT * FROM batches WHERE {' AND '.join(where)} ORDER BY id DESC", params)
    return [Batch.from_row(r) for r in rows]


def list_available(conn, item_id: int) -> list[Batch]:
    """FIFO helper: batches of the item with stock on hand, oldest acquisition first."""
    rows = q(
        conn,
        """
        SELECT *
        FROM batches
        WHERE item_id=?
          AND status=?
          AND available_qty > 0
        ORDER BY acquired_on ASC, id ASC
        """,
        (int(item_id), BatchStatus.AVAILABLE.value),
    )
    return [Batch.from_row(r) for r in rows]


def _generate_batch_code(conn, acquired_on: str) -> str:
    """
    System code:
      STK-{YYYYMMDD}-{NNN}

    Example:
      STK-20260218-001
    """
    prefix = f"STK-{acquired_on.replace('-', '')}-"
    # Highest numeric suffix in use, not a row count.
    n = 0
    for r in q(conn, "SELECT batch_code FROM batches WHERE batch_code LIKE ?", (prefix + "%",)):
        suffix = str(r["batch_code"])[len(prefix):]
        if suffix.isdigit():
            n = max(n, int(suffix))
    return f"{prefix}{n + 1:03d}"


@retry_on_busy
def create_batch(
    conn,
    *,
    item_id: int,
    initial_qty: float,
    unit_cost: float,
    unit_price: float,
    supplier: Optional[str] = None,
    acquired_on=None,
    batch_code: Optional[str] = None,
) -> Batch:
    initial = positive_qty(initial_qty, "Initial quantity")
    cost = _money(unit_cost, "Unit cost")
    price = _money(unit_price, "Unit price")
    day = as_iso_date(acquired_on) if acquired_on is not None else iso_today()
    supplier = (supplier or "").strip() or None

    with transaction(conn):
        get_item(conn, item_id)
        code = (batch_code or "").strip() or _generate_batch_code(conn, day)
        if q(conn, "SELECT 1 FROM batches WHERE batch_code=?", (code,)):
            raise InvalidInput(f"Batch code {code} already exists.")
        now = iso_now()
        batch_id = x(
            conn,
            """
            INSERT INTO batches (
                batch_code, item_id, acquired_on, supplier,
                initial_qty, available_qty, unit_cost, unit_price,
                status, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (code, int(item_id), day, supplier, initial, initial, cost, price, BatchStatus.AVAILABLE.value, now, now),
        )
        batch = get_batch(conn, batch_id)

    logger.info("batch %s created: item=%s qty=%g cost=%g", batch.batch_code, item_id, initial, cost)
    return batch


@retry_on_busy
def receive_batch(conn, **kwargs) -> Batch:
    """Purchase intake: create the batch and post its Purchase movement together."""
    with transaction(conn):
        batch = create_batch(conn, **kwargs)
        ledger.append(
            conn,
            batch.item_id,
            batch.acquired_on,
            MovementType.PURCHASE,
            batch.initial_qty,
            unit_value=batch.unit_cost,
            batch_id=batch.id,
            reason=f"Received {batch.batch_code}",
        )
    return batch


def _apply_depletion(conn, batch: Batch, quantity: float, *, counter: str) -> DepletionResult:
    if quantity > batch.available_qty + _EPS:
        raise InsufficientStock(
            f"Batch {batch.batch_code}: requested {quantity:g}, only {batch.available_qty:g} available."
        )

    remaining = qty(batch.available_qty - quantity)
    if remaining < _EPS:
        remaining = 0.0
    status = BatchStatus.SOLD_OUT if remaining == 0 else BatchStatus.AVAILABLE

    # Compare-and-swap on the quantity we read.
    n = update(
        conn,
        f"""
        UPDATE batches
        SET available_qty=?, {counter}={counter}+?, status=?, updated_at=?
        WHERE id=? AND available_qty=?
        """,
        (remaining, quantity, status.value, iso_now(), batch.id, batch.available_qty),
    )
    if n != 1:
        raise InsufficientStock(f"Batch {batch.batch_code} changed while depleting; stock no longer available.")

    return DepletionResult(
        batch_id=batch.id,
        quantity=quantity,
        unit_cost=batch.unit_cost,
        remaining_qty=remaining,
        sold_out=status is BatchStatus.SOLD_OUT,
    )


@retry_on_busy
def deplete(conn, batch_id: int, quantity: float, *, as_loss: bool = False) -> DepletionResult:
    """
    Take quantity out of one batch. Fails with InsufficientStock (and changes
    nothing) when the batch holds less than requested.
    """
    amount = positive_qty(quantity)
    with transaction(conn):
        batch = get_batch(conn, batch_id)
        res = _apply_depletion(conn, batch, amount, counter="loss_qty" if as_loss else "sold_qty")

    logger.info(
        "batch %s depleted by %g (%s), remaining %g",
        batch.batch_code, amount, "loss" if as_loss else "sale", res.remaining_qty,
    )
    return res


@retry_on_busy
def deplete_fifo(
    conn,
    item_id: int,
    quantity: float,
    *,
    movement_date=None,
    reason: str = "Sale",
) -> list[DepletionResult]:
    """
    Satisfy quantity from the item's oldest batches first, splitting across
    batches when needed. All or nothing: if the open batches cannot cover the
    full quantity nothing is touched.

    When movement_date is given an Issue movement is posted per batch used.
    """
    amount = positive_qty(quantity)

    with transaction(conn):
        get_item(conn, item_id)
        fifo = list_available(conn, item_id)
        on_hand = qty(sum(b.available_qty for b in fifo))
        if amount > on_hand + _EPS:
            raise InsufficientStock(f"Item {item_id}: requested {amount:g}, only {on_hand:g} on hand across batches.")

        remaining = amount
        results: list[DepletionResult] = []
        for b in fifo:
            if remaining <= _EPS:
                break
            take = qty(min(remaining, b.available_qty))
            if take <= 0:
                continue
            res = _apply_depletion(conn, b, take, counter="sold_qty")
            results.append(res)
            remaining = qty(remaining - take)

            if movement_date is not None:
                ledger.append(
                    conn,
                    item_id,
                    movement_date,
                    MovementType.ISSUE,
                    -take,
                    unit_value=b.unit_cost,
                    batch_id=b.id,
                    reason=reason,
                )

    logger.info("fifo depletion item=%s qty=%g across %d batch(es)", item_id, amount, len(results))
    return results


@retry_on_busy
def adjust_available(
    conn,
    batch_id: int,
    delta: float,
    reason: str,
    *,
    movement_date=None,
) -> Batch:
    """
    Manual correction of a batch's available quantity. The result must stay
    within [0, initial_qty]; growing stock beyond the remaining-from-initial
    is a new intake, not an adjustment.
    """
    try:
        d = float(delta)
    except (TypeError, ValueError):
        raise InvalidAdjustment("Adjustment must be a number.")
    if not math.isfinite(d) or qty(d) == 0:
        raise InvalidAdjustment("Adjustment must be a non-zero number.")
    d = qty(d)
    if not str(reason or "").strip():
        raise InvalidAdjustment("A reason is required for batch adjustments.")

    with transaction(conn):
        batch = get_batch(conn, batch_id)
        after = qty(batch.available_qty + d)
        if after < 0:
            raise InvalidAdjustment(
                f"Batch {batch.batch_code}: adjustment {d:+g} would leave {after:g} (below zero)."
            )
        if after > batch.initial_qty + _EPS:
            raise InvalidAdjustment(
                f"Batch {batch.batch_code}: adjustment {d:+g} would exceed the initial quantity {batch.initial_qty:g}."
            )

        status = BatchStatus.SOLD_OUT if after == 0 else BatchStatus.AVAILABLE
        n = update(
            conn,
            "UPDATE batches SET available_qty=?, status=?, updated_at=? WHERE id=? AND available_qty=?",
            (after, status.value, iso_now(), batch.id, batch.available_qty),
        )
        if n != 1:
            raise InvalidAdjustment(f"Batch {batch.batch_code} changed concurrently; re-read and retry.")

        x(
            conn,
            """
            INSERT INTO batch_adjustments (batch_id, ts, delta, before_qty, after_qty, reason)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (batch.id, iso_now(), d, batch.available_qty, after, str(reason).strip()),
        )

        if movement_date is not None:
            ledger.append(
                conn,
                batch.item_id,
                movement_date,
                MovementType.ADJUSTMENT,
                d,
                unit_value=batch.unit_cost,
                batch_id=batch.id,
                reason=str(reason).strip(),
            )

        updated = get_batch(conn, batch.id)

    logger.info("batch %s adjusted %+g (%s)", batch.batch_code, d, reason)
    return updated
