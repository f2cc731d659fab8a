from __future__ import annotations

import logging
from typing import Optional

from posledger.db import q, retry_on_busy, transaction, x
from posledger.errors import InvalidInput
from posledger.models import LossCategory, LossRecord, MovementType
from posledger.services import ledger
from posledger.services.batches import positive_qty, deplete, get_batch
from posledger.utils import as_iso_date, iso_now, iso_today

logger = logging.getLogger(__name__)


def _normalize_category(category) -> LossCategory:
    if isinstance(category, LossCategory):
        return category
    raw = str(category or "").strip().title()
    try:
        return LossCategory(raw)
    except ValueError:
        allowed = ", ".join(c.value for c in LossCategory)
        raise InvalidInput(f"Unknown loss category '{category}'. Use one of: {allowed}.")


@retry_on_busy
def record_loss(
    conn,
    batch_id: int,
    quantity: float,
    category,
    *,
    recorded_by: str,
    reason: Optional[str] = None,
    loss_date=None,
) -> LossRecord:
    """
    Record drying/bone/trim/spoilage loss against a batch.

    The batch decrement, the Loss movement and the loss record are written in
    one transaction; a loss larger than the batch's available quantity fails
    with InsufficientStock before anything is written.
    """
    amount = positive_qty(quantity, "Loss quantity")
    cat = _normalize_category(category)
    who = str(recorded_by or "").strip()
    if not who:
        raise InvalidInput("recorded_by is required.")
    day = as_iso_date(loss_date) if loss_date is not None else iso_today()
    note = (reason or "").strip() or None

    with transaction(conn):
        batch = get_batch(conn, batch_id)
        deplete(conn, batch.id, amount, as_loss=True)
        entry = ledger.append(
            conn,
            batch.item_id,
            day,
            MovementType.LOSS,
            -amount,
            unit_value=batch.unit_cost,
            batch_id=batch.id,
            reason=f"{cat.value}: {note}" if note else cat.value,
        )
        now = iso_now()
        loss_id = x(
            conn,
            """
            INSERT INTO loss_records (
                batch_id, item_id, movement_id, quantity, category,
                reason, recorded_by, recorded_at, loss_date
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (batch.id, batch.item_id, entry.id, amount, cat.value, note, who, now, day),
        )

    logger.info("loss %s: batch %s -%g by %s", cat.value, batch.batch_code, amount, who)
    return LossRecord(
        id=int(loss_id),
        batch_id=batch.id,
        item_id=batch.item_id,
        movement_id=entry.id,
        quantity=amount,
        category=cat,
        reason=note,
        recorded_by=who,
        recorded_at=now,
        loss_date=day,
    )


def category_totals(conn, date_from, date_to) -> dict[LossCategory, float]:
    totals = {c: 0.0 for c in LossCategory}
    rows = q(
        conn,
        """
        SELECT category, COALESCE(SUM(quantity),0) AS qty
        FROM loss_records
        WHERE loss_date BETWEEN ? AND ?
        GROUP BY category
        """,
        (as_iso_date(date_from), as_iso_date(date_to)),
    )
    for r in rows:
        totals[LossCategory(r["category"])] = float(r["qty"])
    return totals


def list_losses(
    conn,
    *,
    date_from=None,
    date_to=None,
    batch_id: Optional[int] = None,
) -> list[LossRecord]:
    where, params = ["1=1"], []
    if date_from is not None:
        where.append("loss_date>=?")
        params.append(as_iso_date(date_from))
    if date_to is not None:
        where.append("loss_date<=?")
        params.append(as_iso_date(date_to))
    if batch_id is not None:
        where.append("batch_id=?")
        params.append(int(batch_id))
    rows = q(conn, f"SELECT * FROM loss_records WHERE {' AND '.join(where)} ORDER BY id DESC", params)
    return [LossRecord.from_row(r) for r in rows]
