"""
Read-only projections for the dashboards.

Everything here is composed from the batch store, the movement ledger, the
loss records and the shift records; nothing in this module writes.
"""
from __future__ import annotations

from typing import Optional

import pandas as pd

from posledger.db import q
from posledger.models import LossCategory, ShiftOutcome, ShiftStatus
from posledger.services import ledger, losses, shifts
from posledger.services.batches import list_batches
from posledger.services.items import list_items
from posledger.utils import as_iso_date, iso_today, safe_div

STOCK_COLUMNS = [
    "batch_code", "item", "acquired_on", "days_old", "available_qty",
    "unit_cost", "unit_price", "cost_value", "retail_value", "status",
]


def stock_valuation(conn, *, item_id: Optional[int] = None, today: Optional[str] = None) -> pd.DataFrame:
    """Batches with stock on hand, valued at cost and at selling price."""
    names = {i.id: i.name for i in list_items(conn)}
    rows = [
        {
            "batch_code": b.batch_code,
            "item": names.get(b.item_id, str(b.item_id)),
            "acquired_on": b.acquired_on,
            "days_old": b.days_old(today),
            "available_qty": b.available_qty,
            "unit_cost": b.unit_cost,
            "unit_price": b.unit_price,
            "cost_value": round(b.cost_value, 2),
            "retail_value": round(b.retail_value, 2),
            "status": b.status.value,
        }
        for b in list_batches(conn, item_id=item_id, include_sold_out=False)
    ]
    df = pd.DataFrame(rows, columns=STOCK_COLUMNS)
    return df.sort_values(["acquired_on", "batch_code"]).reset_index(drop=True)


def stock_totals(df: pd.DataFrame) -> dict:
    return {
        "active_batches": int((df["available_qty"] > 0).sum()) if not df.empty else 0,
        "total_qty": float(df["available_qty"].sum()) if not df.empty else 0.0,
        "cost_value": float(df["cost_value"].sum()) if not df.empty else 0.0,
        "retail_value": float(df["retail_value"].sum()) if not df.empty else 0.0,
    }


def movement_report(
    conn,
    date_from,
    date_to,
    *,
    item_id: Optional[int] = None,
    search: Optional[str] = None,
) -> pd.DataFrame:
    """Per item per day opening/purchased/issued/returned/adjusted/closing, newest first."""
    rows: list[dict] = []
    for item in list_items(conn, search=search):
        if item_id is not None and item.id != int(item_id):
            continue
        for m in ledger.aggregate(conn, item.id, date_from, date_to):
            rows.append(
                {
                    "movement_date": m.date,
                    "item_code": item.code,
                    "item": item.name,
                    "unit": item.unit,
                    "opening": m.opening,
                    "purchased": m.purchased,
                    "returned": m.returned,
                    "issued": m.issued,
                    "adjusted": m.adjusted,
                    "lost": m.lost,
                    "closing": m.closing,
                    "total_value": m.total_value,
                }
            )
    df = pd.DataFrame(rows)
    if df.empty:
        return df
    return df.sort_values(["movement_date", "item"], ascending=[False, True]).reset_index(drop=True)


def movement_stats(conn, date_from, date_to, *, item_id: Optional[int] = None) -> dict:
    df = movement_report(conn, date_from, date_to, item_id=item_id)
    if df.empty:
        return {"purchased": 0.0, "issued": 0.0, "returned": 0.0, "adjusted": 0.0, "total_value": 0.0}
    return {
        "purchased": float(df["purchased"].sum()),
        "issued": float(df["issued"].sum()),
        "returned": float(df["returned"].sum()),
        # Adjustments in either direction count towards activity.
        "adjusted": float(df["adjusted"].abs().sum()),
        "total_value": float(df["total_value"].sum()),
    }


def low_stock(conn, threshold: float, *, on_date=None) -> pd.DataFrame:
    day = as_iso_date(on_date) if on_date is not None else iso_today()
    rows = []
    for item in list_items(conn):
        bal = ledger.compute_balance(conn, item.id, day)
        if bal.closing <= float(threshold):
            rows.append({"item_code": item.code, "item": item.name, "unit": item.unit, "on_hand": bal.closing})
    return pd.DataFrame(rows, columns=["item_code", "item", "unit", "on_hand"])


def loss_report(conn, date_from, date_to, *, category: Optional[str] = None) -> pd.DataFrame:
    batches = {b.id: b for b in list_batches(conn)}
    names = {i.id: i.name for i in list_items(conn)}
    rows = []
    for rec in losses.list_losses(conn, date_from=date_from, date_to=date_to):
        if category and category != "All" and rec.category.value != category:
            continue
        b = batches.get(rec.batch_id)
        rows.append(
            {
                "loss_date": rec.loss_date,
                "batch_code": b.batch_code if b else str(rec.batch_id),
                "item": names.get(rec.item_id, str(rec.item_id)),
                "quantity": rec.quantity,
                "category": rec.category.value,
                "reason": rec.reason,
                "recorded_by": rec.recorded_by,
                "cost": round(rec.quantity * b.unit_cost, 2) if b else None,
            }
        )
    return pd.DataFrame(
        rows,
        columns=["loss_date", "batch_code", "item", "quantity", "category", "reason", "recorded_by", "cost"],
    )


def loss_totals(conn, date_from, date_to, *, today: Optional[str] = None) -> dict:
    by_cat = losses.category_totals(conn, date_from, date_to)
    day = today or iso_today()
    today_total = sum(losses.category_totals(conn, day, day).values())
    return {
        "by_category": {c.value: by_cat[c] for c in LossCategory},
        "total": float(sum(by_cat.values())),
        "today": float(today_total),
    }


def shift_frame(conn, date_from, date_to, *, shift_type: str = "All") -> pd.DataFrame:
    recs = shifts.list_shifts(
        conn, date_from=date_from, date_to=date_to, shift_type=shift_type, status=ShiftStatus.CLOSED
    )
    return pd.DataFrame(
        [
            {
                "shift_id": s.id,
                "shift_date": s.shift_date,
                "shift_type": s.shift_type,
                "opened_by": s.opened_by,
                "closed_by": s.closed_by,
                "opening_cash": s.opening_cash,
                "total_sales": s.total_sales,
                "total_expenses": s.total_expenses,
                "total_vouchers": s.total_vouchers,
                "net_sales": s.net_sales,
                "expected_cash": s.expected_cash,
                "closing_cash": s.closing_cash,
                "variance": s.variance,
                "outcome": s.outcome.value if s.outcome else None,
            }
            for s in recs
        ]
    )


def shift_summary(conn, date_from, date_to, *, shift_type: str = "All") -> dict:
    df = shift_frame(conn, date_from, date_to, shift_type=shift_type)
    counts = {o.value: 0 for o in ShiftOutcome}
    if df.empty:
        return {
            "total_shifts": 0, "total_sales": 0.0, "total_expenses": 0.0,
            "total_net": 0.0, "total_variance": 0.0, "outcomes": counts,
        }
    counts.update({str(k): int(v) for k, v in df["outcome"].value_counts().items()})
    return {
        "total_shifts": int(len(df)),
        "total_sales": float(df["total_sales"].sum()),
        "total_expenses": float(df["total_expenses"].sum()),
        "total_net": float(df["net_sales"].sum()),
        "total_variance": round(float(df["variance"].sum()), 2),
        "outcomes": counts,
    }


def sales_vs_cogs(conn) -> pd.DataFrame:
    """Per batch: quantity sold, revenue at list price, COGS at unit cost and margin."""
    rows = q(
        conn,
        """
        SELECT b.batch_code, i.name AS item, b.acquired_on,
               b.sold_qty, b.loss_qty, b.unit_cost, b.unit_price
        FROM batches b
        JOIN items i ON i.id = b.item_id
        WHERE b.sold_qty > 0 OR b.loss_qty > 0
        ORDER BY b.acquired_on DESC, b.id DESC
        """,
    )
    df = pd.DataFrame([dict(r) for r in rows])
    if df.empty:
        return df
    df["revenue"] = (df["sold_qty"] * df["unit_price"]).round(2)
    df["cogs"] = (df["sold_qty"] * df["unit_cost"]).round(2)
    df["loss_cost"] = (df["loss_qty"] * df["unit_cost"]).round(2)
    df["gross_margin"] = (df["revenue"] - df["cogs"] - df["loss_cost"]).round(2)
    df["margin_pct"] = [
        round(safe_div(m, r) * 100.0, 1) for m, r in zip(df["gross_margin"], df["revenue"])
    ]
    return df
