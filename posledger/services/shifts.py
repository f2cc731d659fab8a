from __future__ import annotations

import logging
import math
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from posledger.db import is_busy, q, retry_on_busy, transaction, update, x
from posledger.errors import AlreadyClosing, InvalidInput, InvalidQuantity, NotFound, ShiftClosed, ShiftNotOpen
from posledger.models import EntryKind, PaymentMethod, ShiftOutcome, ShiftRecord, ShiftStatus
from posledger.utils import as_iso_date, iso_now, money

logger = logging.getLogger(__name__)

DEFAULT_EVENING_HOUR = 14

_TOTAL_COLUMN = {
    EntryKind.SALE: "total_sales",
    EntryKind.EXPENSE: "total_expenses",
    EntryKind.VOUCHER: "total_vouchers",
}


@dataclass(frozen=True)
class Reconciliation:
    net_sales: float
    expected_cash: float
    variance: float
    outcome: ShiftOutcome


def reconcile(
    opening_cash: float,
    total_sales: float,
    total_expenses: float,
    total_vouchers: float,
    closing_cash: float,
) -> Reconciliation:
    """
    Shift close arithmetic.

    Vouchers reduce net sales but not expected cash: they are non-cash
    deductions already netted out of the recorded sales upstream.
    """
    net_sales = money(total_sales - total_expenses - total_vouchers)
    expected = money(opening_cash + total_sales - total_expenses)
    variance = money(closing_cash - expected)
    if variance == 0:
        outcome = ShiftOutcome.BALANCED
    elif variance > 0:
        outcome = ShiftOutcome.OVERAGE
    else:
        outcome = ShiftOutcome.SHORTAGE
    return Reconciliation(net_sales=net_sales, expected_cash=expected, variance=variance, outcome=outcome)


def default_shift_type(hour: int, evening_hour: int = DEFAULT_EVENING_HOUR) -> str:
    return "Morning" if int(hour) < int(evening_hour) else "Evening"


def _cash_amount(amount, label: str, *, allow_zero: bool) -> float:
    try:
        v = float(amount)
    except (TypeError, ValueError):
        raise InvalidQuantity(f"{label} must be a number.")
    if not math.isfinite(v) or v < 0 or (v == 0 and not allow_zero):
        raise InvalidQuantity(f"{label} must be {'>= 0' if allow_zero else '> 0'}.")
    return money(v)


def get_report(conn, shift_id: int) -> ShiftRecord:
    rows = q(conn, "SELECT * FROM shifts WHERE id=?", (int(shift_id),))
    if not rows:
        raise NotFound(f"Shift {shift_id} not found.")
    return ShiftRecord.from_row(rows[0])


def current_shift(conn) -> Optional[ShiftRecord]:
    rows = q(conn, "SELECT * FROM shifts WHERE status=? ORDER BY id DESC LIMIT 1", (ShiftStatus.OPEN.value,))
    return ShiftRecord.from_row(rows[0]) if rows else None


def list_shifts(
    conn,
    *,
    date_from=None,
    date_to=None,
    shift_type: Optional[str] = None,
    status=None,
    limit: Optional[int] = None,
) -> list[ShiftRecord]:
    where, params = ["1=1"], []
    if date_from is not None:
        where.append("shift_date>=?")
        params.append(as_iso_date(date_from))
    if date_to is not None:
        where.append("shift_date<=?")
        params.append(as_iso_date(date_to))
    if shift_type and shift_type != "All":
        where.append("shift_type=?")
        params.append(str(shift_type))
    if status is not None:
        where.append("status=?")
        params.append(ShiftStatus(status).value)
    sql = f"SELECT * FROM shifts WHERE {' AND '.join(where)} ORDER BY shift_date DESC, id DESC"
    if limit:
        sql += f" LIMIT {int(limit)}"
    return [ShiftRecord.from_row(r) for r in q(conn, sql, params)]


@retry_on_busy
def open_shift(
    conn,
    *,
    opening_cash: float,
    opened_by: str,
    shift_date=None,
    shift_type: Optional[str] = None,
    evening_hour: int = DEFAULT_EVENING_HOUR,
) -> ShiftRecord:
    cash = _cash_amount(opening_cash, "Opening cash", allow_zero=True)
    who = str(opened_by or "").strip()
    if not who:
        raise InvalidInput("opened_by is required.")

    now = datetime.now()
    day = as_iso_date(shift_date) if shift_date is not None else now.date().isoformat()
    stype = (shift_type or "").strip() or default_shift_type(now.hour, evening_hour)

    with transaction(conn):
        shift_id = x(
            conn,
            """
            INSERT INTO shifts (shift_date, shift_type, opened_at, opened_by, opening_cash, status)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (day, stype, iso_now(), who, cash, ShiftStatus.OPEN.value),
        )
        shift = get_report(conn, shift_id)

    logger.info("shift %s opened (%s %s) by %s with %.2f", shift.id, day, stype, who, cash)
    return shift


def _post(
    conn,
    shift_id: int,
    kind: EntryKind,
    amount,
    *,
    payment_method: Optional[PaymentMethod] = None,
    reference: Optional[str] = None,
) -> ShiftRecord:
    value = _cash_amount(amount, f"{kind.value.title()} amount", allow_zero=False)
    col = _TOTAL_COLUMN[kind]

    with transaction(conn):
        n = update(
            conn,
            f"UPDATE shifts SET {col}={col}+? WHERE id=? AND status=?",
            (value, int(shift_id), ShiftStatus.OPEN.value),
        )
        if n != 1:
            shift = get_report(conn, shift_id)
            raise ShiftClosed(f"Shift {shift_id} is {shift.status.value}; it no longer accepts entries.")

        x(
            conn,
            """
            INSERT INTO shift_entries (shift_id, kind, amount, payment_method, reference, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                int(shift_id),
                kind.value,
                value,
                payment_method.value if payment_method else None,
                (reference or "").strip() or None,
                iso_now(),
            ),
        )
        shift = get_report(conn, shift_id)

    logger.debug("shift %s: %s %.2f", shift_id, kind.value, value)
    return shift


@retry_on_busy
def record_sale(
    conn,
    shift_id: int,
    amount: float,
    *,
    payment_method: str = "Cash",
    reference: Optional[str] = None,
) -> ShiftRecord:
    return _post(
        conn,
        shift_id,
        EntryKind.SALE,
        amount,
        payment_method=PaymentMethod.classify(payment_method),
        reference=reference,
    )


@retry_on_busy
def record_expense(conn, shift_id: int, amount: float, *, reference: Optional[str] = None) -> ShiftRecord:
    return _post(conn, shift_id, EntryKind.EXPENSE, amount, reference=reference)


@retry_on_busy
def record_voucher(conn, shift_id: int, amount: float, *, reference: Optional[str] = None) -> ShiftRecord:
    return _post(conn, shift_id, EntryKind.VOUCHER, amount, reference=reference)


@retry_on_busy
def _finalize_close(conn, shift_id: int, counted: float, who: str) -> tuple[ShiftRecord, Reconciliation]:
    with transaction(conn):
        shift = get_report(conn, shift_id)
        if shift.status is ShiftStatus.CLOSED:
            raise ShiftNotOpen(f"Shift {shift_id} is already closed.")
        if shift.status is ShiftStatus.CLOSING:
            logger.warning("shift %s: taking over an interrupted close", shift_id)

        rec = reconcile(
            shift.opening_cash,
            shift.total_sales,
            shift.total_expenses,
            shift.total_vouchers,
            counted,
        )
        update(
            conn,
            """
            UPDATE shifts
            SET closing_cash=?, net_sales=?, expected_cash=?, variance=?, outcome=?,
                closed_at=?, closed_by=?, status=?
            WHERE id=? AND status IN (?, ?)
            """,
            (
                counted,
                rec.net_sales,
                rec.expected_cash,
                rec.variance,
                rec.outcome.value,
                iso_now(),
                who,
                ShiftStatus.CLOSED.value,
                int(shift_id),
                ShiftStatus.OPEN.value,
                ShiftStatus.CLOSING.value,
            ),
        )
        return get_report(conn, shift_id), rec


def close_shift(conn, shift_id: int, closing_cash_counted: float, *, closed_by: str) -> ShiftRecord:
    """
    Close an Open shift against the physically counted cash.

    Reading the totals, computing the variance and writing the Closed row share
    one BEGIN IMMEDIATE transaction. A second closer waits for the first and then
    gets ShiftNotOpen; if the write lock is still held after the retry it gets
    AlreadyClosing. A close that fails part way leaves the shift Open. Once
    Closed, the computed fields never change.
    """
    counted = _cash_amount(closing_cash_counted, "Closing cash", allow_zero=True)
    who = str(closed_by or "").strip()
    if not who:
        raise InvalidInput("closed_by is required.")

    try:
        closed, rec = _finalize_close(conn, shift_id, counted, who)
    except sqlite3.OperationalError as e:
        if conn.in_transaction or not is_busy(e):
            raise
        logger.warning("shift %s: close rejected, database still locked (%s)", shift_id, e)
        raise AlreadyClosing(f"Shift {shift_id} is being closed or written elsewhere; try again.")

    logger.info(
        "shift %s closed by %s: expected %.2f counted %.2f variance %+.2f (%s)",
        shift_id, who, rec.expected_cash, counted, rec.variance, rec.outcome.value,
    )
    return closed


def list_entries(conn, shift_id: int, *, kind=None) -> list[dict]:
    params: list = [int(shift_id)]
    sql = "SELECT id, kind, amount, payment_method, reference, created_at FROM shift_entries WHERE shift_id=?"
    if kind is not None:
        sql += " AND kind=?"
        params.append(EntryKind(kind).value)
    return [dict(r) for r in q(conn, sql + " ORDER BY id", params)]


def payment_breakdown(conn, shift_id: int) -> dict[PaymentMethod, float]:
    get_report(conn, shift_id)
    totals = {m: 0.0 for m in PaymentMethod}
    rows = q(
        conn,
        """
        SELECT payment_method, COALESCE(SUM(amount),0) AS amount
        FROM shift_entries
        WHERE shift_id=? AND kind=?
        GROUP BY payment_method
        """,
        (int(shift_id), EntryKind.SALE.value),
    )
    for r in rows:
        totals[PaymentMethod.classify(r["payment_method"])] += float(r["amount"])
    return {m: money(v) for m, v in totals.items()}
