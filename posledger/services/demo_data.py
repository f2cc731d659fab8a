from __future__ import annotations

import random
from datetime import date, timedelta

from posledger.config import invalidate_company_profile, save_company_profile
from posledger.db import ensure_schema, q, transaction
from posledger.models import MovementType
from posledger.services import ledger, losses, shifts
from posledger.services.batches import deplete_fifo, receive_batch
from posledger.services.items import register_item


DEFAULT_ITEMS = [
    ("BEEF", "Beef", "KG"),
    ("GOAT", "Goat", "KG"),
    ("CHICKEN", "Chicken", "KG"),
    ("ONION", "Onions", "KG"),
    ("OIL", "Cooking Oil", "LTR"),
]

DEFAULT_PROFILE = {
    "company_name": "Alpha Butchery & Grill",
    "country": "Kenya",
    "currency_code": "KES",
    "currency_symbol": "KSh",
}


def upsert_reference_data(conn) -> None:
    ensure_schema(conn)

    for code, name, unit in DEFAULT_ITEMS:
        register_item(conn, code=code, name=name, unit=unit)

    if not q(conn, "SELECT 1 FROM organisation_settings LIMIT 1"):
        save_company_profile(conn, DEFAULT_PROFILE)


def wipe_all(conn) -> None:
    # Keep schema, delete data (order matters for FKs).
    with transaction(conn):
        for t in [
            "shift_entries", "shifts", "loss_records", "batch_adjustments",
            "movements", "batches", "items", "organisation_settings",
        ]:
            conn.execute(f"DELETE FROM {t};")
    invalidate_company_profile()


def load_demo_data(conn, *, seed: int = 7) -> None:
    random.seed(seed)
    upsert_reference_data(conn)

    items = {r["code"]: int(r["id"]) for r in q(conn, "SELECT id, code FROM items")}
    base_date = date.today() - timedelta(days=3)

    # Meat batches over the last few days
    for i, code in enumerate(["BEEF", "BEEF", "GOAT", "CHICKEN"]):
        receive_batch(
            conn,
            item_id=items[code],
            initial_qty=round(random.uniform(40, 90), 1),
            unit_cost=random.choice([480.0, 520.0, 610.0]),
            unit_price=random.choice([650.0, 700.0, 780.0]),
            supplier="Kiambu Abattoir",
            acquired_on=(base_date + timedelta(days=i % 3)).isoformat(),
        )

    # Ingredients with opening balances and recipe issues
    for code in ["ONION", "OIL"]:
        ledger.append(conn, items[code], base_date, MovementType.OPENING_BALANCE, random.randint(10, 30))
        ledger.append(conn, items[code], base_date + timedelta(days=1), MovementType.PURCHASE, 20, unit_value=90.0)
        ledger.append(
            conn, items[code], base_date + timedelta(days=2), MovementType.ISSUE, -random.randint(5, 12),
            reason="Recipe: Nyama choma",
        )

    # A closed shift with FIFO sales, plus some weight loss
    shift = shifts.open_shift(
        conn, opening_cash=5000, opened_by="Demo Cashier", shift_date=base_date + timedelta(days=2)
    )
    for _ in range(6):
        kg = round(random.uniform(1.0, 4.0), 2)
        deplete_fifo(conn, items["BEEF"], kg, movement_date=shift.shift_date)
        shifts.record_sale(
            conn, shift.id, round(kg * 700, 2), payment_method=random.choice(["Cash", "M-Pesa", "Card"])
        )
    shifts.record_expense(conn, shift.id, 850, reference="Charcoal")
    shifts.record_voucher(conn, shift.id, 200, reference="Staff meal")

    beef_batch = q(conn, "SELECT id FROM batches WHERE item_id=? ORDER BY acquired_on, id LIMIT 1", (items["BEEF"],))
    if beef_batch:
        losses.record_loss(
            conn, int(beef_batch[0]["id"]), 1.5, "Drying",
            recorded_by="Demo Clerk", reason="Overnight cold room", loss_date=shift.shift_date,
        )

    report = shifts.get_report(conn, shift.id)
    counted = report.opening_cash + report.total_sales - report.total_expenses + random.choice([-100, 0, 50])
    shifts.close_shift(conn, shift.id, counted, closed_by="Demo Supervisor")
