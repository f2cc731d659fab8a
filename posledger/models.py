"""Typed projections returned by the services.

Pages and collaborators only ever see these, never raw ``sqlite3.Row``s.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional

from posledger.utils import days_between


class BatchStatus(str, Enum):
    AVAILABLE = "Available"
    SOLD_OUT = "Sold Out"


class MovementType(str, Enum):
    PURCHASE = "Purchase"
    ISSUE = "Issue"
    RETURN = "Return"
    ADJUSTMENT = "Adjustment"
    LOSS = "Loss"
    OPENING_BALANCE = "OpeningBalance"


class LossCategory(str, Enum):
    DRYING = "Drying"
    BONE = "Bone"
    TRIM = "Trim"
    SPOILAGE = "Spoilage"
    OTHER = "Other"


class ShiftStatus(str, Enum):
    OPEN = "Open"
    CLOSING = "Closing"
    CLOSED = "Closed"


class ShiftOutcome(str, Enum):
    BALANCED = "Balanced"
    OVERAGE = "Overage"
    SHORTAGE = "Shortage"


class PaymentMethod(str, Enum):
    CASH = "Cash"
    MPESA = "M-Pesa"
    CARD = "Card"
    CREDIT = "Credit"

    @classmethod
    def classify(cls, raw: Optional[str]) -> "PaymentMethod":
        """Map a free-text payment mode onto the four report buckets.

        Anything unrecognised counts as cash, the way the till reports it.
        """
        if isinstance(raw, cls):
            return raw
        m = str(raw or "").strip().upper()
        if "MPESA" in m or "M-PESA" in m:
            return cls.MPESA
        if "CARD" in m:
            return cls.CARD
        if "CREDIT" in m:
            return cls.CREDIT
        return cls.CASH


class EntryKind(str, Enum):
    SALE = "SALE"
    EXPENSE = "EXPENSE"
    VOUCHER = "VOUCHER"


@dataclass(frozen=True)
class Item:
    id: int
    code: str
    name: str
    unit: str

    @classmethod
    def from_row(cls, r) -> "Item":
        return cls(id=int(r["id"]), code=str(r["code"]), name=str(r["name"]), unit=str(r["unit"]))


@dataclass(frozen=True)
class Batch:
    id: int
    batch_code: str
    item_id: int
    acquired_on: str
    initial_qty: float
    available_qty: float
    sold_qty: float
    loss_qty: float
    unit_cost: float
    unit_price: float
    supplier: Optional[str]
    status: BatchStatus

    @classmethod
    def from_row(cls, r) -> "Batch":
        return cls(
            id=int(r["id"]),
            batch_code=str(r["batch_code"]),
            item_id=int(r["item_id"]),
            acquired_on=str(r["acquired_on"]),
            initial_qty=float(r["initial_qty"]),
            available_qty=float(r["available_qty"]),
            sold_qty=float(r["sold_qty"]),
            loss_qty=float(r["loss_qty"]),
            unit_cost=float(r["unit_cost"]),
            unit_price=float(r["unit_price"]),
            supplier=r["supplier"],
            status=BatchStatus(r["status"]),
        )

    def days_old(self, today: Optional[str] = None) -> int:
        return days_between(self.acquired_on, today or date.today().isoformat())

    @property
    def cost_value(self) -> float:
        return self.available_qty * self.unit_cost

    @property
    def retail_value(self) -> float:
        return self.available_qty * self.unit_price


@dataclass(frozen=True)
class DepletionResult:
    batch_id: int
    quantity: float
    unit_cost: float
    remaining_qty: float
    sold_out: bool

    @property
    def cost(self) -> float:
        return self.quantity * self.unit_cost


@dataclass(frozen=True)
class MovementEntry:
    id: int
    item_id: int
    movement_date: str
    type: MovementType
    delta: float
    unit_value: Optional[float]
    batch_id: Optional[int]
    reason: Optional[str]

    @classmethod
    def from_row(cls, r) -> "MovementEntry":
        return cls(
            id=int(r["id"]),
            item_id=int(r["item_id"]),
            movement_date=str(r["movement_date"]),
            type=MovementType(r["type"]),
            delta=float(r["delta"]),
            unit_value=float(r["unit_value"]) if r["unit_value"] is not None else None,
            batch_id=int(r["batch_id"]) if r["batch_id"] is not None else None,
            reason=r["reason"],
        )


@dataclass(frozen=True)
class Balance:
    item_id: int
    date: str
    opening: float
    closing: float


@dataclass(frozen=True)
class MovementRow:
    date: str
    opening: float
    purchased: float
    issued: float
    returned: float
    adjusted: float
    lost: float
    closing: float
    total_value: float


@dataclass(frozen=True)
class LossRecord:
    id: int
    batch_id: int
    item_id: int
    movement_id: int
    quantity: float
    category: LossCategory
    reason: Optional[str]
    recorded_by: str
    recorded_at: str
    loss_date: str

    @classmethod
    def from_row(cls, r) -> "LossRecord":
        return cls(
            id=int(r["id"]),
            batch_id=int(r["batch_id"]),
            item_id=int(r["item_id"]),
            movement_id=int(r["movement_id"]),
            quantity=float(r["quantity"]),
            category=LossCategory(r["category"]),
            reason=r["reason"],
            recorded_by=str(r["recorded_by"]),
            recorded_at=str(r["recorded_at"]),
            loss_date=str(r["loss_date"]),
        )


def _opt_float(v) -> Optional[float]:
    return float(v) if v is not None else None


@dataclass(frozen=True)
class ShiftRecord:
    id: int
    shift_date: str
    shift_type: str
    opened_at: str
    opened_by: str
    closed_at: Optional[str]
    closed_by: Optional[str]
    opening_cash: float
    total_sales: float
    total_expenses: float
    total_vouchers: float
    closing_cash: Optional[float]
    net_sales: Optional[float]
    expected_cash: Optional[float]
    variance: Optional[float]
    outcome: Optional[ShiftOutcome]
    status: ShiftStatus

    @classmethod
    def from_row(cls, r) -> "ShiftRecord":
        return cls(
            id=int(r["id"]),
            shift_date=str(r["shift_date"]),
            shift_type=str(r["shift_type"]),
            opened_at=str(r["opened_at"]),
            opened_by=str(r["opened_by"]),
            closed_at=r["closed_at"],
            closed_by=r["closed_by"],
            opening_cash=float(r["opening_cash"]),
            total_sales=float(r["total_sales"]),
            total_expenses=float(r["total_expenses"]),
            total_vouchers=float(r["total_vouchers"]),
            closing_cash=_opt_float(r["closing_cash"]),
            net_sales=_opt_float(r["net_sales"]),
            expected_cash=_opt_float(r["expected_cash"]),
            variance=_opt_float(r["variance"]),
            outcome=ShiftOutcome(r["outcome"]) if r["outcome"] else None,
            status=ShiftStatus(r["status"]),
        )
