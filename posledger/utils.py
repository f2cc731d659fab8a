from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Union

QTY_PLACES = 3
MONEY_PLACES = 2


def iso_today() -> str:
    return date.today().isoformat()


def iso_now() -> str:
    # Use UTC ISO timestamps for consistency.
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def as_iso_date(d: Union[str, date]) -> str:
    if isinstance(d, datetime):
        return d.date().isoformat()
    if isinstance(d, date):
        return d.isoformat()
    return date.fromisoformat(str(d)).isoformat()


def days_between(earlier: str, later: str) -> int:
    return (date.fromisoformat(later) - date.fromisoformat(earlier)).days


def safe_div(n: float, d: float) -> float:
    return float(n) / float(d) if d else 0.0


def qty(v: float) -> float:
    """Round a quantity to gram precision (3 places)."""
    return round(float(v), QTY_PLACES)


def money(v: float) -> float:
    return round(float(v), MONEY_PLACES)
