"""Domain errors raised by the ledger services.

All of them derive from ``ValueError`` so the pages can keep showing
``str(e)`` for anything a collaborator did wrong.
"""
from __future__ import annotations


class PosLedgerError(ValueError):
    pass


class InvalidQuantity(PosLedgerError):
    pass


class InvalidInput(PosLedgerError):
    """Missing or malformed non-quantity input (names, categories, prices, ranges)."""


class InsufficientStock(PosLedgerError):
    pass


class InvalidAdjustment(PosLedgerError):
    pass


class ShiftNotOpen(PosLedgerError):
    pass


class ShiftClosed(PosLedgerError):
    pass


class AlreadyClosing(PosLedgerError):
    pass


class NotFound(PosLedgerError):
    pass
