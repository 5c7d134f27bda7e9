"""
payments/calculations.py

Pure money helpers for invoices and payment roll-ups.

Do not import repos or open DB connections here.
Only compute numbers; formatting belongs to the caller.
All inputs and outputs are Decimal; nothing here touches float.
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Tuple

from ...constants import COVERAGE_FULL, COVERAGE_NONE, COVERAGE_PARTIAL, MONEY_PLACES
from ...models import FulfillmentLine, LineItem, PaymentRecord

__all__ = [
    "CENT",
    "MONEY_TOLERANCE",
    "ZERO",
    "money",
    "is_whole_cents",
    "invoice_totals",
    "total_paid",
    "remaining_due",
    "status_from_paid",
]

ZERO = Decimal("0")
CENT = Decimal(1).scaleb(-MONEY_PLACES)
# half a cent: amounts are stored in whole cents, so anything closer counts as equal
MONEY_TOLERANCE = CENT / 2


def money(x: Decimal) -> Decimal:
    """Quantize to cents using half-up (typical financial rounding)."""
    return Decimal(x).quantize(CENT, rounding=ROUND_HALF_UP)


def is_whole_cents(x: Decimal) -> bool:
    return Decimal(x) == money(x)


# -----------------------------
# Invoice helpers
# -----------------------------

def invoice_totals(
    items_by_id: dict[int, LineItem],
    lines: Iterable[FulfillmentLine],
) -> Tuple[Decimal, Decimal, Decimal]:
    """
    Returns (subtotal, tax, total) for the given invoice lines, priced from the
    parent line items:

      subtotal = Σ quantity × unit_price
      tax      = Σ quantity × unit_price × tax_rate
      total    = money(subtotal) + money(tax)

    Unknown item ids raise KeyError; callers validate lines first.
    """
    subtotal = ZERO
    tax = ZERO
    for ln in lines:
        item = items_by_id[ln.item_id]
        amount = ln.quantity * item.unit_price
        subtotal += amount
        tax += amount * item.tax_rate
    subtotal = money(subtotal)
    tax = money(tax)
    return subtotal, tax, subtotal + tax


# -----------------------------
# Payment helpers
# -----------------------------

def total_paid(payments: Iterable[PaymentRecord]) -> Decimal:
    return sum((p.amount for p in payments), ZERO)


def remaining_due(total: Decimal, paid: Decimal) -> Decimal:
    """
    remaining = total - paid. Not clamped: a negative value means the ledger is
    already overpaid, which the caller must treat as an invariant failure.
    """
    return total - paid


def status_from_paid(total: Decimal, paid: Decimal) -> str:
    """
    Threshold helper returning a coverage value:
      - 'none'    if paid == 0
      - 'full'    if paid >= total (within MONEY_TOLERANCE)
      - 'partial' otherwise
    """
    if paid <= ZERO:
        return COVERAGE_NONE
    if paid >= total - MONEY_TOLERANCE:
        return COVERAGE_FULL
    return COVERAGE_PARTIAL
