"""
status/derivation.py

Aggregate status of a parent document (or invoice) as a pure function of its
children. Same inputs, same output; nothing here reads the clock except the
overlay helpers, which take `today` explicitly.

Every line-coverage status (invoice/shipment on sales orders, receipt on
purchase orders) goes through derive_line_coverage_status(); payment statuses go
through status_from_paid(). Coverage values are mapped to domain enum values by
vocabulary.domain_value() only at the edges.
"""
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping, Optional, Sequence

from ...constants import (
    COVERAGE_FULL,
    COVERAGE_NONE,
    COVERAGE_PARTIAL,
    FT_INVOICE,
    FT_RECEIPT,
    FT_SHIPMENT,
    QUOTATION_OPEN,
    STATUS_INVOICE,
    STATUS_PAYMENT,
    STATUS_RECEIPT,
    STATUS_SHIPMENT,
)
from ...models import FulfillmentDocument, FulfillmentLine, LineItem, ParentDocument, PaymentRecord
from ..payments.calculations import ZERO, status_from_paid, total_paid
from ..reconciliation.quantities import consumed_by_item
from .vocabulary import EXPIRED, OVERDUE, domain_value

__all__ = [
    "derive_line_coverage_status",
    "sales_order_invoice_status",
    "sales_order_shipment_status",
    "sales_order_payment_status",
    "invoice_payment_status",
    "purchase_order_receipt_status",
    "visible_invoice_status",
    "visible_quotation_status",
    "derive_document_statuses",
]


def derive_line_coverage_status(
    line_items: Sequence[LineItem],
    fulfillment_lines: Iterable[FulfillmentLine],
) -> str:
    """
    Coverage of a set of line items by fulfillment lines of ONE type:
      - 'none'    if no fulfillment line references any of the items
      - 'full'    if every item has remaining == 0
      - 'partial' otherwise
    Lines that reference items outside `line_items` are ignored.
    """
    item_ids = {it.item_id for it in line_items}
    used = {k: v for k, v in consumed_by_item(fulfillment_lines).items() if k in item_ids}
    if not used:
        return COVERAGE_NONE
    for it in line_items:
        if it.quantity_ordered - used.get(it.item_id, ZERO) != ZERO:
            return COVERAGE_PARTIAL
    return COVERAGE_FULL


def _lines_of(fulfillments: Iterable[FulfillmentDocument], fulfillment_type: str) -> list[FulfillmentLine]:
    return [ln for f in fulfillments if f.fulfillment_type == fulfillment_type for ln in f.lines]


def sales_order_invoice_status(order: ParentDocument, fulfillments: Iterable[FulfillmentDocument]) -> str:
    coverage = derive_line_coverage_status(order.items, _lines_of(fulfillments, FT_INVOICE))
    return domain_value(STATUS_INVOICE, coverage)


def sales_order_shipment_status(order: ParentDocument, fulfillments: Iterable[FulfillmentDocument]) -> str:
    coverage = derive_line_coverage_status(order.items, _lines_of(fulfillments, FT_SHIPMENT))
    return domain_value(STATUS_SHIPMENT, coverage)


def purchase_order_receipt_status(order: ParentDocument, fulfillments: Iterable[FulfillmentDocument]) -> str:
    coverage = derive_line_coverage_status(order.items, _lines_of(fulfillments, FT_RECEIPT))
    return domain_value(STATUS_RECEIPT, coverage)


def invoice_payment_status(total: Decimal, payments: Iterable[PaymentRecord]) -> str:
    """Underlying (stored) payment status of one invoice: unpaid / partial / paid."""
    return domain_value(STATUS_PAYMENT, status_from_paid(total, total_paid(payments)))


def sales_order_payment_status(
    invoices: Iterable[FulfillmentDocument],
    payments_by_invoice: Mapping[int, Sequence[PaymentRecord]],
) -> str:
    """
    Paid amounts summed across every invoice of the order against the sum of
    those invoices' totals. An order without invoices is 'unpaid'.
    """
    total = ZERO
    paid = ZERO
    for inv in invoices:
        if not inv.is_invoice:
            continue
        total += inv.total or ZERO
        paid += total_paid(payments_by_invoice.get(inv.fulfillment_id, ()))
    return domain_value(STATUS_PAYMENT, status_from_paid(total, paid))


def visible_invoice_status(status: str, due_date: Optional[date], today: date) -> str:
    """'overdue' overlay for unpaid/partial invoices past their due date; the stored status is untouched."""
    if status != domain_value(STATUS_PAYMENT, COVERAGE_FULL) and due_date is not None and today > due_date:
        return OVERDUE
    return status


def visible_quotation_status(status: Optional[str], valid_until: Optional[date], today: date) -> Optional[str]:
    """'expired' overlay for open quotations past valid_until."""
    if status == QUOTATION_OPEN and valid_until is not None and today > valid_until:
        return EXPIRED
    return status


def derive_document_statuses(
    document: ParentDocument,
    fulfillments: Sequence[FulfillmentDocument],
    payments_by_invoice: Mapping[int, Sequence[PaymentRecord]],
) -> dict[str, str]:
    """
    Every aggregate status a parent document owns, keyed by column name.
    Quotations own none (their lifecycle status is not derived from children).
    """
    if document.is_sales_order:
        invoices = [f for f in fulfillments if f.is_invoice]
        return {
            STATUS_INVOICE: sales_order_invoice_status(document, fulfillments),
            STATUS_SHIPMENT: sales_order_shipment_status(document, fulfillments),
            STATUS_PAYMENT: sales_order_payment_status(invoices, payments_by_invoice),
        }
    if document.is_purchase_order:
        return {STATUS_RECEIPT: purchase_order_receipt_status(document, fulfillments)}
    return {}
