# tests/test_status_derivation.py
"""
Status derivation: the generic line-coverage rule, its four domain mappings,
payment roll-ups and the time-derived overlays.
"""
from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from fulfillment_ledger.models import (
    FulfillmentDocument,
    FulfillmentLine,
    LineItem,
    ParentDocument,
    PaymentRecord,
)
from fulfillment_ledger.modules.payments.calculations import (
    invoice_totals,
    is_whole_cents,
    money,
    remaining_due,
    status_from_paid,
)
from fulfillment_ledger.modules.status import vocabulary
from fulfillment_ledger.modules.status.derivation import (
    derive_document_statuses,
    derive_line_coverage_status,
    invoice_payment_status,
    sales_order_payment_status,
    visible_invoice_status,
    visible_quotation_status,
)


# ---- Helpers ----

def _item(item_id, qty, price="10", tax="0", doc_id=1):
    return LineItem(item_id, doc_id, f"P-{item_id}", "Widget", Decimal(qty), Decimal(price), Decimal(tax))


def _line(item_id, qty, ftype):
    return FulfillmentLine(item_id=item_id, quantity=Decimal(qty), fulfillment_type=ftype)


def _doc(doc_type, *items):
    return ParentDocument(
        doc_id=1, doc_type=doc_type, doc_no="X-1", party_id="C-1", party_name=None,
        date=date(2025, 1, 1), items=tuple(items),
    )


def _fulfillment(fid, ftype, *lines, total=None):
    return FulfillmentDocument(
        fulfillment_id=fid, fulfillment_type=ftype, parent_doc_id=1, date=date(2025, 1, 2),
        lines=tuple(lines), total=Decimal(total) if total is not None else None,
        payment_status="unpaid" if ftype == "invoice" else None,
    )


def _pay(invoice_id, amount, pid=1):
    return PaymentRecord(payment_id=pid, invoice_id=invoice_id, amount=Decimal(amount), date=date(2025, 1, 3))


# ---- Generic coverage ----

def test_coverage_none_partial_full():
    """S1: none without lines, partial while anything remains, full when every line is at 0."""
    items = [_item(1, "10"), _item(2, "5")]
    assert derive_line_coverage_status(items, []) == "none"
    assert derive_line_coverage_status(items, [_line(1, "10", "invoice")]) == "partial"
    assert derive_line_coverage_status(items, [_line(1, "10", "invoice"), _line(2, "4", "invoice")]) == "partial"
    assert derive_line_coverage_status(items, [_line(1, "10", "invoice"), _line(2, "5", "invoice")]) == "full"


def test_coverage_ignores_lines_of_foreign_items():
    """S2: lines pointing at other documents' items do not count."""
    assert derive_line_coverage_status([_item(1, "10")], [_line(9, "10", "invoice")]) == "none"


def test_zero_quantity_line_counts_as_covered():
    items = [_item(1, "0"), _item(2, "5")]
    assert derive_line_coverage_status(items, []) == "none"
    assert derive_line_coverage_status(items, [_line(2, "2", "shipment")]) == "partial"
    assert derive_line_coverage_status(items, [_line(2, "5", "shipment")]) == "full"


def test_sales_order_statuses_use_domain_values():
    """S3: invoice and shipment ledgers are independent; values are the domain enums."""
    so = _doc("sales_order", _item(1, "10"))
    inv = _fulfillment(10, "invoice", _line(1, "10", "invoice"), total="100.00")
    shp = _fulfillment(11, "shipment", _line(1, "4", "shipment"))
    statuses = derive_document_statuses(so, [inv, shp], {10: [_pay(10, "40.00")]})
    assert statuses == {
        "invoice_status": "invoiced",
        "shipment_status": "partial",
        "payment_status": "partial",
    }


def test_fresh_documents_start_at_none_values():
    """S4: no children -> not_invoiced / not_shipped / unpaid; not_received for a PO."""
    so = _doc("sales_order", _item(1, "10"))
    assert derive_document_statuses(so, [], {}) == {
        "invoice_status": "not_invoiced",
        "shipment_status": "not_shipped",
        "payment_status": "unpaid",
    }
    po = _doc("purchase_order", _item(1, "10"))
    assert derive_document_statuses(po, [], {}) == {"receipt_status": "not_received"}
    assert derive_document_statuses(_doc("quotation", _item(1, "1")), [], {}) == {}


def test_purchase_order_receipt_status():
    po = _doc("purchase_order", _item(1, "10"), _item(2, "1"))
    rec = _fulfillment(5, "receipt", _line(1, "10", "receipt"), _line(2, "1", "receipt"))
    assert derive_document_statuses(po, [rec], {}) == {"receipt_status": "received"}


def test_derivation_is_deterministic():
    """S5: same snapshot twice -> identical result."""
    so = _doc("sales_order", _item(1, "10"), _item(2, "3"))
    children = [_fulfillment(1, "invoice", _line(1, "2", "invoice"), total="20.00")]
    payments = {1: [_pay(1, "20.00")]}
    assert derive_document_statuses(so, children, payments) == derive_document_statuses(so, children, payments)


# ---- Payments ----

def test_payment_thresholds_with_tolerance():
    """P1: unpaid at 0, paid within half a cent of total, partial in between."""
    total = Decimal("1000.00")
    assert status_from_paid(total, Decimal("0")) == "none"
    assert status_from_paid(total, Decimal("400.00")) == "partial"
    assert status_from_paid(total, Decimal("999.996")) == "full"
    assert status_from_paid(total, Decimal("1000.00")) == "full"
    assert invoice_payment_status(total, [_pay(1, "400.00"), _pay(1, "600.00", 2)]) == "paid"


def test_zero_total_invoice_without_payments_is_unpaid():
    assert invoice_payment_status(Decimal("0.00"), []) == "unpaid"


def test_sales_order_payment_rolls_up_all_invoices():
    """P2: Σ paid over Σ totals across every invoice of the order."""
    a = _fulfillment(1, "invoice", total="100.00")
    b = _fulfillment(2, "invoice", total="50.00")
    assert sales_order_payment_status([a, b], {}) == "unpaid"
    assert sales_order_payment_status([a, b], {1: [_pay(1, "100.00")]}) == "partial"
    assert sales_order_payment_status([a, b], {1: [_pay(1, "100.00")], 2: [_pay(2, "50.00")]}) == "paid"
    assert sales_order_payment_status([], {}) == "unpaid"


def test_invoice_totals_round_half_up_per_component():
    """P3: subtotal and tax are each rounded to cents; total is their sum."""
    items = {1: _item(1, "3", price="0.335", tax="0.15")}
    subtotal, tax, total = invoice_totals(items, [_line(1, "3", "invoice")])
    # 3 x 0.335 = 1.005 -> 1.01 ; 1.005 x 0.15 = 0.15075 -> 0.15
    assert (subtotal, tax, total) == (Decimal("1.01"), Decimal("0.15"), Decimal("1.16"))


def test_money_helpers():
    assert money(Decimal("2.675")) == Decimal("2.68")
    assert is_whole_cents(Decimal("10.10"))
    assert not is_whole_cents(Decimal("10.105"))
    assert remaining_due(Decimal("10.00"), Decimal("12.00")) == Decimal("-2.00")


# ---- Overlays ----

def test_overdue_is_a_view_over_unpaid_and_partial():
    """O1: past due + not paid -> overdue; paid invoices never show overdue."""
    due = date(2025, 1, 31)
    assert visible_invoice_status("unpaid", due, date(2025, 2, 1)) == "overdue"
    assert visible_invoice_status("partial", due, date(2025, 2, 1)) == "overdue"
    assert visible_invoice_status("paid", due, date(2025, 2, 1)) == "paid"
    assert visible_invoice_status("unpaid", due, due) == "unpaid"


def test_expired_is_a_view_over_open_quotations():
    vu = date(2025, 1, 31)
    assert visible_quotation_status("open", vu, date(2025, 2, 1)) == "expired"
    assert visible_quotation_status("open", vu, vu) == "open"
    assert visible_quotation_status("accepted", vu, date(2025, 2, 1)) == "accepted"
    assert visible_quotation_status("open", None, date(2030, 1, 1)) == "open"


# ---- Vocabulary ----

def test_vocabulary_domain_values():
    assert vocabulary.domain_value("shipment_status", "full") == "shipped"
    assert vocabulary.domain_value("receipt_status", "none") == "not_received"
    assert vocabulary.domain_value("invoice_status", "partial") == "partial"
    assert vocabulary.domain_value("payment_status", "full") == "paid"


def test_vocabulary_rejects_unknown_field():
    with pytest.raises(ValueError):
        vocabulary.domain_value("colour_status", "full")
