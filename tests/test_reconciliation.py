# tests/test_reconciliation.py
"""
Quantity reconciliation: remaining arithmetic, single-line validation, request
normalisation and batch validation. Pure functions, no database.
"""
from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from fulfillment_ledger.errors import (
    CapacityExceeded,
    InvalidRequest,
    InvariantViolation,
    UnknownLineItem,
)
from fulfillment_ledger.models import FulfillmentLine, LineItem, LineRequest, ParentDocument
from fulfillment_ledger.modules.reconciliation.quantities import (
    consumed,
    first_over_consumed,
    fulfill_all_remaining,
    normalize_request_lines,
    remaining,
    remaining_by_item,
    validate_batch,
    validate_fulfillment_request,
)


# ---- Helpers ----

def _item(item_id: int, qty: str, doc_id: int = 1) -> LineItem:
    return LineItem(
        item_id=item_id,
        doc_id=doc_id,
        product_id=f"P-{item_id}",
        product_name=f"Product {item_id}",
        quantity_ordered=Decimal(qty),
        unit_price=Decimal("10"),
        tax_rate=Decimal("0"),
    )


def _line(item_id: int, qty: str, ftype: str = "shipment") -> FulfillmentLine:
    return FulfillmentLine(item_id=item_id, quantity=Decimal(qty), fulfillment_type=ftype)


def _order(*items: LineItem) -> ParentDocument:
    return ParentDocument(
        doc_id=1, doc_type="sales_order", doc_no="SO-2000", party_id="C-1",
        party_name=None, date=date(2025, 1, 1), items=tuple(items),
    )


# ---- remaining ----

def test_remaining_subtracts_only_lines_of_the_item():
    """R1: remaining = ordered - Σ quantities referencing that item; other items are ignored."""
    it = _item(1, "10")
    existing = [_line(1, "3"), _line(2, "7"), _line(1, "2.5")]
    assert consumed(it, existing) == Decimal("5.5")
    assert remaining(it, existing) == Decimal("4.5")


def test_remaining_with_no_history_is_quantity_ordered():
    """R2: a fresh line has its full ordered quantity remaining."""
    assert remaining(_item(1, "10"), []) == Decimal("10")


def test_negative_remaining_is_an_invariant_violation_not_a_clamp():
    """R3: an over-consumed ledger raises instead of reporting 0."""
    with pytest.raises(InvariantViolation):
        remaining(_item(1, "5"), [_line(1, "6")])
    with pytest.raises(InvariantViolation):
        remaining_by_item(_order(_item(1, "5")), [_line(1, "6")])


# ---- validate_fulfillment_request ----

def test_request_up_to_remaining_is_accepted():
    """R4: 0 < q <= remaining returns q unchanged."""
    it = _item(1, "10")
    assert validate_fulfillment_request(it, [_line(1, "6")], Decimal("4"), fulfillment_type="shipment") == Decimal("4")


def test_request_above_remaining_names_the_line():
    """R5: over-request -> CapacityExceeded carrying line id, requested and remaining."""
    it = _item(7, "10")
    with pytest.raises(CapacityExceeded) as ei:
        validate_fulfillment_request(it, [_line(7, "6")], Decimal("5"), fulfillment_type="shipment")
    err = ei.value
    assert err.line_item_id == 7
    assert err.requested == Decimal("5")
    assert err.remaining == Decimal("4")
    assert err.details()["lineItemId"] == 7
    assert err.to_dict()["error"] == "capacity_exceeded"


@pytest.mark.parametrize("qty", ["0", "-1"])
def test_non_positive_request_is_invalid(qty):
    """R6: zero/negative quantities never reach the ledger."""
    with pytest.raises(InvalidRequest) as ei:
        validate_fulfillment_request(_item(1, "10"), [], Decimal(qty), fulfillment_type="invoice")
    assert ei.value.line_item_id == 1


# ---- normalize_request_lines ----

def test_normalize_drops_zero_lines_and_merges_duplicates():
    """N1: unselected (zero) rows vanish; repeated ids are summed in first-seen order."""
    raw = [
        {"lineItemId": 2, "quantity": "3"},
        {"lineItemId": 1, "quantity": 0},
        (2, "1.5"),
        LineRequest(item_id=3, quantity=Decimal("1")),
        {"item_id": "4", "quantity": 2},
    ]
    out = normalize_request_lines(raw)
    assert out == [
        LineRequest(2, Decimal("4.5")),
        LineRequest(3, Decimal("1")),
        LineRequest(4, Decimal("2")),
    ]


def test_normalize_keeps_negative_quantities_for_validation():
    """N2: negatives are not silently dropped."""
    assert normalize_request_lines([{"lineItemId": 1, "quantity": "-2"}]) == [LineRequest(1, Decimal("-2"))]


@pytest.mark.parametrize(
    "raw",
    [
        [{"lineItemId": "abc", "quantity": "1"}],
        [{"lineItemId": 1, "quantity": "lots"}],
        [{"lineItemId": 1, "quantity": None}],
        ["not a line"],
    ],
)
def test_normalize_rejects_malformed_lines(raw):
    """N3: junk ids, quantities and shapes are InvalidRequest."""
    with pytest.raises(InvalidRequest):
        normalize_request_lines(raw)


# ---- validate_batch ----

def test_batch_returns_proposed_lines_when_all_pass():
    """B1: every line valid -> unsaved FulfillmentLines of the requested type."""
    order = _order(_item(1, "10"), _item(2, "5"))
    proposed = validate_batch(
        order, [], [LineRequest(1, Decimal("10")), LineRequest(2, Decimal("1"))], fulfillment_type="invoice"
    )
    assert [(p.item_id, p.quantity, p.fulfillment_type) for p in proposed] == [
        (1, Decimal("10"), "invoice"),
        (2, Decimal("1"), "invoice"),
    ]
    assert all(p.line_id is None for p in proposed)


def test_batch_reports_first_failing_line():
    """B2: one bad line fails the batch and is the one identified."""
    order = _order(_item(1, "10"), _item(2, "5"))
    with pytest.raises(CapacityExceeded) as ei:
        validate_batch(
            order, [_line(2, "5")],
            [LineRequest(1, Decimal("2")), LineRequest(2, Decimal("1"))],
            fulfillment_type="shipment",
        )
    assert ei.value.line_item_id == 2
    assert ei.value.remaining == Decimal("0")


def test_batch_rejects_line_of_another_document():
    """B3: a line id the parent does not own -> UnknownLineItem."""
    with pytest.raises(UnknownLineItem) as ei:
        validate_batch(_order(_item(1, "10")), [], [LineRequest(99, Decimal("1"))], fulfillment_type="invoice")
    assert ei.value.line_item_id == 99
    assert ei.value.code == "unknown_line_item"


# ---- fulfill_all_remaining ----

def test_fulfill_all_remaining_skips_fully_consumed_lines():
    """F1: one request per line with remaining > 0, for exactly that remaining."""
    order = _order(_item(1, "10"), _item(2, "5"), _item(3, "2"))
    existing = [_line(1, "4"), _line(2, "5")]
    assert fulfill_all_remaining(order, existing) == [
        LineRequest(1, Decimal("6")),
        LineRequest(3, Decimal("2")),
    ]


def test_fulfill_all_remaining_on_complete_order_is_empty():
    """F2: nothing left -> no requests (the caller treats it as a no-op)."""
    order = _order(_item(1, "3"))
    assert fulfill_all_remaining(order, [_line(1, "3")]) == []


def test_fulfill_all_remaining_skips_zero_quantity_lines():
    order = _order(_item(1, "0"), _item(2, "5"))
    assert fulfill_all_remaining(order, []) == [LineRequest(2, Decimal("5"))]


def test_first_over_consumed():
    order = _order(_item(1, "3"), _item(2, "3"))
    assert first_over_consumed(order, [_line(1, "3")]) is None
    assert first_over_consumed(order, [_line(2, "3.01")]) == 2
