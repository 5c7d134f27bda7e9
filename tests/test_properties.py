# tests/test_properties.py
"""
Property tests.

    ∀ committed histories:  Σ fulfilled(type, line) <= quantity_ordered(line)
    ∀ documents:            stored status == derive(current children)
    ∀ snapshots:            derive(s) == derive(s)
    ∀ rejected requests:    nothing new is persisted
"""
from __future__ import annotations

import tempfile
from datetime import date
from decimal import Decimal
from pathlib import Path

from hypothesis import given, settings
from hypothesis import strategies as st

from conftest import FIXED_TODAY

from fulfillment_ledger.database.ledger_store import LedgerStore
from fulfillment_ledger.errors import CapacityExceeded
from fulfillment_ledger.models import FulfillmentLine, LineItem
from fulfillment_ledger.modules.fulfillment import COMMITTED, REJECTED, FulfillmentOrchestrator
from fulfillment_ledger.modules.reconciliation.quantities import consumed_by_item
from fulfillment_ledger.modules.status.derivation import derive_line_coverage_status


# =============================================================================
# STRATEGIES
# =============================================================================

quantities = st.decimals(min_value=Decimal("0.5"), max_value=Decimal("20"), places=1)

operation = st.tuples(
    st.sampled_from(["invoice", "shipment"]),
    st.integers(min_value=0, max_value=2),          # line index (mod number of lines)
    st.decimals(min_value=Decimal("0.5"), max_value=Decimal("12"), places=1),
)


@st.composite
def coverage_snapshots(draw):
    ordered = draw(st.lists(quantities, min_size=1, max_size=4))
    items = [
        LineItem(i + 1, 1, f"P-{i}", "Widget", q, Decimal("1"), Decimal("0"))
        for i, q in enumerate(ordered)
    ]
    lines = []
    for it in items:
        # split some part of the ordered quantity into 0..3 fulfillment lines
        parts = draw(st.lists(st.integers(min_value=1, max_value=4), max_size=3))
        budget = it.quantity_ordered
        for p in parts:
            take = min(budget, Decimal(p))
            if take <= 0:
                break
            lines.append(FulfillmentLine(it.item_id, take, "invoice"))
            budget -= take
    return items, lines


def _fresh_orchestrator(tmp: str) -> FulfillmentOrchestrator:
    store = LedgerStore(Path(tmp) / "ledger.db", lock_timeout=10)
    return FulfillmentOrchestrator(store, clock=lambda: FIXED_TODAY, backoff=0.01)


def _payload(qty) -> dict:
    return {"productId": "P", "productName": "Widget", "quantity": str(qty), "unitPrice": "3.33", "taxRate": "0.07"}


# =============================================================================
# PROPERTIES
# =============================================================================

@given(
    ordered=st.lists(quantities, min_size=1, max_size=3),
    ops=st.lists(operation, min_size=1, max_size=12),
)
@settings(max_examples=25, deadline=None)
def test_conservation_and_status_correctness(ordered, ops):
    """Any sequence of requests: commits happen iff within remaining; ledgers never overflow; no drift."""
    with tempfile.TemporaryDirectory() as tmp:
        orch = _fresh_orchestrator(tmp)
        so = orch.create_sales_order("C-1", [_payload(q) for q in ordered]).document

        left = {ft: {it.item_id: it.quantity_ordered for it in so.items} for ft in ("invoice", "shipment")}
        for ftype, idx, qty in ops:
            it = so.items[idx % len(so.items)]
            lines = [{"lineItemId": it.item_id, "quantity": str(qty)}]
            if ftype == "invoice":
                r = orch.create_invoice(so.doc_id, lines)
            else:
                r = orch.create_shipment(so.doc_id, lines)

            if qty <= left[ftype][it.item_id]:
                assert r.state == COMMITTED
                left[ftype][it.item_id] -= qty
            else:
                assert r.state == REJECTED
                assert isinstance(r.error, CapacityExceeded)
                assert r.error.remaining == left[ftype][it.item_id]

        for ln in orch.sales_order_remaining(so.doc_id):
            for ftype in ("invoice", "shipment"):
                assert ln.consumed[ftype] <= ln.quantity_ordered
                assert ln.remaining[ftype] == left[ftype][ln.item_id]
        assert orch.find_status_drift() == []


@given(snapshot=coverage_snapshots())
def test_derivation_is_pure_and_matches_definition(snapshot):
    items, lines = snapshot
    first = derive_line_coverage_status(items, lines)
    assert first == derive_line_coverage_status(items, list(lines))

    used = consumed_by_item(lines)
    if not used:
        assert first == "none"
    elif all(used.get(it.item_id, Decimal("0")) == it.quantity_ordered for it in items):
        assert first == "full"
    else:
        assert first == "partial"


@given(
    ordered=st.lists(quantities, min_size=2, max_size=3),
    over_by=st.decimals(min_value=Decimal("0.1"), max_value=Decimal("5"), places=1),
)
@settings(max_examples=15, deadline=None)
def test_rejected_batch_leaves_no_trace(ordered, over_by):
    """The last line over-asks; the whole batch is rejected and nothing is stored."""
    with tempfile.TemporaryDirectory() as tmp:
        orch = _fresh_orchestrator(tmp)
        so = orch.create_sales_order("C-1", [_payload(q) for q in ordered]).document
        lines = [{"lineItemId": it.item_id, "quantity": str(it.quantity_ordered)} for it in so.items]
        lines[-1]["quantity"] = str(so.items[-1].quantity_ordered + over_by)

        r = orch.create_invoice(so.doc_id, lines, date=date(2025, 1, 5))
        assert r.state == REJECTED
        assert r.error.line_item_id == so.items[-1].item_id
        assert orch.list_fulfillments(so.doc_id) == []
        assert orch.get_document(so.doc_id).invoice_status == "not_invoiced"
