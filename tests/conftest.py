# tests/conftest.py
# ---------------------------------------------------------------------
# Ground rules:
# - Every test gets its own SQLite file under tmp_path (schema applied fresh)
# - The orchestrator runs on a fixed clock (FIXED_TODAY)
# - Factories create parent documents through the orchestrator, so document
#   numbers and initial statuses match production paths
# ---------------------------------------------------------------------

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from fulfillment_ledger.database.ledger_store import LedgerStore
from fulfillment_ledger.modules.fulfillment import FulfillmentOrchestrator

FIXED_TODAY = date(2025, 3, 1)


def item(qty, price="100", tax="0", product_id=None, name=None) -> dict:
    """One line-item payload in the camelCase shape the API accepts."""
    return {
        "productId": product_id or f"P-{qty}-{price}",
        "productName": name or "Widget",
        "quantity": str(qty),
        "unitPrice": str(price),
        "taxRate": str(tax),
    }


# ---------- Store / orchestrator ----------
@pytest.fixture()
def db_path(tmp_path):
    return tmp_path / "ledger.db"


@pytest.fixture()
def store(db_path):
    return LedgerStore(db_path, lock_timeout=10)


@pytest.fixture()
def orch(store):
    return FulfillmentOrchestrator(store, clock=lambda: FIXED_TODAY, backoff=0.01)


# ---------- Factories ----------
@pytest.fixture()
def make_sales_order(orch):
    """make_sales_order("10", "5", price="100") -> committed ParentDocument."""
    def _make(*quantities, price="100", tax="0", party_id="C-1"):
        items = [item(q, price, tax, product_id=f"P-{i}") for i, q in enumerate(quantities or ("10",))]
        result = orch.create_sales_order(party_id, items, party_name="Customer One")
        assert result.is_committed, result.error
        return result.document
    return _make


@pytest.fixture()
def make_purchase_order(orch):
    def _make(*quantities, price="50", party_id="V-1"):
        items = [item(q, price, product_id=f"P-{i}") for i, q in enumerate(quantities or ("10",))]
        result = orch.create_purchase_order(party_id, items, party_name="Vendor One")
        assert result.is_committed, result.error
        return result.document
    return _make


@pytest.fixture()
def make_invoice(orch):
    """Invoice every line of `order` for the given quantities (defaults to all of it)."""
    def _make(order, *quantities, **header):
        qtys = quantities or tuple(it.quantity_ordered for it in order.items)
        lines = [{"lineItemId": it.item_id, "quantity": str(q)} for it, q in zip(order.items, qtys)]
        result = orch.create_invoice(order.doc_id, lines, **header)
        assert result.is_committed, result.error
        return result.document
    return _make


def lines_for(order, *quantities) -> list[dict]:
    return [{"lineItemId": it.item_id, "quantity": str(q)} for it, q in zip(order.items, quantities)]


def dec(x) -> Decimal:
    return Decimal(str(x))
