# tests/test_concurrency.py
"""
Concurrent actions against one database file. Each thread goes through the
same orchestrator; every action opens its own connection.
"""
from __future__ import annotations

import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

from conftest import FIXED_TODAY, lines_for

from fulfillment_ledger.database.ledger_store import LedgerStore
from fulfillment_ledger.database.repositories import DocumentsRepo, StaleVersionError
from fulfillment_ledger.errors import Busy, CapacityExceeded, OverPayment
from fulfillment_ledger.modules.fulfillment import COMMITTED, REJECTED, FulfillmentOrchestrator


def _race(n: int, fn):
    """Run fn() on n threads released together; return the results."""
    barrier = threading.Barrier(n)

    def run():
        barrier.wait()
        return fn()

    with ThreadPoolExecutor(max_workers=n) as pool:
        futures = [pool.submit(run) for _ in range(n)]
        return [f.result() for f in futures]


def test_two_requests_for_full_remaining_exactly_one_wins(orch, make_sales_order):
    """K1: both ask for all 10; one commits, the other gets CapacityExceeded with remaining 0."""
    so = make_sales_order("10")
    results = _race(2, lambda: orch.create_invoice(so.doc_id, lines_for(so, "10")))

    states = sorted(r.state for r in results)
    assert states == [COMMITTED, REJECTED]
    loser = next(r for r in results if r.state == REJECTED)
    assert isinstance(loser.error, CapacityExceeded)
    assert loser.error.remaining == Decimal("0")

    remaining = orch.sales_order_remaining(so.doc_id)
    assert remaining[0].consumed["invoice"] == Decimal("10")
    assert orch.find_status_drift() == []


def test_fifty_concurrent_invoices_get_distinct_gapless_numbers(db_path, make_sales_order):
    """K2: 50 parallel invoice creations -> 50 commits numbered INV-3000..INV-3049, no duplicates."""
    so = make_sales_order("50")
    orch = FulfillmentOrchestrator(LedgerStore(db_path, lock_timeout=30), clock=lambda: FIXED_TODAY)

    def one(_):
        return orch.create_invoice(so.doc_id, lines_for(so, "1"))

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(one, range(50)))

    assert all(r.state == COMMITTED for r in results), [r.error for r in results if not r.ok]
    numbers = [r.document.doc_no for r in results]
    assert len(set(numbers)) == 50
    assert sorted(numbers) == [f"INV-{n}" for n in range(3000, 3050)]
    assert orch.get_document(so.doc_id).invoice_status == "invoiced"


def test_concurrent_payments_never_overpay(orch, make_sales_order, make_invoice):
    """K3: five racing payments of 300 against a 1000 invoice -> three land, two are OverPayment."""
    so = make_sales_order("10", price="100")
    inv = make_invoice(so)
    results = _race(5, lambda: orch.record_payment(inv.fulfillment_id, "300.00"))

    committed = [r for r in results if r.state == COMMITTED]
    rejected = [r for r in results if r.state == REJECTED]
    assert len(committed) == 3
    assert len(rejected) == 2
    assert all(isinstance(r.error, OverPayment) for r in rejected)

    balance = orch.invoice_balance(inv.fulfillment_id)
    assert balance.paid == Decimal("900.00")
    assert balance.status == "partial"


def test_shipments_and_invoices_do_not_share_capacity(orch, make_sales_order):
    """K4: the invoice and shipment ledgers are independent even under contention."""
    so = make_sales_order("4")

    def act(i):
        if i % 2:
            return orch.create_shipment(so.doc_id, lines_for(so, "1"))
        return orch.create_invoice(so.doc_id, lines_for(so, "1"))

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(act, range(8)))
    assert all(r.state == COMMITTED for r in results)
    doc = orch.get_document(so.doc_id)
    assert (doc.invoice_status, doc.shipment_status) == ("invoiced", "shipped")


def test_busy_after_bounded_retries(db_path, store, make_sales_order):
    """K5: a lock held elsewhere -> retried, then rejected as Busy (nothing written)."""
    so = make_sales_order("10")
    impatient = FulfillmentOrchestrator(
        LedgerStore(db_path, lock_timeout=0.05), clock=lambda: FIXED_TODAY, retries=2, backoff=0.01
    )
    holder = sqlite3.connect(str(db_path), isolation_level=None)
    holder.execute("BEGIN IMMEDIATE")
    try:
        r = impatient.create_invoice(so.doc_id, lines_for(so, "1"))
    finally:
        holder.execute("ROLLBACK")
        holder.close()

    assert r.state == REJECTED
    assert isinstance(r.error, Busy)
    assert r.error.retriable
    assert r.error.resource == f"sales_order:{so.doc_id}"
    assert impatient.list_fulfillments(so.doc_id) == []


def test_stale_version_is_retried(orch, make_sales_order, monkeypatch):
    """A version clash on the status refresh rolls back and the action runs again."""
    so = make_sales_order("10")
    real = DocumentsRepo.update_statuses
    calls = []

    def clash_once(self, doc_id, statuses, *, expected_version):
        calls.append(doc_id)
        if len(calls) == 1:
            raise StaleVersionError(f"document {doc_id} moved on")
        return real(self, doc_id, statuses, expected_version=expected_version)

    monkeypatch.setattr(DocumentsRepo, "update_statuses", clash_once)
    r = orch.create_invoice(so.doc_id, lines_for(so, "4"))
    assert r.state == COMMITTED
    assert r.document.doc_no == "INV-3000"  # the first attempt's number was rolled back
    assert len(calls) == 2
    assert len(orch.list_fulfillments(so.doc_id)) == 1
