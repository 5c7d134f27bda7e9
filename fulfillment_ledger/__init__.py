"""
Fulfillment ledger: quotations, sales orders and purchase orders, and the
invoices, shipments, receipts and payments that consume them.

    from fulfillment_ledger.database.ledger_store import LedgerStore
    from fulfillment_ledger.modules.fulfillment import FulfillmentOrchestrator

    orch = FulfillmentOrchestrator(LedgerStore("data/ledger.db"))
    result = orch.create_invoice(so_id, [{"lineItemId": 1, "quantity": "4"}])
"""

__version__ = "1.0.0"
