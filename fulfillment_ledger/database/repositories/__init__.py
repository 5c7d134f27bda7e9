# fulfillment_ledger/database/repositories/__init__.py
"""
Repository layer public API.

Usage:
    from fulfillment_ledger.database.repositories import (
        # Parent documents (quotation / sales order / purchase order)
        DocumentsRepo, StaleVersionError,
        # Invoices / shipments / receipts
        FulfillmentsRepo,
        # Payments
        InvoicePaymentsRepo,
        # Numbering
        DocumentCountersRepo, format_number,
    )
"""

# ---------------- Parent documents ----------------
from .documents_repo import DocumentsRepo, StaleVersionError

# ---------------- Fulfillments ----------------
from .fulfillments_repo import FulfillmentsRepo

# ---------------- Payments ----------------
from .invoice_payments_repo import InvoicePaymentsRepo

# ---------------- Numbering ----------------
from .counters_repo import DocumentCountersRepo, format_number

__all__ = [
    "DocumentsRepo",
    "StaleVersionError",
    "FulfillmentsRepo",
    "InvoicePaymentsRepo",
    "DocumentCountersRepo",
    "format_number",
]
