# fulfillment_ledger/constants.py
from __future__ import annotations

APP_NAME = "Fulfillment Ledger"

DATA_DIR = "data"
DB_FILE_NAME = "ledger.db"

TABLE_SCHEMA_VERSION = "schema_version"
SCHEMA_VERSION = "1.0.0"

# ---------- Document kinds ----------
DOC_QUOTATION = "quotation"
DOC_SALES_ORDER = "sales_order"
DOC_PURCHASE_ORDER = "purchase_order"

# ---------- Fulfillment kinds ----------
FT_INVOICE = "invoice"
FT_SHIPMENT = "shipment"
FT_RECEIPT = "receipt"

# fulfillment type -> parent doc_type it consumes from
PARENT_TYPE_BY_FULFILLMENT: dict[str, str] = {
    FT_INVOICE: DOC_SALES_ORDER,
    FT_SHIPMENT: DOC_SALES_ORDER,
    FT_RECEIPT: DOC_PURCHASE_ORDER,
}

# ---------- Document numbering ----------
# kind -> (prefix, first number)
COUNTER_SEEDS: dict[str, tuple[str, int]] = {
    DOC_QUOTATION: ("QUO", 1000),
    DOC_SALES_ORDER: ("SO", 2000),
    FT_INVOICE: ("INV", 3000),
    DOC_PURCHASE_ORDER: ("PO", 4000),
}
DOC_NUMBER_WIDTH = 4

# ---------- Coverage (generic status) ----------
COVERAGE_NONE = "none"
COVERAGE_PARTIAL = "partial"
COVERAGE_FULL = "full"

# ---------- Status fields ----------
STATUS_INVOICE = "invoice_status"
STATUS_SHIPMENT = "shipment_status"
STATUS_PAYMENT = "payment_status"
STATUS_RECEIPT = "receipt_status"

QUOTATION_OPEN = "open"
QUOTATION_ACCEPTED = "accepted"
QUOTATION_REJECTED = "rejected"

# ---------- Payments ----------
PAYMENT_METHODS: tuple[str, ...] = ("Cash", "Bank Transfer", "Card", "Cheque", "Other")
MONEY_PLACES = 2
