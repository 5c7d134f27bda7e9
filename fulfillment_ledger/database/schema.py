from pathlib import Path
import sqlite3
import sys

from ..constants import COUNTER_SEEDS

SQL = r"""
PRAGMA foreign_keys = ON;

/* ======================== CORE TABLES ======================== */
/* Quantities and money are canonical decimal TEXT; arithmetic happens in Python. */

/* -------- docs: parent headers (quotation / sales order / purchase order) -------- */
CREATE TABLE IF NOT EXISTS documents (
    doc_id              INTEGER PRIMARY KEY AUTOINCREMENT,
    doc_type            TEXT NOT NULL CHECK (doc_type IN ('quotation','sales_order','purchase_order')),
    doc_no              TEXT NOT NULL UNIQUE,
    party_id            TEXT NOT NULL,
    party_name          TEXT,
    date                DATE NOT NULL,
    delivery_date       DATE,
    valid_until         DATE,
    quotation_status    TEXT CHECK (quotation_status IS NULL OR quotation_status IN ('open','accepted','rejected')),
    source_quotation_id INTEGER UNIQUE,
    invoice_status      TEXT CHECK (invoice_status  IS NULL OR invoice_status  IN ('not_invoiced','partial','invoiced')),
    shipment_status     TEXT CHECK (shipment_status IS NULL OR shipment_status IN ('not_shipped','partial','shipped')),
    payment_status      TEXT CHECK (payment_status  IS NULL OR payment_status  IN ('unpaid','partial','paid')),
    receipt_status      TEXT CHECK (receipt_status  IS NULL OR receipt_status  IN ('not_received','partial','received')),
    notes               TEXT,
    version             INTEGER NOT NULL DEFAULT 0,
    created_at          TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (source_quotation_id) REFERENCES documents(doc_id)
);
CREATE INDEX IF NOT EXISTS idx_documents_type ON documents(doc_type);

/* -------- docs: parent line items -------- */
CREATE TABLE IF NOT EXISTS line_items (
    item_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    doc_id           INTEGER NOT NULL,
    position         INTEGER NOT NULL,
    product_id       TEXT NOT NULL,
    product_name     TEXT NOT NULL,
    description      TEXT,
    quantity_ordered TEXT NOT NULL CHECK (CAST(quantity_ordered AS REAL) >= 0),
    unit_price       TEXT NOT NULL CHECK (CAST(unit_price AS REAL) >= 0),
    tax_rate         TEXT NOT NULL CHECK (CAST(tax_rate AS REAL) BETWEEN 0 AND 1),
    FOREIGN KEY (doc_id) REFERENCES documents(doc_id) ON DELETE RESTRICT
);
CREATE INDEX IF NOT EXISTS idx_line_items_doc ON line_items(doc_id);

/* -------- fulfillments: invoice / shipment / receipt headers -------- */
CREATE TABLE IF NOT EXISTS fulfillments (
    fulfillment_id   INTEGER PRIMARY KEY AUTOINCREMENT,
    fulfillment_type TEXT NOT NULL CHECK (fulfillment_type IN ('invoice','shipment','receipt')),
    doc_no           TEXT UNIQUE,
    parent_doc_id    INTEGER NOT NULL,
    date             DATE NOT NULL,
    due_date         DATE,
    subtotal         TEXT,
    tax              TEXT,
    total            TEXT,
    payment_status   TEXT CHECK (payment_status IS NULL OR payment_status IN ('unpaid','partial','paid')),
    carrier          TEXT,
    tracking_no      TEXT,
    received_by      TEXT,
    notes            TEXT,
    version          INTEGER NOT NULL DEFAULT 0,
    created_at       TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (parent_doc_id) REFERENCES documents(doc_id) ON DELETE RESTRICT,
    CHECK (fulfillment_type <> 'invoice' OR (total IS NOT NULL AND payment_status IS NOT NULL))
);
CREATE INDEX IF NOT EXISTS idx_fulfillments_parent ON fulfillments(parent_doc_id, fulfillment_type);

CREATE TABLE IF NOT EXISTS fulfillment_lines (
    line_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    fulfillment_id   INTEGER NOT NULL,
    item_id          INTEGER NOT NULL,
    fulfillment_type TEXT NOT NULL CHECK (fulfillment_type IN ('invoice','shipment','receipt')),
    quantity         TEXT NOT NULL CHECK (CAST(quantity AS REAL) > 0),
    FOREIGN KEY (fulfillment_id) REFERENCES fulfillments(fulfillment_id) ON DELETE RESTRICT,
    FOREIGN KEY (item_id)        REFERENCES line_items(item_id) ON DELETE RESTRICT
);
CREATE INDEX IF NOT EXISTS idx_fulfillment_lines_item ON fulfillment_lines(item_id, fulfillment_type);
CREATE INDEX IF NOT EXISTS idx_fulfillment_lines_header ON fulfillment_lines(fulfillment_id);

/* -------- payments against invoices -------- */
CREATE TABLE IF NOT EXISTS invoice_payments (
    payment_id INTEGER PRIMARY KEY AUTOINCREMENT,
    invoice_id INTEGER NOT NULL,
    amount     TEXT NOT NULL CHECK (CAST(amount AS REAL) > 0),
    date       DATE NOT NULL,
    method     TEXT NOT NULL DEFAULT 'Cash',
    reference  TEXT,
    notes      TEXT,
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (invoice_id) REFERENCES fulfillments(fulfillment_id) ON DELETE RESTRICT
);
CREATE INDEX IF NOT EXISTS idx_invoice_payments_invoice ON invoice_payments(invoice_id);

/* -------- document numbering -------- */
CREATE TABLE IF NOT EXISTS document_counters (
    kind       TEXT PRIMARY KEY,
    prefix     TEXT NOT NULL,
    next_value INTEGER NOT NULL CHECK (next_value >= 0)
);


/* ======================== APPEND-ONLY GUARDS ======================== */

DROP TRIGGER IF EXISTS trg_line_items_no_update;
CREATE TRIGGER trg_line_items_no_update
BEFORE UPDATE ON line_items
BEGIN
  SELECT RAISE(ABORT, 'line items are immutable');
END;

DROP TRIGGER IF EXISTS trg_line_items_no_delete;
CREATE TRIGGER trg_line_items_no_delete
BEFORE DELETE ON line_items
BEGIN
  SELECT RAISE(ABORT, 'line items are immutable');
END;

DROP TRIGGER IF EXISTS trg_fulfillment_lines_no_update;
CREATE TRIGGER trg_fulfillment_lines_no_update
BEFORE UPDATE ON fulfillment_lines
BEGIN
  SELECT RAISE(ABORT, 'fulfillment lines are append-only');
END;

DROP TRIGGER IF EXISTS trg_fulfillment_lines_no_delete;
CREATE TRIGGER trg_fulfillment_lines_no_delete
BEFORE DELETE ON fulfillment_lines
BEGIN
  SELECT RAISE(ABORT, 'fulfillment lines are append-only');
END;

DROP TRIGGER IF EXISTS trg_fulfillments_no_delete;
CREATE TRIGGER trg_fulfillments_no_delete
BEFORE DELETE ON fulfillments
BEGIN
  SELECT RAISE(ABORT, 'fulfillment documents are append-only');
END;

/* only payment_status and version may change on a fulfillment header */
DROP TRIGGER IF EXISTS trg_fulfillments_header_frozen;
CREATE TRIGGER trg_fulfillments_header_frozen
BEFORE UPDATE OF fulfillment_type, doc_no, parent_doc_id, date, due_date, subtotal, tax, total,
                 carrier, tracking_no, received_by, notes, created_at
ON fulfillments
BEGIN
  SELECT RAISE(ABORT, 'fulfillment documents are immutable');
END;

DROP TRIGGER IF EXISTS trg_invoice_payments_no_update;
CREATE TRIGGER trg_invoice_payments_no_update
BEFORE UPDATE ON invoice_payments
BEGIN
  SELECT RAISE(ABORT, 'payments are append-only');
END;

DROP TRIGGER IF EXISTS trg_invoice_payments_no_delete;
CREATE TRIGGER trg_invoice_payments_no_delete
BEFORE DELETE ON invoice_payments
BEGIN
  SELECT RAISE(ABORT, 'payments are append-only');
END;

DROP TRIGGER IF EXISTS trg_documents_no_delete;
CREATE TRIGGER trg_documents_no_delete
BEFORE DELETE ON documents
BEGIN
  SELECT RAISE(ABORT, 'documents cannot be deleted');
END;

/* a converted quotation keeps its terminal status and is otherwise frozen */
DROP TRIGGER IF EXISTS trg_accepted_quotation_frozen;
CREATE TRIGGER trg_accepted_quotation_frozen
BEFORE UPDATE ON documents
FOR EACH ROW
WHEN OLD.doc_type = 'quotation' AND OLD.quotation_status IN ('accepted','rejected')
BEGIN
  SELECT RAISE(ABORT, 'closed quotations are frozen');
END;


/* ======================== REFERENCE GUARDS ======================== */

DROP TRIGGER IF EXISTS trg_fulfillments_parent_type;
CREATE TRIGGER trg_fulfillments_parent_type
BEFORE INSERT ON fulfillments
FOR EACH ROW
BEGIN
  SELECT CASE
    WHEN NOT EXISTS (SELECT 1 FROM documents d WHERE d.doc_id = NEW.parent_doc_id)
      THEN RAISE(ABORT, 'Invalid parent document reference')
    WHEN NEW.fulfillment_type IN ('invoice','shipment')
         AND (SELECT doc_type FROM documents WHERE doc_id = NEW.parent_doc_id) <> 'sales_order'
      THEN RAISE(ABORT, 'Invoices and shipments must reference a sales order')
    WHEN NEW.fulfillment_type = 'receipt'
         AND (SELECT doc_type FROM documents WHERE doc_id = NEW.parent_doc_id) <> 'purchase_order'
      THEN RAISE(ABORT, 'Receipts must reference a purchase order')
    ELSE 1
  END;
END;

DROP TRIGGER IF EXISTS trg_fulfillment_lines_reference;
CREATE TRIGGER trg_fulfillment_lines_reference
BEFORE INSERT ON fulfillment_lines
FOR EACH ROW
BEGIN
  SELECT CASE
    WHEN NEW.fulfillment_type <> (SELECT fulfillment_type FROM fulfillments WHERE fulfillment_id = NEW.fulfillment_id)
      THEN RAISE(ABORT, 'Fulfillment line type must match its document')
    WHEN (SELECT doc_id FROM line_items WHERE item_id = NEW.item_id)
         <> (SELECT parent_doc_id FROM fulfillments WHERE fulfillment_id = NEW.fulfillment_id)
      THEN RAISE(ABORT, 'Fulfillment line must reference a line item of its parent document')
    ELSE 1
  END;
END;

/* capacity backstop: never consume more than ordered (authoritative check is Decimal, in Python) */
DROP TRIGGER IF EXISTS trg_fulfillment_lines_capacity;
CREATE TRIGGER trg_fulfillment_lines_capacity
BEFORE INSERT ON fulfillment_lines
FOR EACH ROW
BEGIN
  SELECT CASE
    WHEN (
      COALESCE((SELECT SUM(CAST(fl.quantity AS REAL)) FROM fulfillment_lines fl
                 WHERE fl.item_id = NEW.item_id AND fl.fulfillment_type = NEW.fulfillment_type), 0.0)
      + CAST(NEW.quantity AS REAL)
      - (SELECT CAST(quantity_ordered AS REAL) FROM line_items WHERE item_id = NEW.item_id)
    ) > 1e-9
    THEN RAISE(ABORT, 'Fulfillment exceeds ordered quantity')
    ELSE 1
  END;
END;

DROP TRIGGER IF EXISTS trg_disallow_payments_on_non_invoices;
CREATE TRIGGER trg_disallow_payments_on_non_invoices
BEFORE INSERT ON invoice_payments
FOR EACH ROW
BEGIN
  SELECT CASE
    WHEN COALESCE((SELECT fulfillment_type FROM fulfillments WHERE fulfillment_id = NEW.invoice_id), '') <> 'invoice'
      THEN RAISE(ABORT, 'Payments can only be recorded against invoices')
    ELSE 1
  END;
END;

/* overpayment backstop */
DROP TRIGGER IF EXISTS trg_invoice_payments_not_exceed_total;
CREATE TRIGGER trg_invoice_payments_not_exceed_total
BEFORE INSERT ON invoice_payments
FOR EACH ROW
BEGIN
  SELECT CASE
    WHEN (
      COALESCE((SELECT SUM(CAST(amount AS REAL)) FROM invoice_payments WHERE invoice_id = NEW.invoice_id), 0.0)
      + CAST(NEW.amount AS REAL)
      - (SELECT CAST(total AS REAL) FROM fulfillments WHERE fulfillment_id = NEW.invoice_id)
    ) > 1e-9
    THEN RAISE(ABORT, 'Payment exceeds invoice total')
    ELSE 1
  END;
END;
"""


def _seed_counters(conn: sqlite3.Connection) -> None:
    """Insert the per-kind counters once; existing counters are never reset."""
    conn.executemany(
        "INSERT OR IGNORE INTO document_counters(kind, prefix, next_value) VALUES (?, ?, ?);",
        [(kind, prefix, base) for kind, (prefix, base) in COUNTER_SEEDS.items()],
    )


def init_schema(db_path: Path | str) -> None:
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    try:
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        # Apply (idempotent) schema
        conn.executescript(SQL)
        _seed_counters(conn)
        conn.commit()
    finally:
        conn.close()


if __name__ == "__main__":
    target = sys.argv[1] if len(sys.argv) > 1 else Path(__file__).resolve().parents[2] / "data" / "ledger.db"
    init_schema(target)
    print(f"✓ DB applied to {target}")
