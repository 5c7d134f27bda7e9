from __future__ import annotations

from datetime import date
from decimal import Decimal
import sqlite3
from typing import Iterable, Optional, Sequence

from ...models import LineItem, NewLineItem, ParentDocument


class StaleVersionError(Exception):
    """A guarded UPDATE found a different version than the one it read."""


def _d(value) -> Optional[date]:
    return date.fromisoformat(value) if value else None


class DocumentsRepo:
    """
    Parent documents (quotations, sales orders, purchase orders) and their line items.

    Key behavior:
      - One `documents` table; doc_type tells the kinds apart.
      - Line items are immutable once inserted (DB trigger enforces).
      - Aggregate status columns are written only through update_statuses(),
        with an optimistic version guard; callers compute the values.
    """

    def __init__(self, conn: sqlite3.Connection):
        # ensure rows behave like dicts/tuples
        conn.row_factory = sqlite3.Row
        self.conn = conn

    # ---------------------------------------------------------------------
    # READ
    # ---------------------------------------------------------------------
    def get(self, doc_id: int) -> Optional[ParentDocument]:
        row = self.conn.execute("SELECT * FROM documents WHERE doc_id=?", (doc_id,)).fetchone()
        if row is None:
            return None
        return self._to_document(row, self.list_items(doc_id))

    def list_items(self, doc_id: int) -> tuple[LineItem, ...]:
        rows = self.conn.execute(
            """
            SELECT item_id, doc_id, position, product_id, product_name, description,
                   quantity_ordered, unit_price, tax_rate
              FROM line_items
             WHERE doc_id = ?
             ORDER BY position, item_id
            """,
            (doc_id,),
        ).fetchall()
        return tuple(
            LineItem(
                item_id=int(r["item_id"]),
                doc_id=int(r["doc_id"]),
                product_id=r["product_id"],
                product_name=r["product_name"],
                quantity_ordered=Decimal(r["quantity_ordered"]),
                unit_price=Decimal(r["unit_price"]),
                tax_rate=Decimal(r["tax_rate"]),
                description=r["description"],
                position=int(r["position"]),
            )
            for r in rows
        )

    def list_ids(self, doc_type: Optional[str] = None) -> list[int]:
        if doc_type is None:
            rows = self.conn.execute("SELECT doc_id FROM documents ORDER BY doc_id").fetchall()
        else:
            rows = self.conn.execute(
                "SELECT doc_id FROM documents WHERE doc_type=? ORDER BY doc_id", (doc_type,)
            ).fetchall()
        return [int(r["doc_id"]) for r in rows]

    @staticmethod
    def _to_document(row: sqlite3.Row, items: Sequence[LineItem]) -> ParentDocument:
        return ParentDocument(
            doc_id=int(row["doc_id"]),
            doc_type=row["doc_type"],
            doc_no=row["doc_no"],
            party_id=row["party_id"],
            party_name=row["party_name"],
            date=date.fromisoformat(row["date"]),
            items=tuple(items),
            delivery_date=_d(row["delivery_date"]),
            valid_until=_d(row["valid_until"]),
            quotation_status=row["quotation_status"],
            source_quotation_id=row["source_quotation_id"],
            invoice_status=row["invoice_status"],
            shipment_status=row["shipment_status"],
            payment_status=row["payment_status"],
            receipt_status=row["receipt_status"],
            notes=row["notes"],
            version=int(row["version"]),
        )

    # ---------------------------------------------------------------------
    # WRITES
    # ---------------------------------------------------------------------
    def insert_document(
        self,
        *,
        doc_type: str,
        doc_no: str,
        party_id: str,
        party_name: Optional[str],
        date: date,
        delivery_date: Optional[date] = None,
        valid_until: Optional[date] = None,
        quotation_status: Optional[str] = None,
        source_quotation_id: Optional[int] = None,
        statuses: Optional[dict[str, str]] = None,
        notes: Optional[str] = None,
    ) -> int:
        statuses = statuses or {}
        cur = self.conn.execute(
            """
            INSERT INTO documents (
                doc_type, doc_no, party_id, party_name, date, delivery_date, valid_until,
                quotation_status, source_quotation_id,
                invoice_status, shipment_status, payment_status, receipt_status, notes
            ) VALUES (
                :doc_type, :doc_no, :party_id, :party_name, :date, :delivery_date, :valid_until,
                :quotation_status, :source_quotation_id,
                :invoice_status, :shipment_status, :payment_status, :receipt_status, :notes
            )
            """,
            {
                "doc_type": doc_type,
                "doc_no": doc_no,
                "party_id": party_id,
                "party_name": party_name,
                "date": date.isoformat(),
                "delivery_date": delivery_date.isoformat() if delivery_date else None,
                "valid_until": valid_until.isoformat() if valid_until else None,
                "quotation_status": quotation_status,
                "source_quotation_id": source_quotation_id,
                "invoice_status": statuses.get("invoice_status"),
                "shipment_status": statuses.get("shipment_status"),
                "payment_status": statuses.get("payment_status"),
                "receipt_status": statuses.get("receipt_status"),
                "notes": notes,
            },
        )
        return int(cur.lastrowid)

    def insert_items(self, doc_id: int, items: Iterable[NewLineItem]) -> list[int]:
        ids: list[int] = []
        for pos, it in enumerate(items):
            cur = self.conn.execute(
                """
                INSERT INTO line_items (
                    doc_id, position, product_id, product_name, description,
                    quantity_ordered, unit_price, tax_rate
                ) VALUES (?,?,?,?,?,?,?,?)
                """,
                (
                    doc_id,
                    pos,
                    it.product_id,
                    it.product_name,
                    it.description,
                    str(it.quantity),
                    str(it.unit_price),
                    str(it.tax_rate),
                ),
            )
            ids.append(int(cur.lastrowid))
        return ids

    def update_statuses(self, doc_id: int, statuses: dict[str, str], *, expected_version: int) -> int:
        """
        Write derived status columns and bump version, guarded by expected_version.
        Returns the new version. Raises StaleVersionError if the row moved underneath us.
        """
        allowed = ("invoice_status", "shipment_status", "payment_status", "receipt_status")
        cols = [c for c in allowed if c in statuses]
        assignments = ", ".join(f"{c} = :{c}" for c in cols)
        sets = f"{assignments}, version = version + 1" if assignments else "version = version + 1"
        params = {c: statuses[c] for c in cols}
        params.update({"doc_id": doc_id, "expected_version": expected_version})
        cur = self.conn.execute(
            f"UPDATE documents SET {sets} WHERE doc_id = :doc_id AND version = :expected_version",
            params,
        )
        if cur.rowcount == 0:
            raise StaleVersionError(f"Document {doc_id} changed concurrently (expected v{expected_version}).")
        return expected_version + 1

    def set_quotation_status(self, doc_id: int, status: str, *, expected_version: int) -> int:
        cur = self.conn.execute(
            """
            UPDATE documents
               SET quotation_status = :status, version = version + 1
             WHERE doc_id = :doc_id AND doc_type = 'quotation' AND version = :expected_version
            """,
            {"status": status, "doc_id": doc_id, "expected_version": expected_version},
        )
        if cur.rowcount == 0:
            raise StaleVersionError(f"Quotation {doc_id} changed concurrently (expected v{expected_version}).")
        return expected_version + 1
