from __future__ import annotations

from datetime import date
from decimal import Decimal
import sqlite3
from typing import Iterable, Optional

from ...models import FulfillmentDocument, FulfillmentLine
from .documents_repo import StaleVersionError


def _d(value) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _dec(value) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


class FulfillmentsRepo:
    """
    Invoices, shipments and receipts: header + lines, append-only.

    Only invoices carry money columns and a payment_status; payment_status
    (and version) is the single header field allowed to change after insert.
    """

    def __init__(self, conn: sqlite3.Connection):
        conn.row_factory = sqlite3.Row
        self.conn = conn

    # ---------------------------------------------------------------------
    # READ
    # ---------------------------------------------------------------------
    def get(self, fulfillment_id: int) -> Optional[FulfillmentDocument]:
        row = self.conn.execute(
            "SELECT * FROM fulfillments WHERE fulfillment_id=?", (fulfillment_id,)
        ).fetchone()
        if row is None:
            return None
        return self._to_document(row, self.list_lines(fulfillment_id))

    def list_lines(self, fulfillment_id: int) -> tuple[FulfillmentLine, ...]:
        rows = self.conn.execute(
            """
            SELECT line_id, fulfillment_id, item_id, fulfillment_type, quantity
              FROM fulfillment_lines
             WHERE fulfillment_id = ?
             ORDER BY line_id
            """,
            (fulfillment_id,),
        ).fetchall()
        return tuple(self._to_line(r) for r in rows)

    def list_for_parent(self, parent_doc_id: int, fulfillment_type: Optional[str] = None) -> list[FulfillmentDocument]:
        """Every fulfillment document of a parent (optionally one type), oldest first, lines included."""
        sql = "SELECT * FROM fulfillments WHERE parent_doc_id = ?"
        params: list = [parent_doc_id]
        if fulfillment_type is not None:
            sql += " AND fulfillment_type = ?"
            params.append(fulfillment_type)
        sql += " ORDER BY fulfillment_id"
        headers = self.conn.execute(sql, params).fetchall()

        lines_by_header: dict[int, list[FulfillmentLine]] = {}
        for ln in self.lines_for_parent(parent_doc_id, fulfillment_type):
            lines_by_header.setdefault(ln.fulfillment_id, []).append(ln)
        return [
            self._to_document(h, lines_by_header.get(int(h["fulfillment_id"]), ()))
            for h in headers
        ]

    def lines_for_parent(self, parent_doc_id: int, fulfillment_type: Optional[str] = None) -> list[FulfillmentLine]:
        sql = """
            SELECT fl.line_id, fl.fulfillment_id, fl.item_id, fl.fulfillment_type, fl.quantity
              FROM fulfillment_lines fl
              JOIN fulfillments f ON f.fulfillment_id = fl.fulfillment_id
             WHERE f.parent_doc_id = ?
        """
        params: list = [parent_doc_id]
        if fulfillment_type is not None:
            sql += " AND fl.fulfillment_type = ?"
            params.append(fulfillment_type)
        sql += " ORDER BY fl.line_id"
        return [self._to_line(r) for r in self.conn.execute(sql, params).fetchall()]

    @staticmethod
    def _to_line(r: sqlite3.Row) -> FulfillmentLine:
        return FulfillmentLine(
            item_id=int(r["item_id"]),
            quantity=Decimal(r["quantity"]),
            fulfillment_type=r["fulfillment_type"],
            line_id=int(r["line_id"]),
            fulfillment_id=int(r["fulfillment_id"]),
        )

    @staticmethod
    def _to_document(row: sqlite3.Row, lines: Iterable[FulfillmentLine]) -> FulfillmentDocument:
        return FulfillmentDocument(
            fulfillment_id=int(row["fulfillment_id"]),
            fulfillment_type=row["fulfillment_type"],
            parent_doc_id=int(row["parent_doc_id"]),
            date=date.fromisoformat(row["date"]),
            lines=tuple(lines),
            doc_no=row["doc_no"],
            due_date=_d(row["due_date"]),
            subtotal=_dec(row["subtotal"]),
            tax=_dec(row["tax"]),
            total=_dec(row["total"]),
            payment_status=row["payment_status"],
            carrier=row["carrier"],
            tracking_no=row["tracking_no"],
            received_by=row["received_by"],
            notes=row["notes"],
            version=int(row["version"]),
        )

    # ---------------------------------------------------------------------
    # WRITES
    # ---------------------------------------------------------------------
    def insert_header(
        self,
        *,
        fulfillment_type: str,
        parent_doc_id: int,
        date: date,
        doc_no: Optional[str] = None,
        due_date: Optional[date] = None,
        subtotal: Optional[Decimal] = None,
        tax: Optional[Decimal] = None,
        total: Optional[Decimal] = None,
        payment_status: Optional[str] = None,
        carrier: Optional[str] = None,
        tracking_no: Optional[str] = None,
        received_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> int:
        cur = self.conn.execute(
            """
            INSERT INTO fulfillments (
                fulfillment_type, doc_no, parent_doc_id, date, due_date,
                subtotal, tax, total, payment_status,
                carrier, tracking_no, received_by, notes
            ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)
            """,
            (
                fulfillment_type,
                doc_no,
                parent_doc_id,
                date.isoformat(),
                due_date.isoformat() if due_date else None,
                str(subtotal) if subtotal is not None else None,
                str(tax) if tax is not None else None,
                str(total) if total is not None else None,
                payment_status,
                carrier,
                tracking_no,
                received_by,
                notes,
            ),
        )
        return int(cur.lastrowid)

    def insert_lines(self, fulfillment_id: int, lines: Iterable[FulfillmentLine]) -> list[int]:
        ids: list[int] = []
        for ln in lines:
            cur = self.conn.execute(
                """
                INSERT INTO fulfillment_lines (fulfillment_id, item_id, fulfillment_type, quantity)
                VALUES (?, ?, ?, ?)
                """,
                (fulfillment_id, ln.item_id, ln.fulfillment_type, str(ln.quantity)),
            )
            ids.append(int(cur.lastrowid))
        return ids

    def update_payment_status(self, fulfillment_id: int, status: str, *, expected_version: int) -> int:
        cur = self.conn.execute(
            """
            UPDATE fulfillments
               SET payment_status = ?, version = version + 1
             WHERE fulfillment_id = ? AND fulfillment_type = 'invoice' AND version = ?
            """,
            (status, fulfillment_id, expected_version),
        )
        if cur.rowcount == 0:
            raise StaleVersionError(
                f"Invoice {fulfillment_id} changed concurrently (expected v{expected_version})."
            )
        return expected_version + 1
