from __future__ import annotations

from datetime import date
from decimal import Decimal
import sqlite3
from typing import Iterable, Optional

from ...constants import PAYMENT_METHODS
from ...errors import InvalidRequest
from ...models import PaymentRecord


class InvoicePaymentsRepo:
    """
    Payments recorded against invoices. Append-only: no update, no delete.
    The overpayment check lives in the orchestrator (Decimal) with a trigger backstop.
    """

    METHODS = PAYMENT_METHODS

    def __init__(self, conn: sqlite3.Connection):
        conn.row_factory = sqlite3.Row
        self.conn = conn

    # ------------------------- helpers -------------------------

    def _normalize_method(self, method: Optional[str]) -> str:
        """Case-insensitive match against METHODS; unknown values fall back to 'Other'."""
        if method is None:
            return "Cash"
        if not isinstance(method, str):
            raise InvalidRequest(f"Payment method must be text, got {method!r}.", field="method")
        m = method.strip()
        if not m:
            return "Cash"
        for allowed in self.METHODS:
            if m.lower() == allowed.lower():
                return allowed
        return "Other"

    @staticmethod
    def _to_record(r: sqlite3.Row) -> PaymentRecord:
        return PaymentRecord(
            payment_id=int(r["payment_id"]),
            invoice_id=int(r["invoice_id"]),
            amount=Decimal(r["amount"]),
            date=date.fromisoformat(r["date"]),
            method=r["method"],
            reference=r["reference"],
            notes=r["notes"],
        )

    # ------------------------- writes -------------------------

    def record_payment(
        self,
        *,
        invoice_id: int,
        amount: Decimal,
        date: date,
        method: Optional[str] = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> int:
        cur = self.conn.execute(
            """
            INSERT INTO invoice_payments (invoice_id, amount, date, method, reference, notes)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (invoice_id, str(amount), date.isoformat(), self._normalize_method(method), reference, notes),
        )
        return int(cur.lastrowid)

    # ------------------------- reads -------------------------

    def list_by_invoice(self, invoice_id: int) -> list[PaymentRecord]:
        rows = self.conn.execute(
            "SELECT * FROM invoice_payments WHERE invoice_id=? ORDER BY date, payment_id",
            (invoice_id,),
        ).fetchall()
        return [self._to_record(r) for r in rows]

    def list_by_invoices(self, invoice_ids: Iterable[int]) -> dict[int, list[PaymentRecord]]:
        """Payments grouped by invoice id; every requested id is present (possibly empty)."""
        ids = list(invoice_ids)
        out: dict[int, list[PaymentRecord]] = {i: [] for i in ids}
        if not ids:
            return out
        placeholders = ",".join("?" for _ in ids)
        rows = self.conn.execute(
            f"SELECT * FROM invoice_payments WHERE invoice_id IN ({placeholders}) ORDER BY date, payment_id",
            ids,
        ).fetchall()
        for r in rows:
            out[int(r["invoice_id"])].append(self._to_record(r))
        return out
