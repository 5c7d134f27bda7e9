"""
fulfillment/orchestrator.py

Every state-changing action on the ledger goes through FulfillmentOrchestrator:

    requested -> validating -> committed | rejected      (or unchanged for a no-op)

One action = one IMMEDIATE transaction. Inside it the parent document and its
complete fulfillment history are loaded, the request is validated line by line,
and only then are document numbers allocated, rows inserted and ancestor
statuses recomputed. Any failure rolls the whole transaction back.

Nothing raises past this class: actions return a FulfillmentResult carrying
either the committed document or a typed FulfillmentError. Read helpers
(remaining quantities, balances, document reads) raise NotFound instead.
"""
from __future__ import annotations

from datetime import date
from decimal import Decimal
import logging
import sqlite3
import time
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from ...config import BUSY_BACKOFF_SECONDS, BUSY_RETRIES, INVOICE_DUE_DAYS
from ...constants import (
    DOC_PURCHASE_ORDER,
    DOC_QUOTATION,
    DOC_SALES_ORDER,
    FT_INVOICE,
    FT_RECEIPT,
    FT_SHIPMENT,
    COVERAGE_NONE,
    PARENT_TYPE_BY_FULFILLMENT,
    QUOTATION_ACCEPTED,
    QUOTATION_OPEN,
    QUOTATION_REJECTED,
    STATUS_INVOICE,
    STATUS_PAYMENT,
    STATUS_RECEIPT,
    STATUS_SHIPMENT,
)
from ...database.ledger_store import LedgerSession, LedgerStore
from ...database.repositories import StaleVersionError
from ...errors import (
    Busy,
    FulfillmentError,
    InvalidRequest,
    InvariantViolation,
    NotFound,
    OverPayment,
)
from ...models import (
    FulfillmentDocument,
    InvoiceBalance,
    LineItem,
    NewLineItem,
    ParentDocument,
    RemainingLine,
)
from ...utils.helpers import add_days, parse_iso_date
from ...utils.loggers import get_logger, log_event
from ...utils.validators import non_empty, try_parse_decimal
from ..payments.calculations import (
    ZERO,
    invoice_totals,
    is_whole_cents,
    remaining_due,
    total_paid,
)
from ..reconciliation.quantities import (
    consumed_by_item,
    first_over_consumed,
    fulfill_all_remaining,
    normalize_request_lines,
    remaining_by_item,
    validate_batch,
)
from ..status.derivation import (
    derive_document_statuses,
    invoice_payment_status,
    visible_invoice_status,
    visible_quotation_status,
)
from ..status.vocabulary import domain_value
from .results import BUSY, REJECTED, REQUESTED, VALIDATING, FulfillmentResult

_log = get_logger(__name__)

# entity names used in NotFound / Busy
_ENTITY = {
    DOC_QUOTATION: "quotation",
    DOC_SALES_ORDER: "sales_order",
    DOC_PURCHASE_ORDER: "purchase_order",
    FT_INVOICE: "invoice",
}

# statuses a freshly created parent starts with
_INITIAL_STATUSES = {
    DOC_SALES_ORDER: (STATUS_INVOICE, STATUS_SHIPMENT, STATUS_PAYMENT),
    DOC_PURCHASE_ORDER: (STATUS_RECEIPT,),
    DOC_QUOTATION: (),
}


# ---------------------------------------------------------------------------
# Input coercion
# ---------------------------------------------------------------------------

def _date_arg(value: Any, field: str, default: Optional[date]) -> Optional[date]:
    try:
        parsed = parse_iso_date(value)
    except ValueError as e:
        raise InvalidRequest(str(e), field=field) from None
    return parsed if parsed is not None else default


def _text_arg(value: Any, field: str) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    raise InvalidRequest(f"{field} must be text, got {type(value).__name__}.", field=field)


def _decimal_arg(raw: Any, field: str, position: int) -> Decimal:
    ok, val = try_parse_decimal(raw)
    if not ok:
        raise InvalidRequest(f"Item {position + 1}: {field} {raw!r} is not a number.", field=field)
    return val  # type: ignore[return-value]


def _coerce_new_item(raw: Any, position: int) -> NewLineItem:
    """NewLineItem or a mapping in snake_case or camelCase -> validated NewLineItem."""
    if isinstance(raw, NewLineItem):
        product_id, product_name = raw.product_id, raw.product_name
        quantity, unit_price, tax_rate = raw.quantity, raw.unit_price, raw.tax_rate
        description = raw.description
    elif isinstance(raw, Mapping):
        product_id = raw.get("product_id", raw.get("productId"))
        product_name = raw.get("product_name", raw.get("productName"))
        quantity = _decimal_arg(raw.get("quantity"), "quantity", position)
        unit_price = _decimal_arg(raw.get("unit_price", raw.get("unitPrice")), "unitPrice", position)
        tax_raw = raw.get("tax_rate", raw.get("taxRate", 0))
        tax_rate = _decimal_arg(tax_raw, "taxRate", position)
        description = _text_arg(raw.get("description"), "description")
    else:
        raise InvalidRequest(f"Item {position + 1}: unrecognised line item {raw!r}.", field="items")

    if not non_empty(product_id):
        raise InvalidRequest(f"Item {position + 1}: product id is required.", field="productId")
    if not non_empty(product_name):
        raise InvalidRequest(f"Item {position + 1}: product name is required.", field="productName")
    if quantity < ZERO:
        raise InvalidRequest(f"Item {position + 1}: quantity cannot be negative.", field="quantity")
    if unit_price < ZERO:
        raise InvalidRequest(f"Item {position + 1}: unit price cannot be negative.", field="unitPrice")
    if not (ZERO <= tax_rate <= Decimal("1")):
        raise InvalidRequest(f"Item {position + 1}: tax rate must be between 0 and 1.", field="taxRate")

    return NewLineItem(
        product_id=str(product_id).strip(),
        product_name=str(product_name).strip(),
        quantity=quantity,
        unit_price=unit_price,
        tax_rate=tax_rate,
        description=description,
    )


def _copy_items(items: Iterable[LineItem]) -> list[NewLineItem]:
    return [
        NewLineItem(
            product_id=it.product_id,
            product_name=it.product_name,
            quantity=it.quantity_ordered,
            unit_price=it.unit_price,
            tax_rate=it.tax_rate,
            description=it.description,
        )
        for it in items
    ]


class FulfillmentOrchestrator:
    """
    Entry point for every document-creation action.

    `clock` supplies "today" (default dates, overdue/expired overlays); tests
    pass a fixed one. Lock contention is retried `retries` times with a linear
    back-off before the action is rejected with Busy.
    """

    def __init__(
        self,
        store: LedgerStore,
        *,
        clock: Callable[[], date] = date.today,
        retries: int = BUSY_RETRIES,
        backoff: float = BUSY_BACKOFF_SECONDS,
        due_days: int = INVOICE_DUE_DAYS,
    ):
        self.store = store
        self.clock = clock
        self.retries = retries
        self.backoff = backoff
        self.due_days = due_days

    def today(self) -> date:
        return self.clock()

    # ======================================================================
    # State machine
    # ======================================================================

    def _run(
        self,
        op: str,
        resource: str,
        action: Callable[[LedgerSession], FulfillmentResult],
    ) -> FulfillmentResult:
        log_event(_log, op, REQUESTED, "Action requested", extra={"resource": resource})
        attempt = 0
        while True:
            attempt += 1
            try:
                with self.store.transaction(resource) as session:
                    log_event(
                        _log, op, VALIDATING, "Validating",
                        extra={"resource": resource, "attempt": attempt},
                        level=logging.DEBUG,
                    )
                    result = action(session)
            except (Busy, StaleVersionError) as e:
                if attempt <= self.retries:
                    log_event(
                        _log, op, BUSY, "Lock contention; retrying",
                        extra={"resource": resource, "attempt": attempt},
                        level=logging.WARNING,
                    )
                    time.sleep(self.backoff * attempt)
                    continue
                err = e if isinstance(e, Busy) else Busy(resource)
                log_event(
                    _log, op, REJECTED, "Gave up waiting for lock",
                    extra={"resource": resource, "error": err.code, "attempts": attempt},
                    level=logging.WARNING,
                )
                return FulfillmentResult.rejected(err)
            except InvariantViolation as e:
                return self._fatal(op, resource, e)
            except FulfillmentError as e:
                log_event(
                    _log, op, REJECTED, e.message,
                    extra={"resource": resource, "error": e.code, **e.details()},
                )
                return FulfillmentResult.rejected(e)
            except sqlite3.IntegrityError as e:
                return self._fatal(op, resource, InvariantViolation(f"Ledger constraint failed: {e}"))
            except Exception as e:
                return self._fatal(op, resource, InvariantViolation(f"Unexpected error: {e!r}"))

            doc_no = getattr(result.document, "doc_no", None)
            log_event(
                _log, op, result.state, f"Action {result.state}",
                extra={"resource": resource, "doc_no": doc_no},
            )
            return result

    @staticmethod
    def _fatal(op: str, resource: str, err: InvariantViolation) -> FulfillmentResult:
        _log.critical("%s on %s hit an invariant violation: %s", op, resource, err.message, exc_info=True)
        return FulfillmentResult.rejected(err)

    # ======================================================================
    # Shared steps (run inside an open transaction)
    # ======================================================================

    @staticmethod
    def _load_parent(session: LedgerSession, doc_id: int, doc_type: str) -> ParentDocument:
        doc = session.documents.get(doc_id)
        if doc is None or doc.doc_type != doc_type:
            raise NotFound(_ENTITY[doc_type], doc_id)
        return doc

    @staticmethod
    def _load_invoice(session: LedgerSession, invoice_id: int) -> FulfillmentDocument:
        inv = session.fulfillments.get(invoice_id)
        if inv is None or not inv.is_invoice:
            raise NotFound("invoice", invoice_id)
        if inv.total is None:
            raise InvariantViolation(f"Invoice {invoice_id} has no total.")
        return inv

    @staticmethod
    def _refresh_parent(session: LedgerSession, doc: ParentDocument) -> ParentDocument:
        """Re-derive every aggregate status of `doc` from its children and persist it."""
        fulfillments = session.fulfillments.list_for_parent(doc.doc_id)
        invoice_ids = [f.fulfillment_id for f in fulfillments if f.is_invoice]
        payments = session.payments.list_by_invoices(invoice_ids)
        statuses = derive_document_statuses(doc, fulfillments, payments)
        session.documents.update_statuses(doc.doc_id, statuses, expected_version=doc.version)
        return session.documents.get(doc.doc_id)  # type: ignore[return-value]

    def _insert_parent(
        self,
        session: LedgerSession,
        *,
        doc_type: str,
        party_id: str,
        party_name: Optional[str],
        doc_date: date,
        items: Sequence[NewLineItem],
        delivery_date: Optional[date] = None,
        valid_until: Optional[date] = None,
        source_quotation_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> ParentDocument:
        statuses = {f: domain_value(f, COVERAGE_NONE) for f in _INITIAL_STATUSES[doc_type]}
        doc_no = session.counters.allocate(doc_type)
        doc_id = session.documents.insert_document(
            doc_type=doc_type,
            doc_no=doc_no,
            party_id=party_id,
            party_name=party_name,
            date=doc_date,
            delivery_date=delivery_date,
            valid_until=valid_until,
            quotation_status=QUOTATION_OPEN if doc_type == DOC_QUOTATION else None,
            source_quotation_id=source_quotation_id,
            statuses=statuses,
            notes=notes,
        )
        session.documents.insert_items(doc_id, items)
        return session.documents.get(doc_id)  # type: ignore[return-value]

    # ======================================================================
    # Parent documents
    # ======================================================================

    def _create_parent(
        self,
        op: str,
        doc_type: str,
        party_id: str,
        items: Sequence[Any],
        *,
        party_name: Optional[str],
        doc_date: Any,
        delivery_date: Any = None,
        valid_until: Any = None,
        notes: Optional[str] = None,
    ) -> FulfillmentResult:
        def action(session: LedgerSession) -> FulfillmentResult:
            if not non_empty(party_id):
                raise InvalidRequest("Party id is required.", field="partyId")
            if not isinstance(items, Sequence) or isinstance(items, (str, bytes)):
                raise InvalidRequest("items must be a list.", field="items")
            if not items:
                raise InvalidRequest("At least one line item is required.", field="items")
            parsed = [_coerce_new_item(raw, i) for i, raw in enumerate(items)]
            d = _date_arg(doc_date, "date", self.today())
            vu = _date_arg(valid_until, "validUntil", None)
            if vu is not None and vu < d:
                raise InvalidRequest("Valid-until date cannot be before the quotation date.", field="validUntil")
            doc = self._insert_parent(
                session,
                doc_type=doc_type,
                party_id=str(party_id).strip(),
                party_name=_text_arg(party_name, "partyName"),
                doc_date=d,
                items=parsed,
                delivery_date=_date_arg(delivery_date, "deliveryDate", None),
                valid_until=vu,
                notes=_text_arg(notes, "notes"),
            )
            return FulfillmentResult.committed(doc)

        return self._run(op, f"{doc_type}:new", action)

    def create_quotation(
        self,
        party_id: str,
        items: Sequence[Any],
        *,
        party_name: Optional[str] = None,
        date: Any = None,
        valid_until: Any = None,
        notes: Optional[str] = None,
    ) -> FulfillmentResult:
        return self._create_parent(
            "create_quotation", DOC_QUOTATION, party_id, items,
            party_name=party_name, doc_date=date, valid_until=valid_until, notes=notes,
        )

    def create_sales_order(
        self,
        party_id: str,
        items: Sequence[Any],
        *,
        party_name: Optional[str] = None,
        date: Any = None,
        delivery_date: Any = None,
        notes: Optional[str] = None,
    ) -> FulfillmentResult:
        return self._create_parent(
            "create_sales_order", DOC_SALES_ORDER, party_id, items,
            party_name=party_name, doc_date=date, delivery_date=delivery_date, notes=notes,
        )

    def create_purchase_order(
        self,
        party_id: str,
        items: Sequence[Any],
        *,
        party_name: Optional[str] = None,
        date: Any = None,
        delivery_date: Any = None,
        notes: Optional[str] = None,
    ) -> FulfillmentResult:
        return self._create_parent(
            "create_purchase_order", DOC_PURCHASE_ORDER, party_id, items,
            party_name=party_name, doc_date=date, delivery_date=delivery_date, notes=notes,
        )

    # ---------------------------- Quotations ----------------------------

    def _open_quotation(self, session: LedgerSession, quotation_id: int, verb: str) -> ParentDocument:
        quo = self._load_parent(session, quotation_id, DOC_QUOTATION)
        visible = visible_quotation_status(quo.quotation_status, quo.valid_until, self.today())
        if visible != QUOTATION_OPEN:
            raise InvalidRequest(
                f"Quotation {quo.doc_no} is {visible}; only open quotations can be {verb}.",
                field="quotationStatus",
            )
        return quo

    def convert_quotation(
        self,
        quotation_id: int,
        *,
        date: Any = None,
        delivery_date: Any = None,
        notes: Optional[str] = None,
    ) -> FulfillmentResult:
        """
        Open quotation -> new sales order carrying the same line items.
        The quotation becomes 'accepted' (and frozen) in the same transaction.
        """
        def action(session: LedgerSession) -> FulfillmentResult:
            quo = self._open_quotation(session, quotation_id, "converted")
            order = self._insert_parent(
                session,
                doc_type=DOC_SALES_ORDER,
                party_id=quo.party_id,
                party_name=quo.party_name,
                doc_date=_date_arg(date, "date", self.today()),
                items=_copy_items(quo.items),
                delivery_date=_date_arg(delivery_date, "deliveryDate", None),
                source_quotation_id=quo.doc_id,
                notes=_text_arg(notes, "notes") if notes is not None else quo.notes,
            )
            session.documents.set_quotation_status(
                quo.doc_id, QUOTATION_ACCEPTED, expected_version=quo.version
            )
            return FulfillmentResult.committed(order)

        return self._run("convert_quotation", f"quotation:{quotation_id}", action)

    def reject_quotation(self, quotation_id: int) -> FulfillmentResult:
        def action(session: LedgerSession) -> FulfillmentResult:
            quo = self._load_parent(session, quotation_id, DOC_QUOTATION)
            if quo.quotation_status != QUOTATION_OPEN:
                raise InvalidRequest(
                    f"Quotation {quo.doc_no} is already {quo.quotation_status}.",
                    field="quotationStatus",
                )
            session.documents.set_quotation_status(
                quo.doc_id, QUOTATION_REJECTED, expected_version=quo.version
            )
            return FulfillmentResult.committed(session.documents.get(quo.doc_id))

        return self._run("reject_quotation", f"quotation:{quotation_id}", action)

    # ======================================================================
    # Fulfillments (invoice / shipment / receipt)
    # ======================================================================

    def _fulfill(
        self,
        op: str,
        fulfillment_type: str,
        parent_id: int,
        lines: Optional[Iterable[Any]],
        *,
        doc_date: Any = None,
        due_date: Any = None,
        carrier: Optional[str] = None,
        tracking_no: Optional[str] = None,
        received_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> FulfillmentResult:
        """`lines=None` means "everything that is still remaining"."""
        parent_type = PARENT_TYPE_BY_FULFILLMENT[fulfillment_type]
        # materialised once so a retry sees the same lines
        bad_lines = False
        if lines is not None:
            if isinstance(lines, (str, bytes, Mapping)):
                bad_lines = True
            else:
                try:
                    lines = list(lines)
                except TypeError:
                    bad_lines = True

        def action(session: LedgerSession) -> FulfillmentResult:
            if bad_lines:
                raise InvalidRequest("lines must be a list of {lineItemId, quantity}.", field="lines")
            d = _date_arg(doc_date, "date", self.today())
            texts = {
                "notes": _text_arg(notes, "notes"),
                "carrier": _text_arg(carrier, "carrier"),
                "tracking_no": _text_arg(tracking_no, "trackingNo"),
                "received_by": _text_arg(received_by, "receivedBy"),
            }
            parent = self._load_parent(session, parent_id, parent_type)
            existing = session.fulfillments.lines_for_parent(parent_id, fulfillment_type)

            if lines is None:
                requests = fulfill_all_remaining(parent, existing)
            else:
                requests = normalize_request_lines(lines)
            if not requests:
                return FulfillmentResult.unchanged(parent)

            proposed = validate_batch(parent, existing, requests, fulfillment_type=fulfillment_type)

            header: dict[str, Any] = {"notes": texts["notes"]}
            if fulfillment_type == FT_INVOICE:
                due = _date_arg(due_date, "dueDate", add_days(d, self.due_days))
                if due < d:
                    raise InvalidRequest("Due date cannot be before the invoice date.", field="dueDate")
                subtotal, tax, total = invoice_totals({it.item_id: it for it in parent.items}, proposed)
                header.update(
                    doc_no=session.counters.allocate(FT_INVOICE),
                    due_date=due,
                    subtotal=subtotal,
                    tax=tax,
                    total=total,
                    payment_status=invoice_payment_status(total, ()),
                )
            elif fulfillment_type == FT_SHIPMENT:
                header.update(carrier=texts["carrier"], tracking_no=texts["tracking_no"])
            else:
                header.update(received_by=texts["received_by"])

            fid = session.fulfillments.insert_header(
                fulfillment_type=fulfillment_type,
                parent_doc_id=parent_id,
                date=d,
                **header,
            )
            session.fulfillments.insert_lines(fid, proposed)

            after = session.fulfillments.lines_for_parent(parent_id, fulfillment_type)
            over = first_over_consumed(parent, after)
            if over is not None:
                raise InvariantViolation(f"Line item {over} over-consumed after {fulfillment_type}.")

            self._refresh_parent(session, parent)
            return FulfillmentResult.committed(session.fulfillments.get(fid))

        return self._run(op, f"{parent_type}:{parent_id}", action)

    def create_invoice(
        self,
        sales_order_id: int,
        lines: Iterable[Any],
        *,
        date: Any = None,
        due_date: Any = None,
        notes: Optional[str] = None,
    ) -> FulfillmentResult:
        return self._fulfill(
            "create_invoice", FT_INVOICE, sales_order_id, lines,
            doc_date=date, due_date=due_date, notes=notes,
        )

    def create_shipment(
        self,
        sales_order_id: int,
        lines: Iterable[Any],
        *,
        date: Any = None,
        carrier: Optional[str] = None,
        tracking_no: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> FulfillmentResult:
        return self._fulfill(
            "create_shipment", FT_SHIPMENT, sales_order_id, lines,
            doc_date=date, carrier=carrier, tracking_no=tracking_no, notes=notes,
        )

    def create_receipt(
        self,
        purchase_order_id: int,
        lines: Iterable[Any],
        *,
        date: Any = None,
        received_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> FulfillmentResult:
        return self._fulfill(
            "create_receipt", FT_RECEIPT, purchase_order_id, lines,
            doc_date=date, received_by=received_by, notes=notes,
        )

    def invoice_all_remaining(self, sales_order_id: int, **header: Any) -> FulfillmentResult:
        return self._fulfill(
            "invoice_all_remaining", FT_INVOICE, sales_order_id, None,
            doc_date=header.get("date"), due_date=header.get("due_date"), notes=header.get("notes"),
        )

    def ship_all_remaining(self, sales_order_id: int, **header: Any) -> FulfillmentResult:
        return self._fulfill(
            "ship_all_remaining", FT_SHIPMENT, sales_order_id, None,
            doc_date=header.get("date"), carrier=header.get("carrier"),
            tracking_no=header.get("tracking_no"), notes=header.get("notes"),
        )

    def receive_all_remaining(self, purchase_order_id: int, **header: Any) -> FulfillmentResult:
        return self._fulfill(
            "receive_all_remaining", FT_RECEIPT, purchase_order_id, None,
            doc_date=header.get("date"), received_by=header.get("received_by"), notes=header.get("notes"),
        )

    # ======================================================================
    # Payments
    # ======================================================================

    def record_payment(
        self,
        invoice_id: int,
        amount: Any,
        *,
        date: Any = None,
        method: Optional[str] = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> FulfillmentResult:
        """
        Append one payment to an invoice. The committed document is the invoice
        with its refreshed payment_status; the sales order's payment_status is
        refreshed in the same transaction.
        """
        def action(session: LedgerSession) -> FulfillmentResult:
            ok, amt = try_parse_decimal(amount)
            if not ok:
                raise InvalidRequest(f"Payment amount {amount!r} is not a number.", field="amount")
            if amt <= ZERO:
                raise InvalidRequest("Payment amount must be greater than zero.", field="amount")
            if not is_whole_cents(amt):
                raise InvalidRequest("Payment amount must be in whole cents.", field="amount")
            d = _date_arg(date, "date", self.today())
            method_text = _text_arg(method, "method")
            reference_text = _text_arg(reference, "reference")
            notes_text = _text_arg(notes, "notes")

            inv = self._load_invoice(session, invoice_id)
            payments = session.payments.list_by_invoice(invoice_id)
            left = remaining_due(inv.total, total_paid(payments))  # type: ignore[arg-type]
            if left < ZERO:
                raise InvariantViolation(f"Invoice {invoice_id} is overpaid by {-left}.")
            if amt > left:
                raise OverPayment(invoice_id, amt, left)

            session.payments.record_payment(
                invoice_id=invoice_id, amount=amt, date=d,
                method=method_text, reference=reference_text, notes=notes_text,
            )
            status = invoice_payment_status(inv.total, session.payments.list_by_invoice(invoice_id))  # type: ignore[arg-type]
            session.fulfillments.update_payment_status(invoice_id, status, expected_version=inv.version)

            order = self._load_parent(session, inv.parent_doc_id, DOC_SALES_ORDER)
            self._refresh_parent(session, order)
            return FulfillmentResult.committed(session.fulfillments.get(invoice_id))

        return self._run("record_payment", f"invoice:{invoice_id}", action)

    # ======================================================================
    # Read projections (always recomputed from the ledger)
    # ======================================================================

    def get_document(self, doc_id: int, doc_type: Optional[str] = None) -> ParentDocument:
        with self.store.snapshot() as s:
            doc = s.documents.get(doc_id)
        if doc is None or (doc_type is not None and doc.doc_type != doc_type):
            raise NotFound(_ENTITY.get(doc_type or "", "document"), doc_id)
        return doc

    def get_invoice(self, invoice_id: int) -> FulfillmentDocument:
        with self.store.snapshot() as s:
            return self._load_invoice(s, invoice_id)

    def list_fulfillments(self, parent_id: int, fulfillment_type: Optional[str] = None) -> list[FulfillmentDocument]:
        with self.store.snapshot() as s:
            return s.fulfillments.list_for_parent(parent_id, fulfillment_type)

    def _remaining(self, doc_id: int, doc_type: str, fulfillment_types: Sequence[str]) -> list[RemainingLine]:
        with self.store.snapshot() as s:
            doc = self._load_parent(s, doc_id, doc_type)
            ledgers = {ft: s.fulfillments.lines_for_parent(doc_id, ft) for ft in fulfillment_types}
        used = {ft: consumed_by_item(lines) for ft, lines in ledgers.items()}
        left = {ft: remaining_by_item(doc, lines) for ft, lines in ledgers.items()}
        return [
            RemainingLine(
                item_id=it.item_id,
                product_id=it.product_id,
                product_name=it.product_name,
                quantity_ordered=it.quantity_ordered,
                consumed={ft: used[ft].get(it.item_id, ZERO) for ft in fulfillment_types},
                remaining={ft: left[ft][it.item_id] for ft in fulfillment_types},
            )
            for it in doc.items
        ]

    def sales_order_remaining(self, sales_order_id: int) -> list[RemainingLine]:
        return self._remaining(sales_order_id, DOC_SALES_ORDER, (FT_INVOICE, FT_SHIPMENT))

    def purchase_order_remaining(self, purchase_order_id: int) -> list[RemainingLine]:
        return self._remaining(purchase_order_id, DOC_PURCHASE_ORDER, (FT_RECEIPT,))

    def invoice_balance(self, invoice_id: int) -> InvoiceBalance:
        with self.store.snapshot() as s:
            inv = self._load_invoice(s, invoice_id)
            payments = s.payments.list_by_invoice(invoice_id)
        paid = total_paid(payments)
        status = invoice_payment_status(inv.total, payments)  # type: ignore[arg-type]
        return InvoiceBalance(
            invoice_id=inv.fulfillment_id,
            doc_no=inv.doc_no,
            total=inv.total,  # type: ignore[arg-type]
            paid=paid,
            remaining=remaining_due(inv.total, paid),  # type: ignore[arg-type]
            status=visible_invoice_status(status, inv.due_date, self.today()),
            due_date=inv.due_date,
        )

    def visible_quotation_status(self, quotation: ParentDocument) -> Optional[str]:
        return visible_quotation_status(quotation.quotation_status, quotation.valid_until, self.today())

    def visible_invoice_status(self, invoice: FulfillmentDocument) -> Optional[str]:
        if invoice.payment_status is None:
            return None
        return visible_invoice_status(invoice.payment_status, invoice.due_date, self.today())

    # ---------------------------- Audit ----------------------------

    def find_status_drift(self) -> list[dict[str, Any]]:
        """
        Re-derive every stored status from scratch and list the mismatches.
        An empty list means every document agrees with its children.
        """
        drift: list[dict[str, Any]] = []
        with self.store.snapshot() as s:
            for doc_id in s.documents.list_ids():
                doc = s.documents.get(doc_id)
                if doc is None or doc.is_quotation:
                    continue
                fulfillments = s.fulfillments.list_for_parent(doc_id)
                invoices = [f for f in fulfillments if f.is_invoice]
                payments = s.payments.list_by_invoices(f.fulfillment_id for f in invoices)
                for field, expected in derive_document_statuses(doc, fulfillments, payments).items():
                    stored = getattr(doc, field)
                    if stored != expected:
                        drift.append({"entity": doc.doc_type, "id": doc_id, "field": field,
                                      "stored": stored, "derived": expected})
                for inv in invoices:
                    expected = invoice_payment_status(inv.total, payments[inv.fulfillment_id])  # type: ignore[arg-type]
                    if inv.payment_status != expected:
                        drift.append({"entity": FT_INVOICE, "id": inv.fulfillment_id, "field": STATUS_PAYMENT,
                                      "stored": inv.payment_status, "derived": expected})
        if drift:
            _log.error("Status drift detected in %d place(s): %s", len(drift), drift)
        return drift
