"""
Ledger endpoints. JSON in, JSON out, camelCase keys.

Quantities and money are serialised as strings so no precision is lost;
statuses use the domain values (not_invoiced / partial / invoiced, ...), with
the overdue / expired overlays applied for the current day.

Rejected actions are raised as their FulfillmentError and rendered by the
app-level error handlers.
"""
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Optional

from flask import Blueprint, current_app, jsonify, request

from ..constants import DOC_PURCHASE_ORDER, DOC_QUOTATION, DOC_SALES_ORDER, FT_INVOICE, FT_RECEIPT, FT_SHIPMENT
from ..errors import InvalidRequest
from ..models import FulfillmentDocument, InvoiceBalance, ParentDocument, RemainingLine
from ..modules.fulfillment.orchestrator import FulfillmentOrchestrator
from ..modules.fulfillment.results import UNCHANGED, FulfillmentResult

EXTENSION_KEY = "fulfillment_ledger"

ledger_bp = Blueprint("ledger", __name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _orchestrator() -> FulfillmentOrchestrator:
    return current_app.extensions[EXTENSION_KEY]


def _body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None and not request.get_data():
        return {}
    if not isinstance(data, dict):
        raise InvalidRequest("Request body must be a JSON object.", field="body")
    return data


def _require_id(body: dict[str, Any], key: str) -> int:
    raw = body.get(key)
    if isinstance(raw, bool) or raw is None:
        raise InvalidRequest(f"{key} is required.", field=key)
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise InvalidRequest(f"{key} must be an integer.", field=key) from None


def _lines(body: dict[str, Any]) -> Optional[list]:
    """None when the caller asked for everything remaining."""
    if body.get("allRemaining") is True:
        return None
    lines = body.get("lines")
    if not isinstance(lines, list):
        raise InvalidRequest("lines must be a list of {lineItemId, quantity}.", field="lines")
    return lines


def _dec(v: Optional[Decimal]) -> Optional[str]:
    return None if v is None else str(v)


def _iso(d: Optional[date]) -> Optional[str]:
    return None if d is None else d.isoformat()


def _result(result: FulfillmentResult, render) -> Any:
    if not result.ok:
        raise result.error  # type: ignore[misc]
    payload = {"state": result.state, "data": render(result.document)}
    return jsonify(payload), (200 if result.state == UNCHANGED else 201)


# ---------------------------------------------------------------------------
# Serialisers
# ---------------------------------------------------------------------------

def document_json(doc: ParentDocument) -> dict[str, Any]:
    orch = _orchestrator()
    out: dict[str, Any] = {
        "id": doc.doc_id,
        "docType": doc.doc_type,
        "docNo": doc.doc_no,
        "partyId": doc.party_id,
        "partyName": doc.party_name,
        "date": _iso(doc.date),
        "notes": doc.notes,
        "version": doc.version,
        "items": [
            {
                "lineItemId": it.item_id,
                "productId": it.product_id,
                "productName": it.product_name,
                "description": it.description,
                "quantity": _dec(it.quantity_ordered),
                "unitPrice": _dec(it.unit_price),
                "taxRate": _dec(it.tax_rate),
            }
            for it in doc.items
        ],
    }
    if doc.is_quotation:
        out["validUntil"] = _iso(doc.valid_until)
        out["quotationStatus"] = orch.visible_quotation_status(doc)
    elif doc.is_sales_order:
        out["deliveryDate"] = _iso(doc.delivery_date)
        out["sourceQuotationId"] = doc.source_quotation_id
        out["invoiceStatus"] = doc.invoice_status
        out["shipmentStatus"] = doc.shipment_status
        out["paymentStatus"] = doc.payment_status
    else:
        out["deliveryDate"] = _iso(doc.delivery_date)
        out["receiptStatus"] = doc.receipt_status
    return out


def fulfillment_json(f: FulfillmentDocument) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": f.fulfillment_id,
        "type": f.fulfillment_type,
        "parentId": f.parent_doc_id,
        "date": _iso(f.date),
        "notes": f.notes,
        "lines": [
            {"lineId": ln.line_id, "lineItemId": ln.item_id, "quantity": _dec(ln.quantity)}
            for ln in f.lines
        ],
    }
    if f.fulfillment_type == FT_INVOICE:
        out.update(
            docNo=f.doc_no,
            dueDate=_iso(f.due_date),
            subtotal=_dec(f.subtotal),
            tax=_dec(f.tax),
            total=_dec(f.total),
            paymentStatus=f.payment_status,
            status=_orchestrator().visible_invoice_status(f),
        )
    elif f.fulfillment_type == FT_SHIPMENT:
        out.update(carrier=f.carrier, trackingNo=f.tracking_no)
    elif f.fulfillment_type == FT_RECEIPT:
        out.update(receivedBy=f.received_by)
    return out


def balance_json(b: InvoiceBalance) -> dict[str, Any]:
    return {
        "invoiceId": b.invoice_id,
        "docNo": b.doc_no,
        "total": _dec(b.total),
        "paid": _dec(b.paid),
        "remaining": _dec(b.remaining),
        "status": b.status,
        "dueDate": _iso(b.due_date),
    }


def remaining_json(lines: list[RemainingLine]) -> list[dict[str, Any]]:
    return [
        {
            "lineItemId": ln.item_id,
            "productId": ln.product_id,
            "productName": ln.product_name,
            "quantityOrdered": _dec(ln.quantity_ordered),
            "consumed": {k: _dec(v) for k, v in ln.consumed.items()},
            "remaining": {k: _dec(v) for k, v in ln.remaining.items()},
        }
        for ln in lines
    ]


def _parent_or_fulfillment_json(doc: Any) -> dict[str, Any]:
    # unchanged results carry the parent; committed ones the new fulfillment
    if isinstance(doc, ParentDocument):
        return document_json(doc)
    return fulfillment_json(doc)


# ---------------------------------------------------------------------------
# Fulfillments
# ---------------------------------------------------------------------------

@ledger_bp.route("/fulfillments/invoices", methods=["POST"])
def create_invoice():
    body = _body()
    orch = _orchestrator()
    so_id = _require_id(body, "salesOrderId")
    lines = _lines(body)
    header = {"date": body.get("date"), "due_date": body.get("dueDate"), "notes": body.get("notes")}
    if lines is None:
        result = orch.invoice_all_remaining(so_id, **header)
    else:
        result = orch.create_invoice(so_id, lines, **header)
    return _result(result, _parent_or_fulfillment_json)


@ledger_bp.route("/fulfillments/shipments", methods=["POST"])
def create_shipment():
    body = _body()
    orch = _orchestrator()
    so_id = _require_id(body, "salesOrderId")
    lines = _lines(body)
    header = {
        "date": body.get("date"),
        "carrier": body.get("carrier"),
        "tracking_no": body.get("trackingNo"),
        "notes": body.get("notes"),
    }
    if lines is None:
        result = orch.ship_all_remaining(so_id, **header)
    else:
        result = orch.create_shipment(so_id, lines, **header)
    return _result(result, _parent_or_fulfillment_json)


@ledger_bp.route("/fulfillments/receipts", methods=["POST"])
def create_receipt():
    body = _body()
    orch = _orchestrator()
    po_id = _require_id(body, "purchaseOrderId")
    lines = _lines(body)
    header = {"date": body.get("date"), "received_by": body.get("receivedBy"), "notes": body.get("notes")}
    if lines is None:
        result = orch.receive_all_remaining(po_id, **header)
    else:
        result = orch.create_receipt(po_id, lines, **header)
    return _result(result, _parent_or_fulfillment_json)


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------

@ledger_bp.route("/payments", methods=["POST"])
def record_payment():
    body = _body()
    orch = _orchestrator()
    invoice_id = _require_id(body, "invoiceId")
    result = orch.record_payment(
        invoice_id,
        body.get("amount"),
        date=body.get("date"),
        method=body.get("method"),
        reference=body.get("reference"),
        notes=body.get("notes"),
    )

    def render(invoice: FulfillmentDocument) -> dict[str, Any]:
        out = fulfillment_json(invoice)
        out["balance"] = balance_json(orch.invoice_balance(invoice.fulfillment_id))
        return out

    return _result(result, render)


# ---------------------------------------------------------------------------
# Read projections
# ---------------------------------------------------------------------------

@ledger_bp.route("/sales-orders/<int:so_id>/remaining-quantities", methods=["GET"])
def sales_order_remaining(so_id: int):
    lines = _orchestrator().sales_order_remaining(so_id)
    return jsonify({"salesOrderId": so_id, "lines": remaining_json(lines)})


@ledger_bp.route("/purchase-orders/<int:po_id>/remaining-quantities", methods=["GET"])
def purchase_order_remaining(po_id: int):
    lines = _orchestrator().purchase_order_remaining(po_id)
    return jsonify({"purchaseOrderId": po_id, "lines": remaining_json(lines)})


@ledger_bp.route("/invoices/<int:invoice_id>/balance", methods=["GET"])
def invoice_balance(invoice_id: int):
    return jsonify(balance_json(_orchestrator().invoice_balance(invoice_id)))


@ledger_bp.route("/invoices/<int:invoice_id>", methods=["GET"])
def get_invoice(invoice_id: int):
    orch = _orchestrator()
    out = fulfillment_json(orch.get_invoice(invoice_id))
    out["balance"] = balance_json(orch.invoice_balance(invoice_id))
    return jsonify(out)


def _document_with_children(doc_id: int, doc_type: str) -> dict[str, Any]:
    orch = _orchestrator()
    out = document_json(orch.get_document(doc_id, doc_type))
    out["fulfillments"] = [fulfillment_json(f) for f in orch.list_fulfillments(doc_id)]
    return out


@ledger_bp.route("/sales-orders/<int:so_id>", methods=["GET"])
def get_sales_order(so_id: int):
    return jsonify(_document_with_children(so_id, DOC_SALES_ORDER))


@ledger_bp.route("/purchase-orders/<int:po_id>", methods=["GET"])
def get_purchase_order(po_id: int):
    return jsonify(_document_with_children(po_id, DOC_PURCHASE_ORDER))


@ledger_bp.route("/quotations/<int:quotation_id>", methods=["GET"])
def get_quotation(quotation_id: int):
    return jsonify(document_json(_orchestrator().get_document(quotation_id, DOC_QUOTATION)))


# ---------------------------------------------------------------------------
# Parent documents
# ---------------------------------------------------------------------------

def _items(body: dict[str, Any]) -> list:
    items = body.get("items")
    if not isinstance(items, list):
        raise InvalidRequest("items must be a list.", field="items")
    return items


@ledger_bp.route("/quotations", methods=["POST"])
def create_quotation():
    body = _body()
    result = _orchestrator().create_quotation(
        body.get("partyId"),
        _items(body),
        party_name=body.get("partyName"),
        date=body.get("date"),
        valid_until=body.get("validUntil"),
        notes=body.get("notes"),
    )
    return _result(result, document_json)


@ledger_bp.route("/quotations/<int:quotation_id>/convert", methods=["POST"])
def convert_quotation(quotation_id: int):
    body = _body()
    result = _orchestrator().convert_quotation(
        quotation_id,
        date=body.get("date"),
        delivery_date=body.get("deliveryDate"),
        notes=body.get("notes"),
    )
    return _result(result, document_json)


@ledger_bp.route("/quotations/<int:quotation_id>/reject", methods=["POST"])
def reject_quotation(quotation_id: int):
    return _result(_orchestrator().reject_quotation(quotation_id), document_json)


@ledger_bp.route("/sales-orders", methods=["POST"])
def create_sales_order():
    body = _body()
    result = _orchestrator().create_sales_order(
        body.get("partyId"),
        _items(body),
        party_name=body.get("partyName"),
        date=body.get("date"),
        delivery_date=body.get("deliveryDate"),
        notes=body.get("notes"),
    )
    return _result(result, document_json)


@ledger_bp.route("/purchase-orders", methods=["POST"])
def create_purchase_order():
    body = _body()
    result = _orchestrator().create_purchase_order(
        body.get("partyId"),
        _items(body),
        party_name=body.get("partyName"),
        date=body.get("date"),
        delivery_date=body.get("deliveryDate"),
        notes=body.get("notes"),
    )
    return _result(result, document_json)
