"""
Error taxonomy for fulfillment actions.

Every failure an orchestrated action can report is a FulfillmentError with a
stable `code` and a `details()` mapping, so callers can point at the exact line
item or amount that caused a rejection.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional


class FulfillmentError(Exception):
    """Base class; `retriable` tells callers whether resubmitting unchanged can succeed."""

    code = "fulfillment_error"
    retriable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def details(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details()}


class CapacityExceeded(FulfillmentError):
    code = "capacity_exceeded"

    def __init__(self, line_item_id: int, fulfillment_type: str, requested: Decimal, remaining: Decimal):
        self.line_item_id = line_item_id
        self.fulfillment_type = fulfillment_type
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Line item {line_item_id}: requested {fulfillment_type} quantity {requested} "
            f"exceeds remaining {remaining}."
        )

    def details(self) -> dict[str, Any]:
        return {
            "lineItemId": self.line_item_id,
            "fulfillmentType": self.fulfillment_type,
            "requested": str(self.requested),
            "remaining": str(self.remaining),
        }


class OverPayment(FulfillmentError):
    code = "over_payment"

    def __init__(self, invoice_id: int, requested: Decimal, remaining: Decimal):
        self.invoice_id = invoice_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Invoice {invoice_id}: payment {requested} exceeds remaining balance {remaining}."
        )

    def details(self) -> dict[str, Any]:
        return {
            "invoiceId": self.invoice_id,
            "requested": str(self.requested),
            "remaining": str(self.remaining),
        }


class Busy(FulfillmentError):
    code = "busy"
    retriable = True

    def __init__(self, resource: str):
        self.resource = resource
        super().__init__(f"{resource} is locked by another operation; try again.")

    def details(self) -> dict[str, Any]:
        return {"resource": self.resource}


class NotFound(FulfillmentError):
    code = "not_found"

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")

    def details(self) -> dict[str, Any]:
        return {"entity": self.entity, "id": self.entity_id}


class InvalidRequest(FulfillmentError):
    code = "invalid_request"

    def __init__(self, message: str, *, field: Optional[str] = None, line_item_id: Optional[int] = None):
        self.field = field
        self.line_item_id = line_item_id
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.field is not None:
            out["field"] = self.field
        if self.line_item_id is not None:
            out["lineItemId"] = self.line_item_id
        return out


class UnknownLineItem(InvalidRequest):
    code = "unknown_line_item"

    def __init__(self, line_item_id: int, doc_id: int):
        self.doc_id = doc_id
        super().__init__(
            f"Line item {line_item_id} does not belong to document {doc_id}.",
            field="lineItemId",
            line_item_id=line_item_id,
        )


class InvariantViolation(FulfillmentError):
    """A ledger invariant failed; this is a bug. Callers only ever see a generic message."""

    code = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": "Internal error.", "details": {}}
