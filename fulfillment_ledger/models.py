"""
Snapshot types shared by the store, the engines and the HTTP layer.

Everything here is a frozen dataclass: the store builds them from rows, the
reconciliation/status engines read them, and nobody mutates them afterwards.
Quantities and money are `Decimal`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from .constants import (
    DOC_PURCHASE_ORDER,
    DOC_QUOTATION,
    DOC_SALES_ORDER,
    FT_INVOICE,
)


@dataclass(frozen=True)
class LineItem:
    item_id: int
    doc_id: int
    product_id: str
    product_name: str
    quantity_ordered: Decimal
    unit_price: Decimal
    tax_rate: Decimal
    description: Optional[str] = None
    position: int = 0

    @property
    def line_total(self) -> Decimal:
        return self.quantity_ordered * self.unit_price

    @property
    def line_tax(self) -> Decimal:
        return self.line_total * self.tax_rate


@dataclass(frozen=True)
class ParentDocument:
    """Quotation, sales order or purchase order header plus its line items."""
    doc_id: int
    doc_type: str
    doc_no: str
    party_id: str
    party_name: Optional[str]
    date: date
    items: tuple[LineItem, ...] = ()
    delivery_date: Optional[date] = None
    valid_until: Optional[date] = None
    quotation_status: Optional[str] = None
    source_quotation_id: Optional[int] = None
    invoice_status: Optional[str] = None
    shipment_status: Optional[str] = None
    payment_status: Optional[str] = None
    receipt_status: Optional[str] = None
    notes: Optional[str] = None
    version: int = 0

    @property
    def is_quotation(self) -> bool:
        return self.doc_type == DOC_QUOTATION

    @property
    def is_sales_order(self) -> bool:
        return self.doc_type == DOC_SALES_ORDER

    @property
    def is_purchase_order(self) -> bool:
        return self.doc_type == DOC_PURCHASE_ORDER

    def item(self, item_id: int) -> Optional[LineItem]:
        for it in self.items:
            if it.item_id == item_id:
                return it
        return None


@dataclass(frozen=True)
class FulfillmentLine:
    """One invoiced / shipped / received quantity against a parent line item."""
    item_id: int
    quantity: Decimal
    fulfillment_type: str
    line_id: Optional[int] = None
    fulfillment_id: Optional[int] = None


@dataclass(frozen=True)
class FulfillmentDocument:
    """Invoice, shipment or receipt header plus its lines."""
    fulfillment_id: int
    fulfillment_type: str
    parent_doc_id: int
    date: date
    lines: tuple[FulfillmentLine, ...] = ()
    doc_no: Optional[str] = None
    due_date: Optional[date] = None
    subtotal: Optional[Decimal] = None
    tax: Optional[Decimal] = None
    total: Optional[Decimal] = None
    payment_status: Optional[str] = None
    carrier: Optional[str] = None
    tracking_no: Optional[str] = None
    received_by: Optional[str] = None
    notes: Optional[str] = None
    version: int = 0

    @property
    def is_invoice(self) -> bool:
        return self.fulfillment_type == FT_INVOICE


@dataclass(frozen=True)
class PaymentRecord:
    payment_id: int
    invoice_id: int
    amount: Decimal
    date: date
    method: str = "Cash"
    reference: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class LineRequest:
    """(line item id, quantity) as submitted by a caller."""
    item_id: int
    quantity: Decimal


@dataclass(frozen=True)
class NewLineItem:
    """Input for a line item on a parent document that does not exist yet."""
    product_id: str
    product_name: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal = Decimal("0")
    description: Optional[str] = None


@dataclass(frozen=True)
class InvoiceBalance:
    invoice_id: int
    doc_no: Optional[str]
    total: Decimal
    paid: Decimal
    remaining: Decimal
    status: str
    due_date: Optional[date] = None


@dataclass(frozen=True)
class RemainingLine:
    """Read projection of one parent line: ordered, consumed and remaining per fulfillment type."""
    item_id: int
    product_id: str
    product_name: str
    quantity_ordered: Decimal
    consumed: dict = field(default_factory=dict)
    remaining: dict = field(default_factory=dict)
