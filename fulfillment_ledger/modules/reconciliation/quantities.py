"""
reconciliation/quantities.py

Remaining-quantity arithmetic for one fulfillment ledger (invoice, shipment or
receipt) of a parent document.

Pure functions; no DB. Inputs are snapshots (LineItem, FulfillmentLine) and the
outputs are new values, never mutations. `existing` is always the committed
lines of ONE fulfillment type; callers filter by type before calling in.

Clamping is a UI concern. Here an over-request is a CapacityExceeded failure and
a negative remaining is an InvariantViolation.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Mapping, Optional, Sequence

from ...models import FulfillmentLine, LineItem, LineRequest, ParentDocument
from ...utils.validators import try_parse_decimal
from ...errors import (
    CapacityExceeded,
    InvalidRequest,
    InvariantViolation,
    UnknownLineItem,
)

__all__ = [
    "consumed",
    "consumed_by_item",
    "remaining",
    "remaining_by_item",
    "validate_fulfillment_request",
    "normalize_request_lines",
    "validate_batch",
    "fulfill_all_remaining",
    "first_over_consumed",
]

ZERO = Decimal("0")


def consumed(line_item: LineItem, existing: Iterable[FulfillmentLine]) -> Decimal:
    """Σ quantity of the existing lines that reference this line item."""
    return sum((ln.quantity for ln in existing if ln.item_id == line_item.item_id), ZERO)


def consumed_by_item(existing: Iterable[FulfillmentLine]) -> dict[int, Decimal]:
    out: dict[int, Decimal] = {}
    for ln in existing:
        out[ln.item_id] = out.get(ln.item_id, ZERO) + ln.quantity
    return out


def remaining(line_item: LineItem, existing: Iterable[FulfillmentLine]) -> Decimal:
    """
    remaining = quantity_ordered - Σ existing quantities for this line item.

    Never negative for a consistent ledger; a negative result raises
    InvariantViolation instead of being clamped.
    """
    left = line_item.quantity_ordered - consumed(line_item, existing)
    if left < ZERO:
        raise InvariantViolation(
            f"Line item {line_item.item_id} is over-consumed: remaining {left}."
        )
    return left


def remaining_by_item(
    document: ParentDocument,
    existing: Iterable[FulfillmentLine],
) -> dict[int, Decimal]:
    """{item_id: remaining} for every line item of the document, in item order."""
    used = consumed_by_item(existing)
    out: dict[int, Decimal] = {}
    for it in document.items:
        left = it.quantity_ordered - used.get(it.item_id, ZERO)
        if left < ZERO:
            raise InvariantViolation(
                f"Line item {it.item_id} is over-consumed: remaining {left}."
            )
        out[it.item_id] = left
    return out


def validate_fulfillment_request(
    line_item: LineItem,
    existing: Iterable[FulfillmentLine],
    requested_quantity: Decimal,
    *,
    fulfillment_type: str,
) -> Decimal:
    """
    Validate one requested quantity against the line's remaining capacity.

    Returns the accepted quantity (0 < q <= remaining).
    Raises InvalidRequest for q <= 0 and CapacityExceeded for q > remaining.
    """
    if requested_quantity <= ZERO:
        raise InvalidRequest(
            f"Line item {line_item.item_id}: quantity must be greater than zero.",
            field="quantity",
            line_item_id=line_item.item_id,
        )
    left = remaining(line_item, existing)
    if requested_quantity > left:
        raise CapacityExceeded(line_item.item_id, fulfillment_type, requested_quantity, left)
    return requested_quantity


def normalize_request_lines(lines: Iterable[object]) -> list[LineRequest]:
    """
    Turn raw caller lines into LineRequests:
      - accepts LineRequest, (item_id, quantity) pairs, or mappings with
        item_id/lineItemId and quantity;
      - drops zero-quantity lines (unselected rows are a no-op, not an error);
      - merges duplicate item ids, keeping first-seen order.

    Negative quantities are kept so validation reports them against their line.
    """
    merged: dict[int, Decimal] = {}
    for raw in lines:
        item_id, qty = _unpack_line(raw)
        if qty == ZERO:
            continue
        merged[item_id] = merged.get(item_id, ZERO) + qty
    return [LineRequest(item_id=i, quantity=q) for i, q in merged.items() if q != ZERO]


def _unpack_line(raw: object) -> tuple[int, Decimal]:
    if isinstance(raw, LineRequest):
        return raw.item_id, raw.quantity
    if isinstance(raw, Mapping):
        item_raw = raw.get("item_id", raw.get("lineItemId"))
        qty_raw = raw.get("quantity")
    elif isinstance(raw, Sequence) and not isinstance(raw, (str, bytes)) and len(raw) == 2:
        item_raw, qty_raw = raw
    else:
        raise InvalidRequest(f"Unrecognised request line: {raw!r}", field="lines")

    try:
        item_id = int(item_raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise InvalidRequest(f"Invalid line item id: {item_raw!r}", field="lineItemId") from None
    ok, qty = try_parse_decimal(qty_raw)
    if not ok:
        raise InvalidRequest(
            f"Line item {item_id}: quantity {qty_raw!r} is not a number.",
            field="quantity",
            line_item_id=item_id,
        )
    return item_id, qty  # type: ignore[return-value]


def validate_batch(
    document: ParentDocument,
    existing: Sequence[FulfillmentLine],
    requests: Sequence[LineRequest],
    *,
    fulfillment_type: str,
) -> list[FulfillmentLine]:
    """
    Validate every request line against the document; all or nothing.

    Lines are independent, so order does not affect the outcome; the first
    failing line in request order is the one reported. Returns the proposed new
    FulfillmentLines (unsaved) when every line passes.
    """
    proposed: list[FulfillmentLine] = []
    for req in requests:
        item = document.item(req.item_id)
        if item is None:
            raise UnknownLineItem(req.item_id, document.doc_id)
        qty = validate_fulfillment_request(
            item, existing, req.quantity, fulfillment_type=fulfillment_type
        )
        proposed.append(
            FulfillmentLine(item_id=item.item_id, quantity=qty, fulfillment_type=fulfillment_type)
        )
    return proposed


def fulfill_all_remaining(
    document: ParentDocument,
    existing: Iterable[FulfillmentLine],
) -> list[LineRequest]:
    """
    One request per line item with remaining > 0, for the full remaining
    quantity. Fully consumed lines are left out.
    """
    left = remaining_by_item(document, existing)
    return [LineRequest(item_id=i, quantity=q) for i, q in left.items() if q > ZERO]


def first_over_consumed(
    document: ParentDocument,
    existing: Iterable[FulfillmentLine],
) -> Optional[int]:
    """Return the first item id whose consumption exceeds its ordered quantity, if any."""
    used = consumed_by_item(existing)
    for it in document.items:
        if used.get(it.item_id, ZERO) > it.quantity_ordered:
            return it.item_id
    return None
