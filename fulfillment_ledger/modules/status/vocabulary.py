from __future__ import annotations

from ...constants import (
    COVERAGE_FULL,
    COVERAGE_NONE,
    COVERAGE_PARTIAL,
    STATUS_INVOICE,
    STATUS_PAYMENT,
    STATUS_RECEIPT,
    STATUS_SHIPMENT,
)

# ---------- Coverage -> domain values, per status field ----------
DOMAIN_VALUES: dict[str, dict[str, str]] = {
    STATUS_INVOICE: {
        COVERAGE_NONE: "not_invoiced",
        COVERAGE_PARTIAL: "partial",
        COVERAGE_FULL: "invoiced",
    },
    STATUS_SHIPMENT: {
        COVERAGE_NONE: "not_shipped",
        COVERAGE_PARTIAL: "partial",
        COVERAGE_FULL: "shipped",
    },
    STATUS_PAYMENT: {
        COVERAGE_NONE: "unpaid",
        COVERAGE_PARTIAL: "partial",
        COVERAGE_FULL: "paid",
    },
    STATUS_RECEIPT: {
        COVERAGE_NONE: "not_received",
        COVERAGE_PARTIAL: "partial",
        COVERAGE_FULL: "received",
    },
}

# Time-derived overlays; never stored
OVERDUE = "overdue"
EXPIRED = "expired"


def domain_value(status_field: str, coverage: str) -> str:
    """Map a coverage value ('none'|'partial'|'full') to the field's domain enum value."""
    try:
        return DOMAIN_VALUES[status_field][coverage]
    except KeyError:
        raise ValueError(f"No domain value for {status_field}={coverage!r}") from None
