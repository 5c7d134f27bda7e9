"""
Fulfillment module package exports.

- FulfillmentOrchestrator: the single entry point for document-creation actions
- FulfillmentResult and its state constants
"""

from .orchestrator import FulfillmentOrchestrator
from .results import COMMITTED, REJECTED, UNCHANGED, FulfillmentResult

__all__ = [
    "FulfillmentOrchestrator",
    "FulfillmentResult",
    "COMMITTED",
    "REJECTED",
    "UNCHANGED",
]
