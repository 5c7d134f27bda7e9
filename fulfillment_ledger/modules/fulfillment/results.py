from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from ...errors import FulfillmentError

# Terminal states returned to callers
COMMITTED = "committed"
REJECTED = "rejected"
UNCHANGED = "unchanged"  # zero net new lines: nothing to persist

# Transient phases (logged, never returned)
REQUESTED = "requested"
VALIDATING = "validating"
BUSY = "busy"


@dataclass(frozen=True)
class FulfillmentResult:
    """
    Outcome of one orchestrated action.

    committed -> `document` is the new (or updated) document
    unchanged -> `document` is the parent as it was; nothing was written
    rejected  -> `error` says exactly what was wrong; nothing was written
    """
    state: str
    document: Any = None
    error: Optional[FulfillmentError] = None

    @property
    def ok(self) -> bool:
        return self.state != REJECTED

    @property
    def is_committed(self) -> bool:
        return self.state == COMMITTED

    @classmethod
    def committed(cls, document: Any) -> "FulfillmentResult":
        return cls(COMMITTED, document=document)

    @classmethod
    def unchanged(cls, document: Any = None) -> "FulfillmentResult":
        return cls(UNCHANGED, document=document)

    @classmethod
    def rejected(cls, error: FulfillmentError) -> "FulfillmentResult":
        return cls(REJECTED, error=error)
