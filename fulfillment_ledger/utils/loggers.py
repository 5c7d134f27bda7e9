from __future__ import annotations

import logging
from typing import Dict, Optional

__all__ = ["get_logger", "log_event"]

_ROOT_NAME = "fulfillment_ledger"


def get_logger(name: str = _ROOT_NAME) -> logging.Logger:
    """
    Return a logger under the package namespace. The package root logger gets a
    single stream handler the first time it is requested; children propagate to it.
    """
    root = logging.getLogger(_ROOT_NAME)
    if not root.handlers:
        root.setLevel(logging.INFO)
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        root.addHandler(ch)
    if name == _ROOT_NAME or name.startswith(_ROOT_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT_NAME}.{name}")


def log_event(
    logger: logging.Logger,
    op: str,
    phase: str,
    message: str,
    extra: Optional[Dict[str, object]] = None,
    level: int = logging.INFO,
) -> None:
    """
    Log one state-machine transition of an orchestrated action.

    Args:
        logger: Obtained from get_logger().
        op: Action name, e.g. "create_invoice" or "record_payment".
        phase: One of requested / validating / committed / rejected / busy.
        message: Human-readable short message.
        extra: Optional key/values (document ids, quantities, error codes).
        level: Logging level (default INFO).
    """
    payload = {"op": op, "phase": phase}
    if extra:
        # required keys win over caller-supplied ones
        for k, v in extra.items():
            if k not in payload:
                payload[k] = v
    fields = " ".join(f"{k}={v}" for k, v in payload.items())
    logger.log(level, "%s [%s]", message, fields, extra={"event_payload": payload})
