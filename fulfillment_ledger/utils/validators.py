# utils/validators.py
from decimal import Decimal, InvalidOperation


def non_empty(text: str) -> bool:
    """
    True if `text` is not None/empty after stripping whitespace.
    """
    return bool(text and str(text).strip())


# ---- Numeric parsing & validators ----

def try_parse_decimal(x):
    """
    Best-effort parse to a finite Decimal. Floats go through str() so 0.1 stays 0.1.

    Returns:
        (ok: bool, value: Decimal|None)
    """
    if x is None or isinstance(x, bool):
        return False, None
    try:
        d = x if isinstance(x, Decimal) else Decimal(str(x).strip())
    except (InvalidOperation, ValueError, TypeError):
        return False, None
    if not d.is_finite():
        return False, None
    return True, d
