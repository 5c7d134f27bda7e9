# utils/helpers.py
from datetime import date, timedelta
from typing import Optional, Union


def parse_iso_date(value: Union[str, date, None]) -> Optional[date]:
    """Accept a date or 'YYYY-MM-DD' string; None stays None. Raises ValueError on junk."""
    if value is None or isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError as e:
        raise ValueError(f"Could not parse {value!r} as a date (expected YYYY-MM-DD).") from e


def add_days(d: date, days: int) -> date:
    return d + timedelta(days=days)
