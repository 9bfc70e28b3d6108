"""
Shared utility functions for service modules.
"""
from datetime import date, datetime
from typing import Any, Optional


def to_int(value: Any) -> Optional[int]:
    """Safely convert a value to int, returning None on failure."""
    if value in (None, ''):
        return None
    if isinstance(value, str):
        value = value.replace(',', '').strip()
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return None


def parse_date(value: Optional[str]) -> Optional[date]:
    """Parse a ``YYYY-MM-DD`` string, returning None when empty.

    Raises:
        ValueError: If the value is present but malformed
    """
    if not value:
        return None
    return datetime.strptime(value.strip(), '%Y-%m-%d').date()


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """Serialize a stored naive-UTC datetime with an explicit offset."""
    if value is None:
        return None
    return value.isoformat() + 'Z' if value.tzinfo is None else value.isoformat()
