"""
Utility functions for Emby analytics.
"""

TICKS_PER_SECOND = 10_000_000


def ticks_to_hours(ticks: int) -> float:
    """Convert Emby ticks to hours, rounded to two decimals."""
    return round(ticks / TICKS_PER_SECOND / 3600, 2)


def format_hour(hour: int) -> str:
    """Label an hour of day as ``HH:00``."""
    return f"{hour:02d}:00"


def mask_api_key(api_key: str) -> str:
    """
    Mask API key for safe display.

    Args:
        api_key: API key to mask

    Returns:
        Masked API key string
    """
    if len(api_key) > 8:
        return f"{api_key[:4]}...{api_key[-4:]}"
    return "***"


def percent_change(previous: float, current: float) -> int:
    """Whole-number percent change; 100 when growing from zero."""
    if previous == 0:
        return 100 if current > 0 else 0
    return round((current - previous) / previous * 100)
