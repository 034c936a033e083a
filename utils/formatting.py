"""Display formatting for log lines and exported cells."""

from typing import Optional


def format_percent(value: Optional[float], precision: int = 1) -> str:
    """Render a rate such as a conversion rate: 42.5 -> "42.5%".

    None renders as "-".
    """
    if value is None:
        return "-"
    return f"{value:.{precision}f}%"


def format_count(value: Optional[int]) -> str:
    """Row counts with thousands separators: 12500 -> "12,500"; None -> "-"."""
    if value is None:
        return "-"
    return f"{value:,d}"


def format_yes_no(value) -> str:
    """Render a stored admission flag as "Yes"/"No"."""
    return "Yes" if value else "No"
