"""Common utility functions used across the referral intake service."""

import time
from datetime import datetime, timezone


def utc_now() -> str:
    """Current UTC time as a second-resolution ISO string.

    Stored timestamps share this shape so they sort and compare as text.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0).isoformat()


def to_utc_iso(value: datetime) -> str:
    """Normalize a datetime to the stored timestamp shape (naive UTC)."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=0).isoformat()


def format_bytes(b: int) -> str:
    """Format bytes into human-readable size string.

    Examples:
        512 KB, 1.5 MB, 2.34 GB
    """
    if b < 1024 * 1024:
        return f"{b / 1024:.0f} KB"
    if b < 1024 * 1024 * 1024:
        return f"{b / (1024 * 1024):.1f} MB"
    return f"{b / (1024 * 1024 * 1024):.2f} GB"


def elapsed_ms(start: float) -> float:
    """Milliseconds since a ``time.monotonic()`` reading, one decimal."""
    return round((time.monotonic() - start) * 1000, 1)
