"""In-memory report computations over a filtered referral set.

The metrics routes load the matching referrals once and hand them to these
pure functions, so every breakdown and the overview agree on one record set.

Usage:
    rows = group_by(records, "lead_source", sort_by="conversion_rate")
    quarters = quarter_breakdown(records)
"""

from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from utils.strings import normalize_whitespace

UNKNOWN = "Unknown"

DIMENSIONS = (
    "lead_source",
    "referral_source",
    "referral_sent_to",
    "referral_out",
    "outreach_rep",
    "program",
    "insurance_company",
    "quarter",
)

# Records with no value are left out of these breakdowns instead of
# being grouped as "Unknown"
EXCLUDE_BLANK = frozenset({"referral_out", "outreach_rep"})

SORT_KEYS = ("group", "total", "admitted", "conversion_rate")
DEFAULT_SORT = "total"


def conversion_rate(admitted: int, total: int) -> float:
    """Admitted share in percent, one decimal; 0.0 for an empty group."""
    if not total:
        return 0.0
    return round(admitted / total * 100, 1)


def pct_of_total(count: int, total: int) -> float:
    if not total:
        return 0.0
    return round(count / total * 100, 1)


def overview(records: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    """Total, admitted count and conversion rate for the whole set."""
    total = len(records)
    admitted = sum(1 for r in records if r.get("admitted"))
    return {
        "total": total,
        "admitted": admitted,
        "conversion_rate": conversion_rate(admitted, total),
    }


def quarter_label(created_at: Optional[str]) -> Optional[str]:
    """Calendar quarter of a stored timestamp, e.g. "2024-Q2".

    Returns None for a missing or unparseable timestamp.
    """
    if not created_at:
        return None
    try:
        ts = datetime.fromisoformat(str(created_at)[:19])
    except ValueError:
        return None
    return f"{ts.year}-Q{(ts.month - 1) // 3 + 1}"


def _group_value(record: Mapping[str, Any], dimension: str) -> Optional[str]:
    if dimension == "quarter":
        return quarter_label(record.get("created_at"))
    value = record.get(dimension)
    if value is None:
        return None
    return normalize_whitespace(str(value)) or None


def group_by(
    records: Sequence[Mapping[str, Any]],
    dimension: str,
    sort_by: str = DEFAULT_SORT,
    sort_dir: str = "desc",
) -> List[Dict[str, Any]]:
    """Count records and admissions per value of *dimension*.

    Keys are trimmed and compared case-insensitively; each group is shown
    with the first spelling seen. Missing values collect under "Unknown"
    except for the dimensions in ``EXCLUDE_BLANK`` (and quarters), which
    drop them. ``pct_of_total`` is relative to all of *records*.

    Raises:
        ValueError: On an unknown dimension or sort key.
    """
    if dimension not in DIMENSIONS:
        raise ValueError(f"group_by must be one of: {list(DIMENSIONS)}")

    display: Dict[str, str] = {}
    totals: Dict[str, int] = defaultdict(int)
    admitted: Dict[str, int] = defaultdict(int)

    for record in records:
        value = _group_value(record, dimension)
        if value is None:
            if dimension in EXCLUDE_BLANK or dimension == "quarter":
                continue
            value = UNKNOWN
        key = value.lower()
        display.setdefault(key, value)
        totals[key] += 1
        if record.get("admitted"):
            admitted[key] += 1

    grand_total = len(records)
    rows = [
        {
            "group": display[key],
            "total": totals[key],
            "admitted": admitted[key],
            "conversion_rate": conversion_rate(admitted[key], totals[key]),
            "pct_of_total": pct_of_total(totals[key], grand_total),
        }
        for key in display
    ]
    return sort_rows(rows, sort_by, sort_dir)


def sort_rows(
    rows: Iterable[Dict[str, Any]],
    sort_by: str = DEFAULT_SORT,
    sort_dir: str = "desc",
) -> List[Dict[str, Any]]:
    """Sort breakdown rows; ties fall back to group name, A to Z.

    Raises:
        ValueError: If sort_by is not one of SORT_KEYS.
    """
    if sort_by not in SORT_KEYS:
        raise ValueError(f"sort_by must be one of: {list(SORT_KEYS)}")
    reverse = sort_dir.lower() == "desc"
    ordered = sorted(rows, key=lambda r: r["group"].lower())
    if sort_by == "group":
        return ordered[::-1] if reverse else ordered
    # sorted() is stable with reverse=True, so the name order survives ties
    return sorted(ordered, key=lambda r: r[sort_by], reverse=reverse)


def quarter_breakdown(records: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Chronological quarter rows with changes against the previous quarter.

    Each row carries total_delta, admitted_delta, conversion_rate_delta
    (percentage points) and total_change_pct. The first quarter has None
    for all four; total_change_pct is also None when the previous quarter
    had no records. Records without a usable timestamp are ignored.
    """
    rows = group_by(records, "quarter", sort_by="group", sort_dir="asc")
    previous: Optional[Dict[str, Any]] = None
    for row in rows:
        if previous is None:
            row.update(
                total_delta=None,
                admitted_delta=None,
                conversion_rate_delta=None,
                total_change_pct=None,
            )
        else:
            row["total_delta"] = row["total"] - previous["total"]
            row["admitted_delta"] = row["admitted"] - previous["admitted"]
            row["conversion_rate_delta"] = round(
                row["conversion_rate"] - previous["conversion_rate"], 1
            )
            row["total_change_pct"] = (
                round(row["total_delta"] / previous["total"] * 100, 1)
                if previous["total"] else None
            )
        previous = row
    return rows
