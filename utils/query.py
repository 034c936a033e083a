"""Shared SQL query builder utilities for the referral API routes.

Provides the WHERE and ORDER BY construction used by referrals.py,
download.py and metrics.py so the admin table, the export and the
reports all filter identically.
"""

from datetime import date, timedelta
from typing import Any


# sort key -> SQL expression
REFERRAL_SORTS = {
    "date": "created_at",
    "name": "LOWER(first_name || ' ' || last_name)",
}

DEFAULT_REFERRAL_SORT = "date"


def like_pattern(value: str) -> str:
    """Return a case-folded ``%value%`` pattern with LIKE wildcards escaped.

    Use with ``ESCAPE '\\'`` in the SQL expression.
    """
    escaped = (
        value.strip().lower()
        .replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )
    return f"%{escaped}%"


def date_bounds(
    start_date: date | None,
    end_date: date | None,
) -> tuple[str | None, str | None]:
    """Convert an inclusive date range into ISO timestamp bounds.

    The lower bound is inclusive and the upper bound exclusive, so the end
    date covers its whole day.

    Raises:
        ValueError: If start_date falls after end_date.
    """
    if start_date and end_date and start_date > end_date:
        raise ValueError(
            f"start_date ({start_date.isoformat()}) is after "
            f"end_date ({end_date.isoformat()})"
        )
    lower = start_date.isoformat() if start_date else None
    upper = (end_date + timedelta(days=1)).isoformat() if end_date else None
    return lower, upper


def build_where_clause(
    program: str | None = None,
    admitted: bool | None = None,
    referral_sent_to: str | None = None,
    lead_source: str | None = None,
    referral_source: str | None = None,
    name: str | None = None,
    insurance: str | None = None,
    outreach_rep: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> tuple[str, list[Any]]:
    """Build a SQL WHERE clause over the referrals table.

    Args:
        program: Exact level-of-care match.
        admitted: Admission status.
        referral_sent_to: Exact destination facility match.
        lead_source: Exact lead source match.
        referral_source: Case-insensitive substring of the referral source.
        name: Case-insensitive substring of "first last".
        insurance: Case-insensitive substring of the insurance company.
        outreach_rep: Exact outreach rep match.
        start_date: Earliest created date (inclusive).
        end_date: Latest created date (inclusive, whole day).

    Returns:
        Tuple of (where_clause_string, params_list). The clause starts with
        "WHERE " when any condition applies, otherwise it is "".

    Raises:
        ValueError: If start_date falls after end_date.
    """
    conditions: list[str] = []
    params: list[Any] = []

    if program:
        conditions.append("program = ?")
        params.append(program)

    if admitted is not None:
        conditions.append("admitted = ?")
        params.append(1 if admitted else 0)

    if referral_sent_to:
        conditions.append("referral_sent_to = ?")
        params.append(referral_sent_to)

    if lead_source:
        conditions.append("lead_source = ?")
        params.append(lead_source)

    if outreach_rep:
        conditions.append("outreach_rep = ?")
        params.append(outreach_rep)

    if referral_source and referral_source.strip():
        conditions.append("LOWER(COALESCE(referral_source, '')) LIKE ? ESCAPE '\\'")
        params.append(like_pattern(referral_source))

    if name and name.strip():
        conditions.append(
            "LOWER(first_name || ' ' || last_name) LIKE ? ESCAPE '\\'"
        )
        params.append(like_pattern(name))

    if insurance and insurance.strip():
        conditions.append("LOWER(COALESCE(insurance_company, '')) LIKE ? ESCAPE '\\'")
        params.append(like_pattern(insurance))

    lower, upper = date_bounds(start_date, end_date)
    if lower:
        conditions.append("created_at >= ?")
        params.append(lower)
    if upper:
        conditions.append("created_at < ?")
        params.append(upper)

    where = "WHERE " + " AND ".join(conditions) if conditions else ""
    return where, params


def build_contact_where(
    partner: str | None = None,
    rep: str | None = None,
) -> tuple[str, list[Any]]:
    """Build a WHERE clause over referent_contacts (substring filters)."""
    conditions: list[str] = []
    params: list[Any] = []
    if partner and partner.strip():
        conditions.append("LOWER(referral_partner) LIKE ? ESCAPE '\\'")
        params.append(like_pattern(partner))
    if rep and rep.strip():
        conditions.append("LOWER(referral_rep) LIKE ? ESCAPE '\\'")
        params.append(like_pattern(rep))
    where = "WHERE " + " AND ".join(conditions) if conditions else ""
    return where, params


def build_order_clause(
    sort_by: str,
    sort_dir: str,
    allowed_sorts: dict[str, str] | None = None,
    default_sort: str = DEFAULT_REFERRAL_SORT,
) -> str:
    """Build a safe SQL ORDER BY clause.

    Unknown sort keys fall back to ``default_sort``. ``id`` is appended as
    a tiebreaker so paging is stable.

    Returns:
        ORDER BY clause string, e.g. "ORDER BY created_at DESC, id DESC".
    """
    if allowed_sorts is None:
        allowed_sorts = REFERRAL_SORTS
    expr = allowed_sorts.get(sort_by) or allowed_sorts[default_sort]
    direction = "DESC" if sort_dir.lower() == "desc" else "ASC"
    return f"ORDER BY {expr} {direction}, id {direction}"
