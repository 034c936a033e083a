"""
Query-string filter dependencies shared by the referral routes.

The admin table and the export take the full filter set; the metrics
routes take the reporting subset.  Both resolve to keyword arguments for
utils.query.build_where_clause so every view filters identically.
"""

from datetime import date
from typing import Any

from fastapi import Query


def table_filters(
    program: str | None = Query(None, description="Level of care (exact)"),
    admitted: bool | None = Query(None, description="Admission status"),
    referral_sent_to: str | None = Query(None, description="Destination facility (exact)"),
    lead_source: str | None = Query(None, description="Lead source (exact)"),
    referral_source: str | None = Query(None, description="Referral source contains (case-insensitive)"),
    name: str | None = Query(None, description="Client name contains (case-insensitive)"),
    insurance: str | None = Query(None, description="Insurance company contains (case-insensitive)"),
    outreach_rep: str | None = Query(None, description="Outreach rep (exact)"),
    start_date: date | None = Query(None, description="Created on or after (YYYY-MM-DD)"),
    end_date: date | None = Query(None, description="Created on or before (YYYY-MM-DD)"),
) -> dict[str, Any]:
    """Filters offered by the admin table and the record export."""
    return {
        "program": program,
        "admitted": admitted,
        "referral_sent_to": referral_sent_to,
        "lead_source": lead_source,
        "referral_source": referral_source,
        "name": name,
        "insurance": insurance,
        "outreach_rep": outreach_rep,
        "start_date": start_date,
        "end_date": end_date,
    }


def metric_filters(
    start_date: date | None = Query(None, description="Created on or after (YYYY-MM-DD)"),
    end_date: date | None = Query(None, description="Created on or before (YYYY-MM-DD)"),
    lead_source: str | None = Query(None, description="Lead source (exact)"),
    referral_source: str | None = Query(None, description="Referral source contains (case-insensitive)"),
    referral_sent_to: str | None = Query(None, description="Destination facility (exact)"),
    program: str | None = Query(None, description="Level of care (exact)"),
    outreach_rep: str | None = Query(None, description="Outreach rep (exact)"),
    insurance: str | None = Query(None, description="Insurance company contains (case-insensitive)"),
) -> dict[str, Any]:
    """Filters offered by the reporting view."""
    return {
        "start_date": start_date,
        "end_date": end_date,
        "lead_source": lead_source,
        "referral_source": referral_source,
        "referral_sent_to": referral_sent_to,
        "program": program,
        "outreach_rep": outreach_rep,
        "insurance": insurance,
    }


def filters_key(filters: dict[str, Any]) -> tuple:
    """Hashable cache key for a filter dict."""
    return tuple(sorted((k, str(v) if v is not None else None) for k, v in filters.items()))
