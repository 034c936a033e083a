"""
Reporting endpoints.

GET /api/v1/metrics/summary   → overview plus the four standard breakdowns
GET /api/v1/metrics           → one breakdown (?group_by=)
GET /api/v1/metrics/quarters  → calendar quarters with quarter-over-quarter deltas
GET /api/v1/metrics/export    → one breakdown as CSV

The filtered referral set is loaded once per request and handed to the
pure functions in utils.aggregation.  Results are cached per filter
combination for five minutes; any referral write clears the cache.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Callable

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from api.database import get_db, get_db_path
from api.filters import filters_key, metric_filters
from api.models import ErrorResponse, MetricsResponse, MetricsSummary, QuarterResponse
from utils.aggregation import (
    DIMENSIONS,
    SORT_KEYS,
    group_by as group_records,
    overview,
    quarter_breakdown,
)
from utils.cache import TTLCache
from utils.csv_io import write_csv
from utils.query import build_where_clause

logger = logging.getLogger("referral_intake.metrics")

router = APIRouter(prefix="/metrics", tags=["metrics"])

metrics_cache: TTLCache = TTLCache(maxsize=128, ttl_seconds=300)

_METRIC_COLUMNS = [
    "lead_source", "referral_source", "referral_sent_to", "referral_out",
    "outreach_rep", "program", "insurance_company", "admitted", "created_at",
]

_ROW_COLUMNS = ["group", "total", "admitted", "conversion_rate", "pct_of_total"]
_QUARTER_COLUMNS = _ROW_COLUMNS + [
    "total_delta", "admitted_delta", "conversion_rate_delta", "total_change_pct",
]


def invalidate_metrics() -> None:
    """Drop cached reports; called after every referral write."""
    metrics_cache.invalidate()


def _cache_key(*parts: Any) -> tuple:
    # Keyed by database file as well as by report
    return (str(get_db_path().resolve()),) + parts


def _cached_report(key: tuple, build: Callable[[], dict[str, Any]]) -> dict[str, Any]:
    """Return the cached report for *key*, building and storing it on a miss.

    A write that lands while the report is being built bumps the cache
    generation, and the now-stale result is returned but not stored.
    """
    cached = metrics_cache.get(key)
    if cached is not None:
        return cached
    generation = metrics_cache.generation
    result = build()
    metrics_cache.set(key, result, generation=generation)
    return result


def _load_records(conn: sqlite3.Connection, filters: dict[str, Any]) -> list[dict[str, Any]]:
    where, params = build_where_clause(**filters)
    sql = f"SELECT {', '.join(_METRIC_COLUMNS)} FROM referrals {where}"
    return [dict(r) for r in conn.execute(sql, params).fetchall()]


def _check_group_by(group_by: str) -> None:
    if group_by not in DIMENSIONS:
        raise HTTPException(
            status_code=400,
            detail=f"group_by must be one of: {list(DIMENSIONS)}",
        )


def _check_sort(sort_by: str) -> None:
    if sort_by not in SORT_KEYS:
        raise HTTPException(
            status_code=400,
            detail=f"sort_by must be one of: {list(SORT_KEYS)}",
        )


@router.get("/summary", response_model=MetricsSummary, summary="Overview and standard breakdowns")
def metrics_summary(
    filters: dict[str, Any] = Depends(metric_filters),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    """Return the overview plus lead source, referral source, destination
    and referral-out breakdowns for the filtered set."""
    def build() -> dict[str, Any]:
        records = _load_records(conn, filters)
        return {
            "overview": overview(records),
            "lead_source": group_records(records, "lead_source"),
            "referral_source": group_records(records, "referral_source"),
            "referral_sent_to": group_records(records, "referral_sent_to"),
            "referral_out": group_records(records, "referral_out"),
        }

    return _cached_report(_cache_key("summary", filters_key(filters)), build)


@router.get(
    "",
    response_model=MetricsResponse,
    summary="Breakdown by one dimension",
    responses={
        400: {"model": ErrorResponse, "description": "Invalid group_by or sort_by", "content": {"application/json": {"example": {"error": "Bad request", "detail": "group_by must be one of: [...]", "status_code": 400}}}},
    },
)
def metrics_breakdown(
    group_by: str = Query("lead_source", description=f"Dimension: {', '.join(DIMENSIONS)}"),
    sort_by: str = Query("total", description="group, total, admitted or conversion_rate"),
    sort_dir: str = Query("desc", pattern="^(asc|desc)$", description="Sort direction"),
    filters: dict[str, Any] = Depends(metric_filters),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    """Counts, admissions, conversion rate and share of total per group."""
    _check_group_by(group_by)
    _check_sort(sort_by)

    def build() -> dict[str, Any]:
        records = _load_records(conn, filters)
        return {
            "group_by": group_by,
            "sort_by": sort_by,
            "sort_dir": sort_dir,
            "overview": overview(records),
            "rows": group_records(records, group_by, sort_by=sort_by, sort_dir=sort_dir),
        }

    key = _cache_key("breakdown", group_by, sort_by, sort_dir, filters_key(filters))
    return _cached_report(key, build)


@router.get("/quarters", response_model=QuarterResponse, summary="Quarter-over-quarter trend")
def metrics_quarters(
    filters: dict[str, Any] = Depends(metric_filters),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    """Chronological calendar quarters with deltas against the prior quarter."""
    def build() -> dict[str, Any]:
        records = _load_records(conn, filters)
        return {"overview": overview(records), "rows": quarter_breakdown(records)}

    return _cached_report(_cache_key("quarters", filters_key(filters)), build)


@router.get("/export", summary="Download a breakdown as CSV")
def metrics_export(
    group_by: str = Query("lead_source", description=f"Dimension: {', '.join(DIMENSIONS)}"),
    sort_by: str = Query("total", description="group, total, admitted or conversion_rate"),
    sort_dir: str = Query("desc", pattern="^(asc|desc)$", description="Sort direction"),
    filters: dict[str, Any] = Depends(metric_filters),
    conn: sqlite3.Connection = Depends(get_db),
) -> Response:
    """CSV of one breakdown; quarters come out chronologically with deltas."""
    _check_group_by(group_by)
    _check_sort(sort_by)

    records = _load_records(conn, filters)
    if group_by == "quarter":
        rows = quarter_breakdown(records)
        columns = _QUARTER_COLUMNS
    else:
        rows = group_records(records, group_by, sort_by=sort_by, sort_dir=sort_dir)
        columns = _ROW_COLUMNS

    stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
    return Response(
        content=write_csv(rows, columns),
        media_type="text/csv",
        headers={
            "Content-Disposition": f"attachment; filename=metrics_{group_by}_{stamp}.csv",
            "X-Total-Count": str(len(rows)),
        },
    )
