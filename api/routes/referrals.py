"""
Referral endpoints: the intake form and the admin table.

POST   /api/v1/referrals        → create (intake form)
GET    /api/v1/referrals        → filtered, sorted, paginated list
GET    /api/v1/referrals/{id}   → single record
PATCH  /api/v1/referrals/{id}   → partial update
DELETE /api/v1/referrals/{id}   → delete
"""

import logging
import sqlite3
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from api.auth import get_current_user
from api.database import get_db
from api.filters import table_filters
from api.models import ErrorResponse, ReferralCreate, ReferralOut, ReferralPage, ReferralUpdate
from api.routes.metrics import invalidate_metrics
from utils.common import utc_now
from utils.database import REFERRAL_COLUMNS
from utils.query import REFERRAL_SORTS, build_order_clause, build_where_clause
from utils.validation import describe_missing, referral_problems

logger = logging.getLogger("referral_intake.referrals")

router = APIRouter(prefix="/referrals", tags=["referrals"])

_SELECT_COLUMNS = ", ".join(REFERRAL_COLUMNS)

_EDITABLE_FIELDS = [
    "first_name", "last_name", "lead_source", "outreach_rep",
    "referral_source", "referral_out", "insurance_company", "program",
    "referral_sent_to", "admitted",
]


def fetch_referral(conn: sqlite3.Connection, referral_id: int) -> dict[str, Any]:
    """Return a stored referral as a dict or raise 404."""
    row = conn.execute(
        f"SELECT {_SELECT_COLUMNS} FROM referrals WHERE id = ?", (referral_id,)
    ).fetchone()
    if row is None:
        raise HTTPException(status_code=404, detail=f"Referral {referral_id} not found")
    return dict(row)


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=ReferralOut,
    responses={
        201: {"description": "Referral stored"},
        422: {"model": ErrorResponse, "description": "Missing required fields or unknown choice value"},
    },
    summary="Submit a referral",
)
def create_referral(
    body: ReferralCreate,
    user: dict = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    """Store one intake form submission; the database assigns id and timestamp."""
    data = body.model_dump()
    fields = _EDITABLE_FIELDS
    values = [int(data[f]) if f == "admitted" else data[f] for f in fields]
    with conn:
        cur = conn.execute(
            f"INSERT INTO referrals ({', '.join(fields)}, created_at, created_by) "
            f"VALUES ({', '.join('?' * len(fields))}, ?, ?)",
            values + [utc_now(), user.get("email") or "unknown"],
        )
    invalidate_metrics()
    logger.info("referral %d created by %s", cur.lastrowid, user.get("email"))
    return fetch_referral(conn, cur.lastrowid)


@router.get("", response_model=ReferralPage, summary="List referrals")
def list_referrals(
    filters: dict[str, Any] = Depends(table_filters),
    sort_by: str = Query("date", description="date or name"),
    sort_dir: str = Query("desc", pattern="^(asc|desc)$", description="Sort direction"),
    limit: int = Query(25, ge=1, le=500, description="Max items per page"),
    offset: int = Query(0, ge=0, description="Pagination offset"),
    conn: sqlite3.Connection = Depends(get_db),
) -> ReferralPage:
    """Return a paginated, filtered list of referrals."""
    if sort_by not in REFERRAL_SORTS:
        raise HTTPException(
            status_code=400,
            detail=f"sort_by must be one of: {sorted(REFERRAL_SORTS)}",
        )

    where, params = build_where_clause(**filters)
    total = conn.execute(f"SELECT COUNT(*) FROM referrals {where}", params).fetchone()[0]

    order = build_order_clause(sort_by, sort_dir)
    rows = conn.execute(
        f"SELECT {_SELECT_COLUMNS} FROM referrals {where} {order} LIMIT ? OFFSET ?",
        params + [limit, offset],
    ).fetchall()
    items = [ReferralOut(**dict(row)) for row in rows]

    page = offset // limit + 1
    page_count = max(1, (total + limit - 1) // limit)
    return ReferralPage(
        total=total, limit=limit, offset=offset,
        page=page, page_count=page_count,
        has_next=offset + limit < total,
        has_prev=offset > 0,
        items=items,
    )


@router.get("/{referral_id}", response_model=ReferralOut, summary="Get one referral")
def get_referral(
    referral_id: int,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    return fetch_referral(conn, referral_id)


@router.patch(
    "/{referral_id}",
    response_model=ReferralOut,
    responses={
        404: {"model": ErrorResponse, "description": "Referral not found"},
        422: {"model": ErrorResponse, "description": "Edited record is missing required fields"},
    },
    summary="Edit a referral",
)
def update_referral(
    referral_id: int,
    body: ReferralUpdate,
    user: dict = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    """Apply the fields sent; the merged record must still be complete."""
    current = fetch_referral(conn, referral_id)
    changes = body.model_dump(exclude_unset=True)
    if "admitted" in changes and changes["admitted"] is None:
        del changes["admitted"]

    merged = {**current, **changes}
    missing = referral_problems(merged)
    if missing:
        raise HTTPException(status_code=422, detail=describe_missing(missing))

    if changes:
        assignments = ", ".join(f"{f} = ?" for f in changes)
        values = [int(v) if f == "admitted" else v for f, v in changes.items()]
        with conn:
            conn.execute(
                f"UPDATE referrals SET {assignments}, updated_at = ?, updated_by = ? WHERE id = ?",
                values + [utc_now(), user.get("email") or "unknown", referral_id],
            )
        invalidate_metrics()
        logger.info("referral %d updated by %s: %s", referral_id, user.get("email"),
                    ", ".join(sorted(changes)))
    return fetch_referral(conn, referral_id)


@router.delete(
    "/{referral_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse, "description": "Referral not found"}},
    summary="Delete a referral",
)
def delete_referral(
    referral_id: int,
    user: dict = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> Response:
    fetch_referral(conn, referral_id)
    with conn:
        conn.execute("DELETE FROM referrals WHERE id = ?", (referral_id,))
    invalidate_metrics()
    logger.info("referral %d deleted by %s", referral_id, user.get("email"))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
