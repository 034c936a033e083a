"""
Reference data endpoints.

GET /api/v1/reference/options           → fixed choice lists for the forms
GET /api/v1/reference/referral-sources  → distinct stored referral sources
GET /api/v1/reference/outreach-reps     → distinct stored outreach reps
"""

import sqlite3

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.database import get_db
from api.models import ReferenceOptions, ValueCount
from utils.config import KnownValues
from utils.database import query_to_dicts

router = APIRouter(prefix="/reference", tags=["reference"])

_CACHE_HEADER = {"Cache-Control": "max-age=3600"}

# column name is interpolated; keep this to fixed names
_DISTINCT_COLUMNS = {"referral_source", "outreach_rep"}


def _distinct_values(conn: sqlite3.Connection, column: str) -> list[dict]:
    if column not in _DISTINCT_COLUMNS:
        raise ValueError(f"unsupported column: {column}")
    return query_to_dicts(
        conn,
        f"SELECT TRIM({column}) AS value, COUNT(*) AS count FROM referrals "
        f"WHERE {column} IS NOT NULL AND TRIM({column}) != '' "
        f"GROUP BY TRIM({column}) ORDER BY count DESC, LOWER(TRIM({column}))"
    )


@router.get(
    "/options",
    response_model=ReferenceOptions,
    summary="Form choice lists",
)
def list_options() -> JSONResponse:
    """Return the lead sources, programs and destinations the forms offer."""
    data = {
        "lead_sources": list(KnownValues.LEAD_SOURCES),
        "programs": list(KnownValues.PROGRAMS),
        "destinations": list(KnownValues.DESTINATIONS),
        "default_lead_source": KnownValues.DEFAULT_LEAD_SOURCE,
    }
    return JSONResponse(content=data, headers=_CACHE_HEADER)


@router.get(
    "/referral-sources",
    response_model=list[ValueCount],
    summary="Referral sources in use",
)
def list_referral_sources(conn: sqlite3.Connection = Depends(get_db)) -> list[dict]:
    """Distinct non-empty referral sources with how often each appears."""
    return _distinct_values(conn, "referral_source")


@router.get(
    "/outreach-reps",
    response_model=list[ValueCount],
    summary="Outreach reps in use",
)
def list_outreach_reps(conn: sqlite3.Connection = Depends(get_db)) -> list[dict]:
    """Distinct non-empty outreach reps with how often each appears."""
    return _distinct_values(conn, "outreach_rep")
