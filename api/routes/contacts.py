"""
Referent contact endpoints.

POST   /api/v1/contacts        → create
GET    /api/v1/contacts        → list, newest first (?partner=&rep=)
GET    /api/v1/contacts/{id}   → single contact
PATCH  /api/v1/contacts/{id}   → partial update
DELETE /api/v1/contacts/{id}   → delete
"""

import logging
import sqlite3
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from api.auth import get_current_user
from api.database import get_db
from api.models import ContactCreate, ContactOut, ContactUpdate, ErrorResponse
from utils.common import utc_now
from utils.database import CONTACT_COLUMNS, query_to_dicts
from utils.query import build_contact_where
from utils.validation import REQUIRED_CONTACT_FIELDS, describe_missing, missing_fields

logger = logging.getLogger("referral_intake.contacts")

router = APIRouter(prefix="/contacts", tags=["contacts"])

_SELECT_COLUMNS = ", ".join(CONTACT_COLUMNS)


def _fetch_contact(conn: sqlite3.Connection, contact_id: int) -> dict[str, Any]:
    row = conn.execute(
        f"SELECT {_SELECT_COLUMNS} FROM referent_contacts WHERE id = ?", (contact_id,)
    ).fetchone()
    if row is None:
        raise HTTPException(status_code=404, detail=f"Contact {contact_id} not found")
    return dict(row)


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=ContactOut,
    responses={422: {"model": ErrorResponse, "description": "Partner, rep or contact info missing"}},
    summary="Add a referent contact",
)
def create_contact(
    body: ContactCreate,
    user: dict = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    with conn:
        cur = conn.execute(
            "INSERT INTO referent_contacts (referral_partner, referral_rep, "
            "referral_contact_info, referent_email, created_at, created_by) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (body.referral_partner, body.referral_rep, body.referral_contact_info,
             body.referent_email, utc_now(), user.get("email") or "unknown"),
        )
    logger.info("contact %d created by %s", cur.lastrowid, user.get("email"))
    return _fetch_contact(conn, cur.lastrowid)


@router.get("", response_model=list[ContactOut], summary="List referent contacts")
def list_contacts(
    partner: str | None = Query(None, description="Partner contains (case-insensitive)"),
    rep: str | None = Query(None, description="Rep contains (case-insensitive)"),
    conn: sqlite3.Connection = Depends(get_db),
) -> list[dict[str, Any]]:
    """Return contacts, most recently added first."""
    where, params = build_contact_where(partner=partner, rep=rep)
    return query_to_dicts(
        conn,
        f"SELECT {_SELECT_COLUMNS} FROM referent_contacts {where} "
        "ORDER BY created_at DESC, id DESC",
        params,
    )


@router.get("/{contact_id}", response_model=ContactOut, summary="Get one contact")
def get_contact(
    contact_id: int,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    return _fetch_contact(conn, contact_id)


@router.patch("/{contact_id}", response_model=ContactOut, summary="Edit a contact")
def update_contact(
    contact_id: int,
    body: ContactUpdate,
    user: dict = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    """Apply the fields sent; partner, rep and contact info stay non-empty."""
    current = _fetch_contact(conn, contact_id)
    changes = body.model_dump(exclude_unset=True)
    missing = missing_fields({**current, **changes}, REQUIRED_CONTACT_FIELDS)
    if missing:
        raise HTTPException(status_code=422, detail=describe_missing(missing))

    if changes:
        assignments = ", ".join(f"{f} = ?" for f in changes)
        with conn:
            conn.execute(
                f"UPDATE referent_contacts SET {assignments}, updated_at = ? WHERE id = ?",
                list(changes.values()) + [utc_now(), contact_id],
            )
        logger.info("contact %d updated by %s", contact_id, user.get("email"))
    return _fetch_contact(conn, contact_id)


@router.delete(
    "/{contact_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a contact",
)
def delete_contact(
    contact_id: int,
    user: dict = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> Response:
    _fetch_contact(conn, contact_id)
    with conn:
        conn.execute("DELETE FROM referent_contacts WHERE id = ?", (contact_id,))
    logger.info("contact %d deleted by %s", contact_id, user.get("email"))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
