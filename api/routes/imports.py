"""
POST /api/v1/referrals/import endpoint.

Accepts a CSV upload (multipart field ``file``), maps its headers onto
referral fields and writes the accepted rows in sequential batches.
Batches are independent transactions: a failed batch is rolled back and
counted in ``failed`` while the other batches stand.
"""

import logging
import sqlite3
import time

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile

from api.auth import get_current_user
from api.database import get_db
from api.models import ErrorResponse, ImportResponse
from api.routes.metrics import invalidate_metrics
from utils.aggregation import pct_of_total
from utils.common import elapsed_ms, format_bytes
from utils.csv_io import parse_referral_csv
from utils.database import batch_write
from utils.formatting import format_count, format_percent

logger = logging.getLogger("referral_intake.imports")

router = APIRouter(prefix="/referrals", tags=["import"])

_INSERT_COLUMNS = [
    "first_name", "last_name", "lead_source", "outreach_rep",
    "referral_source", "referral_out", "insurance_company", "program",
    "referral_sent_to", "admitted", "created_at", "created_by",
]

_INSERT_SQL = (
    f"INSERT INTO referrals ({', '.join(_INSERT_COLUMNS)}) "
    f"VALUES ({', '.join('?' * len(_INSERT_COLUMNS))})"
)


@router.post(
    "/import",
    response_model=ImportResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Empty file, not UTF-8, or no name column"},
        413: {"model": ErrorResponse, "description": "File larger than IMPORT_MAX_BYTES"},
    },
    summary="Bulk import referrals from CSV",
)
def import_referrals(
    request: Request,
    file: UploadFile = File(..., description="CSV file with a header row"),
    user: dict = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> ImportResponse:
    """Parse the upload, reject bad rows by line number, write the rest."""
    start = time.monotonic()
    config = request.app.state.config
    content = file.file.read(config.import_max_bytes + 1)
    if len(content) > config.import_max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File exceeds the {format_bytes(config.import_max_bytes)} import limit",
        )

    parsed = parse_referral_csv(content)

    created_by = user.get("email") or "unknown"
    rows = [
        tuple(
            int(rec[c]) if c == "admitted" else (created_by if c == "created_by" else rec[c])
            for c in _INSERT_COLUMNS
        )
        for rec in parsed.records
    ]
    result = batch_write(conn, _INSERT_SQL, rows, batch_size=config.import_batch_size)
    if result.written:
        invalidate_metrics()
    if result.failed_batches:
        logger.warning(
            "import of %s: batches %s rolled back (%s)",
            file.filename, result.failed_batches, "; ".join(result.errors),
        )

    logger.info(
        "import of %s by %s: %s imported (%s), %s failed, %s rejected, %s skipped in %.1f ms",
        file.filename, created_by, format_count(result.written),
        format_percent(pct_of_total(result.written, parsed.total_rows)),
        format_count(result.failed), format_count(parsed.issues.error_count()),
        format_count(parsed.skipped), elapsed_ms(start),
    )
    return ImportResponse(
        total_rows=parsed.total_rows,
        imported=result.written,
        failed=result.failed,
        skipped=parsed.skipped,
        errors=parsed.issues.to_list(),
        unmapped_headers=parsed.unmapped_headers,
    )
