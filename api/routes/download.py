"""
GET /api/v1/download endpoint.

Streams filtered referral records as CSV, JSON, or Excel without loading
everything into memory.  Accepts the same filter and sort parameters as
GET /referrals.

- CSV uses a fixed header row and writes admitted as Yes/No.
- JSON is newline-delimited, one record per line.
- Excel is built with openpyxl write_only mode.
- X-Total-Count carries the number of exported rows.
"""

import csv
import io
import json
import sqlite3
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from api.database import get_db, get_db_path, open_db
from api.filters import table_filters
from utils.csv_io import EXPORT_COLUMNS, export_row
from utils.query import REFERRAL_SORTS, build_order_clause, build_where_clause

router = APIRouter(prefix="/download", tags=["download"])


def _iter_rows(sql: str, params: list[Any]):
    """Yield rows one at a time to enable streaming.

    Uses its own connection: the body is produced after the request's
    get_db() connection may already be closed.
    """
    conn = open_db(get_db_path())
    try:
        cur = conn.execute(sql, params)
        while True:
            batch = cur.fetchmany(500)
            if not batch:
                break
            yield from batch
    finally:
        conn.close()


def _build_download_sql(
    conn: sqlite3.Connection,
    filters: dict[str, Any],
    sort_by: str,
    sort_dir: str,
) -> tuple[str, list[Any], int]:
    """Build the export SQL with all filters applied.

    Returns:
        (sql, params, total_count)
    """
    where, params = build_where_clause(**filters)
    total = conn.execute(f"SELECT COUNT(*) FROM referrals {where}", params).fetchone()[0]
    order = build_order_clause(sort_by, sort_dir)
    sql = f"SELECT {', '.join(EXPORT_COLUMNS)} FROM referrals {where} {order}"
    return sql, params, total


@router.get("", summary="Download referrals as CSV, JSON, or Excel")
def download(
    fmt: str = Query("csv", pattern="^(csv|json|xlsx)$", description="Output format"),
    filters: dict[str, Any] = Depends(table_filters),
    sort_by: str = Query("date", description="date or name"),
    sort_dir: str = Query("desc", pattern="^(asc|desc)$", description="Sort direction"),
    conn: sqlite3.Connection = Depends(get_db),
) -> StreamingResponse:
    """Stream referral records in the requested format."""
    if sort_by not in REFERRAL_SORTS:
        raise HTTPException(
            status_code=400,
            detail=f"sort_by must be one of: {sorted(REFERRAL_SORTS)}",
        )

    sql, params, total_count = _build_download_sql(conn, filters, sort_by, sort_dir)
    stem = f"referrals_{datetime.now(timezone.utc).strftime('%Y%m%d')}"
    extra_headers: dict[str, str] = {"X-Total-Count": str(total_count)}

    if fmt == "csv":
        def csv_stream():
            buf = io.StringIO()
            writer = csv.DictWriter(buf, fieldnames=EXPORT_COLUMNS)
            writer.writeheader()
            yield buf.getvalue()
            for row in _iter_rows(sql, params):
                buf.seek(0)
                buf.truncate()
                writer.writerow(export_row(dict(row)))
                yield buf.getvalue()

        return StreamingResponse(
            csv_stream(),
            media_type="text/csv",
            headers={
                "Content-Disposition": f"attachment; filename={stem}.csv",
                **extra_headers,
            },
        )

    if fmt == "xlsx":
        import openpyxl

        def xlsx_bytes() -> bytes:
            wb = openpyxl.Workbook(write_only=True)
            ws = wb.create_sheet("Referrals")
            ws.append(EXPORT_COLUMNS)
            for row in _iter_rows(sql, params):
                out = export_row(dict(row))
                ws.append([out[c] for c in EXPORT_COLUMNS])
            buf = io.BytesIO()
            wb.save(buf)
            return buf.getvalue()

        content = xlsx_bytes()
        return StreamingResponse(
            iter([content]),
            media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            headers={
                "Content-Disposition": f"attachment; filename={stem}.xlsx",
                "Content-Length": str(len(content)),
                **extra_headers,
            },
        )

    # JSON newline-delimited (NDJSON); admitted stays a boolean here
    def json_stream():
        for row in _iter_rows(sql, params):
            d = dict(row)
            d["admitted"] = bool(d["admitted"])
            yield json.dumps(d, default=str) + "\n"

    return StreamingResponse(
        json_stream(),
        media_type="application/x-ndjson",
        headers={
            "Content-Disposition": f"attachment; filename={stem}.ndjson",
            **extra_headers,
        },
    )
