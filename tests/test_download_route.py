"""
Tests for api/routes/download.py

Verifies the streaming row iterator and the CSV, NDJSON and Excel exports
with the admin table's filters applied.
"""
import csv
import io
import json
import sys
from pathlib import Path

import openpyxl
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from api.routes.download import _build_download_sql, _iter_rows
from utils.csv_io import EXPORT_COLUMNS

URL = "/api/v1/download"


@pytest.fixture()
def rows(seed):
    seed(first_name="Ann", last_name="Lee", lead_source="Kaiser", admitted=True,
         referral_source='Clinic, "North"', created_at="2024-01-10T09:00:00")
    seed(first_name="Bo", last_name="Diaz", lead_source="Direct",
         created_at="2024-02-10T09:00:00")
    seed(first_name="Cy", last_name="Ng", lead_source="Kaiser",
         created_at="2024-03-10T09:00:00")


class TestIterRows:
    def test_yields_all_rows(self, app, rows):
        assert len(list(_iter_rows("SELECT * FROM referrals", []))) == 3

    def test_with_where_params(self, app, rows):
        assert len(list(_iter_rows("SELECT * FROM referrals WHERE lead_source = ?", ["Kaiser"]))) == 2

    def test_empty_result(self, app, rows):
        assert list(_iter_rows("SELECT * FROM referrals WHERE id = ?", [999])) == []


class TestBuildDownloadSql:
    def test_counts_matching_rows(self, db, rows):
        sql, params, total = _build_download_sql(db, {"lead_source": "Kaiser"}, "date", "asc")
        assert total == 2
        assert params == ["Kaiser"]
        assert sql.endswith("ORDER BY created_at ASC, id ASC")


class TestCsv:
    def test_header_and_yes_no(self, auth_client, rows):
        resp = auth_client.get(URL)
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert resp.headers["x-total-count"] == "3"
        assert "referrals_" in resp.headers["content-disposition"]
        parsed = list(csv.reader(io.StringIO(resp.text)))
        assert parsed[0] == EXPORT_COLUMNS
        records = [dict(zip(parsed[0], r)) for r in parsed[1:]]
        # newest first by default
        assert [r["first_name"] for r in records] == ["Cy", "Bo", "Ann"]
        assert records[2]["admitted"] == "Yes"
        assert records[2]["referral_source"] == 'Clinic, "North"'
        assert records[0]["admitted"] == "No"

    def test_filters_and_sort(self, auth_client, rows):
        resp = auth_client.get(URL, params={"lead_source": "Kaiser", "sort_by": "name", "sort_dir": "asc"})
        assert resp.headers["x-total-count"] == "2"
        records = list(csv.DictReader(io.StringIO(resp.text)))
        assert [r["first_name"] for r in records] == ["Ann", "Cy"]

    def test_empty_export_has_header(self, auth_client):
        resp = auth_client.get(URL)
        assert resp.headers["x-total-count"] == "0"
        assert list(csv.reader(io.StringIO(resp.text))) == [EXPORT_COLUMNS]


class TestJson:
    def test_ndjson(self, auth_client, rows):
        resp = auth_client.get(URL, params={"fmt": "json", "admitted": "true"})
        assert resp.headers["content-type"].startswith("application/x-ndjson")
        lines = [json.loads(line) for line in resp.text.splitlines() if line]
        assert len(lines) == 1
        assert lines[0]["first_name"] == "Ann"
        assert lines[0]["admitted"] is True


class TestXlsx:
    def test_workbook(self, auth_client, rows):
        resp = auth_client.get(URL, params={"fmt": "xlsx", "sort_by": "name", "sort_dir": "asc"})
        assert resp.status_code == 200
        assert "spreadsheetml" in resp.headers["content-type"]
        assert resp.headers["content-disposition"].endswith(".xlsx")
        wb = openpyxl.load_workbook(io.BytesIO(resp.content))
        ws = wb["Referrals"]
        values = list(ws.iter_rows(values_only=True))
        assert list(values[0]) == EXPORT_COLUMNS
        assert values[1][EXPORT_COLUMNS.index("first_name")] == "Ann"
        assert values[1][EXPORT_COLUMNS.index("admitted")] == "Yes"
        assert len(values) == 4


class TestValidation:
    def test_bad_format(self, auth_client):
        assert auth_client.get(URL, params={"fmt": "pdf"}).status_code == 422

    def test_bad_sort(self, auth_client):
        assert auth_client.get(URL, params={"sort_by": "lead_source"}).status_code == 400
