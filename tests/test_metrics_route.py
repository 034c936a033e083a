"""
Tests for api/routes/metrics.py

Overview and breakdowns over a seeded referral set, filter handling,
the quarter trend, CSV export, and cache invalidation on writes.
"""
import csv
import io
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import api.routes.metrics as metrics_mod
from api.routes.metrics import metrics_cache

URL = "/api/v1/metrics"


@pytest.fixture()
def referrals(seed):
    # Q1 2024: 3 referrals, 1 admitted
    seed(lead_source="Kaiser", referral_source="St. Mary's", referral_sent_to="SBR",
         admitted=True, created_at="2024-01-05T10:00:00")
    seed(lead_source="Kaiser", referral_source="st. mary's", referral_out="Harbor",
         created_at="2024-02-05T10:00:00")
    seed(lead_source="Direct", created_at="2024-03-05T10:00:00")
    # Q2 2024: 2 referrals, 2 admitted
    seed(lead_source="Outreach", outreach_rep="Dana", referral_sent_to="SBR",
         admitted=True, program="RTC", created_at="2024-04-05T10:00:00")
    seed(lead_source="Kaiser", referral_sent_to="Cov hills", admitted=True,
         program="RTC", created_at="2024-05-05T10:00:00")


class TestSummary:
    def test_overview_and_breakdowns(self, auth_client, referrals):
        data = auth_client.get(f"{URL}/summary").json()
        assert data["overview"] == {"total": 5, "admitted": 3, "conversion_rate": 60.0}

        lead = {r["group"]: r for r in data["lead_source"]}
        assert lead["Kaiser"]["total"] == 3
        assert lead["Kaiser"]["admitted"] == 2
        assert lead["Kaiser"]["conversion_rate"] == 66.7
        assert lead["Kaiser"]["pct_of_total"] == 60.0
        assert data["lead_source"][0]["group"] == "Kaiser"

        sources = {r["group"]: r["total"] for r in data["referral_source"]}
        assert sources == {"St. Mary's": 2, "Unknown": 3}

        destinations = {r["group"]: r["total"] for r in data["referral_sent_to"]}
        assert destinations == {"SBR": 2, "Cov hills": 1, "Unknown": 2}

        assert [(r["group"], r["total"]) for r in data["referral_out"]] == [("Harbor", 1)]

    def test_empty_database(self, auth_client):
        data = auth_client.get(f"{URL}/summary").json()
        assert data["overview"] == {"total": 0, "admitted": 0, "conversion_rate": 0.0}
        assert data["lead_source"] == []

    def test_date_filter(self, auth_client, referrals):
        data = auth_client.get(
            f"{URL}/summary", params={"start_date": "2024-04-01", "end_date": "2024-06-30"}
        ).json()
        assert data["overview"] == {"total": 2, "admitted": 2, "conversion_rate": 100.0}

    def test_field_filters(self, auth_client, referrals):
        data = auth_client.get(f"{URL}/summary", params={"program": "RTC"}).json()
        assert data["overview"]["total"] == 2
        data = auth_client.get(f"{URL}/summary", params={"referral_source": "MARY"}).json()
        assert data["overview"]["total"] == 2

    def test_inverted_dates(self, auth_client):
        resp = auth_client.get(
            f"{URL}/summary", params={"start_date": "2024-06-01", "end_date": "2024-01-01"}
        )
        assert resp.status_code == 400


class TestBreakdown:
    def test_default_lead_source(self, auth_client, referrals):
        data = auth_client.get(URL).json()
        assert data["group_by"] == "lead_source"
        assert data["sort_by"] == "total"
        assert data["sort_dir"] == "desc"
        assert [r["group"] for r in data["rows"]] == ["Kaiser", "Direct", "Outreach"]

    def test_sort_by_conversion_rate(self, auth_client, referrals):
        data = auth_client.get(
            URL, params={"group_by": "lead_source", "sort_by": "conversion_rate", "sort_dir": "asc"}
        ).json()
        assert [r["group"] for r in data["rows"]] == ["Direct", "Kaiser", "Outreach"]

    def test_outreach_rep_excludes_blank(self, auth_client, referrals):
        data = auth_client.get(URL, params={"group_by": "outreach_rep"}).json()
        assert [(r["group"], r["total"], r["pct_of_total"]) for r in data["rows"]] == [("Dana", 1, 20.0)]

    def test_quarter_dimension(self, auth_client, referrals):
        data = auth_client.get(URL, params={"group_by": "quarter", "sort_by": "group", "sort_dir": "asc"}).json()
        assert [r["group"] for r in data["rows"]] == ["2024-Q1", "2024-Q2"]

    def test_bad_group_by(self, auth_client):
        resp = auth_client.get(URL, params={"group_by": "favorite_color"})
        assert resp.status_code == 400
        assert "group_by must be one of" in resp.json()["detail"]

    def test_bad_sort_by(self, auth_client):
        assert auth_client.get(URL, params={"sort_by": "pct"}).status_code == 400

    def test_bad_sort_dir(self, auth_client):
        assert auth_client.get(URL, params={"sort_dir": "up"}).status_code == 422


class TestQuarters:
    def test_trend(self, auth_client, referrals):
        data = auth_client.get(f"{URL}/quarters").json()
        q1, q2 = data["rows"]
        assert q1["group"] == "2024-Q1"
        assert q1["total"] == 3
        assert q1["conversion_rate"] == 33.3
        assert q1["total_delta"] is None
        assert q2["total_delta"] == -1
        assert q2["admitted_delta"] == 1
        assert q2["conversion_rate_delta"] == 66.7
        assert q2["total_change_pct"] == -33.3


class TestExport:
    def test_csv(self, auth_client, referrals):
        resp = auth_client.get(f"{URL}/export", params={"group_by": "lead_source"})
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert "metrics_lead_source_" in resp.headers["content-disposition"]
        assert resp.headers["x-total-count"] == "3"
        rows = list(csv.DictReader(io.StringIO(resp.text)))
        assert rows[0]["group"] == "Kaiser"
        assert rows[0]["conversion_rate"] == "66.7"

    def test_quarter_export_has_deltas(self, auth_client, referrals):
        resp = auth_client.get(f"{URL}/export", params={"group_by": "quarter"})
        rows = list(csv.DictReader(io.StringIO(resp.text)))
        assert [r["group"] for r in rows] == ["2024-Q1", "2024-Q2"]
        assert rows[0]["total_delta"] == ""
        assert rows[1]["total_delta"] == "-1"

    def test_bad_group_by(self, auth_client):
        assert auth_client.get(f"{URL}/export", params={"group_by": "nope"}).status_code == 400


class TestCache:
    def test_cached_until_write(self, auth_client, seed):
        seed(lead_source="Direct")
        assert auth_client.get(f"{URL}/summary").json()["overview"]["total"] == 1
        # direct insert bypasses the API, so the cached result is served
        seed(lead_source="Direct")
        assert auth_client.get(f"{URL}/summary").json()["overview"]["total"] == 1
        assert metrics_cache.stats()["hits"] == 1

        resp = auth_client.post(
            "/api/v1/referrals",
            json={"first_name": "New", "last_name": "Person", "lead_source": "Kaiser"},
        )
        assert resp.status_code == 201
        assert auth_client.get(f"{URL}/summary").json()["overview"]["total"] == 3

    def test_delete_invalidates(self, auth_client, seed):
        rid = seed()
        assert auth_client.get(URL).json()["overview"]["total"] == 1
        auth_client.delete(f"/api/v1/referrals/{rid}")
        assert auth_client.get(URL).json()["overview"]["total"] == 0

    def test_write_while_building_is_not_cached(self, auth_client, seed, monkeypatch):
        seed(lead_source="Direct")
        real_load = metrics_mod._load_records

        def load_then_write(conn, filters):
            records = real_load(conn, filters)
            monkeypatch.setattr(metrics_mod, "_load_records", real_load)
            seed(lead_source="Kaiser")
            metrics_mod.invalidate_metrics()
            return records

        monkeypatch.setattr(metrics_mod, "_load_records", load_then_write)
        assert auth_client.get(f"{URL}/summary").json()["overview"]["total"] == 1
        assert metrics_cache.stats()["size"] == 0
        assert auth_client.get(f"{URL}/summary").json()["overview"]["total"] == 2

    def test_cache_key_scoped_to_database(self, app, db_path):
        assert metrics_mod._cache_key("summary", ())[0] == str(db_path.resolve())
