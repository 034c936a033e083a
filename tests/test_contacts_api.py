"""
Tests for api/routes/contacts.py - referent contact CRUD.
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from conftest import TEST_EMAIL

URL = "/api/v1/contacts"

CONTACT = {
    "referral_partner": "Harbor Recovery",
    "referral_rep": "Sam Ortiz",
    "referral_contact_info": "555-0142",
}


class TestCreate:
    def test_created(self, auth_client):
        resp = auth_client.post(URL, json={**CONTACT, "referent_email": " sam@harbor.example "})
        assert resp.status_code == 201
        data = resp.json()
        assert data["referral_partner"] == "Harbor Recovery"
        assert data["referent_email"] == "sam@harbor.example"
        assert data["created_by"] == TEST_EMAIL

    def test_email_optional(self, auth_client):
        data = auth_client.post(URL, json=CONTACT).json()
        assert data["referent_email"] is None

    def test_missing_required(self, auth_client):
        resp = auth_client.post(URL, json={"referral_partner": "Harbor", "referral_rep": " "})
        assert resp.status_code == 422
        assert resp.json()["detail"] == "Missing required fields: referral rep, contact info"


class TestListAndEdit:
    def test_newest_first_and_filters(self, auth_client):
        auth_client.post(URL, json=CONTACT)
        auth_client.post(URL, json={**CONTACT, "referral_partner": "Oak Clinic", "referral_rep": "Lee"})
        data = auth_client.get(URL).json()
        assert [c["referral_partner"] for c in data] == ["Oak Clinic", "Harbor Recovery"]
        assert [c["referral_rep"] for c in auth_client.get(URL, params={"partner": "harbor"}).json()] == ["Sam Ortiz"]
        assert [c["referral_partner"] for c in auth_client.get(URL, params={"rep": "LEE"}).json()] == ["Oak Clinic"]

    def test_get_patch_delete(self, auth_client):
        cid = auth_client.post(URL, json=CONTACT).json()["id"]
        assert auth_client.get(f"{URL}/{cid}").json()["referral_rep"] == "Sam Ortiz"

        data = auth_client.patch(f"{URL}/{cid}", json={"referral_contact_info": "555-9999"}).json()
        assert data["referral_contact_info"] == "555-9999"
        assert data["referral_partner"] == "Harbor Recovery"
        assert data["updated_at"] is not None

        resp = auth_client.patch(f"{URL}/{cid}", json={"referral_rep": ""})
        assert resp.status_code == 422

        assert auth_client.delete(f"{URL}/{cid}").status_code == 204
        assert auth_client.get(f"{URL}/{cid}").status_code == 404

    def test_missing_contact(self, auth_client):
        assert auth_client.get(f"{URL}/404").status_code == 404
        assert auth_client.patch(f"{URL}/404", json={"referral_rep": "x"}).status_code == 404
        assert auth_client.delete(f"{URL}/404").status_code == 404
