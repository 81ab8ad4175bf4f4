"""
Endpoint tests for import preview/start and job status.
"""

import json

from sqlalchemy.exc import OperationalError

from crm_import.core.config import settings
from crm_import.db.models import Contact, Deal
from crm_import.domain.imports import runner

CONTACTS_CSV = (
    b"First Name,Last Name,Email Address,Favorite Color\n"
    b"Ada,Lovelace,ada@example.com,green\n"
    b"Grace,Hopper,grace@example.com,blue\n"
    b",Nofirst,nofirst@example.com,red\n"
)

CONTACT_MAPPING = {
    "First Name": "first_name",
    "Last Name": "last_name",
    "Email Address": "email",
    "Favorite Color": "skip",
}


def upload(content, name="import.csv"):
    return {"file": (name, content, "text/csv")}


def test_root_and_health(client):
    assert client.get("/").json()["message"] == "CRM Import API"
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


class TestPreview:

    def test_contacts_preview(self, client):
        response = client.post("/api/contacts/import/preview", files=upload(CONTACTS_CSV))

        assert response.status_code == 200
        data = response.json()
        assert data["headers"] == ["First Name", "Last Name", "Email Address", "Favorite Color"]
        assert data["total_rows"] == 3
        assert len(data["preview"]) == 3
        assert data["suggested_mapping"] == CONTACT_MAPPING
        assert data["stages"] is None
        assert {f["key"] for f in data["fields"]} >= {"first_name", "last_name", "email"}

    def test_preview_includes_custom_fields(self, client, custom_contact_field):
        content = b"First Name,Last Name,Lead Source\nAda,Lovelace,Website\n"
        data = client.post("/api/contacts/import/preview", files=upload(content)).json()

        assert data["suggested_mapping"]["Lead Source"] == "lead_source"
        custom = [f for f in data["fields"] if f["custom"]]
        assert custom[0]["options"][0] == {"value": "Website", "label": "Website"}

    def test_deals_preview_suggests_stages(self, client, stages):
        content = b"Deal Name,Amount,Stage,Email\nBig,100,Qualified lead,a@example.com\nSmall,5,Proposal Sent,b@example.com\n"
        data = client.post("/api/deals/import/preview", files=upload(content)).json()

        assert data["suggested_mapping"]["Stage"] == "stage"
        assert data["suggested_stage_mapping"] == {"Qualified lead": stages["Qualified"]}
        assert [s["label"] for s in data["stages"]] == ["Lead", "Qualified", "Negotiation", "Won"]

    def test_file_too_large(self, client, monkeypatch):
        monkeypatch.setattr(settings, "upload_max_file_size_mb", 0)
        response = client.post("/api/contacts/import/preview", files=upload(CONTACTS_CSV))

        assert response.status_code == 413

    def test_empty_file(self, client):
        response = client.post("/api/contacts/import/preview", files=upload(b""))

        assert response.status_code == 400


class TestStart:

    def test_sync_contacts_import(self, client, db_session):
        response = client.post(
            "/api/contacts/import/start",
            files=upload(CONTACTS_CSV),
            data={"field_mapping": json.dumps(CONTACT_MAPPING)},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["mode"] == "sync"
        assert data["result"]["created"] == 2
        assert data["result"]["skipped"] == 1
        assert data["result"]["errors"] == [{"row": 4, "error": "First Name is required"}]
        assert db_session.query(Contact).count() == 2

    def test_database_error_rolls_back_sync_import(self, client, db_session, monkeypatch):
        real_process_row = runner.process_row

        def failing_process_row(db, tenant_id, plan, record, row_number=None, cache=None):
            if row_number == 3:
                raise OperationalError("INSERT", {}, Exception("database is locked"))
            return real_process_row(db, tenant_id, plan, record, row_number, cache)

        monkeypatch.setattr(runner, "process_row", failing_process_row)

        response = client.post(
            "/api/contacts/import/start",
            files=upload(CONTACTS_CSV),
            data={"field_mapping": json.dumps(CONTACT_MAPPING)},
        )

        assert response.status_code == 500
        assert "no rows were committed" in response.json()["detail"]
        assert db_session.query(Contact).count() == 0

    def test_invalid_mapping_json(self, client):
        response = client.post(
            "/api/contacts/import/start",
            files=upload(CONTACTS_CSV),
            data={"field_mapping": "{not json"},
        )

        assert response.status_code == 400

    def test_unknown_strategy(self, client):
        response = client.post(
            "/api/contacts/import/start",
            files=upload(CONTACTS_CSV),
            data={"field_mapping": json.dumps(CONTACT_MAPPING), "duplicate_strategy": "merge"},
        )

        assert response.status_code == 400

    def test_invalid_default_stage(self, client, stages):
        response = client.post(
            "/api/deals/import/start",
            files=upload(b"Deal,Email\nBig,a@example.com\n"),
            data={"field_mapping": json.dumps({"Deal": "name", "Email": "contact_email"}), "default_stage_id": "nope"},
        )

        assert response.status_code == 400

    def test_async_import_and_status(self, client):
        response = client.post(
            "/api/contacts/import/start",
            files=upload(CONTACTS_CSV),
            data={"field_mapping": json.dumps(CONTACT_MAPPING), "force_async": "true"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["mode"] == "async"
        assert data["total_records"] == 3

        # TestClient runs background tasks before returning the response
        status = client.get(f"/api/import-jobs/{data['job_id']}").json()
        assert status["status"] == "completed"
        assert status["processed_records"] == 3
        assert (status["created"], status["updated"], status["skipped"]) == (2, 0, 1)
        assert status["error_count"] == 1
        assert status["progress"] == 100.0

        listing = client.get("/api/import-jobs").json()
        assert listing["total_count"] == 1
        assert listing["jobs"][0]["id"] == data["job_id"]

        export = client.get(f"/api/import-jobs/{data['job_id']}/skipped-rows?include_reason=true")
        assert export.status_code == 200
        assert export.headers["content-type"].startswith("text/csv")
        assert export.text.splitlines() == [
            "First Name,Last Name,Email Address,Favorite Color,Skip Reason",
            ",Nofirst,nofirst@example.com,red,First Name is required",
        ]

    def test_deals_import(self, client, db_session, stages, existing_contact):
        content = b"Deal,Email,Stage,Amount\nEngines,ada@example.com,Proposal Sent,\"$1,500\"\n"
        response = client.post(
            "/api/deals/import/start",
            files=upload(content),
            data={
                "field_mapping": json.dumps({"Deal": "name", "Email": "contact_email", "Stage": "stage", "Amount": "value"}),
                "default_stage_id": stages["Negotiation"],
            },
        )

        assert response.status_code == 200
        assert response.json()["result"]["created"] == 1
        deal = db_session.query(Deal).one()
        assert deal.stage_id == stages["Negotiation"]
        assert float(deal.value) == 1500


class TestJobStatus:

    def test_missing_job(self, client):
        assert client.get("/api/import-jobs/does-not-exist").status_code == 404
        assert client.get("/api/import-jobs/does-not-exist/skipped-rows").status_code == 404

    def test_job_is_scoped_to_tenant(self, client):
        response = client.post(
            "/api/contacts/import/start",
            files=upload(CONTACTS_CSV),
            data={"field_mapping": json.dumps(CONTACT_MAPPING), "force_async": "true"},
            headers={"X-Tenant-ID": "acme"},
        )
        job_id = response.json()["job_id"]

        assert client.get(f"/api/import-jobs/{job_id}").status_code == 404
        assert client.get(f"/api/import-jobs/{job_id}", headers={"X-Tenant-ID": "acme"}).status_code == 200

    def test_export_of_unfinished_job(self, client, db_session):
        from crm_import.domain.imports.jobs import create_import_job

        job = create_import_job(db_session, tenant_id="default", entity_type="contacts", total_records=5, headers=["A"])

        assert client.get(f"/api/import-jobs/{job['id']}/skipped-rows").status_code == 409
