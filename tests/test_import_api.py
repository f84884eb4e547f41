"""
Tests for the import HTTP endpoints.
"""

import json

import pytest
from fastapi.testclient import TestClient

from bulk_import.api.dependencies import get_pipeline
from bulk_import.main import app

CONTACTS_CSV = (
    b"firstName,lastName,email\n"
    b"Ada,Lovelace,ada@example.com\n"
    b"Grace,Hopper,not-an-email\n"
)


@pytest.fixture
def pipeline(make_pipeline):
    return make_pipeline("best-effort")


@pytest.fixture
def client(pipeline):
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def upload(client, content, file_name="contacts.csv", **form):
    return client.post("/imports/upload", files={"file": (file_name, content)}, data=form)


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["message"] == "Bulk Import API"


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_list_models(client):
    response = client.get("/imports/models")

    assert response.status_code == 200
    record_types = response.json()["record_types"]
    assert [rt["name"] for rt in record_types] == ["Contact", "Recipe", "NutritionGoal"]
    assert record_types[0]["required_fields"] == ["email", "firstName"]


class TestTemplates:
    def test_template(self, client):
        response = client.get("/imports/templates/NutritionGoal")

        assert response.status_code == 200
        assert response.json()["headers"] == ["clientRef", "startDate", "targets.calories", "targets.protein"]

    def test_unknown_template(self, client):
        assert client.get("/imports/templates/Invoice").status_code == 404


class TestUpload:
    def test_upload_returns_groups_and_errors(self, client):
        response = upload(client, CONTACTS_CSV)

        assert response.status_code == 200
        body = response.json()
        assert body["session_id"]
        assert body["file_type"] == "csv"
        assert body["headers"] == ["firstName", "lastName", "email"]
        assert body["validation"] == {
            "total_rows": 2,
            "valid_rows": 1,
            "invalid_rows": 1,
            "unmatched_rows": 0,
            "can_save": True,
        }
        group = body["model_groups"][0]
        assert (group["model_name"], group["valid_count"], group["invalid_count"]) == ("Contact", 1, 1)
        assert body["all_errors"][0]["row_index"] == 3
        assert body["all_errors"][0]["error_type"] == "format"

    def test_forced_model_type(self, client):
        response = upload(client, CONTACTS_CSV, force_model_type="Recipe")

        assert response.status_code == 200
        assert [g["model_name"] for g in response.json()["model_groups"]] == ["Recipe"]

    def test_unknown_forced_model_type(self, client):
        response = upload(client, CONTACTS_CSV, force_model_type="Invoice")
        assert response.status_code == 404

    def test_unparseable_file(self, client):
        response = upload(client, b"", file_name="empty.csv")

        assert response.status_code == 400
        assert response.json()["detail"]["errors"] == ["File is empty"]

    def test_json_upload(self, client):
        rows = [{"title": "Oats", "category": "breakfast", "tags": ["quick"]}]

        response = upload(client, json.dumps(rows).encode(), file_name="recipes.json")

        assert response.status_code == 200
        row = response.json()["model_groups"][0]["rows"][0]
        assert row["coerced"] == {"title": "Oats", "category": "breakfast", "tags": ["quick"]}


class TestSessionFlow:
    def test_upload_then_commit(self, client, pipeline, catalog):
        session_id = upload(client, CONTACTS_CSV).json()["session_id"]

        response = client.post(f"/imports/sessions/{session_id}/commit")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["mode"] == "best-effort"
        assert body["inserted_count"] == 1
        assert pipeline.store.count(catalog.require("Contact")) == 1

        session = client.get(f"/imports/sessions/{session_id}").json()
        assert session["status"] == "committed"
        assert session["last_commit"]["inserted_count"] == 1

    def test_second_commit_conflicts(self, client):
        session_id = upload(client, CONTACTS_CSV).json()["session_id"]
        client.post(f"/imports/sessions/{session_id}/commit")

        assert client.post(f"/imports/sessions/{session_id}/commit").status_code == 409

    def test_duplicate_rows_are_reported(self, client):
        client.post(f"/imports/sessions/{upload(client, CONTACTS_CSV).json()['session_id']}/commit")
        session_id = upload(client, CONTACTS_CSV).json()["session_id"]

        body = client.post(f"/imports/sessions/{session_id}/commit").json()

        group = body["per_group_result"][0]
        assert (group["inserted_count"], group["failed_count"]) == (0, 1)
        assert group["errors"][0]["reason"] == "duplicate"
        assert group["errors"][0]["field"] == "email"

    def test_nothing_to_commit(self, client):
        session_id = upload(client, b"sku\nA-1\n", file_name="stock.csv").json()["session_id"]

        assert client.post(f"/imports/sessions/{session_id}/commit").status_code == 409

    def test_discard(self, client):
        session_id = upload(client, CONTACTS_CSV).json()["session_id"]

        response = client.delete(f"/imports/sessions/{session_id}")

        assert response.status_code == 200
        assert response.json() == {"success": True, "session_id": session_id, "status": "discarded"}
        assert client.post(f"/imports/sessions/{session_id}/commit").status_code == 409

    def test_unknown_session(self, client):
        assert client.get("/imports/sessions/missing").status_code == 404
        assert client.post("/imports/sessions/missing/commit").status_code == 404
        assert client.delete("/imports/sessions/missing").status_code == 404

    def test_expired_session(self, client, pipeline):
        session_id = upload(client, CONTACTS_CSV).json()["session_id"]
        session = pipeline.sessions.get_session(session_id)
        session.expires_at = session.created_at

        assert client.post(f"/imports/sessions/{session_id}/commit").status_code == 410


class TestRowEdits:
    def test_fix_row_then_commit_both(self, client):
        session_id = upload(client, CONTACTS_CSV).json()["session_id"]

        response = client.patch(
            f"/imports/sessions/{session_id}/groups/Contact/rows/3",
            json={"values": {"email": "grace@example.com"}},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["row"]["is_valid"] is True
        assert body["validation"]["valid_rows"] == 2
        assert client.post(f"/imports/sessions/{session_id}/commit").json()["inserted_count"] == 2

    def test_edit_unknown_row(self, client):
        session_id = upload(client, CONTACTS_CSV).json()["session_id"]

        response = client.patch(
            f"/imports/sessions/{session_id}/groups/Contact/rows/42", json={"values": {"email": "x@example.com"}}
        )
        assert response.status_code == 404

    def test_remove_row(self, client):
        session_id = upload(client, CONTACTS_CSV).json()["session_id"]

        response = client.delete(f"/imports/sessions/{session_id}/groups/Contact/rows/3")

        assert response.status_code == 200
        assert response.json()["validation"]["invalid_rows"] == 0

    def test_remove_unmatched_row(self, client):
        session_id = upload(client, b"sku\nA-1\n", file_name="stock.csv").json()["session_id"]

        response = client.delete(f"/imports/sessions/{session_id}/unmatched/2")

        assert response.status_code == 200
        assert response.json()["validation"]["total_rows"] == 0


def test_exports(client):
    session_id = upload(client, CONTACTS_CSV).json()["session_id"]

    response = client.get(f"/imports/sessions/{session_id}/exports")

    assert response.status_code == 200
    exports = response.json()["exports"]
    assert [(e["model_name"], e["row_count"]) for e in exports] == [("Contact", 2)]
    assert exports[0]["csv_content"].splitlines()[0] == "firstName,lastName,email"
