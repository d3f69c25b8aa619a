"""Tests for API endpoints."""

import time

from fastapi.testclient import TestClient

from docgrid.backend.config import get_settings
from docgrid.backend.main import app


def create_project(client: TestClient) -> str:
    response = client.post("/projects", json={"name": "Invoices"})
    assert response.status_code == 201
    project_id = response.json()["id"]
    for column in (
        {"id": "invoice_date", "name": "Invoice Date", "prompt": "extract the invoice date", "type": "date"},
        {"id": "vendor", "name": "Vendor", "type": "organization"},
    ):
        assert client.post(f"/projects/{project_id}/columns", json=column).status_code == 201
    return project_id


def register(client: TestClient, project_id: str, name: str = "invoice.pdf", **extra) -> dict:
    response = client.post(
        f"/projects/{project_id}/documents",
        json={
            "original_name": name,
            "content_url": f"https://files.example.com/{name}",
            "mime_type": "application/pdf",
            **extra,
        },
    )
    assert response.status_code == 201
    return response.json()


def wait_until_settled(client: TestClient, document_id: str) -> dict:
    """Poll a document until it leaves `processing`."""
    for _ in range(200):
        state = client.get(f"/documents/{document_id}").json()["processing"]
        if state["status"] != "processing":
            return state
        time.sleep(0.02)
    return state


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_root_endpoint(self, client: TestClient):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_health_endpoint(self, client: TestClient):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["message"] == "Service is healthy"

    def test_debug_flag_follows_settings(self, client: TestClient):
        assert app.debug is get_settings().debug


class TestProjectEndpoints:
    def test_project_with_columns(self, client: TestClient):
        project_id = create_project(client)

        response = client.get(f"/projects/{project_id}")

        assert response.status_code == 200
        assert [c["id"] for c in response.json()["columns"]] == ["invoice_date", "vendor"]

    def test_unknown_project(self, client: TestClient):
        response = client.get("/projects/missing")
        assert response.status_code == 404
        assert response.json()["code"] == "PROJECT_NOT_FOUND"

    def test_duplicate_column(self, client: TestClient):
        project_id = create_project(client)
        response = client.post(f"/projects/{project_id}/columns", json={"id": "vendor", "name": "Vendor"})
        assert response.status_code == 409
        assert response.json()["code"] == "COLUMN_EXISTS"

    def test_invalid_column_type(self, client: TestClient):
        project_id = create_project(client)
        response = client.post(f"/projects/{project_id}/columns", json={"name": "Amount", "type": "currency"})
        assert response.status_code == 422

    def test_delete_column(self, client: TestClient):
        project_id = create_project(client)
        response = client.delete(f"/projects/{project_id}/columns/vendor")
        assert response.status_code == 200
        assert response.json() == {"deleted": "vendor", "cleaned_records": 0}


class TestDocumentEndpoints:
    def test_register_is_pending(self, client: TestClient):
        project_id = create_project(client)
        document = register(client, project_id)

        assert document["processing"] == {"status": "pending", "progress": 0, "error": None}
        assert document["extension"] == "pdf"

    def test_process_and_wait(self, client: TestClient):
        project_id = create_project(client)
        document_id = register(client, project_id)["id"]

        response = client.post(f"/documents/{document_id}/process", params={"wait": True})

        assert response.status_code == 202
        assert response.json() == {"status": "completed", "progress": 100, "error": None}
        value = client.get(f"/documents/{document_id}/values/invoice_date").json()
        assert value["value"] == "2024-01-15"
        assert value["extracted_by"]["version"] == "text-extraction-v1"

    def test_failed_processing_reports_code(self, client: TestClient):
        project_id = create_project(client)
        document_id = register(client, project_id, name="missing.pdf")["id"]

        response = client.post(f"/documents/{document_id}/process", params={"wait": True})

        assert response.json()["status"] == "failed"
        assert response.json()["error"]["code"] == "CONTENT_UNAVAILABLE"
        document = client.get(f"/documents/{document_id}").json()
        assert document["processing"]["error"]["code"] == "CONTENT_UNAVAILABLE"

    def test_auto_process_on_register(self, client: TestClient):
        project_id = create_project(client)
        document = register(client, project_id, auto_process=True)

        assert document["processing"]["status"] == "processing"
        assert wait_until_settled(client, document["id"])["status"] == "completed"

    def test_process_pending(self, client: TestClient):
        project_id = create_project(client)
        document_id = register(client, project_id)["id"]

        response = client.post(f"/projects/{project_id}/documents/process-pending")

        assert response.status_code == 202
        assert response.json()["scheduled"] == [document_id]
        assert wait_until_settled(client, document_id)["status"] == "completed"

    def test_reprocess(self, client: TestClient):
        project_id = create_project(client)
        document_id = register(client, project_id)["id"]
        client.post(f"/documents/{document_id}/process", params={"wait": True})

        response = client.post(f"/documents/{document_id}/reprocess", params={"wait": True})

        assert response.json()["status"] == "completed"
        assert client.get(f"/documents/{document_id}").json()["retry_count"] == 1

    def test_cancel_without_scheduled_start(self, client: TestClient):
        project_id = create_project(client)
        document_id = register(client, project_id)["id"]

        response = client.post(f"/documents/{document_id}/cancel")

        assert response.json() == {"document_id": document_id, "cancelled": False}

    def test_process_unknown_document(self, client: TestClient):
        response = client.post("/documents/missing/process")
        assert response.status_code == 404
        assert response.json()["code"] == "DOCUMENT_NOT_FOUND"

    def test_manual_value_write(self, client: TestClient):
        project_id = create_project(client)
        document_id = register(client, project_id)["id"]

        response = client.put(
            f"/documents/{document_id}/values/vendor",
            json={"value": "Acme Corp", "confidence": 2.5},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["confidence"] == 1.0
        assert body["extracted_by"]["method"] == "manual"

    def test_missing_value(self, client: TestClient):
        project_id = create_project(client)
        document_id = register(client, project_id)["id"]
        assert client.get(f"/documents/{document_id}/values/vendor").status_code == 404


class TestCollectionEndpoints:
    def test_collection_lifecycle(self, client: TestClient):
        project_id = create_project(client)
        first = register(client, project_id)["id"]
        second = register(client, project_id, name="other.pdf")["id"]
        for document_id in (first, second):
            client.put(f"/documents/{document_id}/values/vendor", json={"value": document_id[:4]})

        response = client.post(
            f"/projects/{project_id}/collections",
            json={"name": "Batch", "document_ids": [first, second]},
        )
        assert response.status_code == 201
        collection = response.json()
        assert collection["extracted_data"]["vendor"]["value"] == f"{first[:4]} | {second[:4]}"

        collection_id = collection["id"]
        reordered = client.put(f"/collections/{collection_id}/order", json={"order": [second, first]}).json()
        assert reordered["extracted_data"]["vendor"]["value"] == f"{second[:4]} | {first[:4]}"

        hidden = client.post(f"/collections/{collection_id}/documents/{second}/hide").json()
        assert hidden["extracted_data"]["vendor"]["source_documents"] == [first]

        aggregated = client.post(f"/collections/{collection_id}/aggregate/vendor").json()
        assert aggregated["aggregation_type"] == "single"

        assert client.delete(f"/collections/{collection_id}").status_code == 204
        assert client.get(f"/collections/{collection_id}").status_code == 404

    def test_hide_non_member(self, client: TestClient):
        project_id = create_project(client)
        document_id = register(client, project_id)["id"]
        collection_id = client.post(f"/projects/{project_id}/collections", json={"name": "Empty"}).json()["id"]

        response = client.post(f"/collections/{collection_id}/documents/{document_id}/hide")

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_COLLECTION_MEMBER"
