"""
End-to-end tests for the HTTP API.
"""

import time

import pytest
from fastapi.testclient import TestClient

from certmap.config import settings
from certmap.main import create_app


@pytest.fixture
def make_client(tmp_path):
    def _make(engine=None) -> TestClient:
        app = create_app(
            database_url=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
            artifact_root=str(tmp_path / "uploads"),
            engine=engine,
        )
        return TestClient(app)
    return _make


def upload(client, data: bytes, name: str = "cert.pdf", content_type: str = "application/pdf", **form):
    return client.post("/api/v1/documents", files={"file": (name, data, content_type)}, data=form)


def wait_for_mapping(client, doc_id: str, attempts: int = 100):
    for _ in range(attempts):
        response = client.get(f"/api/v1/documents/{doc_id}/mapping")
        if response.status_code != 202:
            return response
        time.sleep(0.05)
    raise AssertionError(f"mapping for {doc_id} never finished")


class TestUpload:

    def test_inline_upload_maps_pdf(self, make_client, certificate_pdf):
        with make_client() as client:
            response = upload(client, certificate_pdf, uploader="jane")
            assert response.status_code == 201
            body = response.json()
            assert body["status"] == "done"
            assert body["path"] == "inline"
            assert body["file_size_bytes"] == len(certificate_pdf)
            assert len(body["doc_hash"]) == 64

            mapping = body["mapping"]
            assert "Data" in mapping["title"]["value"]
            assert mapping["category"]["value"] == "Course"
            assert mapping["usefulLinks"]["value"] == ["https://acme.example/verify/123"]
            assert mapping["issuedDate"]["value"] == "2024-03-12"

            doc_id = body["doc_id"]
            detail = client.get(f"/api/v1/documents/{doc_id}").json()
            assert detail["status"] == "done"
            assert detail["page_count"] == 1
            assert detail["uploader"] == "jane"
            assert detail["processing_finished_at"] is not None
            assert detail["mapping_json"] == mapping
            assert not detail["mapping_accepted"]

            extraction = client.get(f"/api/v1/documents/{doc_id}/extraction").json()["extraction"]
            assert extraction["pages"][0]["pageNumber"] == 1
            assert extraction["plainText"].endswith("\n\f\n")

    def test_unsupported_type(self, make_client):
        with make_client() as client:
            response = upload(client, b"hello", name="notes.txt", content_type="text/plain")
            assert response.status_code == 415

    def test_empty_file(self, make_client):
        with make_client() as client:
            assert upload(client, b"").status_code == 400

    def test_unreadable_pdf(self, make_client):
        with make_client() as client:
            response = upload(client, b"definitely not a pdf")
            assert response.status_code == 422
            assert response.json()["detail"]["error"] == "ERR_PARSE_FAILURE"

    def test_large_upload_is_queued(self, make_client, fake_engine, monkeypatch):
        monkeypatch.setattr(settings, "LARGE_PDF_BYTES", 8)
        with make_client(fake_engine) as client:
            response = upload(client, b"%PDF-1.4 larger than eight bytes")
            assert response.status_code == 202
            body = response.json()
            assert body["status"] == "queued"
            assert body["path"] == "queued"
            assert body["mapping"] is None

            mapping = wait_for_mapping(client, body["doc_id"])
            assert mapping.status_code == 200
            assert mapping.json()["mapping"]["title"]["value"] == "Hackathon Winner"

            stats = client.get("/api/v1/jobs/queue/stats").json()
            assert stats["processed"] == 1
            assert stats["running"]


class TestMapping:

    def test_accept_freezes_mapping(self, make_client, fake_engine):
        with make_client(fake_engine) as client:
            doc_id = upload(client, b"%PDF-1.4 small").json()["doc_id"]

            response = client.post(
                f"/api/v1/documents/{doc_id}/mapping/accept",
                json={"mapping": {"title": {"value": "Title: Final Title", "confidence": 0.9}}, "user": "jane"},
            )
            assert response.status_code == 200
            assert response.json()["mapping"]["title"]["value"] == "Final Title"

            again = client.post(
                f"/api/v1/documents/{doc_id}/mapping/accept",
                json={"mapping": {"title": {"value": "Other"}}},
            )
            assert again.status_code == 409
            assert again.json()["detail"]["error"] == "ERR_MAPPING_ACCEPTED"

            assert client.post(f"/api/v1/documents/{doc_id}/map").status_code == 409

            current = client.get(f"/api/v1/documents/{doc_id}/mapping").json()
            assert current["accepted"]
            assert current["mapping"]["title"]["value"] == "Final Title"

            audit = client.get(f"/api/v1/documents/{doc_id}/audit").json()
            assert audit["total"] == 2
            assert [e["method"] for e in audit["entries"]] == ["accepted", "heuristic"]
            assert audit["entries"][0]["accepted_by"] == "jane"

            limited = client.get(f"/api/v1/documents/{doc_id}/audit", params={"limit": 1}).json()
            assert limited["count"] == 1
            assert limited["total"] == 2

            preview = client.get(f"/api/v1/documents/{doc_id}/mapping/preview").json()
            assert preview["accepted"]
            assert preview["summary"] == {"title": "Final Title"}

    def test_accept_empty_mapping(self, make_client, fake_engine):
        with make_client(fake_engine) as client:
            doc_id = upload(client, b"%PDF-1.4 small").json()["doc_id"]
            response = client.post(f"/api/v1/documents/{doc_id}/mapping/accept", json={"mapping": {}})
            assert response.status_code == 400

    def test_remap_returns_existing(self, make_client, fake_engine):
        with make_client(fake_engine) as client:
            body = upload(client, b"%PDF-1.4 small").json()
            response = client.post(f"/api/v1/documents/{body['doc_id']}/map")
            assert response.status_code == 200
            assert response.json()["mapping"] == body["mapping"]
            assert len(fake_engine.calls) == 1

    def test_map_supplied_extraction(self, make_client, hackathon_extraction):
        with make_client() as client:
            payload = {"extraction": hackathon_extraction.model_dump(mode="json", by_alias=True)}
            response = client.post("/api/v1/map", json=payload)
            assert response.status_code == 200
            body = response.json()
            assert body["ok"]
            assert body["mapping"]["title"]["value"] == "Hackathon Winner"
            assert body["mapping"]["skills"]["value"] == ["Python", "Rust", "Teamwork"]

    def test_map_malformed_extraction(self, make_client):
        with make_client() as client:
            response = client.post("/api/v1/map", json={"extraction": {"pages": "nope", "plainText": 5}})
            assert response.status_code == 200
            mapping = response.json()["mapping"]
            assert set(mapping) == {"category"}
            assert mapping["category"]["value"] == "Other"

    @pytest.mark.parametrize("path", [
        "/api/v1/documents/missing",
        "/api/v1/documents/missing/extraction",
        "/api/v1/documents/missing/mapping",
        "/api/v1/documents/missing/audit",
        "/api/v1/documents/missing/events",
    ])
    def test_unknown_document(self, make_client, path):
        with make_client() as client:
            response = client.get(path)
            assert response.status_code == 404

    def test_failed_inline_run(self, make_client, fake_engine):
        with make_client(fake_engine) as client:
            response = upload(client, b"bad")
            assert response.status_code == 422
            assert response.json()["detail"]["error"] == "ERR_PARSE_FAILURE"


class TestEvents:

    def test_stream_ends_after_terminal_status(self, make_client, fake_engine):
        with make_client(fake_engine) as client:
            doc_id = upload(client, b"%PDF-1.4 small").json()["doc_id"]
            response = client.get(f"/api/v1/documents/{doc_id}/events")
            assert response.status_code == 200
            assert response.headers["content-type"].startswith("text/event-stream")
            assert "event: status" in response.text
            assert '"status": "done"' in response.text
            assert f'"docId": "{doc_id}"' in response.text


class TestHealth:

    def test_health(self, make_client):
        with make_client() as client:
            body = client.get("/health").json()
            assert body["status"] == "healthy"
            assert body["database"] == "connected"
            assert body["worker"] == "running"
            assert body["engine"]["name"] == "pdfplumber"

    def test_api_key_enforced(self, make_client, monkeypatch):
        monkeypatch.setattr(settings, "API_KEY", "secret")
        with make_client() as client:
            assert client.get("/api/v1/documents/missing").status_code == 401
            response = client.get("/api/v1/documents/missing", headers={"X-API-Key": "secret"})
            assert response.status_code == 404
