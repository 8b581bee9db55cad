"""API tests for the address and file job routers (FastAPI TestClient)."""

from urllib.parse import quote

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import UPLOAD_CSV
from postcode_finder.address_router import configure_router, router as address_router
from postcode_finder.upload.router import configure_file_routes, router as file_router


@pytest.fixture
def client(orchestrator, uploads, resolver):
    app = FastAPI()
    app.include_router(address_router)
    app.include_router(file_router)
    configure_router(resolver)
    configure_file_routes(orchestrator, uploads, process_on_upload=False)
    with TestClient(app) as test_client:
        yield test_client


def upload(client, content=UPLOAD_CSV, name="addresses.csv", **form):
    return client.post(
        "/api/file/upload",
        files={"file": (name, content.encode("utf-8") if isinstance(content, str) else content, "text/csv")},
        data=form,
    )


# ============================================================================
# Address lookup
# ============================================================================


class TestAddressEndpoints:

    def test_search(self, client):
        response = client.post("/api/address/search", json={"address": "서울 관악구 신림로 330 101동 202호"})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["postalCode"] == "08754"
        assert data["fullAddress"] == "서울특별시 관악구 신림로 330"
        assert data["detail"] == "101동 202호"
        assert data["addressType"] == "road"

    def test_search_not_found(self, client):
        response = client.post("/api/address/search", json={"address": "서울특별시 종로구 없는로 1"})
        assert response.status_code == 404
        detail = response.json()["detail"]
        assert detail["error"] == "Postal code not found"
        assert isinstance(detail["suggestions"], list)

    def test_search_invalid(self, client):
        assert client.post("/api/address/search", json={"address": "12345"}).status_code == 400
        assert client.post("/api/address/search", json={"address": ""}).status_code == 422

    def test_autocomplete(self, client):
        data = client.get("/api/address/autocomplete", params={"q": "봉화로"}).json()["data"]
        assert [item["postalCode"] for item in data] == ["36209"]
        assert client.get("/api/address/autocomplete", params={"q": "봉"}).json()["data"] == []

    def test_postal_code_lookup(self, client):
        response = client.get("/api/address/postal/06236")
        assert response.status_code == 200
        assert response.json()["data"][0]["road_address"] == "서울특별시 강남구 테헤란로 152"
        assert client.get("/api/address/postal/1234").status_code == 400
        assert client.get("/api/address/postal/99999").status_code == 404

    def test_batch(self, client):
        response = client.post("/api/address/batch", json={"addresses": [
            "서울특별시 관악구 신림로 330 101동 202호",
            "없는주소 123",
            "서울특별시 종로구 없는로 1",
        ]})
        body = response.json()
        assert body["total"] == 3
        assert body["successful"] == 1
        assert body["results"][0]["data"]["postalCode"] == "08754"
        assert body["results"][1]["error"] == "Invalid address"
        assert body["results"][2]["error"] == "Postal code not found"

    def test_batch_limit(self, client):
        addresses = ["서울특별시 관악구 신림로 330"] * 101
        assert client.post("/api/address/batch", json={"addresses": addresses}).status_code == 422


# ============================================================================
# File jobs
# ============================================================================


class TestFileJobs:

    def test_upload_and_wait(self, client):
        response = upload(client, wait="true")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["originalRows"] == 5
        assert body["duplicatesRemoved"] == 1
        assert body["uniqueRows"] == 4
        assert body["total"] == 4

        job_id = body["jobId"]
        status = client.get(f"/api/file/status/{job_id}").json()
        assert status["progress"] == 100
        assert status["summary"]["successRate"] == 50

        download = client.get(f"/api/file/download/{job_id}")
        assert download.status_code == 200
        assert quote("addresses_우편번호.xlsx") in download.headers["content-disposition"]
        assert download.content[:2] == b"PK"

        labels = client.get(f"/api/file/label-data/{job_id}").json()
        assert labels["count"] == 4

    def test_upload_without_wait_then_poll(self, client):
        job_id = upload(client).json()["jobId"]
        assert client.get(f"/api/file/download/{job_id}").status_code == 409

        stream = client.get(f"/api/file/status/{job_id}/stream", params={"interval": 0.1})
        assert stream.headers["content-type"].startswith("text/event-stream")
        assert "event: complete" in stream.text
        assert client.get(f"/api/file/status/{job_id}").json()["status"] == "completed"

    def test_upload_rejected_file(self, client):
        response = upload(client, "이름,전화\n홍길동,010\n", name="people.csv")
        assert response.status_code == 422
        job_id = response.json()["detail"]["jobId"]
        assert client.get(f"/api/file/status/{job_id}").json()["status"] == "error"

    def test_unsupported_extension(self, client):
        assert upload(client, name="notes.txt").status_code == 400

    def test_too_large(self, client, uploads):
        assert upload(client, b"x" * (uploads.max_file_size + 1)).status_code == 413

    def test_drop_columns(self, client):
        job_id = upload(client, wait="true", dropColumns='["이름"]').json()["jobId"]
        labels = client.get(f"/api/file/label-data/{job_id}").json()["data"]
        assert "이름" not in labels[0]

    def test_invalid_and_unknown_ids(self, client):
        assert client.get("/api/file/status/abc").status_code == 400
        assert client.get("/api/file/status/job_1_abc").status_code == 404
        assert client.get("/api/file/download/job_1_abc").status_code == 404
        assert client.get("/api/file/status/job_1_abc/stream").status_code == 404

    def test_cancel(self, client):
        job_id = upload(client).json()["jobId"]
        assert client.post(f"/api/file/{job_id}/cancel").json()["cancelled"]
        assert client.post(f"/api/file/{job_id}/cancel").status_code == 409
        assert client.get(f"/api/file/status/{job_id}").json()["error"] == "cancelled"

    def test_list_resume_delete(self, client):
        job_id = upload(client, wait="true").json()["jobId"]
        listed = client.get("/api/file/list").json()
        assert job_id in [job["jobId"] for job in listed["jobs"]]

        assert client.post(f"/api/file/{job_id}/resume").json()["resumed"] is False

        assert client.delete(f"/api/file/{job_id}").status_code == 200
        assert client.get(f"/api/file/status/{job_id}").status_code == 404
        assert client.delete(f"/api/file/{job_id}").status_code == 404
