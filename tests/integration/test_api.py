import pytest
from fastapi.testclient import TestClient

from jobtrail.api.app import create_app


@pytest.fixture
def client(services) -> TestClient:
    return TestClient(create_app(services))


def _upload(client: TestClient, name: str, data: bytes):
    return client.post("/api/unassigned", files={"file": (name, data, "application/pdf")})


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_upload_list_and_duplicate(client: TestClient, make_pdf) -> None:
    first = _upload(client, "jane.pdf", make_pdf("jane"))
    assert first.status_code == 200
    resume_id = first.json()["id"]

    again = _upload(client, "jane.pdf", make_pdf("jane"))
    assert again.json()["duplicate"] is True
    assert again.json()["existing"]["id"] == resume_id

    listed = client.get("/api/unassigned").json()
    assert [item["id"] for item in listed] == [resume_id]


def test_validation_errors_map_to_400(client: TestClient) -> None:
    response = _upload(client, "empty.pdf", b"")
    assert response.status_code == 400
    assert response.json() == {
        "error": "ValidationError",
        "message": "Empty file (0 bytes)",
        "details": {"filename": "empty.pdf"},
    }


def test_bulk_upload_endpoint(client: TestClient, make_pdf) -> None:
    response = client.post(
        "/api/unassigned/bulk",
        files=[
            ("files", ("a.pdf", make_pdf("a"), "application/pdf")),
            ("files", ("b.txt", b"", "text/plain")),
        ],
    )
    body = response.json()
    assert (body["imported"], body["errors"]) == (1, 1)
    assert body["summary"] == "1 new files added, 1 errors"


def test_attach_rollback_and_conflict_flow(client: TestClient, services, make_pdf) -> None:
    job = client.post("/api/jobs", json={"company": "Acme", "role": "Engineer"}).json()
    first = _upload(client, "v0.pdf", make_pdf("v0")).json()
    services.extraction_queue.drain(timeout=10)

    attached = client.post("/api/resumes/attach", json={"resume_id": first["id"], "job_uuid": job["uuid"]})
    assert attached.status_code == 200
    entry = attached.json()
    first_version = entry["versions"][0]["version_id"]

    second = _upload(client, "v1.pdf", make_pdf("v1")).json()
    client.post("/api/resumes/attach", json={"resume_id": second["id"], "job_uuid": job["uuid"]})

    rolled = client.post(f"/api/resumes/{entry['id']}/rollback", json={"target_version_id": first_version})
    assert rolled.status_code == 200
    assert rolled.json()["rolled_back_from"] == first_version

    versions = client.get(f"/api/resumes/{entry['id']}/versions").json()
    assert [version["version_suffix"] for version in versions] == ["", "_v1", "_v2"]

    dup = _upload(client, "v0-again.pdf", make_pdf("v0")).json()
    conflict = client.post("/api/resumes/attach", json={"resume_id": dup["id"], "job_uuid": job["uuid"]})
    assert conflict.status_code == 409
    assert conflict.json()["details"]["existing_version_id"] == first_version

    assert client.get(f"/api/jobs/{job['uuid']}/resume").json()["id"] == entry["id"]


def test_not_found_maps_to_404(client: TestClient) -> None:
    response = client.post("/api/resumes/attach", json={"resume_id": "nope", "job_uuid": "nope"})
    assert response.status_code == 404
    assert response.json()["error"] == "NotFoundError"
    assert client.get("/api/jobs/nope").status_code == 404


def test_operations_and_undo_endpoints(client: TestClient, make_pdf) -> None:
    uploaded = _upload(client, "jane.pdf", make_pdf("jane")).json()
    undoable = client.get("/api/operations/undoable").json()
    assert undoable[0]["inverse_action"]["action"] == "delete_staging_entries"

    response = client.post(f"/api/operations/{undoable[0]['id']}/undo")
    assert response.status_code == 200
    assert response.json()["undone"] is True
    assert client.get(f"/api/unassigned/{uploaded['id']}").status_code == 404
    assert client.post(f"/api/operations/{undoable[0]['id']}/undo").status_code == 404

    recent = client.get("/api/operations/recent", params={"limit": 1}).json()
    assert recent[0]["user_action"].startswith("Undid: ")


def test_bulk_import_endpoints(client: TestClient, make_pdf, tmp_path) -> None:
    job = client.post("/api/jobs", json={"company": "Acme", "role": "Engineer"}).json()
    inbox = tmp_path / "inbox"
    inbox.mkdir()
    (inbox / "acme_cv.pdf").write_bytes(make_pdf("acme"))

    scan = client.post("/api/bulk-import/scan", json={"folder": str(inbox)}).json()
    assert scan["items"][0]["detected_job_match"]["job_uuid"] == job["uuid"]

    item_id = scan["items"][0]["item_id"]
    assert client.patch(f"/api/bulk-import/items/{item_id}", json={"user_override": None}).status_code == 200

    summary = client.post("/api/bulk-import/execute", json={}).json()
    assert summary["imported"] == 1
    assert client.get("/api/bulk-import/current").json()["status"] == "completed"
    assert client.post("/api/bulk-import/cancel").status_code == 409


def test_dedup_endpoints(client: TestClient) -> None:
    jd = "Design data pipelines with Spark and Airflow for the analytics platform team."
    a = client.post("/api/jobs", json={"company": "Acme", "role": "Data Engineer", "jd_text": jd}).json()
    b = client.post("/api/jobs", json={"company": "Acme", "role": "Data Engineer", "jd_text": jd}).json()

    found = client.get("/api/dedup/duplicates").json()
    assert found["total_duplicates_found"] == 1

    merged = client.post("/api/dedup/merge", json={"primary_id": a["uuid"], "duplicate_ids": [b["uuid"]]}).json()
    assert merged["merged_from"] == [b["uuid"]]
    assert client.delete(f"/api/jobs/{a['uuid']}").status_code == 200
    assert client.get("/api/jobs").json() == []


def test_files_endpoints(client: TestClient, tmp_path) -> None:
    job = client.post("/api/jobs", json={"company": "Acme", "role": "Engineer", "applied_date": "2024-02-03"}).json()

    preview = client.get(f"/api/jobs/{job['uuid']}/folder-preview").json()
    assert preview["computed_path"].endswith("Acme/Engineer_20240203")

    saved = client.post(f"/api/jobs/{job['uuid']}/save-to-disk", json={}).json()
    assert saved["folder_path"] == preview["computed_path"]

    policy = client.patch("/api/files/policy", json={"attachment_mode": "reference"}).json()
    assert policy["attachment_mode"] == "reference"

    summary = client.post("/api/files/migration/prepare", json={"new_root": str(tmp_path / "elsewhere")}).json()
    assert summary["migration_required"] is True
    assert summary["jobs_found"] == 1


def test_extraction_update_endpoint(client: TestClient, services, make_pdf) -> None:
    job = client.post("/api/jobs", json={"company": "Acme", "role": "Engineer"}).json()
    staged = _upload(client, "cv.pdf", make_pdf("cv")).json()
    services.extraction_queue.drain(timeout=10)
    entry = client.post("/api/resumes/attach", json={"resume_id": staged["id"], "job_uuid": job["uuid"]}).json()
    version_id = entry["versions"][0]["version_id"]

    response = client.post(
        f"/api/resumes/{entry['id']}/versions/{version_id}/extraction", json={"text": "pasted resume text"}
    )
    assert response.status_code == 200
    assert response.json()["extraction_status"] == "success"
    assert client.get(f"/api/jobs/{job['uuid']}").json()["resume_text_extracted"] == "pasted resume text"

    failed = client.post(
        f"/api/resumes/{entry['id']}/versions/{version_id}/extraction", json={"error": "scanned image"}
    ).json()
    assert (failed["extraction_status"], failed["extraction_error"]) == ("failed", "scanned image")

    missing = client.post(f"/api/resumes/{entry['id']}/versions/nope/extraction", json={"text": "x"})
    assert missing.status_code == 404
