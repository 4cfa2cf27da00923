import pytest
from fastapi.testclient import TestClient

from conftest import make_descriptor
from print_assets import main
from print_assets.services.job_store import InMemoryJobStore

HEADERS = {"x-internal-key": "test-key"}


@pytest.fixture
def client(job_store, storage, settings):
    main.app.dependency_overrides[main.get_job_store] = lambda: job_store
    main.app.dependency_overrides[main.get_storage] = lambda: storage
    main.app.dependency_overrides[main.get_settings] = lambda: settings
    try:
        yield TestClient(main.app)
    finally:
        main.app.dependency_overrides.clear()


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["ok"] is True
    assert res.headers["X-Diag-Id"]


def test_requires_internal_key(client):
    res = client.post("/finalize", json={"job_id": "job-0001", "render_v2": make_descriptor()})
    assert res.status_code == 401
    res = client.post("/finalize", json={"job_id": "job-0001"}, headers={"x-internal-key": "wrong"})
    assert res.status_code == 401
    assert res.headers["X-Diag-Id"]


def test_finalize_then_replay(client, s3):
    body = {"job_id": "job-0001", "render_v2": make_descriptor()}
    res = client.post("/finalize", json=body, headers=HEADERS)
    assert res.status_code == 200
    data = res.json()
    assert data["ok"] is True
    assert data["already"] is False
    assert data["diag_id"] == res.headers["X-Diag-Id"]
    assert data["pdf_url"].endswith(".pdf")
    assert data["paths"]["mockup"].endswith("-1080.png")

    again = client.post("/finalize", json=body, headers=HEADERS).json()
    assert again["already"] is True
    assert again["pdf_url"] == data["pdf_url"]
    assert again["paths"] is None

    job = client.get("/jobs/job-0001", headers=HEADERS).json()["job"]
    assert job["status"] == "READY_FOR_PRINT"
    assert job["version"] == 1


def test_finalize_unknown_job_is_404(client):
    res = client.post("/finalize", json={"job_id": "nope", "render_v2": make_descriptor()}, headers=HEADERS)
    assert res.status_code == 404
    data = res.json()
    assert data == {
        "ok": False,
        "diag_id": res.headers["X-Diag-Id"],
        "stage": "validating",
        "message": "job_not_found",
        "debug": {"job_id": "nope"},
    }


def test_finalize_invalid_placement_is_400(client):
    desc = make_descriptor(place_px={"x": -900, "y": 0, "w": 100, "h": 100})
    res = client.post("/finalize", json={"job_id": "job-0001", "render_v2": desc}, headers=HEADERS)
    assert res.status_code == 400
    assert res.json()["message"] == "invalid_bbox"
    assert res.json()["stage"] == "composing"


def test_finalize_bad_descriptor_is_400(client):
    res = client.post("/finalize", json={"job_id": "job-0001", "render_v2": "{oops"}, headers=HEADERS)
    assert res.status_code == 400
    assert res.json()["message"] == "bad_json"


def test_finalize_source_failure_is_502(client, s3, submitted_job):
    del s3.objects[submitted_job.original_asset_ref]
    res = client.post("/finalize", json={"job_id": "job-0001", "render_v2": make_descriptor()}, headers=HEADERS)
    assert res.status_code == 502
    assert res.json()["stage"] == "fetching_source"


def test_finalize_upload_failure_is_500(client, s3):
    s3.fail_put_on = lambda key: key.startswith("outputs/")
    res = client.post("/finalize", json={"job_id": "job-0001", "render_v2": make_descriptor()}, headers=HEADERS)
    assert res.status_code == 500
    assert res.json()["stage"] == "uploading"


def test_get_unknown_job(client):
    res = client.get("/jobs/none", headers=HEADERS)
    assert res.status_code == 404


def test_dryrun_returns_geometry(client):
    res = client.post("/render/dryrun", json={"render_v2": make_descriptor()}, headers=HEADERS)
    assert res.status_code == 200
    geometry = res.json()["geometry"]
    assert geometry["out_w_px"] == 360
    assert geometry["bleed_px"] == 30


def test_dryrun_invalid_placement(client):
    desc = make_descriptor(place_px={"x": 0, "y": 900, "w": 100, "h": 100})
    res = client.post("/render/dryrun", json={"render_v2": desc}, headers=HEADERS)
    assert res.status_code == 400
    assert res.json()["debug"]["clip_h"] <= 0


def test_default_store_is_in_memory():
    assert isinstance(main.get_job_store(), InMemoryJobStore)


def test_finalize_missing_job_id_uses_error_envelope(client):
    res = client.post("/finalize", json={"render_v2": {}}, headers=HEADERS)
    assert res.status_code == 400
    data = res.json()
    assert data["ok"] is False
    assert data["stage"] == "validating"
    assert data["message"] == "missing_fields"
    assert data["diag_id"] == res.headers["X-Diag-Id"]
    assert data["debug"]["errors"][0]["loc"] == ["body", "job_id"]


def test_finalize_wrong_body_types_use_error_envelope(client):
    res = client.post("/finalize", json={"job_id": 123, "render_v2": []}, headers=HEADERS)
    assert res.status_code == 400
    data = res.json()
    assert data["message"] == "invalid_body"
    assert data["stage"] == "validating"
    assert {tuple(e["loc"][:2]) for e in data["debug"]["errors"]} >= {("body", "job_id")}
