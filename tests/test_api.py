"""HTTP API tests for batch endpoints."""
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from content_jobs.main import app
from content_jobs.services.jobs.dispatcher import Dispatcher
from content_jobs.services.jobs.errors import StoreUnavailableError
from content_jobs.services.jobs.factory import get_dispatcher

FRACTIONS = {
    "id": "fractions",
    "title": "Fractions",
    "content": "#### Intro\nParts of a whole.\n#### Operations\nAdding fractions.\n",
}


@pytest.fixture
def dispatcher(memory_stores, backend_factory):
    jobs_store, documents = memory_stores
    return Dispatcher(
        jobs_store,
        documents,
        backend_factory(failures={"Operations": None}),
        retry_budget=1,
        retry_delay_seconds=0,
        lease_seconds=60,
        generation_timeout=5,
    )


@pytest.fixture
def client(dispatcher):
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    yield TestClient(app)
    app.dependency_overrides.clear()


def submit(client, **metadata):
    resp = client.post(
        "/jobs/batches",
        json={"modules": [FRACTIONS], "courseMetadata": {"title": "Arithmetic", "createDocument": True, **metadata}},
    )
    assert resp.status_code == 200
    return resp.json()


def test_submit_batch_returns_camel_case_summary(client):
    body = submit(client)

    assert body["totalJobs"] == 2
    assert body["documentId"]
    assert body["fallbackModules"] == []
    assert body["modules"][0]["subsections"] == [
        {"key": "intro", "title": "Intro"},
        {"key": "operations", "title": "Operations"},
    ]


def test_process_one_until_settled(client):
    batch_id = submit(client)["batchId"]

    results = []
    while True:
        body = client.post(f"/jobs/batches/{batch_id}/process-one").json()
        if not body["processed"]:
            break
        results.append((body["subsectionTitle"], body["status"]))

    assert results == [
        ("Intro", "completed"),
        ("Operations", "pending"),
        ("Operations", "failed"),
    ]

    status = client.get(f"/jobs/batches/{batch_id}").json()
    assert status == {"pending": 0, "processing": 0, "completed": 1, "failed": 1, "total": 2}


def test_list_jobs(client):
    batch_id = submit(client)["batchId"]

    resp = client.get(f"/jobs/batches/{batch_id}/jobs")

    assert resp.status_code == 200
    assert [job["subsection_key"] for job in resp.json()] == ["intro", "operations"]


def test_cancel_and_unknown_batch(client):
    batch_id = submit(client)["batchId"]

    assert client.post(f"/jobs/batches/{batch_id}/cancel").json() == {"cancelled": 2}
    assert client.get("/jobs/batches/missing").status_code == 404
    assert client.post("/jobs/batches/missing/cancel").status_code == 404


def test_attach_document(client, memory_stores):
    resp = client.post("/jobs/batches", json={"modules": [FRACTIONS]})
    batch_id = resp.json()["batchId"]
    assert resp.json()["documentId"] is None

    resp = client.post(f"/jobs/batches/{batch_id}/document", json={"documentId": "doc-9"})

    assert resp.json() == {"updated": 2}


def test_empty_module_list_is_bad_request(client):
    resp = client.post("/jobs/batches", json={"modules": []})

    assert resp.status_code == 400


def test_sweep(client):
    assert client.post("/jobs/sweep").json() == {"requeued": 0}


def test_store_outage_maps_to_503(client, dispatcher):
    dispatcher.process_one = AsyncMock(side_effect=StoreUnavailableError("down"))

    resp = client.post("/jobs/batches/b-1/process-one")

    assert resp.status_code == 503
    assert resp.json()["detail"] == "Job store unavailable"
