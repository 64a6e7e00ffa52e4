"""Tests for the generator FastAPI routes."""

from __future__ import annotations

import base64
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from photobook_providers import MockBackend, QuotaExhaustedError

from services.generator.app.main import app
from services.generator.app.registry import ProjectRegistry, set_registry
from services.generator.app.storage import LocalPhotoStorage
from services.generator.app.store import InMemoryProjectStore


@pytest.fixture
def backend() -> MockBackend:
    return MockBackend(page_count=4)


@pytest.fixture
def client(tmp_path, fast_settings, backend):
    registry = ProjectRegistry(
        store=InMemoryProjectStore(),
        backend=backend,
        storage=LocalPhotoStorage(str(tmp_path)),
        settings=fast_settings,
    )
    set_registry(registry)
    with TestClient(app) as test_client:
        yield test_client
    set_registry(None)


def _create_project(client: TestClient) -> str:
    response = client.post("/projects", json={"title": "Grandma's garden", "status": "interview"})
    assert response.status_code == 201
    return response.json()["id"]


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_upload_photos_and_read_progress(client: TestClient) -> None:
    project_id = _create_project(client)
    files = [
        {"filename": f"pic-{index}.jpg", "content_base64": base64.b64encode(b"jpeg").decode()}
        for index in range(3)
    ]

    response = client.post(f"/projects/{project_id}/photos", json={"files": files, "wait": True})

    assert response.status_code == 200
    body = response.json()
    assert body["progress"] == {"total": 3, "completed": 3, "failed": 0}
    assert len(body["photo_ids"]) == 3
    detail = client.get(f"/projects/{project_id}").json()
    assert [photo["sort_order"] for photo in detail["photos"]] == [0, 1, 2]
    assert client.get(f"/projects/{project_id}/uploads").json()["draining"] is False


def test_invalid_base64_is_rejected(client: TestClient) -> None:
    project_id = _create_project(client)
    response = client.post(
        f"/projects/{project_id}/photos",
        json={"files": [{"filename": "x.jpg", "content_base64": "***"}]},
    )
    assert response.status_code == 400


def test_generation_runs_to_done(client: TestClient) -> None:
    project_id = _create_project(client)

    response = client.post(f"/projects/{project_id}/generation", json={"wait": True, "timeout_seconds": 5})

    assert response.status_code == 200
    snapshot = response.json()["snapshot"]
    assert snapshot["phase"] == "done"
    assert snapshot["total_pages"] == 4
    assert snapshot["illustrated_count"] == 4
    detail = client.get(f"/projects/{project_id}").json()
    assert detail["project"]["status"] == "review"
    assert len(detail["pages"]) == 4

    log = client.get(f"/projects/{project_id}/build-log").json()
    assert log[0]["message"].startswith("Story complete!")


def test_regenerate_and_select_illustration(client: TestClient) -> None:
    project_id = _create_project(client)
    client.post(f"/projects/{project_id}/generation", json={"wait": True, "timeout_seconds": 5})
    page_id = client.get(f"/projects/{project_id}").json()["pages"][1]["id"]

    regenerated = client.post(f"/projects/{project_id}/pages/{page_id}/illustrations")
    assert regenerated.status_code == 201
    assert regenerated.json()["is_selected"] is True

    illustrations = [
        ill for ill in client.get(f"/projects/{project_id}").json()["illustrations"] if ill["page_id"] == page_id
    ]
    other = next(ill for ill in illustrations if not ill["is_selected"])
    selected = client.put(f"/projects/{project_id}/pages/{page_id}/illustrations/{other['id']}/select")
    assert selected.status_code == 200

    illustrations = [
        ill for ill in client.get(f"/projects/{project_id}").json()["illustrations"] if ill["page_id"] == page_id
    ]
    assert [ill["id"] for ill in illustrations if ill["is_selected"]] == [other["id"]]


def test_story_failure_offers_continue_and_retry(client: TestClient, backend: MockBackend) -> None:
    project_id = _create_project(client)
    backend.story_error = QuotaExhaustedError("credits exhausted")

    failed = client.post(f"/projects/{project_id}/generation", json={"wait": True, "timeout_seconds": 5}).json()
    assert failed["snapshot"]["phase"] == "failed"
    assert failed["snapshot"]["retryable"] is False
    assert failed["snapshot"]["failure_step"] == "story"

    backend.story_error = None
    retried = client.post(
        f"/projects/{project_id}/generation/retry", json={"wait": True, "timeout_seconds": 5}
    ).json()
    assert retried["snapshot"]["phase"] == "done"


def test_controls_outside_failed_phase_conflict(client: TestClient) -> None:
    project_id = _create_project(client)
    assert client.post(f"/projects/{project_id}/generation/continue").status_code == 409
    assert client.post(f"/projects/{project_id}/generation/retry", json={}).status_code == 409
    stopped = client.post(f"/projects/{project_id}/generation/stop").json()
    assert stopped["snapshot"]["cancelled"] is True


def test_unknown_project_returns_404(client: TestClient) -> None:
    assert client.get(f"/projects/{uuid4()}").status_code == 404
    assert client.get(f"/projects/{uuid4()}/generation").status_code == 404
