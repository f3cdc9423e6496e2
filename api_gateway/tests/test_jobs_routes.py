"""
Tests for the job HTTP endpoints.

Runs the app against a controller with an in-memory store and a fake
orchestrator; the caller identity arrives in X-User-Id.
"""
import json
import time

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from shared.models.events import CompleteEvent, ProgressEvent
from shared.models.job import Job
from api_gateway.main import create_app
from api_gateway.routes.jobs import format_sse, snapshot_event, stream_job

OWNER = {"X-User-Id": "user-1"}
STRANGER = {"X-User-Id": "user-2"}


@pytest.fixture
def client(make_controller):
    with TestClient(create_app(make_controller())) as test_client:
        yield test_client


@pytest.fixture
def blocking_client(make_controller):
    with TestClient(create_app(make_controller(mode="block"))) as test_client:
        yield test_client


def create_job(client, prompt="a harbor at night", config=None, headers=OWNER) -> str:
    response = client.post("/api/v1/jobs", json={"prompt": prompt, "config": config}, headers=headers)
    assert response.status_code == status.HTTP_201_CREATED
    return response.json()["job_id"]


def wait_for_status(client, job_id, expected, timeout=2.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(f"/api/v1/jobs/{job_id}", headers=OWNER).json()
        if body["status"] == expected or time.monotonic() > deadline:
            return body
        time.sleep(0.01)


def parse_sse(text: str):
    events = []
    for block in text.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


class TestCreateJob:
    """Tests for POST /api/v1/jobs."""

    def test_requires_user_header(self, client):
        response = client.post("/api/v1/jobs", json={"prompt": "a harbor at night"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_create_returns_queued(self, client):
        response = client.post(
            "/api/v1/jobs", json={"prompt": "a harbor at night", "config": {"duration": 15}}, headers=OWNER
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["status"] == "queued"
        assert response.json()["job_id"]

    def test_invalid_prompt_is_400(self, client):
        response = client.post("/api/v1/jobs", json={"prompt": "no"}, headers=OWNER)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error_kind"] == "ValidationError"

    def test_invalid_config_is_400(self, client):
        response = client.post(
            "/api/v1/jobs", json={"prompt": "a harbor at night", "config": {"duration": 3}}, headers=OWNER
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "Duration" in response.json()["detail"]


class TestGetAndList:
    """Tests for GET /api/v1/jobs and /api/v1/jobs/{job_id}."""

    def test_get_completed_job(self, client):
        job_id = create_job(client)

        body = wait_for_status(client, job_id, "completed")

        assert body["id"] == job_id
        assert body["owner_id"] == "user-1"
        assert body["progress"] == 100
        assert body["final_artifact"].endswith("final.mp4")

    def test_other_owner_gets_404(self, client):
        job_id = create_job(client)

        response = client.get(f"/api/v1/jobs/{job_id}", headers=STRANGER)

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_unknown_job_is_404(self, client):
        assert client.get("/api/v1/jobs/missing", headers=OWNER).status_code == status.HTTP_404_NOT_FOUND

    def test_list_paginates_own_jobs(self, client):
        for i in range(3):
            create_job(client, prompt=f"prompt number {i}")
        create_job(client, headers=STRANGER)

        body = client.get("/api/v1/jobs?limit=2&offset=0", headers=OWNER).json()

        assert body["total"] == 3
        assert len(body["jobs"]) == 2
        assert all(job["owner_id"] == "user-1" for job in body["jobs"])

    def test_list_filters_by_status(self, client):
        job_id = create_job(client)
        wait_for_status(client, job_id, "completed")

        assert client.get("/api/v1/jobs?status=completed", headers=OWNER).json()["total"] == 1
        assert client.get("/api/v1/jobs?status=failed", headers=OWNER).json()["total"] == 0

    def test_list_rejects_unknown_status(self, client):
        response = client.get("/api/v1/jobs?status=done", headers=OWNER)

        assert response.status_code == status.HTTP_400_BAD_REQUEST


class TestCancelAndDelete:
    """Tests for cancel and delete."""

    def test_cancel_running_job(self, blocking_client):
        job_id = create_job(blocking_client)
        wait_for_status(blocking_client, job_id, "generating")

        response = blocking_client.post(f"/api/v1/jobs/{job_id}/cancel", headers=OWNER)

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "cancelled"

    def test_cancel_requires_ownership(self, blocking_client):
        job_id = create_job(blocking_client)

        response = blocking_client.post(f"/api/v1/jobs/{job_id}/cancel", headers=STRANGER)

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_delete_job(self, client):
        job_id = create_job(client)

        response = client.delete(f"/api/v1/jobs/{job_id}", headers=OWNER)

        assert response.json() == {"job_id": job_id, "deleted": True}
        assert client.get(f"/api/v1/jobs/{job_id}", headers=OWNER).status_code == status.HTTP_404_NOT_FOUND


class TestStream:
    """Tests for the server-sent event stream."""

    def test_stream_of_finished_job_sends_snapshot_only(self, client):
        job_id = create_job(client)
        wait_for_status(client, job_id, "completed")

        response = client.get(f"/api/v1/jobs/{job_id}/stream", headers=OWNER)

        assert response.headers["content-type"].startswith("text/event-stream")
        events = parse_sse(response.text)
        assert [name for name, _ in events] == ["complete"]
        assert events[0][1]["artifact_ref"].endswith("final.mp4")

    def test_stream_of_cancelled_job(self, blocking_client):
        job_id = create_job(blocking_client)
        wait_for_status(blocking_client, job_id, "generating")
        blocking_client.post(f"/api/v1/jobs/{job_id}/cancel", headers=OWNER)

        events = parse_sse(blocking_client.get(f"/api/v1/jobs/{job_id}/stream", headers=OWNER).text)

        assert events[0][0] == "error"
        assert events[0][1]["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_stream_relays_live_events(self, make_controller):
        controller = make_controller()
        job = Job(id="live", owner_id="user-1", prompt="a harbor at night")
        await controller.store.create(job)

        response = await stream_job(job=job, controller=controller)
        chunks = response.body_iterator
        first = await chunks.__anext__()
        await controller.channel.publish("live", ProgressEvent(job_id="live", progress=40, step="Animating scenes"))
        await controller.channel.publish("live", CompleteEvent(job_id="live", artifact_ref="/media/final.mp4"))
        rest = [chunk async for chunk in chunks]

        events = parse_sse(first + "".join(rest))
        assert [name for name, _ in events] == ["progress", "progress", "complete"]
        assert events[0][1]["progress"] == 0
        assert events[1][1]["progress"] == 40


def test_snapshot_event_for_failed_job():
    job = Job(
        id="j", owner_id="u", prompt="p", status="failed",
        error_kind="CompositeError", error_message="FFmpeg exited with code 1"
    )

    event = snapshot_event(job)

    assert event.type == "error"
    assert event.error_kind == "CompositeError"
    assert format_sse(event).startswith("event: error\ndata: {")
