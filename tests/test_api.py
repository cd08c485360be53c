import pytest
from fastapi.testclient import TestClient

from adchat.domain.conversations import OwnerScope
from adchat.errors import TransientIOError, VideoChatRequestError
from adchat.main import app
from adchat.runtime import VideoChatRuntime, get_runtime
from adchat.services.job_poller import JobPoller

CONVERSATIONS = "/video-chat/brands/b1/conversations"


@pytest.fixture
def runtime(fake_client):
    runtime = VideoChatRuntime(
        client=fake_client,
        poller=JobPoller(interval_seconds=0.01),
        notification_poller=JobPoller(interval_seconds=0.01),
    )
    app.dependency_overrides[get_runtime] = lambda: runtime
    try:
        yield runtime
    finally:
        runtime.shutdown()
        app.dependency_overrides.clear()


@pytest.fixture
def api(runtime):
    with TestClient(app) as client:
        yield client


def _create(api, **overrides):
    body = {"product_id": "p1", "reference_image_url": "https://x/img.png", "provider": "kie"}
    body.update(overrides)
    return api.post(CONVERSATIONS, json=body)


def test_health_endpoint():
    with TestClient(app) as client:
        resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"ok": True}


def test_create_conversation(api):
    resp = _create(api)

    assert resp.status_code == 201
    body = resp.json()
    assert body["conversation_id"] == "conv-1"
    assert body["messages"] == []
    assert body["started"] is False
    assert body["state"] == "created"
    assert body["settings"] == {
        "duration": 15,
        "provider": "kie",
        "platform": "tiktok",
        "aspect_ratio": "9:16",
        "language": "en",
    }


def test_create_rejects_invalid_language(api):
    resp = _create(api, language="english")

    assert resp.status_code == 400


def test_create_without_reference_outside_no_product_mode_is_bad_request(api, runtime):
    runtime.controller.allow_no_product = False

    resp = _create(api, product_id=None)

    assert resp.status_code == 400
    assert "product" in resp.json()["detail"]


def test_resume_unknown_conversation_is_not_found(api):
    resp = api.get(f"{CONVERSATIONS}/missing", params={"product_id": "p1"})

    assert resp.status_code == 404
    assert resp.json()["detail"] == "Conversation not found"


def test_send_message_returns_assistant_reply(api, fake_client):
    _create(api)
    fake_client.replies = ["Who is the audience?"]

    resp = api.post(f"{CONVERSATIONS}/conv-1/messages", params={"product_id": "p1"}, json={"message": "A candle ad"})

    assert resp.status_code == 200
    assert resp.json()["role"] == "assistant"
    assert resp.json()["content"] == "Who is the audience?"


def test_send_message_backend_outage_is_service_unavailable(api, fake_client):
    _create(api)
    fake_client.replies = [TransientIOError(message="Backend unavailable", status_code=503)]

    resp = api.post(f"{CONVERSATIONS}/conv-1/messages", params={"product_id": "p1"}, json={"message": "hello"})

    assert resp.status_code == 503


def test_generate_submits_and_watches_until_completed(api, runtime, fake_client):
    _create(api)
    fake_client.replies = ["Full brief"]
    fake_client.status_scripts["j1"] = [{"status": "processing", "progress_percentage": 50}, {"status": "completed"}]
    fake_client.videos["conv-1"] = [
        {"id": "v1", "job_id": "j1", "video_url": "https://cdn.test/v1.mp4", "created_at": "2025-03-01T00:00:00Z"}
    ]

    resp = api.post(f"{CONVERSATIONS}/conv-1/generate", params={"product_id": "p1"}, json={})

    assert resp.status_code == 202
    assert resp.json()["job_id"] == "j1"
    runtime.orchestrator.wait_for(runtime.orchestrator.job("j1"), timeout=2)

    job = api.get("/video-chat/jobs/j1")
    assert job.status_code == 200
    assert job.json()["state"] == "completed"
    conversation = runtime.conversation(OwnerScope(brand_id="b1", product_id="p1"), "conv-1")
    assert conversation.last_video_url == "https://cdn.test/v1.mp4"
    assert conversation.finalized


def test_generate_length_rejection_is_unprocessable(api, fake_client):
    _create(api)
    fake_client.replies = [VideoChatRequestError(message="Description exceeds 5000 characters", status_code=400)]

    resp = api.post(f"{CONVERSATIONS}/conv-1/generate", params={"product_id": "p1"}, json={})

    assert resp.status_code == 422
    assert resp.json()["code"] == "prompt_too_long"


def test_artifacts_endpoint_returns_reconciled_list(api, fake_client):
    fake_client.videos["conv-1"] = [
        {"id": "v1", "video_url": "https://cdn.test/v1.mp4", "created_at": "2025-03-01T00:00:00Z"},
        {"id": "v2", "video_url": "https://cdn.test/v2.mp4", "created_at": "2025-03-02T00:00:00Z"},
    ]

    resp = api.get(f"{CONVERSATIONS}/conv-1/artifacts")

    assert resp.status_code == 200
    assert [(item["id"], item["is_latest"]) for item in resp.json()] == [("v2", True), ("v1", False)]


def test_close_watch_cancels_polls(api, fake_client):
    _create(api)
    fake_client.status_scripts["j1"] = [{"status": "processing"}]
    api.post(f"{CONVERSATIONS}/conv-1/generate", params={"product_id": "p1"}, json={})

    resp = api.delete(f"{CONVERSATIONS}/conv-1/watch")

    assert resp.status_code == 200
    assert resp.json() == {"cancelled": 1}


def test_unknown_job_is_not_found(api):
    assert api.get("/video-chat/jobs/nope").status_code == 404


def test_track_job_and_read_notifications(api, fake_client, wait_until):
    fake_client.status_scripts["job-1"] = [{"status": "completed", "result": {"product_id": "p1"}}]

    tracked = api.post("/jobs/track", json={"job_id": "job-1", "job_type": "scraping"})
    assert tracked.status_code == 202

    assert wait_until(lambda: len(api.get("/jobs/notifications").json()) == 1)
    notification = api.get("/jobs/notifications").json()[0]
    assert notification["type"] == "success"
    assert notification["action"]["url"] == "/product/p1"
    assert api.get("/jobs/active").json() == []

    assert api.delete(f"/jobs/notifications/{notification['id']}").status_code == 200
    assert api.delete(f"/jobs/notifications/{notification['id']}").status_code == 404


def test_track_job_rejects_unknown_job_type(api):
    resp = api.post("/jobs/track", json={"job_id": "job-1", "job_type": "unknown"})

    assert resp.status_code == 422
