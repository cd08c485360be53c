import os
import sys
import threading
import time
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("VIDEO_CHAT_API_BASE_URL", "https://video-chat.test")
os.environ.setdefault("VIDEO_CHAT_API_BEARER_TOKEN", "test-token")
os.environ.setdefault("JOB_POLL_INTERVAL_SECONDS", "0.01")
os.environ.setdefault("VIDEO_CHAT_ALLOW_NO_PRODUCT", "true")

from adchat.errors import NotFoundError
from adchat.schemas.video_chat import (
    ConversationVideosOut,
    GenerateVideoOut,
    JobStatusOut,
    ProductAdsOut,
    VideoConversationCreateOut,
    VideoConversationListOut,
    VideoConversationOut,
    VideoMessageOut,
)


class FakeVideoChatClient:
    """In-memory stand-in for VideoChatClient with scripted responses."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.conversations: dict[str, dict] = {}
        self.replies: list = []
        self.status_scripts: dict[str, list] = {}
        self.videos: dict[str, list[dict]] = {}
        self.ads: list[dict] = []
        self.created_id = "conv-1"
        self.submit_results: list = []
        self.send_gate: threading.Event | None = None
        self.send_started = threading.Event()
        self._lock = threading.Lock()

    def _record(self, name: str, **kwargs) -> None:
        with self._lock:
            self.calls.append((name, kwargs))

    def calls_named(self, name: str) -> list[dict]:
        with self._lock:
            return [kwargs for call, kwargs in self.calls if call == name]

    def create_conversation(self, *, brand_id, product_id, payload):
        self._record("create_conversation", brand_id=brand_id, product_id=product_id, payload=payload)
        return VideoConversationCreateOut(conversation_id=self.created_id)

    def get_conversation(self, *, brand_id, product_id, conversation_id):
        self._record("get_conversation", brand_id=brand_id, product_id=product_id, conversation_id=conversation_id)
        record = self.conversations.get(conversation_id)
        if record is None:
            raise NotFoundError(message="Conversation not found", status_code=404)
        return VideoConversationOut.model_validate(record)

    def list_conversations(self, *, brand_id, product_id, limit=50):
        self._record("list_conversations", brand_id=brand_id, product_id=product_id, limit=limit)
        summaries = [
            {"conversation_id": conversation_id, "message_count": len(record.get("messages", []))}
            for conversation_id, record in self.conversations.items()
        ]
        return VideoConversationListOut.model_validate({"conversations": summaries[:limit]})

    def send_message(self, *, brand_id, product_id, conversation_id, text, finish=False):
        self._record(
            "send_message",
            brand_id=brand_id,
            product_id=product_id,
            conversation_id=conversation_id,
            text=text,
            finish=finish,
        )
        self.send_started.set()
        if self.send_gate is not None:
            self.send_gate.wait(5)
        reply = self.replies.pop(0) if self.replies else "Sounds great."
        if isinstance(reply, Exception):
            raise reply
        return VideoMessageOut(response=reply)

    def submit_generation_job(self, *, brand_id, product_id, conversation_id, payload):
        self._record(
            "submit_generation_job",
            brand_id=brand_id,
            product_id=product_id,
            conversation_id=conversation_id,
            payload=payload,
        )
        result = self.submit_results.pop(0) if self.submit_results else "j1"
        if isinstance(result, Exception):
            raise result
        return GenerateVideoOut(job_id=result)

    def get_video_job_status(self, *, job_id):
        self._record("get_video_job_status", job_id=job_id)
        return self._next_status(job_id)

    def get_job_status(self, *, job_id):
        self._record("get_job_status", job_id=job_id)
        return self._next_status(job_id)

    def list_conversation_videos(self, *, brand_id, product_id, conversation_id):
        self._record(
            "list_conversation_videos",
            brand_id=brand_id,
            product_id=product_id,
            conversation_id=conversation_id,
        )
        return ConversationVideosOut.model_validate({"videos": self.videos.get(conversation_id, [])})

    def list_product_ads(self, *, brand_id, product_id, limit=100):
        self._record("list_product_ads", brand_id=brand_id, product_id=product_id, limit=limit)
        return ProductAdsOut.model_validate({"ads": self.ads})

    def _next_status(self, job_id):
        with self._lock:
            script = self.status_scripts.get(job_id)
            if not script:
                raise NotFoundError(message="Job not found", status_code=404)
            item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, Exception):
            raise item
        return JobStatusOut.model_validate(item)


@pytest.fixture
def fake_client() -> FakeVideoChatClient:
    return FakeVideoChatClient()


@pytest.fixture
def wait_until():
    def _wait(predicate, timeout: float = 2.0, interval: float = 0.005) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()

    return _wait
