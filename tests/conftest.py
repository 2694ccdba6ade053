"""Shared pytest fixtures."""

import os
import tempfile

# Point the app at a throwaway SQLite file before any module creates the engine
_TMP_DIR = tempfile.mkdtemp(prefix="support-chatbot-tests-")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_TMP_DIR, "test.db")
os.environ["CHAT_RESPONSE_MODE"] = "sync"

import pytest  # noqa: E402

import models  # noqa: E402,F401
from broadcaster import Broadcaster  # noqa: E402
from database import Base, SessionLocal, engine  # noqa: E402
from openai_client import ProviderError  # noqa: E402
from settings import Settings  # noqa: E402

REFUSAL = "هذا السؤال خارج نطاق خبرتي."


class FakeOpenAIClient:
    """Records provider calls and replays scripted assistant replies.

    Each entry of ``replies`` answers one run; an Exception entry makes
    create_run raise it instead.
    """

    def __init__(self, replies=None, embedding=None, stream_frames=None):
        self.replies = list(replies or [])
        self.embedding = embedding
        self.stream_frames = list(stream_frames or [])
        self.calls = []
        self._threads = 0
        self._runs = 0
        self._current_reply = None

    def create_thread(self, vector_store_id=None):
        self._threads += 1
        self.calls.append(("create_thread", vector_store_id))
        return f"thread_{self._threads}"

    def add_message(self, thread_id, content):
        self.calls.append(("add_message", thread_id, content))
        return {"id": "msg"}

    def create_run(self, thread_id, assistant_id, instructions, tools):
        self.calls.append(("create_run", thread_id, instructions, list(tools)))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        self._runs += 1
        self._current_reply = reply
        return {"id": f"run_{self._runs}", "status": "queued"}

    def get_run(self, thread_id, run_id):
        return {"id": run_id, "status": "completed"}

    def list_messages(self, thread_id, limit=10):
        return [
            {"role": "assistant", "content": [{"type": "text", "text": {"value": self._current_reply}}]},
            {"role": "user", "content": [{"type": "text", "text": {"value": "question"}}]},
        ]

    def stream_run(self, thread_id, assistant_id, instructions, tools):
        self.calls.append(("stream_run", thread_id, instructions, list(tools)))
        for frame in self.stream_frames:
            yield frame

    def create_embedding(self, model, text):
        self.calls.append(("create_embedding", model, text))
        if self.embedding is None:
            raise ProviderError("embedding endpoint unavailable", status_code=503)
        return list(self.embedding)

    def runs(self):
        return [c for c in self.calls if c[0] == "create_run"]


class RecordingListener:
    def __init__(self):
        self.events = []

    def __call__(self, event, payload):
        self.events.append((event, payload))

    def named(self, event):
        return [payload for name, payload in self.events if name == event]


@pytest.fixture(autouse=True)
def reset_db():
    """Fresh schema for every test"""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(
        openai_api_key="sk-test",
        assistant_id="asst_test",
        support_email="help@example.com",
        run_poll_interval=0.0,
        run_poll_max_attempts=3,
        similarity_threshold=0.6,
    )


@pytest.fixture
def broadcaster():
    return Broadcaster()


@pytest.fixture
def make_page(db):
    """Create an IndexedPage (and its site on first use)"""
    state = {}

    def _make(url, title="Page", content="x" * 200, embedding=None):
        if "site" not in state:
            site = models.TrustedSite(name="Example", url="https://example.com")
            db.add(site)
            db.commit()
            state["site"] = site
        page = models.IndexedPage(
            trusted_site_id=state["site"].id,
            url=url,
            title=title,
            content=content,
            embedding=embedding,
        )
        db.add(page)
        db.commit()
        return page

    return _make
