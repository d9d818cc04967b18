"""Shared fixtures.

The app binds its engine when ``database`` is first imported, so the SQLite
file is chosen here before any project module is loaded.
"""
import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="loadwizard-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["SIMULATED_RUN_DELAY"] = "0"

import pytest
from fastapi.testclient import TestClient

import api_main
import models
from database import SessionLocal, engine

VALID_CONFIG = {
    "name": "T",
    "applicationId": "cdr-clinical",
    "selectedApiIds": ["ep-1"],
    "virtualUsers": 10,
    "rampUpTime": 1,
    "duration": 1,
    "thinkTime": 1,
}

RESULTS = {
    "avgResponseTime": 180,
    "p95ResponseTime": 350,
    "p99ResponseTime": 480,
    "errorRate": 0.5,
    "requestsPerSecond": 50,
    "totalRequests": 30000,
    "successfulRequests": 29850,
    "failedRequests": 150,
}


class FakeQueue:
    """Stands in for the RQ queue; optionally runs jobs on the spot."""

    def __init__(self):
        self.jobs = []
        self.runner = None

    def enqueue(self, func, *args, **kwargs):
        self.jobs.append((func, args, kwargs))
        if self.runner is not None:
            self.runner(*args)


@pytest.fixture(autouse=True)
def clean_tables():
    yield
    with engine.begin() as conn:
        conn.execute(models.TestRun.__table__.delete())
        conn.execute(models.TestConfiguration.__table__.delete())


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def queue():
    q = FakeQueue()
    api_main.app.dependency_overrides[api_main.get_queue] = lambda: q
    yield q
    api_main.app.dependency_overrides.pop(api_main.get_queue, None)


@pytest.fixture
def client(queue):
    with TestClient(api_main.app) as c:
        yield c


@pytest.fixture
def published(monkeypatch):
    import tasks

    messages = []
    monkeypatch.setattr(tasks, "publish", lambda run_id, payload: messages.append(payload))
    return messages


class FakePubSub:
    """In-memory stand-in for a redis pubsub; ``events`` records the call order."""

    def __init__(self, events, messages):
        self.events = events
        self.messages = list(messages)
        self.closed = False

    def subscribe(self, channel):
        self.events.append(("subscribe", channel))

    def get_message(self, timeout=None):
        if self.messages:
            return {"type": "message", "data": self.messages.pop(0)}
        return None

    def unsubscribe(self, channel):
        self.events.append(("unsubscribe", channel))

    def close(self):
        self.closed = True


class FakeRedis:
    def __init__(self):
        self.events = []
        self.messages = []
        self.pubsubs = []

    def pubsub(self, ignore_subscribe_messages=False):
        ps = FakePubSub(self.events, self.messages)
        self.pubsubs.append(ps)
        return ps


@pytest.fixture
def fake_redis(monkeypatch):
    r = FakeRedis()
    monkeypatch.setattr(api_main, "redis_sub", r)
    return r
