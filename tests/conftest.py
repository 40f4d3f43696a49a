import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import fakeredis
import pytest
from fastapi.testclient import TestClient

from app import create_app
from auth import Identity, issue_token
from backend import RedisBackend
from relay import ChannelRelay, Connection


class RecordingTransport:
    """Stands in for a websocket; keeps every frame sent to it."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket is closed")
        self.sent.append(data)


@pytest.fixture
def fake_redis():
    client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def backend(fake_redis):
    return RedisBackend(fake_redis)


@pytest.fixture
def relay():
    return ChannelRelay()


@pytest.fixture
def app(backend, relay):
    return create_app(backend=backend, relay=relay, rate_limit_enabled=False)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_token():
    def _make(user_id: str = "user-1", username: str = "alice", **kwargs) -> str:
        return issue_token(Identity(user_id=user_id, username=username), **kwargs)
    return _make


@pytest.fixture
def auth_headers(make_token):
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def connect(relay, make_token):
    """Create an admitted connection backed by a RecordingTransport."""
    def _connect(user_id: str = "user-1", fail: bool = False) -> Connection:
        connection = Connection(RecordingTransport(fail=fail))
        relay.admit(connection, make_token(user_id=user_id, username=user_id))
        return connection
    return _connect
