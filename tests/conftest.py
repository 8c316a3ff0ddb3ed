import pytest
from unittest import mock
from fastapi.testclient import TestClient
from codelens import database
from codelens.api import app, limiter, get_gateway, COOKIE_NAME

# Disable rate limiting for all tests
limiter.enabled = False

USER_ID = "user-1"


class FakeGateway:
    """Stands in for GatewayClient; records every message list it receives."""

    def __init__(self):
        self.completion = ""
        self.deltas = []
        self.error = None
        self.stream_error = None
        self.calls = []

    async def complete(self, messages, temperature=None):
        self.calls.append(messages)
        if self.error:
            raise self.error
        return self.completion

    async def stream(self, messages, temperature=None):
        self.calls.append(messages)
        if self.error:
            raise self.error
        for delta in self.deltas:
            yield delta
        if self.stream_error:
            raise self.stream_error


@pytest.fixture(autouse=True)
def temp_db(tmp_path):
    db_path = tmp_path / "test_codelens.db"
    with mock.patch("codelens.database.DB_NAME", str(db_path)):
        database.init_db()
        yield str(db_path)

@pytest.fixture(scope="module")
def client():
    return TestClient(app)

@pytest.fixture
def auth_client():
    return TestClient(app, cookies={COOKIE_NAME: USER_ID})

@pytest.fixture
def fake_gateway():
    gateway = FakeGateway()
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield gateway
    app.dependency_overrides.pop(get_gateway, None)

@pytest.fixture
def base_payload():
    return {
        "code": "print('hello')",
        "language": "python",
    }
