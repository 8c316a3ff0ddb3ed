import json
import asyncio
import httpx
import pytest
from unittest import mock

from codelens.errors import (
    GatewayError,
    QuotaExceededError,
    RateLimitError,
    StreamFailedError,
    error_for_status,
)
from codelens.gateway import GatewayClient


class FakeResponse:
    def __init__(self, status_code=200, chunks=None, body=b"", json_data=None, headers=None):
        self.status_code = status_code
        self.headers = headers or {}
        self._chunks = chunks or []
        self._body = body
        self._json_data = json_data

    async def aiter_text(self):
        for chunk in self._chunks:
            yield chunk

    async def aread(self):
        return self._body

    @property
    def text(self):
        return self._body.decode("utf-8")

    def json(self):
        if self._json_data is None:
            raise ValueError("not json")
        return self._json_data

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


def fake_async_client(response=None, error=None):
    """Build an httpx.AsyncClient stand-in that records request payloads."""
    requests = []

    class FakeAsyncClient:
        def __init__(self, *args, **kwargs):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        def stream(self, method, url, headers=None, json=None):
            requests.append({"method": method, "url": url, "headers": headers, "json": json})
            if error:
                raise error
            return response

        async def post(self, url, headers=None, json=None):
            requests.append({"method": "POST", "url": url, "headers": headers, "json": json})
            if error:
                raise error
            return response

    return FakeAsyncClient, requests


@pytest.fixture
def gateway():
    return GatewayClient("http://gateway.test/v1/chat/completions", "secret", "test-model", timeout=5)


MESSAGES = [{"role": "user", "content": "hi"}]


def collect(gateway, messages=MESSAGES):
    async def run_test():
        return [delta async for delta in gateway.stream(messages)]
    return asyncio.run(run_test())


# --- stream ---

def test_stream_reassembles_fragmented_chunks(gateway):
    chunks = [
        'data: {"choices":[{"delta":{"content":"hel',
        'lo "}}]}\n\ndata: {"choices":[{"de',
        'lta":{"content":"world"}}]}\n: keep-alive\n',
        "data: [DONE]\n",
    ]
    client_cls, requests = fake_async_client(FakeResponse(chunks=chunks))

    with mock.patch("codelens.gateway.httpx.AsyncClient", client_cls):
        assert collect(gateway) == ["hello ", "world"]

    sent = requests[0]
    assert sent["method"] == "POST"
    assert sent["headers"]["Authorization"] == "Bearer secret"
    assert sent["json"] == {"model": "test-model", "messages": MESSAGES, "stream": True}


def test_stream_rate_limited(gateway):
    response = FakeResponse(status_code=429, body=b"slow down", headers={"Retry-After": "7"})
    client_cls, _ = fake_async_client(response)

    with mock.patch("codelens.gateway.httpx.AsyncClient", client_cls):
        with pytest.raises(RateLimitError) as exc_info:
            collect(gateway)

    assert exc_info.value.status_code == 429
    assert exc_info.value.retryable is True
    assert exc_info.value.retry_after_s == 7.0


def test_stream_quota_exceeded(gateway):
    client_cls, _ = fake_async_client(FakeResponse(status_code=402, body=b"no credits"))

    with mock.patch("codelens.gateway.httpx.AsyncClient", client_cls):
        with pytest.raises(QuotaExceededError) as exc_info:
            collect(gateway)

    assert exc_info.value.retryable is False


def test_stream_server_error(gateway):
    client_cls, _ = fake_async_client(FakeResponse(status_code=500, body=b"Internal Server Error"))

    with mock.patch("codelens.gateway.httpx.AsyncClient", client_cls):
        with pytest.raises(GatewayError) as exc_info:
            collect(gateway)

    assert type(exc_info.value) is GatewayError
    assert exc_info.value.status_code == 500
    assert exc_info.value.retryable is True
    assert "Internal Server Error" in str(exc_info.value)


def test_stream_network_failure(gateway):
    client_cls, _ = fake_async_client(error=httpx.ConnectError("connection refused"))

    with mock.patch("codelens.gateway.httpx.AsyncClient", client_cls):
        with pytest.raises(StreamFailedError) as exc_info:
            collect(gateway)

    assert exc_info.value.retryable is True
    assert "connection refused" in str(exc_info.value)


# --- complete ---

def test_complete_returns_message_content(gateway):
    data = {"choices": [{"message": {"role": "assistant", "content": "{\"score\": 1}"}}]}
    client_cls, requests = fake_async_client(FakeResponse(json_data=data))

    with mock.patch("codelens.gateway.httpx.AsyncClient", client_cls):
        content = asyncio.run(gateway.complete(MESSAGES, temperature=0.3))

    assert content == "{\"score\": 1}"
    assert requests[0]["json"] == {"model": "test-model", "messages": MESSAGES, "temperature": 0.3}


def test_complete_without_content(gateway):
    client_cls, _ = fake_async_client(FakeResponse(json_data={"choices": []}))

    with mock.patch("codelens.gateway.httpx.AsyncClient", client_cls):
        with pytest.raises(GatewayError, match="No response from AI"):
            asyncio.run(gateway.complete(MESSAGES))


def test_complete_non_json_body(gateway):
    client_cls, _ = fake_async_client(FakeResponse(body=b"<html>"))

    with mock.patch("codelens.gateway.httpx.AsyncClient", client_cls):
        with pytest.raises(GatewayError):
            asyncio.run(gateway.complete(MESSAGES))


def test_complete_rate_limited(gateway):
    client_cls, _ = fake_async_client(FakeResponse(status_code=429, body=b"{}"))

    with mock.patch("codelens.gateway.httpx.AsyncClient", client_cls):
        with pytest.raises(RateLimitError) as exc_info:
            asyncio.run(gateway.complete(MESSAGES))

    assert exc_info.value.retry_after_s is None


def test_complete_timeout(gateway):
    client_cls, _ = fake_async_client(error=httpx.ReadTimeout("timed out"))

    with mock.patch("codelens.gateway.httpx.AsyncClient", client_cls):
        with pytest.raises(StreamFailedError):
            asyncio.run(gateway.complete(MESSAGES))


# --- error mapping ---

@pytest.mark.parametrize("status_code,error_cls,retryable", [
    (429, RateLimitError, True),
    (402, QuotaExceededError, False),
    (503, GatewayError, True),
    (400, GatewayError, False),
    (401, GatewayError, False),
])
def test_error_for_status(status_code, error_cls, retryable):
    error = error_for_status(status_code, "body")

    assert type(error) is error_cls
    assert error.status_code == status_code
    assert error.retryable is retryable


def test_error_for_status_auth_hint():
    assert "AI_GATEWAY_API_KEY" in error_for_status(401).hint


def test_error_for_status_ignores_bad_retry_after():
    assert error_for_status(429, headers={"Retry-After": "soon"}).retry_after_s is None


def test_from_settings():
    settings = mock.Mock(
        AI_GATEWAY_URL="http://x/v1/chat/completions",
        AI_GATEWAY_API_KEY="k",
        MODEL_NAME="m",
        REQUEST_TIMEOUT=3.0,
    )
    client = GatewayClient.from_settings(settings)

    assert client.model == "m"
