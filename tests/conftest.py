"""Pytest configuration and fixtures."""
import base64
import json
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest

from chatrelay.core.config import Settings
from chatrelay.services.gateway.executors.juma import JumaExecutor
from chatrelay.services.gateway.executors.openai import OpenAIExecutor
from chatrelay.services.gateway.models import Credential
from chatrelay.services.gateway.transport import StaticClientFactory

JUMA_BASE = "https://juma.test"
CHAT_PATH = "/api/chat/stream"
NEGOTIATE_PATH = "/api/trpc/fileStorage.createPresignedUrl"
STORAGE_URL = "https://s3.test/bucket"
ASSET_URL = "https://cdn.juma.test/A1.png"

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")

SIGNED_FIELDS = {
    "bucket": "juma-uploads",
    "X-Amz-Algorithm": "AWS4-HMAC-SHA256",
    "X-Amz-Credential": "AKIA/20250101/us-east-1/s3/aws4_request",
    "X-Amz-Date": "20250101T000000Z",
    "key": "uploads/ws-1/upload.png",
    "Policy": "eyJwb2xpY3kiOiJ0ZXN0In0=",
    "X-Amz-Signature": "abc123",
    "Content-Type": "image/png",
    "success_action_status": "201",
}

Route = Callable[[httpx.Request], httpx.Response]


class FakeUpstream:
    """httpx.MockTransport handler routing by method and URL path."""

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Route] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, path: str, route: Route) -> None:
        self.routes[(method.upper(), path)] = route

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, text=f"no route for {request.method} {request.url.path}")
        return route(request)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]


class RecordingReporter:
    """Usage reporter that keeps every published record."""

    def __init__(self):
        self.records = []

    def publish(self, record) -> None:
        self.records.append(record)


def respond(status_code: int = 200, **kwargs: Any) -> Route:
    """Route returning a fresh response on every call."""
    return lambda request: httpx.Response(status_code, **kwargs)


def sse_body(*events: Union[Dict[str, Any], str], done: bool = True) -> bytes:
    """Encode events as ``data:`` lines; strings are sent verbatim."""
    lines = []
    for event in events:
        data = event if isinstance(event, str) else json.dumps(event)
        lines.append(f"data: {data}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def text_delta(delta: str) -> Dict[str, Any]:
    return {"type": "text-delta", "id": "t1", "delta": delta}


def negotiation_body(
    asset_id: str = "A1",
    image_type: str = "Knowledge",
    extra: Optional[Dict[str, Any]] = None,
    fields: Optional[Dict[str, str]] = None,
) -> str:
    """tRPC JSONL response with the payload at json[2][0][0]."""
    payload: Dict[str, Any] = {
        "image": {"id": asset_id, "type": image_type, "imageUrl": ASSET_URL},
        "presignedUrl": STORAGE_URL,
        "fields": fields if fields is not None else SIGNED_FIELDS,
    }
    payload.update(extra or {})
    lines = [
        json.dumps({"json": {"0": [[0], [None, 0, [[0]]]]}}),
        json.dumps({"json": [2, 0, [[payload]]]}),
    ]
    return "\n".join(lines) + "\n"


@pytest.fixture
def config():
    """Settings pointed at fake upstream hosts."""
    return Settings(
        JUMA_BASE_URL=JUMA_BASE,
        OPENAI_BASE_URL="https://openai.test/v1",
        JUMA_SESSION_TOKEN="",
        JUMA_WORKSPACE_ID="",
        JUMA_VENDOR_CONNECTION_ID="",
        OPENAI_API_KEY="",
        PROXY_URL=None,
        ATTACHMENT_POLICY="best_effort",
        UPLOAD_READY_POLL_ATTEMPTS=1,
        UPLOAD_READY_POLL_BACKOFF_SECONDS=0.0,
        IMAGE_HOSTING_ENABLE=False,
        REQUEST_LOG=False,
    )


@pytest.fixture
def upstream():
    """Fake upstream with a ready asset URL and a working upload pipeline."""
    fake = FakeUpstream()
    fake.add("POST", NEGOTIATE_PATH, respond(200, text=negotiation_body()))
    fake.add("POST", "/bucket", respond(204))
    fake.add("HEAD", "/A1.png", respond(200))
    return fake


@pytest.fixture
def http_client(upstream):
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream))


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def juma_credential():
    return Credential(
        attributes={"session_token": "session-abc", "workspace_id": "ws-1"},
        id="auth-1",
        label="test account",
        account_type="workspace",
        account_value="ws-1",
    )


@pytest.fixture
def openai_credential():
    return Credential(attributes={"api_key": "sk-test-123456"}, id="auth-2", label="openai key")


@pytest.fixture
def juma_executor(http_client, reporter, config):
    return JumaExecutor(StaticClientFactory(http_client), reporter=reporter, config=config)


@pytest.fixture
def openai_executor(http_client, reporter, config):
    return OpenAIExecutor(StaticClientFactory(http_client), reporter=reporter, config=config)


@pytest.fixture
def api_client(http_client, reporter, config):
    """TestClient with upstream HTTP, settings and reporting overridden."""
    from fastapi.testclient import TestClient
    from chatrelay.main import app
    from chatrelay.services.gateway.api import get_client_factory, get_reporter, get_settings

    app.dependency_overrides[get_client_factory] = lambda: StaticClientFactory(http_client)
    app.dependency_overrides[get_reporter] = lambda: reporter
    app.dependency_overrides[get_settings] = lambda: config

    test_client = TestClient(app)

    try:
        yield test_client
    finally:
        app.dependency_overrides.clear()
