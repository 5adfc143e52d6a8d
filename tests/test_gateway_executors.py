"""Tests for the Juma and OpenAI executors."""
import asyncio
import json
from unittest.mock import Mock

import httpx
import pytest

from chatrelay.services.gateway.audit import SafeAuditRecorder, UpstreamRequestLog
from chatrelay.services.gateway.errors import (
    AssetUploadError,
    StreamCancelled,
    Unauthorized,
    UnknownModel,
    Unsupported,
    UpstreamHTTPError,
    UpstreamProtocolError,
)
from chatrelay.services.gateway.executors.juma import JumaExecutor
from chatrelay.services.gateway.models import CanonicalRequest, Credential
from chatrelay.services.gateway.transport import StaticClientFactory

from conftest import CHAT_PATH, NEGOTIATE_PATH, PNG_DATA_URL, respond, sse_body, text_delta

OPENAI_PATH = "/v1/chat/completions"


def chat_request(model="juma-gpt-5.1", content="Hello", stream=False):
    return CanonicalRequest.from_payload({
        "model": model,
        "stream": stream,
        "messages": [{"role": "user", "content": content}],
    })


def image_request(model, url):
    return CanonicalRequest.from_payload({
        "model": model,
        "messages": [{
            "role": "user",
            "content": [{"type": "text", "text": "Edit this"}, {"type": "image_url", "image_url": {"url": url}}],
        }],
    })


# ===== Validation Tests =====

@pytest.mark.asyncio
async def test_missing_credential_is_unauthorized(juma_executor, upstream, reporter):
    """Test a missing session fails before any network call and reports once."""
    with pytest.raises(Unauthorized):
        await juma_executor.execute(None, chat_request())
    assert upstream.requests == []
    assert len(reporter.records) == 1 and not reporter.records[0].success


@pytest.mark.asyncio
async def test_empty_session_token_is_unauthorized(juma_executor, upstream, reporter):
    """Test a credential with a blank token is rejected."""
    with pytest.raises(Unauthorized):
        await juma_executor.execute_stream(Credential(attributes={"session_token": "  "}), chat_request(stream=True))
    assert upstream.requests == []
    assert len(reporter.records) == 1


@pytest.mark.asyncio
async def test_unknown_model(juma_executor, upstream, reporter, juma_credential):
    """Test an unknown alias fails before any network call."""
    with pytest.raises(UnknownModel) as exc_info:
        await juma_executor.execute(juma_credential, chat_request(model="juma-gpt-9"))
    assert exc_info.value.status_code == 404
    assert upstream.requests == []
    assert len(reporter.records) == 1 and not reporter.records[0].success


@pytest.mark.asyncio
async def test_unknown_model_stream(juma_executor, upstream, reporter, juma_credential):
    """Test the streaming path also rejects an unknown alias before any network call."""
    with pytest.raises(UnknownModel):
        await juma_executor.execute_stream(juma_credential, chat_request(model="juma-gpt-9", stream=True))
    assert upstream.requests == []
    assert len(reporter.records) == 1 and not reporter.records[0].success


# ===== Juma Buffered Tests =====

@pytest.mark.asyncio
async def test_execute_text(juma_executor, upstream, reporter, juma_credential):
    """Test a text stream is buffered into one chat completion."""
    upstream.add("POST", CHAT_PATH, respond(200, content=sse_body(text_delta("Hello"), text_delta(" world"))))

    response = await juma_executor.execute(juma_credential, chat_request())

    assert response["object"] == "chat.completion"
    assert response["model"] == "juma-gpt-5.1"
    assert response["choices"][0]["message"] == {"role": "assistant", "content": "Hello world"}
    assert response["choices"][0]["finish_reason"] == "stop"

    chat_call = upstream.calls("POST", CHAT_PATH)[0]
    body = json.loads(chat_call.content)
    assert body["workspaceId"] == "ws-1"
    assert "__Secure-next-auth.session-token=session-abc" in chat_call.headers["cookie"]

    assert len(reporter.records) == 1
    record = reporter.records[0]
    assert record.success and record.provider == "juma" and record.model == "juma-gpt-5.1"
    assert record.auth_id == "auth-1" and record.account_value == "ws-1"


@pytest.mark.asyncio
async def test_execute_rewrites_image_tags(juma_executor, upstream, juma_credential):
    """Test inline image tags become markdown in buffered content."""
    upstream.add("POST", CHAT_PATH, respond(200, content=sse_body(
        text_delta("Here: "),
        text_delta('<generated-image url="https://cdn.test/out.png" />'),
    )))
    response = await juma_executor.execute(juma_credential, chat_request())
    assert response["choices"][0]["message"]["content"] == "Here: ![Generated Image](https://cdn.test/out.png)"


@pytest.mark.asyncio
async def test_execute_image_model_returns_image_shape(juma_executor, upstream, juma_credential):
    """Test an image-output model with a generated image returns the image response."""
    upstream.add("POST", CHAT_PATH, respond(200, content=sse_body(
        text_delta("Done"),
        {"type": "tool-output-available", "toolCallId": "c1", "output": {"imageUrl": "https://cdn.test/cat.png"}},
    )))
    response = await juma_executor.execute(juma_credential, chat_request(model="juma-nanobanana-pro"))
    assert response["data"] == [{"url": "https://cdn.test/cat.png"}]
    assert "choices" not in response


@pytest.mark.asyncio
async def test_execute_with_uploaded_image(juma_executor, upstream, juma_credential):
    """Test an inline image is uploaded before the chat call and referenced in it."""
    upstream.add("POST", CHAT_PATH, respond(200, content=sse_body(text_delta("A cat"))))

    await juma_executor.execute(juma_credential, image_request("juma-gpt-5.1", PNG_DATA_URL))

    paths = [request.url.path for request in upstream.requests]
    assert paths == [NEGOTIATE_PATH, "/bucket", "/A1.png", CHAT_PATH]
    body = json.loads(upstream.calls("POST", CHAT_PATH)[0].content)
    assert body["knowledgeItems"] == [{"id": "A1", "source": "AttachedNewContextSnippet"}]
    assert body["messages"][0]["uploadedImages"][0]["id"] == "A1"


@pytest.mark.asyncio
async def test_html_image_best_effort(juma_executor, upstream, juma_credential):
    """Test an HTML page posing as an image is dropped and the call proceeds."""
    upstream.add("GET", "/page", respond(200, text="<html></html>", headers={"Content-Type": "text/html"}))
    upstream.add("POST", CHAT_PATH, respond(200, content=sse_body(text_delta("No image seen"))))

    response = await juma_executor.execute(juma_credential, image_request("juma-gpt-5.1", "https://img.test/page"))

    assert response["choices"][0]["message"]["content"] == "No image seen"
    assert upstream.calls("POST", NEGOTIATE_PATH) == []


@pytest.mark.asyncio
async def test_html_image_strict(http_client, upstream, reporter, config, juma_credential):
    """Test the strict policy fails the call before the chat request."""
    upstream.add("GET", "/page", respond(200, text="<html></html>", headers={"Content-Type": "text/html"}))
    strict = config.model_copy(update={"ATTACHMENT_POLICY": "strict"})
    executor = JumaExecutor(StaticClientFactory(http_client), reporter=reporter, config=strict)

    with pytest.raises(AssetUploadError) as exc_info:
        await executor.execute(juma_credential, image_request("juma-gpt-5.1", "https://img.test/page"))

    assert exc_info.value.status_code == 422
    assert upstream.calls("POST", NEGOTIATE_PATH) == []
    assert upstream.calls("POST", CHAT_PATH) == []
    assert len(reporter.records) == 1 and not reporter.records[0].success


@pytest.mark.asyncio
async def test_upstream_error_status(juma_executor, upstream, reporter, juma_credential):
    """Test a non-2xx upstream status surfaces as UpstreamHTTPError with the body."""
    upstream.add("POST", CHAT_PATH, respond(429, text="rate limited"))
    with pytest.raises(UpstreamHTTPError) as exc_info:
        await juma_executor.execute(juma_credential, chat_request())
    assert exc_info.value.status_code == 429
    assert "rate limited" in exc_info.value.message
    assert len(reporter.records) == 1 and not reporter.records[0].success


@pytest.mark.asyncio
async def test_transport_error(juma_executor, upstream, juma_credential):
    """Test connection failures surface as UpstreamProtocolError."""
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    upstream.add("POST", CHAT_PATH, refuse)
    with pytest.raises(UpstreamProtocolError):
        await juma_executor.execute(juma_credential, chat_request())


@pytest.mark.asyncio
async def test_audit_records_request(http_client, upstream, reporter, config, juma_credential):
    """Test the audit recorder sees the upstream request with auth identity."""
    upstream.add("POST", CHAT_PATH, respond(200, content=sse_body(text_delta("ok"))))
    inner = Mock()
    executor = JumaExecutor(StaticClientFactory(http_client), reporter=reporter, audit=SafeAuditRecorder(inner), config=config)

    await executor.execute(juma_credential, chat_request())

    entry = inner.record_request.call_args_list[-1].args[0]
    assert isinstance(entry, UpstreamRequestLog)
    assert entry.provider == "juma"
    assert entry.auth_id == "auth-1"
    assert entry.url.endswith(CHAT_PATH)
    assert inner.record_response.call_args.args[0] == 200


# ===== Juma Streaming Tests =====

@pytest.mark.asyncio
async def test_execute_stream_indices(juma_executor, upstream, reporter, juma_credential):
    """Test streamed chunks carry strictly increasing indices and a final terminal chunk."""
    upstream.add("POST", CHAT_PATH, respond(200, content=sse_body(
        text_delta("Hel"),
        {"type": "start-step"},
        text_delta("lo"),
    )))

    stream = await juma_executor.execute_stream(juma_credential, chat_request(stream=True))
    items = await stream.collect()
    await stream.aclose()

    chunks = [item.chunk for item in items]
    assert [c.index for c in chunks] == [0, 1, 2]
    assert [c.delta for c in chunks] == ["Hel", "lo", ""]
    assert chunks[-1].terminal
    assert len(reporter.records) == 1 and reporter.records[0].success


@pytest.mark.asyncio
async def test_execute_stream_error_status_is_synchronous(juma_executor, upstream, reporter, juma_credential):
    """Test a non-2xx status is raised by execute_stream rather than through the stream."""
    upstream.add("POST", CHAT_PATH, respond(503, text="maintenance"))
    with pytest.raises(UpstreamHTTPError) as exc_info:
        await juma_executor.execute_stream(juma_credential, chat_request(stream=True))
    assert exc_info.value.status_code == 503
    assert len(reporter.records) == 1


@pytest.mark.asyncio
async def test_execute_stream_cancel_mid_stream(juma_executor, upstream, reporter, juma_credential):
    """Test closing the stream mid-way reports one failure and delivers nothing further."""
    async def endless_body():
        yield b'data: {"type": "text-delta", "delta": "first"}\n\n'
        await asyncio.Event().wait()
        yield b'data: {"type": "text-delta", "delta": "never"}\n\n'

    upstream.add("POST", CHAT_PATH, lambda request: httpx.Response(200, content=endless_body()))

    stream = await juma_executor.execute_stream(juma_credential, chat_request(stream=True))
    first = await stream.__anext__()
    assert first.chunk.delta == "first"

    await stream.aclose()

    assert await stream.collect() == []
    assert len(reporter.records) == 1
    assert not reporter.records[0].success
    assert StreamCancelled.__name__ in reporter.records[0].error


@pytest.mark.asyncio
async def test_execute_stream_closed_before_reading(juma_executor, upstream, reporter, juma_credential):
    """Test closing a stream that was never read still reports once."""
    upstream.add("POST", CHAT_PATH, respond(200, content=sse_body(text_delta("unread"))))

    stream = await juma_executor.execute_stream(juma_credential, chat_request(stream=True))
    await stream.aclose()

    assert len(reporter.records) == 1 and not reporter.records[0].success


# ===== Contract Tests =====

@pytest.mark.asyncio
async def test_count_tokens_unsupported(juma_executor, openai_executor, juma_credential):
    """Test token counting is not offered."""
    with pytest.raises(Unsupported) as exc_info:
        await juma_executor.count_tokens(juma_credential, chat_request())
    assert exc_info.value.status_code == 501
    with pytest.raises(Unsupported):
        await openai_executor.count_tokens(None, chat_request(model="gpt-4o"))


@pytest.mark.asyncio
async def test_refresh_is_identity(juma_executor, juma_credential):
    """Test refresh returns the credential unchanged."""
    assert await juma_executor.refresh(juma_credential) is juma_credential


# ===== OpenAI Executor Tests =====

@pytest.mark.asyncio
async def test_openai_execute(openai_executor, upstream, reporter, openai_credential):
    """Test the passthrough call carries the bearer key and echoes the alias."""
    upstream.add("POST", OPENAI_PATH, respond(200, json={
        "id": "chatcmpl-up",
        "object": "chat.completion",
        "model": "gpt-4o-2024-08-06",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": "Hi"}, "finish_reason": "stop"}],
    }))

    response = await openai_executor.execute(openai_credential, chat_request(model="gpt-4o"))

    assert response["model"] == "gpt-4o"
    assert response["choices"][0]["message"]["content"] == "Hi"
    call = upstream.calls("POST", OPENAI_PATH)[0]
    assert call.headers["authorization"] == "Bearer sk-test-123456"
    assert json.loads(call.content)["stream"] is False
    assert reporter.records[0].success


@pytest.mark.asyncio
async def test_openai_requires_api_key(openai_executor, upstream):
    """Test the passthrough executor rejects credentials without a key."""
    with pytest.raises(Unauthorized):
        await openai_executor.execute(Credential(attributes={}), chat_request(model="gpt-4o"))
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_openai_invalid_json(openai_executor, upstream, openai_credential):
    """Test a non-JSON 200 body is a protocol error."""
    upstream.add("POST", OPENAI_PATH, respond(200, text="<html>proxy page</html>"))
    with pytest.raises(UpstreamProtocolError):
        await openai_executor.execute(openai_credential, chat_request(model="gpt-4o"))


@pytest.mark.asyncio
async def test_openai_execute_stream(openai_executor, upstream, openai_credential):
    """Test the passthrough stream is translated to canonical chunks."""
    upstream.add("POST", OPENAI_PATH, respond(200, content=sse_body(
        {"choices": [{"index": 0, "delta": {"role": "assistant", "content": ""}}]},
        {"choices": [{"index": 0, "delta": {"content": "Hi"}}]},
        {"choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]},
    )))

    stream = await openai_executor.execute_stream(openai_credential, chat_request(model="gpt-4o", stream=True))
    items = await stream.collect()

    assert [item.chunk.delta for item in items] == ["Hi", ""]
    assert json.loads(upstream.calls("POST", OPENAI_PATH)[0].content)["stream"] is True
