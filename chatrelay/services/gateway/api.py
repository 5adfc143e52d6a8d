"""Gateway API endpoints."""
import json
import logging
import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from chatrelay.core.config import Settings, settings
from chatrelay.services.gateway.audit import SafeAuditRecorder
from chatrelay.services.gateway.auth.direct import DirectAuthenticator
from chatrelay.services.gateway.auth.session import SessionAuthenticator
from chatrelay.services.gateway.errors import GatewayError, UpstreamHTTPError
from chatrelay.services.gateway.models import CanonicalRequest, Credential
from chatrelay.services.gateway.reporting import LoggingUsageReporter, UsageReporter
from chatrelay.services.gateway.router import get_available_providers, get_executor, resolve_provider
from chatrelay.services.gateway.streaming import ChunkStream
from chatrelay.services.gateway.synthesizer import build_stream_chunk, new_completion_id
from chatrelay.services.gateway.transport import ClientFactory

logger = logging.getLogger(__name__)

router = APIRouter(tags=["gateway"])


class ChatCompletionRequest(BaseModel):
    """Chat completion request model.

    Fields not declared here are kept and forwarded as part of the raw payload.
    """
    model_config = ConfigDict(extra="allow")

    model: str = Field(..., description="Model alias")
    messages: list[Dict[str, Any]] = Field(..., description="List of messages")
    stream: Optional[bool] = Field(False, description="Whether to stream the response")
    provider: Optional[str] = Field(None, description="Provider name (e.g., 'juma', 'openai'); inferred from the model when omitted")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    providers: list[str]


def get_settings() -> Settings:
    return settings


def get_client_factory(request: Request) -> ClientFactory:
    return request.app.state.client_factory


def get_reporter(request: Request) -> UsageReporter:
    return getattr(request.app.state, "reporter", None) or LoggingUsageReporter()


def get_audit(request: Request) -> SafeAuditRecorder:
    return getattr(request.app.state, "audit", None) or SafeAuditRecorder()


def error_status(error: GatewayError) -> int:
    """HTTP status for a gateway error; upstream statuses below 400 become 502."""
    if isinstance(error, UpstreamHTTPError) and error.status_code < 400:
        return 502
    return error.status_code


def error_event(error: GatewayError) -> Dict[str, Any]:
    return {
        "type": "error",
        "error": {
            "message": error.message,
            "type": error.code,
            "code": error_status(error),
        },
    }


async def resolve_credential(
    provider: str,
    config: Settings,
    authorization: Optional[str] = None,
    juma_session_token: Optional[str] = None,
    juma_workspace_id: Optional[str] = None,
    juma_vendor_connection_id: Optional[str] = None,
) -> Optional[Credential]:
    """Resolve the credential for a provider from caller headers or settings."""
    if provider == "juma":
        return await SessionAuthenticator(config).get_credential(
            juma_session_token, juma_workspace_id, juma_vendor_connection_id
        )
    return await DirectAuthenticator(config).get_credential(authorization)


async def stream_events(stream: ChunkStream, model: str):
    """Render a chunk stream as SSE; always ends with [DONE] and closes the stream."""
    completion_id = new_completion_id()
    created = int(time.time())
    chunk_count = 0
    try:
        async for item in stream:
            if item.error is not None:
                logger.error(f"Gateway stream error after {chunk_count} chunks: {item.error}")
                yield f"data: {json.dumps(error_event(item.error))}\n\n"
                break
            chunk_count += 1
            yield f"data: {json.dumps(build_stream_chunk(model, item.chunk, completion_id, created))}\n\n"
        yield "data: [DONE]\n\n"
        logger.info(f"Gateway stream complete: {chunk_count} chunks yielded")
    finally:
        await stream.aclose()


def sse_response(stream: ChunkStream, model: str) -> StreamingResponse:
    """SSE response for a chunk stream.

    The stream is also closed as a background task, which still runs when the
    client disconnects before the body generator was ever iterated.
    """
    cleanup = BackgroundTasks()
    cleanup.add_task(stream.aclose)
    return StreamingResponse(
        stream_events(stream, model),
        media_type="text/event-stream",
        background=cleanup,
    )


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Gateway health check endpoint."""
    return HealthResponse(status="healthy", providers=get_available_providers())


@router.post("/v1/chat/completions")
async def chat_completions(
    request: ChatCompletionRequest,
    authorization: Optional[str] = Header(None, alias="Authorization"),
    x_juma_session_token: Optional[str] = Header(None, alias="X-Juma-Session-Token"),
    x_juma_workspace_id: Optional[str] = Header(None, alias="X-Juma-Workspace-Id"),
    x_juma_vendor_connection_id: Optional[str] = Header(None, alias="X-Juma-Vendor-Connection-Id"),
    config: Settings = Depends(get_settings),
    client_factory: ClientFactory = Depends(get_client_factory),
    reporter: UsageReporter = Depends(get_reporter),
    audit: SafeAuditRecorder = Depends(get_audit),
):
    """
    OpenAI-compatible chat completions endpoint.

    Routes requests to the executor of the provider that owns the model alias.
    """
    try:
        logger.info(
            f"Gateway received chat completion request: provider={request.provider}, "
            f"model={request.model}, messages={len(request.messages)}, stream={request.stream}"
        )
        canonical = CanonicalRequest.from_payload(request.model_dump(exclude_none=True))
        provider = resolve_provider(canonical.model, request.provider)
        executor = get_executor(provider, client_factory, reporter=reporter, audit=audit, config=config)
        credential = await resolve_credential(
            provider,
            config,
            authorization=authorization,
            juma_session_token=x_juma_session_token,
            juma_workspace_id=x_juma_workspace_id,
            juma_vendor_connection_id=x_juma_vendor_connection_id,
        )

        if canonical.stream:
            stream = await executor.execute_stream(credential, canonical)
            return sse_response(stream, canonical.model)
        return await executor.execute(credential, canonical)

    except GatewayError as e:
        logger.error(f"{type(e).__name__} in chat_completions: {e.message}")
        raise HTTPException(status_code=error_status(e), detail=e.message)
    except ValueError as e:
        logger.error(f"ValueError in chat_completions: {e}")
        raise HTTPException(status_code=400, detail=str(e))
