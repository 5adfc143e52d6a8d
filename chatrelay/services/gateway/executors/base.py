"""Provider executor contract and shared call plumbing."""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from chatrelay.core.config import Settings, settings as default_settings
from chatrelay.services.gateway.audit import SafeAuditRecorder, UpstreamRequestLog
from chatrelay.services.gateway.catalog import ModelCatalog
from chatrelay.services.gateway.errors import (
    GatewayError,
    StreamCancelled,
    Unsupported,
    UpstreamHTTPError,
    UpstreamProtocolError,
)
from chatrelay.services.gateway.models import CanonicalRequest, Credential, ProviderModel
from chatrelay.services.gateway.reporting import LoggingUsageReporter, UsageReporter, UsageTracker
from chatrelay.services.gateway.streaming import ChunkStream, pump_lines
from chatrelay.services.gateway.synthesizer import ResponseAccumulator
from chatrelay.services.gateway.translators.base import BaseTranslator
from chatrelay.services.gateway.transport import ClientFactory

logger = logging.getLogger(__name__)


class BaseExecutor(ABC):
    """Base class for provider executors.

    Subclasses set ``provider`` and ``catalog`` and supply credential checks,
    request framing, a translator and the buffered response reader. The base
    class owns the call lifecycle: validation before any network call, one
    usage report per call, audit hooks and stream ownership.
    """

    provider: str = ""
    catalog: ModelCatalog

    def __init__(
        self,
        client_factory: ClientFactory,
        reporter: Optional[UsageReporter] = None,
        audit: Optional[SafeAuditRecorder] = None,
        config: Optional[Settings] = None,
    ):
        self.client_factory = client_factory
        self.reporter = reporter or LoggingUsageReporter()
        self.audit = audit or SafeAuditRecorder()
        self.config = config or default_settings

    def identify(self) -> str:
        """Stable provider name used for routing, logging and reporting."""
        return self.provider

    @abstractmethod
    def check_credential(self, credential: Optional[Credential]) -> None:
        """Raise Unauthorized when the credential lacks required attributes."""
        pass

    @abstractmethod
    def prepare_request(self, request: httpx.Request, credential: Credential) -> httpx.Request:
        """
        Apply provider-specific framing to an outbound request before dispatch.

        Args:
            request: Built upstream request
            credential: Credential for this call

        Returns:
            The request to send (may be the same object)
        """
        pass

    @abstractmethod
    def create_translator(self, credential: Credential, client: httpx.AsyncClient) -> BaseTranslator:
        """Build the per-call translator."""
        pass

    @abstractmethod
    async def read_response(
        self,
        response: httpx.Response,
        translator: BaseTranslator,
        request: CanonicalRequest,
        model: ProviderModel,
    ) -> Dict[str, Any]:
        """Read a full upstream response and synthesize the canonical response."""
        pass

    async def count_tokens(self, credential: Optional[Credential], request: CanonicalRequest) -> Dict[str, Any]:
        """Token counting is not offered unless a provider overrides this."""
        raise Unsupported(f"{self.provider} executor: token counting not supported")

    async def refresh(self, credential: Credential) -> Credential:
        """Static credentials have no renewal; returns the credential unchanged."""
        logger.debug(f"{self.provider} executor: refresh called (no-op)")
        return credential

    def _tracker(self, request: CanonicalRequest, credential: Optional[Credential]) -> UsageTracker:
        return UsageTracker(self.reporter, self.provider, request.model, credential)

    async def _open(self, credential: Optional[Credential], request: CanonicalRequest, stream: bool):
        self.check_credential(credential)
        model = self.catalog.lookup(request.model)
        client = await self.client_factory.get_client(credential)
        translator = self.create_translator(credential, client)
        url, payload, headers = await translator.transform_request(request, model, stream=stream)
        response = await self.send(client, credential, url, payload, headers)
        return model, translator, response

    async def execute(self, credential: Optional[Credential], request: CanonicalRequest) -> Dict[str, Any]:
        """
        Run a fully buffered call.

        Args:
            credential: Credential from the auth store (None when absent)
            request: Canonical request

        Returns:
            Canonical chat completion (or image) response

        Raises:
            GatewayError: Any validation, upload, or upstream failure
        """
        tracker = self._tracker(request, credential)
        try:
            model, translator, response = await self._open(credential, request, stream=False)
            result = await self.read_response(response, translator, request, model)
        except asyncio.CancelledError:
            tracker.failure(StreamCancelled("request cancelled"))
            raise
        except Exception as e:
            tracker.failure(e)
            raise
        tracker.success()
        return result

    async def execute_stream(self, credential: Optional[Credential], request: CanonicalRequest) -> ChunkStream:
        """
        Start a streaming call.

        Returns once the upstream accepted the request. A non-2xx status is
        raised here, never delivered through the stream.

        Args:
            credential: Credential from the auth store (None when absent)
            request: Canonical request

        Returns:
            ChunkStream of canonical chunks; iterate it, then ``aclose()``
        """
        tracker = self._tracker(request, credential)
        try:
            model, translator, response = await self._open(credential, request, stream=True)
        except asyncio.CancelledError:
            tracker.failure(StreamCancelled("request cancelled"))
            raise
        except Exception as e:
            tracker.failure(e)
            raise

        stream_translator = translator.create_stream_translator(self.config.STREAM_MAX_LINE_BYTES)
        label = f"{self.provider} executor stream ({model.alias})"

        async def abandon() -> None:
            tracker.failure(StreamCancelled("stream closed before reading"))
            await response.aclose()

        stream = ChunkStream()
        stream.start(
            lambda channel: pump_lines(channel, response, stream_translator, tracker, self.audit, label),
            on_abandon=abandon,
        )
        return stream

    async def send(
        self,
        client: httpx.AsyncClient,
        credential: Credential,
        url: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
    ) -> httpx.Response:
        """
        POST the native payload and return the response with its body unread.

        Raises:
            UpstreamHTTPError: Non-2xx status (the body is read and closed first)
            UpstreamProtocolError: Transport failure before a response arrived
        """
        content = json.dumps(payload).encode("utf-8")
        http_request = client.build_request("POST", url, content=content, headers=headers)
        http_request = self.prepare_request(http_request, credential)

        account_type, account_value = credential.account_info()
        self.audit.record_request(UpstreamRequestLog(
            url=url,
            method="POST",
            provider=self.provider,
            headers=dict(http_request.headers),
            body=content,
            auth_id=credential.id,
            auth_label=credential.label,
            auth_type=account_type,
            auth_value=account_value,
        ))

        try:
            response = await client.send(http_request, stream=True)
        except httpx.HTTPError as e:
            self.audit.record_error(e)
            logger.error(f"{self.provider} executor: request failed: {type(e).__name__}: {e}")
            raise UpstreamProtocolError(f"upstream request failed: {type(e).__name__}: {e}") from e

        self.audit.record_response(response.status_code, response.headers)
        if not 200 <= response.status_code < 300:
            try:
                body = await response.aread()
            except httpx.HTTPError:
                body = b""
            finally:
                await response.aclose()
            self.audit.append_chunk(body)
            text = body.decode("utf-8", errors="replace")
            logger.error(f"{self.provider} executor: request error, status: {response.status_code}, body: {text[:500]}")
            raise UpstreamHTTPError(response.status_code, text, provider=self.provider)
        return response

    async def read_event_stream(self, response: httpx.Response, translator: BaseTranslator) -> ResponseAccumulator:
        """Read a whole event-stream body into an accumulator, closing the response."""
        accumulator = ResponseAccumulator()
        stream_translator = translator.create_stream_translator(self.config.STREAM_MAX_LINE_BYTES, accumulator)
        try:
            stream_translator.connected()
            async for line in response.aiter_lines():
                self.audit.append_chunk(line.encode("utf-8"))
                stream_translator.feed_line(line)
                if stream_translator.draining:
                    break
            stream_translator.finish()
        except GatewayError as e:
            stream_translator.fail()
            self.audit.record_error(e)
            raise
        except httpx.HTTPError as e:
            stream_translator.fail()
            self.audit.record_error(e)
            raise UpstreamProtocolError(f"upstream read failed: {type(e).__name__}: {e}") from e
        finally:
            await response.aclose()
        return accumulator
