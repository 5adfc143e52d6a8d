"""OpenAI-compatible passthrough executor."""
import json
import logging
from typing import Any, Dict, Optional

import httpx

from chatrelay.services.gateway.auth.direct import API_KEY
from chatrelay.services.gateway.catalog import OPENAI_CATALOG, ModelCatalog
from chatrelay.services.gateway.errors import Unauthorized, UpstreamProtocolError
from chatrelay.services.gateway.executors.base import BaseExecutor
from chatrelay.services.gateway.models import CanonicalRequest, Credential, ProviderModel
from chatrelay.services.gateway.translators.base import BaseTranslator
from chatrelay.services.gateway.translators.openai import OpenAITranslator
from chatrelay.services.gateway.uploads.image_hosting import ImageHostingClient

logger = logging.getLogger(__name__)


class OpenAIExecutor(BaseExecutor):
    """Executor for OpenAI-compatible APIs with bearer-key auth."""

    provider = "openai"
    catalog: ModelCatalog = OPENAI_CATALOG

    def check_credential(self, credential: Optional[Credential]) -> None:
        if credential is None or not credential.get(API_KEY):
            raise Unauthorized("missing API key")

    def prepare_request(self, request: httpx.Request, credential: Credential) -> httpx.Request:
        request.headers["Authorization"] = f"Bearer {credential.get(API_KEY)}"
        return request

    def create_translator(self, credential: Credential, client: httpx.AsyncClient) -> OpenAITranslator:
        return OpenAITranslator(
            base_url=self.config.OPENAI_BASE_URL,
            image_hosting=ImageHostingClient(client, self.config),
            attachment_policy=self.config.ATTACHMENT_POLICY,
        )

    async def read_response(
        self,
        response: httpx.Response,
        translator: BaseTranslator,
        request: CanonicalRequest,
        model: ProviderModel,
    ) -> Dict[str, Any]:
        try:
            body = await response.aread()
        except httpx.HTTPError as e:
            self.audit.record_error(e)
            raise UpstreamProtocolError(f"upstream read failed: {type(e).__name__}: {e}") from e
        finally:
            await response.aclose()

        self.audit.append_chunk(body)
        try:
            result = json.loads(body)
        except ValueError as e:
            raise UpstreamProtocolError(f"upstream returned invalid JSON: {body[:200]!r}") from e
        if not isinstance(result, dict):
            raise UpstreamProtocolError("upstream returned a non-object response")

        # Echo the public alias rather than the upstream id
        result["model"] = request.model
        return result
