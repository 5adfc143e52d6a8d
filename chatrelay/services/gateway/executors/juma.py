"""Juma executor: session-cookie auth and event-stream responses."""
import logging
from typing import Any, Dict, Optional

import httpx

from chatrelay.services.gateway.auth.session import JumaSession
from chatrelay.services.gateway.catalog import JUMA_CATALOG, ModelCatalog
from chatrelay.services.gateway.errors import Unauthorized
from chatrelay.services.gateway.executors.base import BaseExecutor
from chatrelay.services.gateway.models import CanonicalRequest, Credential, ProviderModel
from chatrelay.services.gateway.translators.base import BaseTranslator
from chatrelay.services.gateway.translators.juma import JumaTranslator
from chatrelay.services.gateway.uploads.juma import JumaAssetUploader

logger = logging.getLogger(__name__)


class JumaExecutor(BaseExecutor):
    """Executor for Juma.

    The session cookie is attached by the translator's header set, so
    ``prepare_request`` has nothing to add. Juma always answers with an event
    stream; the buffered path reads it to the end and synthesizes one response.
    """

    provider = "juma"
    catalog: ModelCatalog = JUMA_CATALOG

    def check_credential(self, credential: Optional[Credential]) -> None:
        if not JumaSession.from_credential(credential).session_token:
            raise Unauthorized("missing Juma session token")

    def prepare_request(self, request: httpx.Request, credential: Credential) -> httpx.Request:
        return request

    def create_translator(self, credential: Credential, client: httpx.AsyncClient) -> JumaTranslator:
        session = JumaSession.from_credential(credential)
        uploader = JumaAssetUploader(
            client=client,
            session=session,
            base_url=self.config.JUMA_BASE_URL,
            user_agent=self.config.JUMA_USER_AGENT,
            audit=self.audit,
            upload_timeout=self.config.UPLOAD_TIMEOUT_SECONDS,
            transfer_timeout=self.config.TRANSFER_TIMEOUT_SECONDS,
            poll_attempts=self.config.UPLOAD_READY_POLL_ATTEMPTS,
            poll_backoff=self.config.UPLOAD_READY_POLL_BACKOFF_SECONDS,
        )
        return JumaTranslator(
            session=session,
            base_url=self.config.JUMA_BASE_URL,
            user_agent=self.config.JUMA_USER_AGENT,
            uploader=uploader,
            client=client,
            max_remote_image_bytes=self.config.MAX_REMOTE_IMAGE_BYTES,
            attachment_policy=self.config.ATTACHMENT_POLICY,
        )

    async def read_response(
        self,
        response: httpx.Response,
        translator: BaseTranslator,
        request: CanonicalRequest,
        model: ProviderModel,
    ) -> Dict[str, Any]:
        accumulator = await self.read_event_stream(response, translator)
        if accumulator.image_url:
            logger.info(f"Juma executor: generated image for {model.alias}: {accumulator.image_url}")
        return accumulator.synthesize(request.model, model.image_output)
