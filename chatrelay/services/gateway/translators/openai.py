"""OpenAI translator - passthrough with optional image hosting."""
import copy
import json
import logging
from typing import Any, Dict, Optional, Tuple

from chatrelay.services.gateway.errors import AssetUploadError
from chatrelay.services.gateway.models import IMAGE_PART_TYPES, CanonicalRequest, ProviderModel, extract_image_url
from chatrelay.services.gateway.streaming import BaseStreamTranslator
from chatrelay.services.gateway.synthesizer import ResponseAccumulator
from chatrelay.services.gateway.translators.base import BaseTranslator
from chatrelay.services.gateway.uploads.image_hosting import ImageHostingClient
from chatrelay.services.gateway.uploads.remote import is_data_url

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_PATH = "/chat/completions"

# Gateway-only request fields that must not reach the upstream
GATEWAY_FIELDS = ("provider",)


class OpenAIStreamTranslator(BaseStreamTranslator):
    """Reads standard chat.completion.chunk events."""

    def __init__(self, max_line_bytes: int = 20 * 1024 * 1024, accumulator: Optional[ResponseAccumulator] = None):
        super().__init__(max_line_bytes)
        self.accumulator = accumulator

    def handle_data(self, data: str) -> None:
        try:
            chunk = json.loads(data)
        except json.JSONDecodeError:
            logger.warning(f"OpenAI stream: skipping non-JSON event: {data[:200]}")
            return
        if not isinstance(chunk, dict):
            return
        choices = chunk.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return
        content = (choices[0].get("delta") or {}).get("content")
        if not isinstance(content, str) or not content:
            return
        if self.accumulator is not None:
            self.accumulator.add_text(content)
        self.emit(content)


class OpenAITranslator(BaseTranslator):
    """Translator for OpenAI-compatible APIs (passthrough)."""

    def __init__(
        self,
        base_url: str,
        image_hosting: Optional[ImageHostingClient] = None,
        attachment_policy: str = "best_effort",
    ):
        """Initialize OpenAI translator.

        Args:
            base_url: API base URL, e.g. ``https://api.openai.com/v1``
            image_hosting: Optional hosting client for inline images
            attachment_policy: ``best_effort`` or ``strict``
        """
        self.base_url = base_url.rstrip("/")
        self.image_hosting = image_hosting
        self.attachment_policy = attachment_policy

    async def transform_request(
        self,
        request: CanonicalRequest,
        model: ProviderModel,
        stream: bool = False,
    ) -> Tuple[str, Dict[str, Any], Dict[str, str]]:
        """
        Forward the raw payload with the upstream model id.

        Args:
            request: Canonical request (its raw payload is forwarded)
            model: Resolved catalog entry
            stream: Whether the upstream should stream

        Returns:
            Tuple of (url, payload, headers)
        """
        payload = copy.deepcopy(request.payload)
        for name in GATEWAY_FIELDS:
            payload.pop(name, None)
        payload["model"] = model.upstream_id
        payload["stream"] = stream

        if self.image_hosting is not None and self.image_hosting.enabled:
            await self.host_inline_images(payload)

        headers = {"Content-Type": "application/json"}
        logger.debug(f"OpenAI translator: passthrough request for {model.alias}")
        return f"{self.base_url}{CHAT_COMPLETIONS_PATH}", payload, headers

    async def host_inline_images(self, payload: Dict[str, Any]) -> None:
        """Swap data-URL image parts for hosted URLs, in place."""
        for message in payload.get("messages") or []:
            content = message.get("content") if isinstance(message, dict) else None
            if not isinstance(content, list):
                continue
            for part in content:
                if not isinstance(part, dict) or part.get("type") not in IMAGE_PART_TYPES:
                    continue
                url = extract_image_url(part)
                if not is_data_url(url):
                    continue
                try:
                    hosted = await self.image_hosting.host(url)
                except AssetUploadError as e:
                    if self.attachment_policy == "strict":
                        raise
                    logger.warning(f"OpenAI translator: keeping inline image, hosting failed: {e}")
                    continue
                image_url = part.get("image_url")
                if isinstance(image_url, dict):
                    image_url["url"] = hosted
                else:
                    part["image_url"] = {"url": hosted}
                part["type"] = "image_url"

    def create_stream_translator(
        self,
        max_line_bytes: int,
        accumulator: Optional[ResponseAccumulator] = None,
    ) -> OpenAIStreamTranslator:
        return OpenAIStreamTranslator(max_line_bytes=max_line_bytes, accumulator=accumulator)
