"""Juma request translator."""
import logging
import uuid
from typing import Any, Dict, List, Optional, Set, Tuple

import httpx

from chatrelay.services.gateway.auth.session import JumaSession
from chatrelay.services.gateway.errors import AssetUploadError
from chatrelay.services.gateway.models import CanonicalMessage, CanonicalRequest, ProviderModel, UploadedAsset
from chatrelay.services.gateway.synthesizer import ResponseAccumulator
from chatrelay.services.gateway.translators.base import BaseTranslator
from chatrelay.services.gateway.translators.juma_stream import JumaStreamTranslator
from chatrelay.services.gateway.uploads.juma import JumaAssetUploader, RequestAssetCache
from chatrelay.services.gateway.uploads.remote import (
    fetch_remote_image_as_data_url,
    is_data_url,
    is_remote_url,
)

logger = logging.getLogger(__name__)

CHAT_PATH = "/api/chat/stream"

KNOWLEDGE_SOURCE = "AttachedNewContextSnippet"

IMAGE_EDIT_SYSTEM_PROMPT = (
    "You are an expert image editing assistant. When the user provides an image, "
    "you MUST use the 'ImageEdit' tool to modify it according to their instructions. "
    "Do not just describe the edit. Always output the tool call."
)

IMAGE_EDIT_TOOL: Dict[str, Any] = {
    "type": "function",
    "function": {
        "name": "ImageEdit",
        "description": (
            "Edit or generate images based on text prompts. Use this tool when the "
            "user asks to generate, edit, or modify images."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "prompt": {
                    "type": "string",
                    "description": "The prompt describing the image to generate or the edit to make",
                },
                "imageUrls": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "URLs of images to edit (optional for generation)",
                },
                "orientation": {
                    "type": "string",
                    "enum": ["vertical", "horizontal", "square"],
                    "description": "The orientation of the output image",
                },
            },
            "required": ["prompt"],
        },
    },
}


def build_message(role: str, text: str, uploaded_images: Optional[List[Dict[str, str]]] = None) -> Dict[str, Any]:
    """Juma message object; text is the primary content, images ride alongside."""
    return {
        "id": str(uuid.uuid4()),
        "role": role,
        "parts": [{"type": "text", "text": text}] if text else [],
        "content": text,
        "generatedImages": [],
        "uploadedImages": uploaded_images or [],
        "uploadedFiles": [],
    }


def uploaded_image_entry(asset: UploadedAsset) -> Dict[str, str]:
    return {"id": asset.asset_id, "imageUrl": asset.url, "name": asset.filename}


def knowledge_items(assets: List[UploadedAsset]) -> List[Dict[str, str]]:
    """Thread-level references, one per distinct correlation id.

    Assets without a correlation id are left out.
    """
    items: List[Dict[str, str]] = []
    seen: Set[str] = set()
    for asset in assets:
        if not asset.has_correlation or asset.correlation_id in seen:
            continue
        seen.add(asset.correlation_id)
        items.append({"id": asset.correlation_id, "source": KNOWLEDGE_SOURCE})
    return items


class JumaTranslator(BaseTranslator):
    """Translator for the Juma chat API.

    Holds the per-request asset cache, so build a new instance per call.
    """

    def __init__(
        self,
        session: JumaSession,
        base_url: str,
        user_agent: str,
        uploader: JumaAssetUploader,
        client: httpx.AsyncClient,
        max_remote_image_bytes: int = 10 * 1024 * 1024,
        attachment_policy: str = "best_effort",
    ):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.uploader = uploader
        self.client = client
        self.max_remote_image_bytes = max_remote_image_bytes
        self.attachment_policy = attachment_policy
        self.assets = RequestAssetCache()
        self._failed: Set[str] = set()

    async def transform_request(
        self,
        request: CanonicalRequest,
        model: ProviderModel,
        stream: bool = False,
    ) -> Tuple[str, Dict[str, Any], Dict[str, str]]:
        """
        Transform a canonical request into a Juma chat body.

        Juma always answers with an event stream, so ``stream`` does not change
        the body.

        Args:
            request: Canonical request
            model: Resolved catalog entry
            stream: Unused

        Returns:
            Tuple of (url, payload, headers)

        Raises:
            AssetUploadError: If an attachment fails under the strict policy
        """
        messages = await self.convert_messages(request.messages, model)
        payload: Dict[str, Any] = {
            "messages": messages,
            "modelId": model.upstream_id,
            "threadId": str(uuid.uuid4()),
            "workspaceId": self.session.workspace_id,
            "promptUsages": [],
            "currentFolderId": None,
            "vendorConnectionId": self.session.vendor_connection_id or model.connection_id,
            "isNewThread": True,
            "parentFolderId": None,
            "knowledgeItems": knowledge_items(self.assets.assets()),
        }
        if model.forces_image_edit:
            payload["tools"] = [IMAGE_EDIT_TOOL]

        logger.info(
            f"Juma translator: model={model.alias} messages={len(messages)} "
            f"uploads={len(self.assets.assets())} knowledgeItems={len(payload['knowledgeItems'])}"
        )
        url = f"{self.base_url}{CHAT_PATH}"
        return url, payload, self.session.headers(self.base_url, self.user_agent)

    async def convert_messages(self, messages: List[CanonicalMessage], model: ProviderModel) -> List[Dict[str, Any]]:
        """Convert canonical messages, uploading images in order."""
        result: List[Dict[str, Any]] = []
        if model.forces_image_edit:
            result.append(build_message("system", IMAGE_EDIT_SYSTEM_PROMPT))

        for message in messages:
            if model.forces_image_edit and message.role == "system":
                logger.debug("Juma translator: replacing caller system message with image-edit prompt")
                continue

            uploaded: List[Dict[str, str]] = []
            attached: Set[str] = set()
            for url in message.image_urls:
                asset = await self.resolve_image(url)
                if asset is None or asset.url in attached:
                    continue
                attached.add(asset.url)
                uploaded.append(uploaded_image_entry(asset))
            result.append(build_message(message.role, message.text, uploaded))
        return result

    async def resolve_image(self, url: str) -> Optional[UploadedAsset]:
        """
        Upload one referenced image, reusing an earlier upload of the same URL.

        Returns:
            UploadedAsset, or None when the attachment was dropped under the
            best-effort policy

        Raises:
            AssetUploadError: Under the strict policy
        """
        cached = self.assets.get(url)
        if cached is not None:
            return cached
        if url in self._failed:
            return None

        try:
            if is_data_url(url):
                data_url = url
            elif is_remote_url(url):
                data_url = await fetch_remote_image_as_data_url(self.client, url, self.max_remote_image_bytes)
            else:
                raise AssetUploadError("image URL not supported (must be data:, http or https)")
            asset = await self.uploader.upload_data_url(data_url)
        except AssetUploadError as e:
            if self.attachment_policy == "strict":
                raise
            self._failed.add(url)
            logger.warning(f"Juma translator: dropping attachment ({type(e).__name__}): {e}")
            return None

        self.assets.put(url, asset)
        return asset

    def create_stream_translator(
        self,
        max_line_bytes: int,
        accumulator: Optional[ResponseAccumulator] = None,
    ) -> JumaStreamTranslator:
        return JumaStreamTranslator(max_line_bytes=max_line_bytes, accumulator=accumulator)
