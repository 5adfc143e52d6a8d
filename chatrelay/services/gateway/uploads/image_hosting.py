"""Generic image hosting (PixelPunk-compatible) upload."""
import logging
import time
from typing import Optional

import httpx

from chatrelay.core.config import Settings, settings as default_settings
from chatrelay.services.gateway.errors import AssetUploadError
from chatrelay.services.gateway.uploads.remote import extension_for_mime, is_data_url, parse_data_url

logger = logging.getLogger(__name__)

HOSTING_OK_STATUSES = (200, 201)


class ImageHostingClient:
    """Replaces inline data-URL images with hosted public URLs."""

    def __init__(self, client: httpx.AsyncClient, config: Optional[Settings] = None):
        self.client = client
        self.config = config or default_settings

    @property
    def enabled(self) -> bool:
        return bool(self.config.IMAGE_HOSTING_ENABLE and self.config.IMAGE_HOSTING_ENDPOINT)

    async def host(self, image_url: str) -> str:
        """
        Upload a data-URL image and return its public URL.

        Non-data URLs, and every URL while hosting is disabled, come back unchanged.

        Args:
            image_url: Image URL from a canonical content part

        Returns:
            Public URL of the hosted image, or ``image_url`` unchanged

        Raises:
            AssetUploadError: If the upload or the response is rejected
        """
        if not self.enabled or not is_data_url(image_url):
            return image_url

        mime_type, data = parse_data_url(image_url)
        filename = f"upload_{time.time_ns()}{extension_for_mime(mime_type)}"
        try:
            response = await self.client.post(
                self.config.IMAGE_HOSTING_ENDPOINT,
                data={"access_level": "public", "optimize": "true"},
                files={"file": (filename, data, mime_type)},
                headers={"x-pixelpunk-key": self.config.IMAGE_HOSTING_API_KEY},
                timeout=self.config.UPLOAD_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            raise AssetUploadError(f"failed to upload image: {e}") from e

        if response.status_code not in HOSTING_OK_STATUSES:
            raise AssetUploadError(f"image upload failed with status {response.status_code}: {response.text[:500]}")

        try:
            result = response.json()
        except ValueError as e:
            logger.warning(f"Image hosting: unparseable response: {response.text[:200]}")
            raise AssetUploadError("failed to parse upload response") from e

        if not isinstance(result, dict) or result.get("code") != 200:
            message = result.get("message") if isinstance(result, dict) else ""
            raise AssetUploadError(f"image upload failed: {message or 'unexpected response'}")

        public_url = ((result.get("data") or {}).get("uploaded") or {}).get("url") or ""
        if not public_url:
            raise AssetUploadError("image upload response missing URL")

        logger.info(f"Image hosting: uploaded {filename}, public URL: {public_url}")
        return public_url
