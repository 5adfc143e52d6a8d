"""Data URL parsing and remote image fetching."""
import base64
import binascii
import logging
from typing import Tuple
from urllib.parse import unquote_to_bytes

import httpx

from chatrelay.services.gateway.errors import AssetUploadError

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}

# (prefix, mime) pairs checked in order when no Content-Type header is sent
_MAGIC_BYTES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"BM", "image/bmp"),
    (b"\x00\x00\x01\x00", "image/x-icon"),
)


def is_data_url(url: str) -> bool:
    return url.startswith("data:")


def is_remote_url(url: str) -> bool:
    return url.startswith(("http://", "https://"))


def parse_data_url(data_url: str) -> Tuple[str, bytes]:
    """
    Split a data URL into its MIME type and decoded payload.

    Args:
        data_url: ``data:[<mime>][;base64],<payload>``

    Returns:
        Tuple of (mime_type, payload bytes)

    Raises:
        AssetUploadError: If the URL is not a well-formed data URL
    """
    if not is_data_url(data_url):
        raise AssetUploadError("not a data URL")
    header, sep, payload = data_url[5:].partition(",")
    if not sep:
        raise AssetUploadError("invalid data URL format")

    params = header.split(";")
    mime_type = params[0].strip().lower() or DEFAULT_MIME_TYPE
    if "base64" in (p.strip().lower() for p in params[1:]):
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise AssetUploadError(f"failed to decode base64 payload: {e}") from e
    else:
        data = unquote_to_bytes(payload)
    return mime_type, data


def build_data_url(mime_type: str, data: bytes) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def extension_for_mime(mime_type: str) -> str:
    """File extension for an image MIME type; unknown types map to .png."""
    return _EXTENSIONS.get(mime_type.lower(), ".png")


def sniff_content_type(data: bytes) -> str:
    for prefix, mime in _MAGIC_BYTES:
        if data.startswith(prefix):
            return mime
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    head = data[:512].lstrip().lower()
    if head.startswith((b"<!doctype html", b"<html")):
        return "text/html"
    return DEFAULT_MIME_TYPE


async def fetch_remote_image_as_data_url(client: httpx.AsyncClient, url: str, max_bytes: int) -> str:
    """
    Download a remote image and re-encode it as a base64 data URL.

    The body is read incrementally and the read stops as soon as it grows past
    ``max_bytes``.

    Args:
        client: Shared HTTP client
        url: http(s) image URL
        max_bytes: Largest accepted body size

    Returns:
        ``data:<image mime>;base64,...`` URL

    Raises:
        AssetUploadError: On transport failure, non-200 status, oversize body,
            or a content type that is not ``image/*``
    """
    try:
        async with client.stream("GET", url) as response:
            if response.status_code != 200:
                raise AssetUploadError(f"remote image fetch returned status {response.status_code}")

            # Reject by declared type before reading the body
            declared = response.headers.get("content-type", "").split(";")[0].strip().lower()
            if declared and not declared.startswith("image/"):
                raise AssetUploadError(f"content-type is not image: {declared}")

            buffer = bytearray()
            async for chunk in response.aiter_bytes():
                buffer.extend(chunk)
                if len(buffer) > max_bytes:
                    raise AssetUploadError(f"image size exceeds limit ({max_bytes} bytes)")
    except httpx.HTTPError as e:
        raise AssetUploadError(f"failed to fetch remote image: {e}") from e

    content_type = declared or sniff_content_type(bytes(buffer))
    if not content_type.startswith("image/"):
        raise AssetUploadError(f"content-type is not image: {content_type}")

    logger.debug(f"Fetched remote image {url} ({len(buffer)} bytes, {content_type})")
    return build_data_url(content_type, bytes(buffer))
