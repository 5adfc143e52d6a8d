"""Juma asset upload pipeline: negotiate, transfer, correlate.

Juma does not accept inline image bytes in chat requests. Each image is
registered through a tRPC call that returns a presigned S3 POST target, uploaded
straight to storage, and then referenced in the chat body by its asset id and
its knowledge-item (correlation) id.
"""
import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx

from chatrelay.services.gateway.audit import SafeAuditRecorder, UpstreamRequestLog, mask_storage_field
from chatrelay.services.gateway.auth.session import JumaSession
from chatrelay.services.gateway.errors import AssetCorrelationTimeout, AssetUploadError
from chatrelay.services.gateway.models import UploadedAsset
from chatrelay.services.gateway.uploads.remote import extension_for_mime, parse_data_url

logger = logging.getLogger(__name__)

NEGOTIATE_PATH = "/api/trpc/fileStorage.createPresignedUrl?batch=1"

# Marker field of the JSONL line that carries the negotiation payload
NEGOTIATE_MARKER = "presignedUrl"

# Path of the payload inside the marker line
NEGOTIATE_PAYLOAD_PATH = ("json", 2, 0, 0)

# Signed form fields that must lead the multipart body, in policy order
SIGNED_FIELD_ORDER = (
    "key",
    "Content-Type",
    "bucket",
    "X-Amz-Algorithm",
    "X-Amz-Credential",
    "X-Amz-Date",
    "Policy",
    "X-Amz-Signature",
)

TRANSFER_OK_STATUSES = (200, 201, 202, 204)

# Readiness statuses from storage that refuse access to an object that exists
STORED_DENIED_STATUSES = (401, 403, 405)

KNOWLEDGE_TYPE = "Knowledge"

# Alternate correlation-id locations, tried in order when the asset is not of
# the knowledge type. Upstream schema drift may add or rename these.
CORRELATION_FALLBACK_PATHS = (
    ("knowledgeItem", "id"),
    ("knowledgeItemId",),
    ("knowledgeItemID",),
    ("knowledge", "id"),
    ("image", "knowledgeItemId"),
    ("image", "knowledgeItem", "id"),
    ("knowledgeItem", "knowledgeItemId"),
)


@dataclass
class NegotiatedUpload:
    """Storage target and provider identifiers for a not-yet-uploaded asset."""
    asset_id: str
    correlation_id: str
    image_url: str
    presigned_url: str
    fields: Dict[str, str] = field(default_factory=dict)


def dig(data: Any, path: Sequence[Any]) -> Any:
    """Walk nested dicts/lists; returns None when any step is missing."""
    current = data
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, list) or step >= len(current):
                return None
        elif not isinstance(current, dict) or step not in current:
            return None
        current = current[step]
    return current


def _as_text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def extract_correlation_id(payload: Dict[str, Any]) -> str:
    """
    Derive the correlation id from a negotiation payload.

    A knowledge-type asset's own id is its correlation id. Otherwise the
    fallback chain is scanned in order. The asset id is never used as a
    substitute.

    Args:
        payload: The ``json[2][0][0]`` object of the negotiation response

    Returns:
        Correlation id, or an empty string when none is found
    """
    asset_id = _as_text(dig(payload, ("image", "id")))
    if _as_text(dig(payload, ("image", "type"))) == KNOWLEDGE_TYPE and asset_id:
        return asset_id

    for path in CORRELATION_FALLBACK_PATHS:
        candidate = _as_text(dig(payload, path))
        if candidate:
            logger.warning(
                f"Juma upload: correlation id taken from fallback field {'.'.join(path)} "
                f"(asset {asset_id or '-'}); negotiation schema may have changed"
            )
            return candidate

    logger.warning(f"Juma upload: no correlation id for asset {asset_id or '-'}")
    return ""


def parse_negotiation_lines(lines: Sequence[str]) -> NegotiatedUpload:
    """
    Find and parse the negotiation payload in a tRPC JSONL response.

    Lines without the marker field, lines that are not JSON, and marker lines
    without a usable payload are skipped.

    Raises:
        AssetUploadError: If no line yields a storage target
    """
    for line in lines:
        if NEGOTIATE_MARKER not in line:
            continue
        try:
            parsed = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Juma upload: skipping non-JSON negotiation line")
            continue
        payload = dig(parsed, NEGOTIATE_PAYLOAD_PATH)
        if not isinstance(payload, dict):
            continue

        image_url = _as_text(dig(payload, ("image", "imageUrl")))
        presigned_url = _as_text(payload.get("presignedUrl"))
        if not image_url or not presigned_url:
            continue

        raw_fields = payload.get("fields") or {}
        fields = {str(k): "" if v is None else str(v) for k, v in raw_fields.items()} if isinstance(raw_fields, dict) else {}
        return NegotiatedUpload(
            asset_id=_as_text(dig(payload, ("image", "id"))),
            correlation_id=extract_correlation_id(payload),
            image_url=image_url,
            presigned_url=presigned_url,
            fields=fields,
        )
    raise AssetUploadError("failed to parse presigned URL response")


def ordered_form_fields(fields: Dict[str, str]) -> Dict[str, str]:
    """Signed fields in policy order, then the rest in response order."""
    ordered = {name: fields[name] for name in SIGNED_FIELD_ORDER if name in fields}
    for name, value in fields.items():
        if name not in ordered:
            ordered[name] = value
    return ordered


class JumaAssetUploader:
    """Runs the three-step upload for one request's images."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        session: JumaSession,
        base_url: str,
        user_agent: str,
        audit: Optional[SafeAuditRecorder] = None,
        upload_timeout: float = 30.0,
        transfer_timeout: float = 60.0,
        poll_attempts: int = 5,
        poll_backoff: float = 0.4,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.audit = audit or SafeAuditRecorder()
        self.upload_timeout = upload_timeout
        self.transfer_timeout = transfer_timeout
        self.poll_attempts = poll_attempts
        self.poll_backoff = poll_backoff
        self._sleep = sleep

    def _headers(self) -> Dict[str, str]:
        headers = self.session.headers(self.base_url, self.user_agent)
        headers.update({
            "x-workspace-id": self.session.workspace_id,
            "trpc-accept": "application/jsonl",
            "x-trpc-source": "web",
        })
        return headers

    async def upload_data_url(self, data_url: str) -> UploadedAsset:
        """
        Upload one data-URL image.

        Args:
            data_url: ``data:`` URL holding the image bytes

        Returns:
            UploadedAsset; ``correlation_id`` is empty when it could not be derived

        Raises:
            AssetUploadError: If any step fails
            AssetCorrelationTimeout: If the asset never became referenceable
        """
        if not self.session.session_token or not self.session.workspace_id:
            raise AssetUploadError("session token and workspace id are required for uploads")

        mime_type, data = parse_data_url(data_url)
        filename = f"upload_{time.time_ns()}{extension_for_mime(mime_type)}"

        negotiated = await self.negotiate(filename, mime_type, len(data))
        await self.transfer(negotiated, data, mime_type, filename)
        await self.wait_until_ready(negotiated.image_url)

        logger.info(
            f"Juma upload complete: asset={negotiated.asset_id} "
            f"correlation={negotiated.correlation_id or '-'} url={negotiated.image_url}"
        )
        return UploadedAsset(
            asset_id=negotiated.asset_id,
            correlation_id=negotiated.correlation_id,
            url=negotiated.image_url,
            filename=filename,
        )

    async def negotiate(self, filename: str, mime_type: str, size: int) -> NegotiatedUpload:
        """Request a presigned storage target for the asset."""
        url = f"{self.base_url}{NEGOTIATE_PATH}"
        body = {
            "0": {
                "json": {
                    "type": KNOWLEDGE_TYPE,
                    "threadId": None,
                    "name": filename,
                    "mimeType": mime_type,
                    "imageSize": size,
                },
                "meta": {"values": {"threadId": ["undefined"]}, "v": 1},
            }
        }
        content = json.dumps(body).encode("utf-8")
        headers = self._headers()
        self.audit.record_request(UpstreamRequestLog(url=url, method="POST", provider="juma", headers=headers, body=content))

        try:
            response = await self.client.post(url, content=content, headers=headers, timeout=self.upload_timeout)
        except httpx.HTTPError as e:
            self.audit.record_error(e)
            raise AssetUploadError(f"presigned URL request failed: {e}") from e

        self.audit.record_response(response.status_code, response.headers)
        if response.status_code != 200:
            raise AssetUploadError(f"presigned URL request failed with status {response.status_code}: {response.text[:500]}")

        negotiated = parse_negotiation_lines(response.text.splitlines())
        logger.debug(f"Juma upload: negotiated asset={negotiated.asset_id} target={negotiated.presigned_url}")
        return negotiated

    async def transfer(self, negotiated: NegotiatedUpload, data: bytes, mime_type: str, filename: str) -> None:
        """Multipart POST to the presigned target, file part last."""
        fields = ordered_form_fields(negotiated.fields)
        for name, value in fields.items():
            logger.debug(f"Juma upload: field {name} = {mask_storage_field(name, value)}")

        # The file part's type must match the signed Content-Type field
        file_type = fields.get("Content-Type") or mime_type
        try:
            response = await self.client.post(
                negotiated.presigned_url,
                data=fields,
                files={"file": (filename, data, file_type)},
                timeout=self.transfer_timeout,
            )
        except httpx.HTTPError as e:
            raise AssetUploadError(f"storage upload failed: {e}") from e

        if response.status_code not in TRANSFER_OK_STATUSES:
            raise AssetUploadError(f"storage upload failed with status {response.status_code}: {response.text[:500]}")

    async def wait_until_ready(self, image_url: str) -> None:
        """
        Poll the asset's storage URL until the object exists.

        Makes at most ``poll_attempts`` HEAD requests with linear backoff.
        The storage host is not Juma's, so only the User-Agent is sent. A
        private bucket or a CDN that refuses HEAD (401/403/405) still proves
        the object was stored and counts as ready. Zero attempts disables the
        poll.

        Raises:
            AssetCorrelationTimeout: If the asset is not served within the allowed polls
        """
        if self.poll_attempts <= 0:
            return
        headers = {"User-Agent": self.user_agent}
        last_status: Optional[int] = None
        for attempt in range(1, self.poll_attempts + 1):
            try:
                response = await self.client.head(image_url, headers=headers, timeout=self.upload_timeout)
                last_status = response.status_code
                if response.status_code < 400 or response.status_code in STORED_DENIED_STATUSES:
                    logger.debug(f"Juma upload: asset ready after {attempt} poll(s) (status {response.status_code})")
                    return
            except httpx.HTTPError as e:
                logger.debug(f"Juma upload: readiness poll {attempt} failed: {e}")
            if attempt < self.poll_attempts:
                await self._sleep(self.poll_backoff * attempt)
        raise AssetCorrelationTimeout(
            f"asset not available after {self.poll_attempts} polls (last status {last_status}): {image_url}"
        )


class RequestAssetCache:
    """Per-request memo so identical image URLs are uploaded once."""

    def __init__(self):
        self._assets: Dict[str, UploadedAsset] = {}
        self._order: List[UploadedAsset] = []

    def get(self, url: str) -> Optional[UploadedAsset]:
        return self._assets.get(url)

    def put(self, url: str, asset: UploadedAsset) -> None:
        if url not in self._assets:
            self._assets[url] = asset
            self._order.append(asset)

    def assets(self) -> List[UploadedAsset]:
        return list(self._order)
