"""Canonical message model shared by executors and the API layer."""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from chatrelay.services.gateway.errors import InvalidRequest

logger = logging.getLogger(__name__)

ROLES = ("system", "user", "assistant", "tool")

# Part types that carry an image reference in OpenAI-like vision payloads
IMAGE_PART_TYPES = ("image_url", "input_image", "image")


@dataclass(frozen=True)
class ContentPart:
    """Text or image reference part of a canonical message."""
    type: str  # "text" or "image_url"
    text: str = ""
    url: str = ""  # http(s) URL or data URL for image parts

    @property
    def is_image(self) -> bool:
        return self.type == "image_url"


@dataclass
class CanonicalMessage:
    """Canonical chat message."""
    role: str  # "system", "user", "assistant", "tool"
    text: str = ""
    parts: List[ContentPart] = field(default_factory=list)

    @property
    def image_urls(self) -> List[str]:
        return [part.url for part in self.parts if part.is_image and part.url]


@dataclass
class CanonicalRequest:
    """Canonical chat-completion request."""
    model: str
    messages: List[CanonicalMessage]
    stream: bool = False
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CanonicalRequest":
        """Parse an OpenAI-compatible request payload.

        Args:
            payload: Raw chat-completion request body

        Returns:
            CanonicalRequest with messages in their original order

        Raises:
            InvalidRequest: If the model is missing or a message is malformed
        """
        model = str(payload.get("model") or "").strip()
        if not model:
            raise InvalidRequest("model is required")

        raw_messages = payload.get("messages")
        if not isinstance(raw_messages, list):
            raise InvalidRequest("messages must be a list")

        messages = [_parse_message(i, raw) for i, raw in enumerate(raw_messages)]
        return cls(
            model=model,
            messages=messages,
            stream=bool(payload.get("stream", False)),
            payload=dict(payload),
        )


def _parse_message(index: int, raw: Any) -> CanonicalMessage:
    if not isinstance(raw, Mapping):
        raise InvalidRequest(f"messages[{index}] must be an object")

    role = str(raw.get("role") or "").strip().lower()
    if role not in ROLES:
        raise InvalidRequest(f"messages[{index}] has unsupported role: {raw.get('role')!r}")

    content = raw.get("content")
    if content is None:
        return CanonicalMessage(role=role)
    if isinstance(content, str):
        return CanonicalMessage(role=role, text=content, parts=[ContentPart(type="text", text=content)])
    if not isinstance(content, list):
        return CanonicalMessage(role=role, text=str(content), parts=[ContentPart(type="text", text=str(content))])

    parts: List[ContentPart] = []
    text_chunks: List[str] = []
    for item in content:
        if isinstance(item, str):
            parts.append(ContentPart(type="text", text=item))
            text_chunks.append(item)
            continue
        if not isinstance(item, Mapping):
            continue
        part_type = item.get("type")
        if part_type == "text":
            text = str(item.get("text") or "")
            parts.append(ContentPart(type="text", text=text))
            text_chunks.append(text)
        elif part_type in IMAGE_PART_TYPES:
            url = extract_image_url(item)
            if url:
                parts.append(ContentPart(type="image_url", url=url))
            else:
                logger.warning(f"messages[{index}] image part without URL ignored")
    return CanonicalMessage(role=role, text="".join(text_chunks), parts=parts)


def extract_image_url(part: Mapping[str, Any]) -> str:
    """Extract the image URL from the various OpenAI-like vision part shapes."""
    image_url = part.get("image_url")
    if isinstance(image_url, Mapping) and image_url.get("url"):
        return str(image_url["url"])
    if isinstance(image_url, str) and image_url:
        return image_url
    image = part.get("image")
    if isinstance(image, Mapping) and image.get("url"):
        return str(image["url"])
    if part.get("url"):
        return str(part["url"])
    return ""


@dataclass(frozen=True)
class ProviderModel:
    """Static catalog entry mapping a public alias to an upstream model."""
    alias: str  # User-facing alias (e.g., "juma-gpt-5.1")
    upstream_id: str  # Provider's identifier for the model
    display_name: str
    family: str  # Vendor family tag (e.g., "OpenAI", "Google")
    connection_id: str = ""  # Upstream vendor connection scoping token
    forces_image_edit: bool = False
    image_output: bool = False


@dataclass(frozen=True)
class Credential:
    """Opaque credential attributes supplied by the external auth store."""
    attributes: Mapping[str, str] = field(default_factory=dict)
    id: str = ""
    label: str = ""
    account_type: str = ""
    account_value: str = ""

    def get(self, key: str) -> str:
        """Return a trimmed attribute value, empty when absent."""
        value = self.attributes.get(key)
        return str(value).strip() if value is not None else ""

    def account_info(self) -> Tuple[str, str]:
        """Account-identifying projection, used only for reporting."""
        return self.account_type, self.account_value


@dataclass(frozen=True)
class UploadedAsset:
    """Result of the asset upload pipeline."""
    asset_id: str
    correlation_id: str  # Empty when the provider's reference id is unknown
    url: str
    filename: str

    @property
    def has_correlation(self) -> bool:
        return bool(self.correlation_id)


@dataclass(frozen=True)
class StreamEvent:
    """Provider-native named event with its dynamic payload."""
    type: str
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CanonicalStreamChunk:
    """One canonical streaming delta."""
    index: int
    delta: str = ""
    terminal: bool = False
    finish_reason: Optional[str] = None
