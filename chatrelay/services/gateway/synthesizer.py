"""Canonical (OpenAI-compatible) response synthesis."""
import re
import time
import uuid
from typing import Any, Dict, List, Optional

from chatrelay.services.gateway.models import CanonicalStreamChunk

# <generated-image url="..." /> or <generated-image url='...'>
GENERATED_IMAGE_TAG = re.compile(r"""<generated-image\s+url=["']([^"']+)["']\s*/?>""")


def image_markdown(url: str) -> str:
    return f"![Generated Image]({url})"


def transform_generated_image_tags(content: str) -> str:
    """Rewrite inline generated-image tags into markdown image syntax."""
    if "<generated-image" not in content:
        return content
    return GENERATED_IMAGE_TAG.sub(lambda match: image_markdown(match.group(1)), content)


def new_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex[:8]}"


def build_chat_response(model: str, content: str, created: Optional[int] = None) -> Dict[str, Any]:
    """
    Build a chat.completion response.

    Args:
        model: Public model alias echoed back to the caller
        content: Accumulated assistant text (inline image tags are rewritten here)
        created: Optional creation timestamp (defaults to now)

    Returns:
        OpenAI-compatible chat completion dict with zeroed usage
    """
    return {
        "id": new_completion_id(),
        "object": "chat.completion",
        "created": created if created is not None else int(time.time()),
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {
                    "role": "assistant",
                    "content": transform_generated_image_tags(content),
                },
                "finish_reason": "stop",
            }
        ],
        "usage": {
            "prompt_tokens": 0,
            "completion_tokens": 0,
            "total_tokens": 0,
        },
    }


def build_image_response(image_url: str, created: Optional[int] = None) -> Dict[str, Any]:
    """Build an images-API shaped response for image-output models."""
    return {
        "created": created if created is not None else int(time.time()),
        "data": [{"url": image_url}],
    }


def build_stream_chunk(
    model: str,
    chunk: CanonicalStreamChunk,
    completion_id: str,
    created: Optional[int] = None,
) -> Dict[str, Any]:
    """Render a canonical chunk as a chat.completion.chunk payload.

    All chunks of one stream share ``completion_id``. The canonical chunk index
    is not the OpenAI choice index, which is always 0 for a single choice.
    """
    delta: Dict[str, Any] = {}
    if chunk.index == 0:
        delta["role"] = "assistant"
    if chunk.delta or not chunk.terminal:
        delta["content"] = chunk.delta
    return {
        "id": completion_id,
        "object": "chat.completion.chunk",
        "created": created if created is not None else int(time.time()),
        "model": model,
        "choices": [
            {
                "index": 0,
                "delta": delta,
                "finish_reason": chunk.finish_reason,
            }
        ],
    }


class ResponseAccumulator:
    """Collects text deltas and generated images from a buffered read."""

    def __init__(self):
        self._parts: List[str] = []
        self.image_url = ""

    def add_text(self, delta: str) -> None:
        self._parts.append(delta)

    def add_image(self, url: str) -> None:
        # The last image wins
        self.image_url = url

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def content(self) -> str:
        """Accumulated text with any generated image appended as markdown."""
        text = self.text
        if not self.image_url:
            return text
        if text:
            return f"{text}\n\n{image_markdown(self.image_url)}"
        return image_markdown(self.image_url)

    def synthesize(self, model: str, image_output: bool) -> Dict[str, Any]:
        """Chat completion, or an image response for image-output models that produced one."""
        if image_output and self.image_url:
            return build_image_response(self.image_url)
        return build_chat_response(model, self.content())
