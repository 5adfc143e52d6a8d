"""Juma event stream translator."""
import json
import logging
from typing import Optional

from chatrelay.services.gateway.models import StreamEvent
from chatrelay.services.gateway.streaming import BaseStreamTranslator
from chatrelay.services.gateway.synthesizer import (
    ResponseAccumulator,
    image_markdown,
    transform_generated_image_tags,
)

logger = logging.getLogger(__name__)

TEXT_DELTA = "text-delta"
TOOL_OUTPUT_AVAILABLE = "tool-output-available"


def parse_event(data: str) -> Optional[StreamEvent]:
    """Parse one ``data:`` payload; None when it is not a JSON object."""
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        logger.warning(f"Juma stream: skipping non-JSON event: {data[:200]}")
        return None
    if not isinstance(payload, dict):
        logger.warning(f"Juma stream: skipping non-object event: {data[:200]}")
        return None
    return StreamEvent(type=str(payload.get("type") or ""), payload=payload)


def tool_output_image_url(event: StreamEvent) -> str:
    output = event.payload.get("output")
    if not isinstance(output, dict):
        return ""
    url = output.get("imageUrl")
    return url if isinstance(url, str) else ""


class JumaStreamTranslator(BaseStreamTranslator):
    """Maps Juma events to canonical chunks.

    ``text-delta`` events become one chunk each, with inline generated-image
    tags rewritten to markdown. ``tool-output-available`` events that carry an
    image URL become one synthetic markdown chunk. Other events are ignored.
    """

    def __init__(self, max_line_bytes: int = 20 * 1024 * 1024, accumulator: Optional[ResponseAccumulator] = None):
        super().__init__(max_line_bytes)
        self.accumulator = accumulator

    def handle_data(self, data: str) -> None:
        event = parse_event(data)
        if event is None:
            return
        if event.type == TEXT_DELTA:
            delta = event.payload.get("delta")
            delta = delta if isinstance(delta, str) else ""
            if self.accumulator is not None:
                self.accumulator.add_text(delta)
            self.emit(transform_generated_image_tags(delta))
        elif event.type == TOOL_OUTPUT_AVAILABLE:
            url = tool_output_image_url(event)
            if not url:
                return
            if self.accumulator is not None:
                self.accumulator.add_image(url)
            self.emit(f"\n\n{image_markdown(url)}")
        else:
            logger.debug(f"Juma stream: ignoring event type {event.type or '-'}")
