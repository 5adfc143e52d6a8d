"""Base translator interface."""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

from chatrelay.services.gateway.models import CanonicalRequest, ProviderModel
from chatrelay.services.gateway.streaming import BaseStreamTranslator
from chatrelay.services.gateway.synthesizer import ResponseAccumulator


class BaseTranslator(ABC):
    """Base class for request/stream translators.

    A translator instance serves a single executor call; any per-request state
    (uploaded assets, for example) lives on the instance.
    """

    @abstractmethod
    async def transform_request(
        self,
        request: CanonicalRequest,
        model: ProviderModel,
        stream: bool = False,
    ) -> Tuple[str, Dict[str, Any], Dict[str, str]]:
        """
        Transform a canonical request to the provider-native format.

        Args:
            request: Canonical request
            model: Resolved catalog entry
            stream: Whether the upstream call will be read as a stream

        Returns:
            Tuple of (url, payload, headers)
        """
        pass

    @abstractmethod
    def create_stream_translator(
        self,
        max_line_bytes: int,
        accumulator: Optional[ResponseAccumulator] = None,
    ) -> BaseStreamTranslator:
        """
        Build the incremental parser for this provider's event stream.

        Args:
            max_line_bytes: Longest accepted event line
            accumulator: Optional sink for buffered reads

        Returns:
            Fresh stream translator in the Connecting state
        """
        pass
