"""Request/stream translators for the gateway."""
from chatrelay.services.gateway.translators.base import BaseTranslator
from chatrelay.services.gateway.translators.juma import JumaTranslator
from chatrelay.services.gateway.translators.juma_stream import JumaStreamTranslator
from chatrelay.services.gateway.translators.openai import OpenAIStreamTranslator, OpenAITranslator

__all__ = [
    "BaseTranslator",
    "JumaTranslator",
    "JumaStreamTranslator",
    "OpenAIStreamTranslator",
    "OpenAITranslator",
]
