"""Provider executors."""
from chatrelay.services.gateway.executors.base import BaseExecutor
from chatrelay.services.gateway.executors.juma import JumaExecutor
from chatrelay.services.gateway.executors.openai import OpenAIExecutor

__all__ = [
    "BaseExecutor",
    "JumaExecutor",
    "OpenAIExecutor",
]
