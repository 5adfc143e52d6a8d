"""Gateway service modules."""
from chatrelay.services.gateway.router import (
    get_available_models,
    get_available_providers,
    get_executor,
    resolve_provider,
)

__all__ = [
    "get_available_models",
    "get_available_providers",
    "get_executor",
    "resolve_provider",
]
