"""Gateway router: provider dispatch for executors."""
import logging
from typing import Dict, List, Optional, Type

from chatrelay.core.config import Settings
from chatrelay.services.gateway.audit import SafeAuditRecorder
from chatrelay.services.gateway.errors import UnknownModel
from chatrelay.services.gateway.executors.base import BaseExecutor
from chatrelay.services.gateway.executors.juma import JumaExecutor
from chatrelay.services.gateway.executors.openai import OpenAIExecutor
from chatrelay.services.gateway.reporting import UsageReporter
from chatrelay.services.gateway.transport import ClientFactory

logger = logging.getLogger(__name__)

EXECUTOR_CLASSES: Dict[str, Type[BaseExecutor]] = {
    JumaExecutor.provider: JumaExecutor,
    OpenAIExecutor.provider: OpenAIExecutor,
}


def normalize_provider(provider: str) -> str:
    """
    Normalize and validate a provider key.

    Raises:
        ValueError: If the provider is not recognized
    """
    key = (provider or "").strip().lower()
    if key not in EXECUTOR_CLASSES:
        raise ValueError(f"Unknown provider: '{provider}'. Supported providers: {', '.join(get_available_providers())}")
    return key


def get_executor(
    provider: str,
    client_factory: ClientFactory,
    reporter: Optional[UsageReporter] = None,
    audit: Optional[SafeAuditRecorder] = None,
    config: Optional[Settings] = None,
) -> BaseExecutor:
    """
    Build the executor for a provider key.

    Args:
        provider: Provider name ("juma", "openai")
        client_factory: Shared HTTP client factory
        reporter: Usage reporter (defaults to logging)
        audit: Audit recorder (defaults to a no-op recorder)
        config: Settings override

    Returns:
        Executor instance

    Raises:
        ValueError: If the provider is not recognized
    """
    executor_cls = EXECUTOR_CLASSES[normalize_provider(provider)]
    return executor_cls(client_factory, reporter=reporter, audit=audit, config=config)


def resolve_provider(model_alias: str, provider: Optional[str] = None) -> str:
    """
    Find the provider that serves a model alias.

    An explicit provider wins; the alias is then checked by that provider's
    executor. Otherwise every catalog is searched.

    Args:
        model_alias: Public model alias (e.g., "juma-gpt-5.1")
        provider: Optional explicit provider name

    Returns:
        Provider key

    Raises:
        ValueError: If an explicit provider is not recognized
        UnknownModel: If no catalog owns the alias
    """
    if provider:
        return normalize_provider(provider)
    for key, executor_cls in EXECUTOR_CLASSES.items():
        if model_alias in executor_cls.catalog:
            logger.debug(f"Resolved model {model_alias} to provider {key}")
            return key
    raise UnknownModel(model_alias)


def get_available_providers() -> List[str]:
    return sorted(EXECUTOR_CLASSES)


def get_available_models(provider: Optional[str] = None) -> List[str]:
    """
    Get list of available model aliases, optionally filtered by provider.

    Args:
        provider: Optional provider name to filter by

    Returns:
        Sorted list of aliases
    """
    if provider:
        return EXECUTOR_CLASSES[normalize_provider(provider)].catalog.aliases()
    return sorted(alias for cls in EXECUTOR_CLASSES.values() for alias in cls.catalog.aliases())
