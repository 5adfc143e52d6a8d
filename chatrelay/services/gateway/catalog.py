"""Static provider model catalogs."""
import logging
from types import MappingProxyType
from typing import Iterable, List, Mapping

from chatrelay.services.gateway.errors import UnknownModel
from chatrelay.services.gateway.models import ProviderModel

logger = logging.getLogger(__name__)


class ModelCatalog:
    """Immutable alias -> ProviderModel table, built once per provider.

    Lookups are case-insensitive. The table is never mutated after construction,
    so concurrent readers need no locking.
    """

    def __init__(self, provider: str, models: Iterable[ProviderModel]):
        self.provider = provider
        table = {}
        for model in models:
            key = model.alias.lower()
            if key in table:
                raise ValueError(f"duplicate alias in {provider} catalog: {model.alias}")
            table[key] = model
        self._models: Mapping[str, ProviderModel] = MappingProxyType(table)

    def lookup(self, alias: str) -> ProviderModel:
        """Resolve a public alias.

        Raises:
            UnknownModel: If the alias is not in this catalog
        """
        model = self._models.get((alias or "").strip().lower())
        if model is None:
            raise UnknownModel(alias, self.provider)
        return model

    def __contains__(self, alias: object) -> bool:
        return isinstance(alias, str) and alias.strip().lower() in self._models

    def aliases(self) -> List[str]:
        return sorted(model.alias for model in self._models.values())

    def __len__(self) -> int:
        return len(self._models)


# Juma model and vendor connection UUIDs
_JUMA_OPENAI_CONNECTION = "f5275937-68f8-4bfe-b195-c48f2155263b"
_JUMA_BEDROCK_CONNECTION = "f958317e-9359-42cc-8c45-4ed306bf5f65"
_JUMA_GOOGLE_CONNECTION = "2eb35c4f-3afe-4d12-b953-70b5c8bb643e"
_JUMA_GEMINI_3_PRO = "c073a0c0-e3d0-4e0b-b36c-29584b674125"

JUMA_MODELS = (
    ProviderModel(
        alias="juma-gpt-5.1",
        upstream_id="401637fa-151b-41f5-aa36-5416ad1314fb",
        display_name="GPT-5.1",
        family="OpenAI",
        connection_id=_JUMA_OPENAI_CONNECTION,
    ),
    # Anthropic models via Bedrock
    ProviderModel(
        alias="juma-claude-opus-4.5",
        upstream_id="790cee03-6d71-4b6a-bf86-7781c9592028",
        display_name="Claude Opus 4.5",
        family="Anthropic",
        connection_id=_JUMA_BEDROCK_CONNECTION,
    ),
    ProviderModel(
        alias="juma-gemini-3-pro",
        upstream_id=_JUMA_GEMINI_3_PRO,
        display_name="Gemini 3 Pro",
        family="Google",
        connection_id=_JUMA_GOOGLE_CONNECTION,
    ),
    # Gemini 3 Pro with forced ImageEdit tool use
    ProviderModel(
        alias="juma-nanobanana-pro",
        upstream_id=_JUMA_GEMINI_3_PRO,
        display_name="Nanobanana Pro",
        family="Google",
        connection_id=_JUMA_GOOGLE_CONNECTION,
        forces_image_edit=True,
        image_output=True,
    ),
)

OPENAI_MODELS = (
    ProviderModel(alias="gpt-4o", upstream_id="gpt-4o", display_name="GPT-4o", family="OpenAI"),
    ProviderModel(alias="gpt-4o-mini", upstream_id="gpt-4o-mini", display_name="GPT-4o mini", family="OpenAI"),
    ProviderModel(alias="gpt-4.1", upstream_id="gpt-4.1", display_name="GPT-4.1", family="OpenAI"),
)

JUMA_CATALOG = ModelCatalog("juma", JUMA_MODELS)
OPENAI_CATALOG = ModelCatalog("openai", OPENAI_MODELS)
