"""Direct API key passthrough authenticator."""
import logging
from typing import Optional

from chatrelay.core.config import Settings, settings as default_settings
from chatrelay.services.gateway.audit import mask_secret
from chatrelay.services.gateway.models import Credential

logger = logging.getLogger(__name__)

API_KEY = "api_key"


class DirectAuthenticator:
    """Authenticator for bearer API keys (OpenAI-compatible upstreams).

    Uses the caller's ``Authorization: Bearer`` key when present, otherwise the
    configured ``OPENAI_API_KEY``.
    """

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or default_settings

    async def get_credential(self, auth_header: Optional[str] = None) -> Optional[Credential]:
        """Get the API key credential.

        Args:
            auth_header: Raw Authorization header from the caller

        Returns:
            Credential carrying ``api_key``, or None when no key is available
        """
        key = ""
        source = "caller"
        if auth_header:
            scheme, _, value = auth_header.strip().partition(" ")
            if scheme.lower() == "bearer":
                key = value.strip()
            elif not value:
                # Bare key without a scheme
                key = scheme
        if not key:
            key = self.config.OPENAI_API_KEY.strip()
            source = "settings"
        if not key:
            return None

        logger.debug(f"Using API key from {source}: {mask_secret(key)}")
        return Credential(
            attributes={API_KEY: key},
            id=f"openai-{source}",
            label=f"api key ({source})",
            account_type="api_key",
            account_value=mask_secret(key),
        )

    async def refresh(self, credential: Credential) -> Credential:
        """Refresh (no-op for static API keys)."""
        return credential
