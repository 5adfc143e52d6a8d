"""Juma session-cookie credentials."""
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from chatrelay.core.config import Settings, settings as default_settings
from chatrelay.services.gateway.audit import mask_secret
from chatrelay.services.gateway.models import Credential

logger = logging.getLogger(__name__)

SESSION_COOKIE = "__Secure-next-auth.session-token"

# Credential attribute keys
SESSION_TOKEN = "session_token"
WORKSPACE_ID = "workspace_id"
VENDOR_CONNECTION_ID = "vendor_connection_id"


@dataclass(frozen=True)
class JumaSession:
    """Session attributes read from a Credential."""
    session_token: str
    workspace_id: str = ""
    vendor_connection_id: str = ""

    @classmethod
    def from_credential(cls, credential: Optional[Credential]) -> "JumaSession":
        if credential is None:
            return cls(session_token="")
        return cls(
            session_token=credential.get(SESSION_TOKEN),
            workspace_id=credential.get(WORKSPACE_ID),
            vendor_connection_id=credential.get(VENDOR_CONNECTION_ID),
        )

    def headers(self, base_url: str, user_agent: str) -> Dict[str, str]:
        """Browser-like header set carrying the session cookie."""
        return {
            "Content-Type": "application/json",
            "Accept": "*/*",
            "Origin": base_url,
            "User-Agent": user_agent,
            "Cookie": f"{SESSION_COOKIE}={self.session_token}",
        }


class SessionAuthenticator:
    """Resolves a Juma credential from caller headers, falling back to settings.

    Caller-supplied values win per attribute. Returns None when no session token
    is available from either source.
    """

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or default_settings

    async def get_credential(
        self,
        session_token: Optional[str] = None,
        workspace_id: Optional[str] = None,
        vendor_connection_id: Optional[str] = None,
    ) -> Optional[Credential]:
        """
        Build the credential for one call.

        Args:
            session_token: Value of the X-Juma-Session-Token header
            workspace_id: Value of the X-Juma-Workspace-Id header
            vendor_connection_id: Value of the X-Juma-Vendor-Connection-Id header

        Returns:
            Credential, or None when no session token is configured
        """
        token = (session_token or "").strip()
        source = "caller"
        if not token:
            token = self.config.JUMA_SESSION_TOKEN.strip()
            source = "settings"
        if not token:
            logger.debug("No Juma session token from caller or settings")
            return None

        attributes = {
            SESSION_TOKEN: token,
            WORKSPACE_ID: (workspace_id or "").strip() or self.config.JUMA_WORKSPACE_ID,
            VENDOR_CONNECTION_ID: (vendor_connection_id or "").strip() or self.config.JUMA_VENDOR_CONNECTION_ID,
        }
        logger.debug(f"Using Juma session from {source}: {mask_secret(token)}")
        return Credential(
            attributes=attributes,
            id=f"juma-{source}",
            label=f"juma session ({source})",
            account_type="workspace",
            account_value=attributes[WORKSPACE_ID],
        )

    async def refresh(self, credential: Credential) -> Credential:
        """Session tokens have no server-side renewal."""
        return credential
