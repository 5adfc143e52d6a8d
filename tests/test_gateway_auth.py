"""Tests for gateway authentication adapters."""
import pytest

from chatrelay.core.config import Settings
from chatrelay.services.gateway.auth.direct import DirectAuthenticator
from chatrelay.services.gateway.auth.session import JumaSession, SessionAuthenticator
from chatrelay.services.gateway.models import Credential


# ===== Direct Authenticator Tests =====

@pytest.mark.asyncio
async def test_direct_auth_with_bearer(config):
    """Test direct auth extracts API key from Bearer header."""
    credential = await DirectAuthenticator(config).get_credential("Bearer sk-test123")
    assert credential.get("api_key") == "sk-test123"
    assert credential.id == "openai-caller"


@pytest.mark.asyncio
async def test_direct_auth_without_bearer(config):
    """Test direct auth works without Bearer prefix."""
    credential = await DirectAuthenticator(config).get_credential("sk-test123")
    assert credential.get("api_key") == "sk-test123"


@pytest.mark.asyncio
async def test_direct_auth_falls_back_to_settings():
    """Test the configured key is used when the caller sends none."""
    auth = DirectAuthenticator(Settings(OPENAI_API_KEY="sk-configured-key"))
    credential = await auth.get_credential(None)
    assert credential.get("api_key") == "sk-configured-key"
    assert credential.id == "openai-settings"
    assert "configured" not in credential.account_value


@pytest.mark.asyncio
async def test_direct_auth_missing(config):
    """Test no header and no configured key gives no credential."""
    auth = DirectAuthenticator(config)
    assert await auth.get_credential(None) is None
    assert await auth.get_credential("Bearer ") is None
    assert await auth.get_credential("Basic dXNlcjpwYXNz") is None


@pytest.mark.asyncio
async def test_direct_auth_refresh(config):
    """Test direct auth refresh returns same credential."""
    auth = DirectAuthenticator(config)
    credential = await auth.get_credential("Bearer sk-test123")
    assert await auth.refresh(credential) is credential


# ===== Session Authenticator Tests =====

@pytest.mark.asyncio
async def test_session_auth_from_caller(config):
    """Test caller headers build the session credential."""
    credential = await SessionAuthenticator(config).get_credential(" tok-1 ", "ws-9", "vc-3")
    session = JumaSession.from_credential(credential)
    assert session == JumaSession(session_token="tok-1", workspace_id="ws-9", vendor_connection_id="vc-3")
    assert credential.account_info() == ("workspace", "ws-9")


@pytest.mark.asyncio
async def test_session_auth_settings_fallback():
    """Test settings fill in attributes the caller did not send."""
    config = Settings(
        JUMA_SESSION_TOKEN="configured-token",
        JUMA_WORKSPACE_ID="ws-default",
        JUMA_VENDOR_CONNECTION_ID="vc-default",
    )
    credential = await SessionAuthenticator(config).get_credential(None, "ws-caller", None)
    assert credential.get("session_token") == "configured-token"
    assert credential.get("workspace_id") == "ws-caller"
    assert credential.get("vendor_connection_id") == "vc-default"
    assert credential.id == "juma-settings"


@pytest.mark.asyncio
async def test_session_auth_missing(config):
    """Test no token from either source gives no credential."""
    assert await SessionAuthenticator(config).get_credential(None) is None
    assert await SessionAuthenticator(config).get_credential("   ") is None


def test_session_headers():
    """Test the browser-like header set carries the session cookie."""
    headers = JumaSession(session_token="abc").headers("https://juma.test", "agent/1.0")
    assert headers["Cookie"] == "__Secure-next-auth.session-token=abc"
    assert headers["Origin"] == "https://juma.test"
    assert headers["User-Agent"] == "agent/1.0"
    assert headers["Accept"] == "*/*"


def test_session_from_missing_credential():
    """Test an absent credential yields an empty session."""
    assert JumaSession.from_credential(None).session_token == ""
    assert JumaSession.from_credential(Credential()).workspace_id == ""
