"""Credential resolvers for the gateway."""
from chatrelay.services.gateway.auth.direct import DirectAuthenticator
from chatrelay.services.gateway.auth.session import JumaSession, SessionAuthenticator

__all__ = [
    "DirectAuthenticator",
    "JumaSession",
    "SessionAuthenticator",
]
