"""Proxy-aware HTTP client factory.

One ``httpx.AsyncClient`` (and so one connection pool) is shared per proxy URL.
Executors borrow clients per call and never close them; the application closes
the factory on shutdown.
"""
import asyncio
import logging
from typing import Dict, Optional, Protocol

import httpx

from chatrelay.core.config import Settings, settings as default_settings
from chatrelay.services.gateway.models import Credential

logger = logging.getLogger(__name__)

# Credential attribute that overrides the configured proxy for one account
PROXY_ATTRIBUTE = "proxy_url"


class ClientFactory(Protocol):
    async def get_client(self, credential: Optional[Credential] = None) -> httpx.AsyncClient:
        ...


class ProxyAwareClientFactory:
    """Lazily creates and caches one AsyncClient per proxy URL."""

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or default_settings
        self._clients: Dict[str, httpx.AsyncClient] = {}
        self._lock: Optional[asyncio.Lock] = None

    def _limits(self) -> httpx.Limits:
        return httpx.Limits(
            max_connections=max(10, int(self.config.UPSTREAM_MAX_CONNECTIONS)),
            max_keepalive_connections=max(5, int(self.config.UPSTREAM_MAX_KEEPALIVE_CONNECTIONS)),
        )

    def _timeout(self) -> httpx.Timeout:
        timeout = float(self.config.UPSTREAM_TIMEOUT_SECONDS)
        return httpx.Timeout(connect=timeout, read=timeout, write=timeout, pool=timeout)

    def _proxy_for(self, credential: Optional[Credential]) -> str:
        if credential is not None and credential.get(PROXY_ATTRIBUTE):
            return credential.get(PROXY_ATTRIBUTE)
        return self.config.PROXY_URL or ""

    async def get_client(self, credential: Optional[Credential] = None) -> httpx.AsyncClient:
        proxy = self._proxy_for(credential)
        client = self._clients.get(proxy)
        if client is not None:
            return client
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            client = self._clients.get(proxy)
            if client is None:
                client = httpx.AsyncClient(
                    proxy=proxy or None,
                    timeout=self._timeout(),
                    limits=self._limits(),
                    follow_redirects=True,
                )
                self._clients[proxy] = client
                logger.info(f"Created upstream HTTP client (proxy={'yes' if proxy else 'no'})")
        return client

    async def aclose(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()


class StaticClientFactory:
    """Factory that always hands out the same client (tests, embedding)."""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def get_client(self, credential: Optional[Credential] = None) -> httpx.AsyncClient:
        return self.client
