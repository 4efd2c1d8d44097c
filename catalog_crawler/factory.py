from __future__ import annotations

import logging
from typing import List, Optional

from .config import CrawlConfig
from .errors import TransportError
from .transport import (
    AnonymizingTransport,
    IdentityProvider,
    ProxyPoolProvider,
    SessionFactory,
    TorIdentityProvider,
)

logger = logging.getLogger(__name__)


class TransportFactory:
    """Builds one identity provider and transport per worker.

    Nothing is shared between the transports it returns: each gets its own
    Tor instance (or its own position in the proxy list) and its own session.
    """

    def __init__(self, config: CrawlConfig, session_factory: Optional[SessionFactory] = None) -> None:
        self._config = config
        self._session_factory = session_factory

    def provider_for(self, index: int) -> IdentityProvider:
        cfg = self._config
        if cfg.proxies:
            # spread workers over the list so they start on different exits
            return ProxyPoolProvider(cfg.proxies, start_index=index)
        socks_port = cfg.tor_port_base + 2 * index
        return TorIdentityProvider(
            socks_port=socks_port,
            control_port=socks_port + 1,
            launch=cfg.launch_tor,
            tor_cmd=cfg.tor_cmd,
            password=cfg.tor_password,
        )

    def create(self, index: int) -> AnonymizingTransport:
        provider = self.provider_for(index)
        provider.start()
        return AnonymizingTransport(
            provider,
            self._config.products_url,
            name=f"worker-{index}",
            timeout=self._config.request_timeout,
            impersonate=self._config.impersonate,
            session_factory=self._session_factory,
        )

    def create_all(self, count: int) -> List[AnonymizingTransport]:
        """Start `count` transports; on any failure, close those already started."""
        transports: List[AnonymizingTransport] = []
        try:
            for i in range(count):
                transports.append(self.create(i))
        except TransportError:
            for t in transports:
                t.close()
            raise
        logger.info("Started %d isolated sessions", len(transports))
        return transports
