"""Process-wide cache of the payment provider's public configuration.

This is the only state shared between purchase flows. The first caller starts
one fetch; everyone arriving while it runs awaits the same future. The result
(configured, fallback or unconfigured) is kept for the life of the process.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from certconsole.core.errors import PaymentFlowError
from certconsole.core.logging_setup import mask_key
from certconsole.integrations.backend_client import ConsoleApiClient, decode_response
from certconsole.schemas.provider import ConfigSource, ProviderConfigResponse, ProviderPublicConfig

logger = logging.getLogger(__name__)

ConfigFetcher = Callable[[], Awaitable[ProviderPublicConfig]]


class ProviderConfigCache:
    def __init__(self, fetch: ConfigFetcher, *, fallback_key: str | None = None):
        self._fetch = fetch
        self._fallback_key = (fallback_key or "").strip() or None
        self._config: ProviderPublicConfig | None = None
        self._pending: asyncio.Future[ProviderPublicConfig] | None = None

    @property
    def loaded(self) -> bool:
        return self._config is not None

    def init(self) -> None:
        """Start the fetch without waiting for it (e.g. at app startup)."""
        if self._config is None:
            self._start()

    def _start(self) -> asyncio.Future[ProviderPublicConfig]:
        if self._pending is None:
            self._pending = asyncio.ensure_future(self._load())
        return self._pending

    async def get_config(self) -> ProviderPublicConfig:
        if self._config is not None:
            return self._config
        pending = self._start()
        try:
            # shield: one impatient caller must not cancel the fetch for the others
            return await asyncio.shield(pending)
        except Exception:
            if self._pending is pending and pending.done():
                self._pending = None
            raise

    get = get_config

    def reset(self) -> None:
        """Forget the cached result. Test isolation only."""
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None
        self._config = None

    async def _load(self) -> ProviderPublicConfig:
        try:
            config = await self._fetch()
            if config.is_configured:
                logger.info("Provider config loaded from backend (key=%s)", mask_key(config.publishable_key))
            else:
                logger.warning("Card payments are not configured on the backend")
        except (PaymentFlowError, OSError) as e:
            logger.error("Failed to load provider config from backend: %s", e)
            config = self._fallback()
        self._config = config
        return config

    def _fallback(self) -> ProviderPublicConfig:
        if self._fallback_key:
            logger.warning("Using fallback publishable key from settings (key=%s)", mask_key(self._fallback_key))
            return ProviderPublicConfig(
                is_configured=True,
                publishable_key=self._fallback_key,
                source=ConfigSource.FALLBACK,
            )
        return ProviderPublicConfig.unconfigured()


PROVIDER_CONFIG_PATH = "/stripe/config"


def backend_config_fetcher(client: ConsoleApiClient, path: str = PROVIDER_CONFIG_PATH) -> ConfigFetcher:
    async def _fetch() -> ProviderPublicConfig:
        body = await client.get_json(path)
        return decode_response(ProviderConfigResponse, body, what="provider config").to_config()

    return _fetch
