import asyncio
import logging
from typing import Dict, Mapping, Optional, Tuple, Type

import httpx

from playbridge.crosscutting.config import Settings
from playbridge.crosscutting.metrics import MetricsCollector
from playbridge.domain.entities import ProviderAuth
from playbridge.domain.errors import ProviderDisabledError, UnsupportedProviderError
from playbridge.domain.ports import KeyValueStore
from playbridge.infrastructure.http.circuit_breaker import CircuitBreakerRegistry
from playbridge.infrastructure.http.transport import ProviderTransport, Sleep

from . import deezer, spotify, tidal, youtube
from .base import RestProvider

logger = logging.getLogger(__name__)

PROVIDERS: Dict[str, Tuple[Type[RestProvider], str]] = {
    "spotify": (spotify.SpotifyProvider, spotify.DEFAULT_BASE_URL),
    "deezer": (deezer.DeezerProvider, deezer.DEFAULT_BASE_URL),
    "tidal": (tidal.TidalProvider, tidal.DEFAULT_BASE_URL),
    "youtube": (youtube.YouTubeProvider, youtube.DEFAULT_BASE_URL),
}


class ProviderRegistry:
    """Builds provider clients by name.

    Every transport created here shares one circuit breaker registry, so a
    provider's breaker is common to all jobs in the process.
    """

    def __init__(self, settings: Optional[Settings] = None,
                 breakers: Optional[CircuitBreakerRegistry] = None,
                 base_url_overrides: Optional[Mapping[str, str]] = None,
                 cache: Optional[KeyValueStore] = None,
                 sleep: Sleep = asyncio.sleep,
                 http_client: Optional[httpx.AsyncClient] = None):
        """Initialize provider registry.

        Args:
            settings: Runtime settings; read from the environment when omitted
            breakers: Shared breaker registry; created from settings when omitted
            base_url_overrides: Provider name -> base URL, e.g. for sandboxes
            cache: Optional GET response cache shared by all transports
            sleep: Async sleep used for backoff waits
            http_client: Optional shared httpx client
        """
        self.settings = settings or Settings.from_env()
        self.breakers = breakers or CircuitBreakerRegistry(
            failure_threshold=self.settings.breaker_threshold,
            cooldown_ms=self.settings.breaker_cooldown_ms,
        )
        self.base_url_overrides = dict(base_url_overrides or {})
        self.cache = cache
        self._sleep = sleep
        self._http_client = http_client

    def supports(self, name: str) -> bool:
        return name in PROVIDERS

    def get_provider(self, name: str, auth: ProviderAuth, *,
                     user_id: Optional[str] = None,
                     metrics: Optional[MetricsCollector] = None) -> RestProvider:
        """Return a provider client for ``name`` authenticated with ``auth``.

        Raises:
            UnsupportedProviderError: If the name is not a known provider
            ProviderDisabledError: If the provider is switched off
        """
        entry = PROVIDERS.get(name)
        if entry is None:
            raise UnsupportedProviderError(f"Unsupported provider: {name}")
        if not self.settings.is_provider_enabled(name):
            raise ProviderDisabledError(f"Provider {name} is disabled")

        provider_cls, default_base_url = entry
        transport = ProviderTransport(
            name,
            auth.token,
            self.base_url_overrides.get(name, default_base_url),
            backoff=self.settings.backoff,
            breaker=self.breakers.get_or_create(name),
            timeout_ms=self.settings.http_timeout_ms,
            cache=self.cache,
            cache_ttl_ms=self.settings.cache_ttl_ms,
            user_id=user_id,
            metrics=metrics,
            sleep=self._sleep,
            http_client=self._http_client,
        )
        logger.debug(f"Created {name} provider client")
        return provider_cls(transport, batch_size=self.settings.batch_size, metrics=metrics)

    __call__ = get_provider
