"""
Provider handle

The map provider (and the HTTP client it owns) is built lazily the first
time something needs it and shared by every request afterwards. The handle
tracks an explicit lifecycle instead of caching a module-level singleton:

    unloaded -> loading -> ready
    unloaded -> loading -> failed   (next acquire() tries again)

Concurrent acquire() calls while a load is in flight all wait on the same
load. Leases are reference counted so aclose() can tell whether anything is
still using the provider.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Awaitable, Callable, Union

from config import CONFIG
from maps import MapProvider, ProviderUnavailable

logger = logging.getLogger(__name__)


class HandleState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


def build_provider() -> MapProvider:
    """Build the provider selected by MAP_PROVIDER."""
    if CONFIG.map_provider == "google":
        from maps.google import GoogleMapsProvider

        if not CONFIG.google_maps_api_key:
            raise ProviderUnavailable("GOOGLE_MAPS_API_KEY not set")
        return GoogleMapsProvider(CONFIG.google_maps_api_key, timeout=CONFIG.http_timeout_sec)

    if CONFIG.map_provider == "amap":
        from maps.amap import AmapProvider

        if not CONFIG.amap_api_key:
            raise ProviderUnavailable("AMAP_API_KEY not set")
        return AmapProvider(CONFIG.amap_api_key, timeout=CONFIG.http_timeout_sec)

    raise ProviderUnavailable(f"Unknown MAP_PROVIDER: {CONFIG.map_provider!r}")


class ProviderHandle:
    def __init__(self, factory: Callable[[], Union[MapProvider, Awaitable[MapProvider]]] = build_provider):
        self._factory = factory
        self._provider: MapProvider | None = None
        self._load_task: asyncio.Task | None = None
        self.state = HandleState.UNLOADED
        self.error: Exception | None = None
        self.refcount = 0

    async def _load(self) -> MapProvider:
        try:
            provider = self._factory()
            if inspect.isawaitable(provider):
                provider = await provider
        except Exception as e:
            self.state = HandleState.FAILED
            self.error = e
            logger.error("Map provider failed to load: %s", e)
            raise
        self._provider = provider
        self.state = HandleState.READY
        self.error = None
        logger.info("Map provider %s ready", provider.name)
        return provider

    async def acquire(self) -> MapProvider:
        if self.state is HandleState.READY and self._provider is not None:
            self.refcount += 1
            return self._provider

        if self._load_task is None or self._load_task.done():
            self.state = HandleState.LOADING
            self._load_task = asyncio.ensure_future(self._load())

        try:
            provider = await asyncio.shield(self._load_task)
        except ProviderUnavailable:
            raise
        except Exception as e:
            raise ProviderUnavailable(str(e)) from e

        self.refcount += 1
        return provider

    def release(self) -> None:
        if self.refcount > 0:
            self.refcount -= 1

    async def aclose(self) -> None:
        if self.refcount:
            logger.warning("Closing map provider with %d active lease(s)", self.refcount)
        if self._provider is not None:
            await self._provider.aclose()
        self._provider = None
        self._load_task = None
        self.state = HandleState.UNLOADED
        self.refcount = 0
