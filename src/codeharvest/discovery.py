"""Model discovery with a per-instance TTL cache.

Adapters that can list their models expose ``async discover_models()``.
``ModelDiscovery`` caches each provider's list for ``ttl_s`` seconds and
coalesces concurrent lookups for the same provider into one call. Failures
are raised; there is no fallback to a static model list.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import time
from typing import TYPE_CHECKING, Any, Literal

from codeharvest._singleflight import singleflight
from codeharvest.errors import ProviderError, TransientProviderError

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

logger = logging.getLogger(__name__)

#: 24 hours
DEFAULT_TTL_S = 24 * 60 * 60.0
DEFAULT_TIMEOUT_S = 10.0


@dataclass(frozen=True)
class DiscoveryResult:
    """Models for one provider and where they came from."""

    models: tuple[str, ...]
    source: Literal["cache", "api"]
    fetched_at: float


@dataclass(frozen=True)
class _Entry:
    models: tuple[str, ...]
    fetched_at: float
    expires_at: float


@dataclass
class ModelDiscovery:
    """Caches discovered model lists per provider.

    The cache belongs to the instance; tests and applications create their
    own. ``clock`` is injectable so expiry can be tested without sleeping.
    """

    ttl_s: float = DEFAULT_TTL_S
    clock: Callable[[], float] = time.monotonic
    timeout_s: float = DEFAULT_TIMEOUT_S
    _entries: dict[str, _Entry] = field(default_factory=dict, repr=False)
    _inflight: dict[str, asyncio.Future[tuple[str, ...]]] = field(
        default_factory=dict, repr=False
    )

    def __post_init__(self) -> None:
        """Validate TTL and timeout."""
        if self.ttl_s < 0:
            raise ValueError("ModelDiscovery.ttl_s must be >= 0")
        if self.timeout_s <= 0:
            raise ValueError("ModelDiscovery.timeout_s must be > 0")

    def _cached(self, provider: str) -> _Entry | None:
        entry = self._entries.get(provider)
        if entry is None:
            return None
        if self.clock() >= entry.expires_at:
            del self._entries[provider]
            return None
        return entry

    async def get_models(
        self,
        provider: str,
        adapter: Any,
        *,
        force_refresh: bool = False,
        skip_cache: bool = False,
    ) -> DiscoveryResult:
        """Return the models for *provider*, from cache when still fresh.

        Args:
            provider: Cache key, usually the adapter name.
            adapter: Object exposing ``async discover_models() -> list[str]``.
            force_refresh: Ignore the cached entry but store the fresh one.
            skip_cache: Neither read nor write the cache.

        Raises:
            ProviderError: The adapter cannot list models (not retryable).
            TransientProviderError: Discovery failed or timed out.
        """
        if not (force_refresh or skip_cache):
            entry = self._cached(provider)
            if entry is not None:
                logger.debug(
                    "Using cached models provider=%s count=%d",
                    provider,
                    len(entry.models),
                )
                return DiscoveryResult(
                    models=entry.models, source="cache", fetched_at=entry.fetched_at
                )

        discover = getattr(adapter, "discover_models", None)
        if discover is None:
            raise ProviderError(
                f"Provider {provider!r} does not support model discovery",
                retryable=False,
                provider=provider,
                phase="discover",
            )

        models = await singleflight(
            provider,
            inflight=self._inflight,
            work=lambda: self._fetch(provider, discover),
        )
        fetched_at = self.clock()
        if not skip_cache:
            self._entries[provider] = _Entry(
                models=models, fetched_at=fetched_at, expires_at=fetched_at + self.ttl_s
            )
        return DiscoveryResult(models=models, source="api", fetched_at=fetched_at)

    async def _fetch(self, provider: str, discover: Any) -> tuple[str, ...]:
        logger.debug("Discovering models provider=%s", provider)
        try:
            models = await asyncio.wait_for(discover(), timeout=self.timeout_s)
        except asyncio.CancelledError:
            raise
        except (TimeoutError, asyncio.TimeoutError) as exc:
            raise TransientProviderError(
                f"Model discovery timed out after {self.timeout_s}s",
                provider=provider,
                phase="discover",
            ) from exc
        except Exception as exc:
            raise TransientProviderError(
                f"Model discovery failed for {provider}: {exc}",
                provider=provider,
                phase="discover",
            ) from exc
        logger.info("Discovered %d model(s) provider=%s", len(models), provider)
        return tuple(models)

    async def refresh_all(
        self, adapters: Mapping[str, Any]
    ) -> dict[str, DiscoveryResult | BaseException]:
        """Force-refresh every provider concurrently; failures are returned, not raised."""
        names = list(adapters)
        results = await asyncio.gather(
            *(self.get_models(name, adapters[name], force_refresh=True) for name in names),
            return_exceptions=True,
        )
        return dict(zip(names, results, strict=True))

    def clear(self, provider: str | None = None) -> None:
        """Drop one provider's entry, or every entry."""
        if provider is None:
            self._entries.clear()
        else:
            self._entries.pop(provider, None)

    def stats(self) -> dict[str, Any]:
        """Snapshot of the cache: per-provider freshness and model counts."""
        now = self.clock()
        providers = {
            name: {
                "valid": now < entry.expires_at,
                "model_count": len(entry.models),
                "fetched_at": entry.fetched_at,
                "expires_at": entry.expires_at,
                "ttl_s": max(0.0, entry.expires_at - now),
            }
            for name, entry in self._entries.items()
        }
        return {"total_providers": len(providers), "providers": providers}
