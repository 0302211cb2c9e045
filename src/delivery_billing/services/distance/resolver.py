"""Cached distance resolution between two postal addresses."""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Callable, Optional, Protocol, TypeVar

from ...config import settings
from ...errors import ConfigError, InvalidInput, ResolutionError
from ...models.domain import CacheStatus, DistanceResult, RouteCacheEntry
from ...persistence import route_cache
from .google_client import DistanceMatrixClient, ProviderRoute

logger = logging.getLogger(__name__)

T = TypeVar("T")

_WHITESPACE = re.compile(r"\s+")

# Cache calls run here so a hung database call can be abandoned after the timeout.
_CACHE_EXECUTOR = ThreadPoolExecutor(max_workers=4, thread_name_prefix="route-cache")


class RouteProvider(Protocol):
    def route(self, origin: str, destination: str) -> ProviderRoute: ...


def normalize_address(value: str | None) -> str:
    """Trim, collapse inner whitespace and case-fold an address."""
    return _WHITESPACE.sub(" ", (value or "").strip()).casefold()


class DistanceResolver:
    """Resolve driving distances through ``route_cache`` and a routing provider.

    ``ok`` cache rows are served directly. ``error`` rows are a negative
    cache: the stored message is raised without calling the provider again.
    Cache reads and writes are best effort and bounded by ``cache_timeout``.
    """

    def __init__(
        self,
        provider: RouteProvider | None = None,
        cache_timeout: float | None = None,
    ) -> None:
        self._provider = provider
        self.cache_timeout = cache_timeout if cache_timeout is not None else settings.cache_timeout_seconds

    @property
    def provider(self) -> RouteProvider:
        if self._provider is None:
            self._provider = DistanceMatrixClient()
        return self._provider

    def _bounded(self, fn: Callable[[], T], label: str) -> T:
        future = _CACHE_EXECUTOR.submit(fn)
        try:
            return future.result(timeout=self.cache_timeout)
        except FutureTimeout as exc:
            future.cancel()
            raise TimeoutError(f"TIMEOUT_{label}_{self.cache_timeout}s") from exc

    def _lookup(self, origin_norm: str, destination_norm: str) -> Optional[RouteCacheEntry]:
        try:
            return self._bounded(lambda: route_cache.fetch_entry(origin_norm, destination_norm), "CACHE_LOOKUP")
        except Exception as e:
            logger.warning(f"Route cache lookup skipped: {e}")
            return None

    def _store(self, entry: RouteCacheEntry, label: str) -> None:
        try:
            self._bounded(lambda: route_cache.upsert_entry(entry), label)
        except Exception as e:
            logger.warning(f"Route cache upsert skipped ({label}): {e}")

    def resolve(self, origin: str, destination: str) -> DistanceResult:
        origin_norm = normalize_address(origin)
        destination_norm = normalize_address(destination)
        if not origin_norm or not destination_norm:
            raise InvalidInput("Origin or destination address is empty.")

        cached = self._lookup(origin_norm, destination_norm)
        if cached is not None:
            if cached.status is CacheStatus.OK and cached.distance_meters and cached.distance_meters > 0:
                return DistanceResult(km=float(cached.distance_meters) / 1000.0, from_cache=True)
            if cached.status is CacheStatus.ERROR:
                raise ResolutionError(cached.error_message or "Cached distance lookup error", from_cache=True)

        try:
            route = self.provider.route(origin, destination)
            if route.distance_meters is None or route.distance_meters <= 0:
                raise ResolutionError("Google Distance Matrix: DISTANCE_INVALID")
        except ConfigError:
            raise
        except Exception as exc:
            error = exc if isinstance(exc, ResolutionError) else ResolutionError(str(exc) or type(exc).__name__)
            self._store(
                RouteCacheEntry(
                    origin_norm=origin_norm,
                    destination_norm=destination_norm,
                    status=CacheStatus.ERROR,
                    error_message=str(error),
                ),
                "CACHE_UPSERT_ERROR",
            )
            if error is exc:
                raise
            raise error from exc

        self._store(
            RouteCacheEntry(
                origin_norm=origin_norm,
                destination_norm=destination_norm,
                status=CacheStatus.OK,
                distance_meters=route.distance_meters,
                duration_seconds=route.duration_seconds,
            ),
            "CACHE_UPSERT_OK",
        )
        return DistanceResult(km=route.distance_meters / 1000.0, from_cache=False)
