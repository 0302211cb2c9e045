"""HTTP client for the Google Distance Matrix service."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from ...config import settings
from ...errors import ConfigError, ResolutionError

logger = logging.getLogger(__name__)

PROVIDER_LABEL = "Google Distance Matrix"


@dataclass(slots=True)
class ProviderRoute:
    distance_meters: float
    duration_seconds: Optional[float]


class DistanceMatrixClient:
    """Fetches one origin/destination pair from the Distance Matrix API.

    Provider status errors (``NOT_FOUND``, ``ZERO_RESULTS``, quota errors...)
    are raised as :class:`ResolutionError` straight away. Only transport
    errors are retried, and only ``max_retries`` times.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        mode: str | None = None,
        language: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.google_maps_api_key
        self.base_url = base_url or settings.distance_matrix_url
        self.mode = mode or settings.routing_mode
        self.language = language or settings.routing_language
        self.timeout = timeout if timeout is not None else settings.routing_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.routing_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.routing_backoff_seconds
        self._transport = transport

    def _get_client(self) -> httpx.Client:
        return httpx.Client(
            timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 10.0)),
            transport=self._transport,
        )

    def route(self, origin: str, destination: str) -> ProviderRoute:
        if not self.api_key:
            raise ConfigError("GOOGLE_MAPS_API_KEY is missing (set BILLING_GOOGLE_MAPS_API_KEY).")

        params = {
            "origins": origin,
            "destinations": destination,
            "key": self.api_key,
            "mode": self.mode,
            "language": self.language,
            "units": "metric",
        }

        client = self._get_client()
        try:
            attempt = 0
            while True:
                try:
                    response = client.get(self.base_url, params=params)
                    response.raise_for_status()
                    data = response.json()
                    break
                except (httpx.TimeoutException, httpx.NetworkError) as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise ResolutionError(f"{PROVIDER_LABEL}: {type(e).__name__}: {e}") from e
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"Distance Matrix transport error, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries}): {e}")
                    time.sleep(wait_time)
                except httpx.HTTPStatusError as e:
                    raise ResolutionError(f"{PROVIDER_LABEL}: HTTP {e.response.status_code}") from e
                except (httpx.HTTPError, ValueError) as e:
                    raise ResolutionError(f"{PROVIDER_LABEL}: {e}") from e
        finally:
            client.close()

        return parse_distance_matrix(data)


def parse_distance_matrix(data: dict) -> ProviderRoute:
    """Extract the single element of a 1x1 Distance Matrix response."""
    if not isinstance(data, dict):
        raise ResolutionError(f"{PROVIDER_LABEL}: UNKNOWN_ERROR")
    rows = data.get("rows") or []
    elements = (rows[0].get("elements") or []) if isinstance(rows[0] if rows else None, dict) else []
    element = elements[0] if elements and isinstance(elements[0], dict) else None

    global_status = data.get("status")
    element_status = element.get("status") if element else None

    if not element or element_status != "OK" or global_status != "OK":
        message = str(element_status or global_status or "UNKNOWN_ERROR")
        raise ResolutionError(f"{PROVIDER_LABEL}: {message}")

    meters = _as_float((element.get("distance") or {}).get("value"))
    if meters is None or meters <= 0:
        raise ResolutionError(f"{PROVIDER_LABEL}: DISTANCE_INVALID")

    seconds = _as_float((element.get("duration") or {}).get("value"))

    return ProviderRoute(distance_meters=meters, duration_seconds=seconds)


def _as_float(value: object) -> Optional[float]:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def check_health(api_key: str | None = None) -> bool:
    """Whether a provider credential is configured. Does not spend a billed call."""
    return bool(api_key or settings.google_maps_api_key)
