"""
Static target fetcher.

Serves one exporter at a fixed URL through a single-flight cache.
"""

from __future__ import annotations

import asyncio
import time

import httpx
import structlog

from filterproxy.cache import Clock, SingleFlightCache
from filterproxy.clients.upstream import build_client, fetch_metrics
from filterproxy.core.errors import UpstreamFetchError
from filterproxy.metrics.models import MetricFamily
from filterproxy.targets.base import (
    METRICS_PATH_LABEL,
    PUBLIC_METRICS_PATH_LABEL,
    DiscoveryEntry,
    MetricsFetcher,
)

logger = structlog.get_logger()


class StaticFetcher(MetricsFetcher):
    """Fetcher for an exporter with a fixed URL."""

    kind = "static"

    def __init__(
        self,
        url: str,
        *,
        auth_token: str = "",
        refresh_interval: float = 0.0,
        insecure_skip_verify: bool = False,
        http_timeout: float = 5.0,
        fetch_timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.url = url
        self._auth_token = auth_token
        self._fetch_timeout = fetch_timeout
        self._owns_client = client is None
        self._client = client or build_client(
            timeout=http_timeout,
            insecure_skip_verify=insecure_skip_verify,
        )
        self._cache: SingleFlightCache[list[MetricFamily]] = SingleFlightCache(
            [],
            refresh_interval,
            clock=clock,
            name=url,
        )

    @property
    def cache(self) -> SingleFlightCache[list[MetricFamily]]:
        return self._cache

    async def fetch_metrics(self) -> list[MetricFamily]:
        """
        Fetch and decode the metrics of the configured exporter.

        Calls within the refresh interval of the last successful fetch are
        answered from the cache, so only the first of them reaches the
        exporter.
        """
        try:
            async with asyncio.timeout(self._fetch_timeout):
                return await self._cache.get_or_refresh(self._refresh)
        except TimeoutError as exc:
            raise UpstreamFetchError(
                f"fetching {self.url} timed out after {self._fetch_timeout}s",
                details={"url": self.url},
            ) from exc

    async def _refresh(self) -> list[MetricFamily]:
        return await fetch_metrics(self._client, self.url, self._auth_token)

    async def discovery_entries(self, base_target: str, base_path: str) -> list[DiscoveryEntry]:
        return [
            DiscoveryEntry(
                targets=(base_target,),
                labels={
                    METRICS_PATH_LABEL: base_path,
                    PUBLIC_METRICS_PATH_LABEL: base_path,
                },
            )
        ]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
