"""
Kubernetes endpoint targets.

Resolves the addresses behind a Kubernetes Endpoints resource and fans out
one metrics fetch per address. Results are cached per address for the
endpoint's refresh interval.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Protocol

import httpx
import structlog
from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.exceptions import ApiException

from filterproxy.cache import Clock, SingleFlightCache
from filterproxy.clients.upstream import build_client, fetch_metrics
from filterproxy.config.loader import KubernetesTarget
from filterproxy.core.errors import (
    ConfigurationError,
    EndpointNotFoundError,
    ResolutionError,
    UpstreamFetchError,
)
from filterproxy.metrics.models import MetricFamily
from filterproxy.targets.base import (
    INSTANCE_LABEL,
    METRICS_PATH_LABEL,
    PUBLIC_METRICS_PATH_LABEL,
    DiscoveryEntry,
    MultiMetricsFetcher,
)

logger = structlog.get_logger()

AddressSnapshots = dict[str, list[MetricFamily]]


class EndpointResolver(Protocol):
    """Resolves a named endpoints resource to the addresses serving a port."""

    async def resolve(self, name: str, namespace: str, port: int) -> list[str]:
        """
        Raises:
            EndpointNotFoundError: If the resource does not exist
            ResolutionError: On any other lookup failure
        """
        ...


def addresses_for_port(subsets: Iterable[Any] | None, port: int) -> list[str]:
    """
    Collect the unique addresses of all subsets that expose ``port``.

    Subsets without the port contribute nothing. Addresses are returned in
    first-seen order.
    """
    addresses: list[str] = []
    seen: set[str] = set()

    for subset in subsets or []:
        if not any(p.port == port for p in subset.ports or []):
            continue
        for address in subset.addresses or []:
            if address.ip in seen:
                continue
            seen.add(address.ip)
            addresses.append(address.ip)

    return addresses


@dataclass
class KubernetesEndpointResolver:
    """
    Resolve addresses from the Kubernetes API.

    Configuration:
        kubeconfig: Path to kubeconfig file (optional)
        context: Kubeconfig context to use (optional)
        timeout: API request timeout in seconds

    In-cluster configuration is tried first, then the kubeconfig.
    """

    kubeconfig: str | None = None
    context: str | None = None
    timeout: float = 5.0

    # Internal state
    _api_client: Any = field(default=None, repr=False, compare=False)
    _initialized: bool = field(default=False, repr=False, compare=False)

    def ensure_initialized(self) -> None:
        """Initialize Kubernetes client if not already done."""
        if self._initialized:
            return

        try:
            k8s_config.load_incluster_config()
        except k8s_config.ConfigException:
            try:
                k8s_config.load_kube_config(
                    config_file=self.kubeconfig,
                    context=self.context,
                )
            except (k8s_config.ConfigException, OSError) as e:
                raise ConfigurationError(f"Failed to load Kubernetes config: {e}") from e

        self._api_client = k8s_client.ApiClient()
        self._initialized = True

    def _get_core_api(self) -> Any:
        """Get CoreV1Api client."""
        self.ensure_initialized()
        return k8s_client.CoreV1Api(self._api_client)

    async def _run_sync(self, func: Any, *args: Any, **kwargs: Any) -> Any:
        """Run synchronous kubernetes API call in executor."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    async def resolve(self, name: str, namespace: str, port: int) -> list[str]:
        core_api = self._get_core_api()
        try:
            endpoints = await self._run_sync(
                core_api.read_namespaced_endpoints,
                name,
                namespace,
                _request_timeout=self.timeout,
            )
        except ApiException as exc:
            if exc.status == 404:
                raise EndpointNotFoundError(
                    f"endpoints {namespace}/{name} not found",
                    details={"namespace": namespace, "name": name},
                ) from exc
            raise ResolutionError(
                f"failed to read endpoints {namespace}/{name}: {exc.reason}",
                details={"namespace": namespace, "name": name, "status": exc.status},
            ) from exc
        except Exception as exc:
            raise ResolutionError(
                f"failed to read endpoints {namespace}/{name}: {exc}",
                details={"namespace": namespace, "name": name},
            ) from exc

        return addresses_for_port(endpoints.subsets, port)


class KubernetesEndpointFetcher(MultiMetricsFetcher):
    """Fetcher for the exporters behind a Kubernetes Endpoints resource."""

    kind = "kubernetes"

    def __init__(
        self,
        target: KubernetesTarget,
        resolver: EndpointResolver,
        *,
        auth_token: str = "",
        refresh_interval: float = 0.0,
        insecure_skip_verify: bool = False,
        http_timeout: float = 5.0,
        fetch_timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.target = target
        self._resolver = resolver
        self._auth_token = auth_token
        self._fetch_timeout = fetch_timeout
        self._owns_client = client is None
        self._client = client or build_client(
            timeout=http_timeout,
            insecure_skip_verify=insecure_skip_verify,
        )
        self._cache: SingleFlightCache[AddressSnapshots] = SingleFlightCache(
            {},
            refresh_interval,
            clock=clock,
            name=f"{target.namespace}/{target.name}",
        )

    @property
    def cache(self) -> SingleFlightCache[AddressSnapshots]:
        return self._cache

    def build_url(self, address: str) -> str:
        host = f"[{address}]" if ":" in address else address
        return f"{self.target.scheme}://{host}:{self.target.port}{self.target.path}"

    async def resolve(self) -> list[str]:
        """Resolve the addresses currently serving the configured port."""
        return await self._resolver.resolve(
            self.target.name,
            self.target.namespace,
            self.target.port,
        )

    async def fetch_all(self) -> AddressSnapshots:
        """
        Return the metrics of every resolved address.

        A stale cache triggers one refresh round: resolve, then fetch all
        addresses concurrently. The round replaces the cached snapshots only
        if every address was fetched successfully.
        """
        try:
            async with asyncio.timeout(self._fetch_timeout):
                return await self._cache.get_or_refresh(self._refresh_round)
        except TimeoutError as exc:
            raise UpstreamFetchError(
                f"refreshing {self.target.namespace}/{self.target.name} timed out "
                f"after {self._fetch_timeout}s",
                details={"namespace": self.target.namespace, "name": self.target.name},
            ) from exc

    async def fetch_metrics_for(self, address: str) -> list[MetricFamily] | None:
        snapshots = await self.fetch_all()
        return snapshots.get(address)

    async def _fetch_address(self, address: str) -> tuple[str, list[MetricFamily]]:
        url = self.build_url(address)
        logger.debug("cluster_fetch", url=url)
        return address, await fetch_metrics(self._client, url, self._auth_token)

    async def _refresh_round(self) -> AddressSnapshots:
        addresses = await self.resolve()
        if not addresses:
            return {}

        tasks = [asyncio.create_task(self._fetch_address(address)) for address in addresses]
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        for task in tasks:
            if task.cancelled():
                continue
            error = task.exception()
            if error is not None:
                logger.warning(
                    "cluster_round_failed",
                    namespace=self.target.namespace,
                    name=self.target.name,
                    addresses=len(addresses),
                    error=str(error),
                )
                raise error

        return dict(task.result() for task in tasks)

    async def discovery_entries(self, base_target: str, base_path: str) -> list[DiscoveryEntry]:
        addresses = await self.resolve()
        return [
            DiscoveryEntry(
                targets=(base_target,),
                labels={
                    METRICS_PATH_LABEL: f"{base_path}/{address}",
                    PUBLIC_METRICS_PATH_LABEL: base_path,
                    INSTANCE_LABEL: address,
                },
            )
            for address in addresses
        ]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
