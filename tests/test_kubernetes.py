"""Tests for Kubernetes endpoint resolution and per-address fetching."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import respx
from httpx import Response
from kubernetes.client import (
    V1EndpointAddress,
    CoreV1EndpointPort as V1EndpointPort,
    V1Endpoints,
    V1EndpointSubset,
)
from kubernetes.client.exceptions import ApiException

from conftest import FakeClock
from filterproxy.config.loader import KubernetesTarget
from filterproxy.core.errors import (
    ConfigurationError,
    EndpointNotFoundError,
    ResolutionError,
    UpstreamFetchError,
)
from filterproxy.targets.kubernetes import (
    KubernetesEndpointFetcher,
    KubernetesEndpointResolver,
    addresses_for_port,
)


def subset(ips, ports):
    return V1EndpointSubset(
        addresses=[V1EndpointAddress(ip=ip) for ip in ips],
        ports=[V1EndpointPort(name="metrics", port=port) for port in ports],
    )


class FakeResolver:
    """In-memory resolver returning a mutable address list."""

    def __init__(self, *addresses: str) -> None:
        self.addresses = list(addresses)
        self.calls = 0
        self.error: Exception | None = None

    async def resolve(self, name: str, namespace: str, port: int) -> list[str]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.addresses)


TARGET = KubernetesTarget(name="test-ep", namespace="fetch-test", port=8911, path="/")
URL_A = "http://127.0.8.1:8911/"
URL_B = "http://127.0.8.2:8911/"


class TestAddressesForPort:
    """Tests for selecting addresses from endpoint subsets."""

    SUBSETS = [
        subset(["127.0.9.1", "127.0.9.2"], [9001, 9002]),
        subset(["127.0.9.1", "127.0.9.3"], [9005, 9001]),
        subset(["127.0.9.2", "127.0.9.5"], [9005, 9002]),
    ]

    def test_single_subset(self):
        subsets = [subset(["127.0.9.1", "127.0.9.2", "127.0.9.3"], [9001, 9002])]

        assert addresses_for_port(subsets, 9001) == ["127.0.9.1", "127.0.9.2", "127.0.9.3"]

    def test_no_matching_port(self):
        subsets = [subset(["127.0.9.1", "127.0.9.2", "127.0.9.3"], [9001, 9002])]

        assert addresses_for_port(subsets, 9008) == []

    def test_partial_match_deduplicates(self):
        assert addresses_for_port(self.SUBSETS, 9002) == ["127.0.9.1", "127.0.9.2", "127.0.9.5"]

    def test_port_in_every_subset(self):
        assert addresses_for_port(self.SUBSETS, 9001) == ["127.0.9.1", "127.0.9.2", "127.0.9.3"]

    def test_empty_subsets(self):
        assert addresses_for_port(None, 9001) == []
        assert addresses_for_port([V1EndpointSubset(addresses=None, ports=None)], 9001) == []


class TestKubernetesEndpointResolver:
    """Tests for the Kubernetes API resolver."""

    @pytest.mark.asyncio
    async def test_resolve(self):
        resolver = KubernetesEndpointResolver(timeout=2.0)
        endpoints = V1Endpoints(subsets=[subset(["127.0.9.1", "127.0.9.2"], [9001])])

        with patch.object(resolver, "_get_core_api") as mock_api:
            with patch.object(resolver, "_run_sync", new_callable=AsyncMock) as mock_run:
                mock_run.return_value = endpoints

                addresses = await resolver.resolve("test-ep", "fetch-test", 9001)

        assert addresses == ["127.0.9.1", "127.0.9.2"]
        mock_run.assert_awaited_once_with(
            mock_api.return_value.read_namespaced_endpoints,
            "test-ep",
            "fetch-test",
            _request_timeout=2.0,
        )

    @pytest.mark.asyncio
    async def test_resolve_not_found(self):
        resolver = KubernetesEndpointResolver()

        with patch.object(resolver, "_get_core_api"):
            with patch.object(resolver, "_run_sync", new_callable=AsyncMock) as mock_run:
                mock_run.side_effect = ApiException(status=404, reason="Not Found")

                with pytest.raises(EndpointNotFoundError) as exc_info:
                    await resolver.resolve("test-ep", "fetch-test", 9001)

        assert exc_info.value.details == {"namespace": "fetch-test", "name": "test-ep"}

    @pytest.mark.asyncio
    async def test_resolve_api_error(self):
        resolver = KubernetesEndpointResolver()

        with patch.object(resolver, "_get_core_api"):
            with patch.object(resolver, "_run_sync", new_callable=AsyncMock) as mock_run:
                mock_run.side_effect = ApiException(status=403, reason="Forbidden")

                with pytest.raises(ResolutionError) as exc_info:
                    await resolver.resolve("test-ep", "fetch-test", 9001)

        assert not isinstance(exc_info.value, EndpointNotFoundError)
        assert exc_info.value.details["status"] == 403

    @pytest.mark.asyncio
    async def test_resolve_transport_error(self):
        resolver = KubernetesEndpointResolver()

        with patch.object(resolver, "_get_core_api"):
            with patch.object(resolver, "_run_sync", new_callable=AsyncMock) as mock_run:
                mock_run.side_effect = OSError("connection refused")

                with pytest.raises(ResolutionError):
                    await resolver.resolve("test-ep", "fetch-test", 9001)

    def test_missing_cluster_config(self):
        from kubernetes import config as k8s_config

        resolver = KubernetesEndpointResolver(kubeconfig="/nonexistent/kubeconfig")

        with patch.object(
            k8s_config, "load_incluster_config", side_effect=k8s_config.ConfigException("no")
        ):
            with patch.object(
                k8s_config, "load_kube_config", side_effect=k8s_config.ConfigException("no")
            ):
                with pytest.raises(ConfigurationError):
                    resolver.ensure_initialized()

        assert resolver._initialized is False

    def test_initializes_once(self):
        from kubernetes import config as k8s_config

        resolver = KubernetesEndpointResolver()

        with patch.object(k8s_config, "load_incluster_config") as mock_load:
            with patch("filterproxy.targets.kubernetes.k8s_client.ApiClient", MagicMock()):
                resolver.ensure_initialized()
                resolver.ensure_initialized()

        assert mock_load.call_count == 1


class TestKubernetesEndpointFetcher:
    """Tests for fan-out fetching across resolved addresses."""

    def test_build_url(self):
        fetcher = KubernetesEndpointFetcher(
            KubernetesTarget(name="ep", namespace="ns", port=9100, path="/metrics", scheme="https"),
            FakeResolver(),
        )

        assert fetcher.build_url("10.0.0.1") == "https://10.0.0.1:9100/metrics"
        assert fetcher.build_url("fd00::1") == "https://[fd00::1]:9100/metrics"

    @pytest.mark.asyncio
    async def test_fetch_per_address(self, simple_metrics, simple_two_metrics):
        fetcher = KubernetesEndpointFetcher(TARGET, FakeResolver("127.0.8.1", "127.0.8.2"))

        with respx.mock:
            respx.get(URL_A).mock(return_value=Response(200, content=simple_metrics))
            respx.get(URL_B).mock(return_value=Response(200, content=simple_two_metrics))

            metrics_a = await fetcher.fetch_metrics_for("127.0.8.1")
            metrics_b = await fetcher.fetch_metrics_for("127.0.8.2")

        assert len(metrics_a) == 2
        assert metrics_a[0].metrics[2].value == 0.3
        assert metrics_a[1].metrics[2].value == 3
        assert len(metrics_b) == 2
        assert metrics_b[0].metrics[2].value == 4.3
        assert metrics_b[1].metrics[2].value == 31
        await fetcher.aclose()

    @pytest.mark.asyncio
    async def test_unknown_address_returns_none(self, simple_metrics):
        fetcher = KubernetesEndpointFetcher(TARGET, FakeResolver("127.0.8.1"))

        with respx.mock:
            respx.get(URL_A).mock(return_value=Response(200, content=simple_metrics))

            assert await fetcher.fetch_metrics_for("127.0.8.9") is None

        await fetcher.aclose()

    @pytest.mark.asyncio
    async def test_one_round_serves_all_addresses(self, simple_metrics, simple_two_metrics):
        clock = FakeClock()
        resolver = FakeResolver("127.0.8.1", "127.0.8.2")
        fetcher = KubernetesEndpointFetcher(TARGET, resolver, refresh_interval=5, clock=clock)

        with respx.mock:
            route_a = respx.get(URL_A).mock(return_value=Response(200, content=simple_metrics))
            route_b = respx.get(URL_B).mock(return_value=Response(200, content=simple_two_metrics))

            await fetcher.fetch_metrics_for("127.0.8.1")
            assert (route_a.call_count, route_b.call_count) == (1, 1)
            await fetcher.fetch_metrics_for("127.0.8.2")
            await fetcher.fetch_metrics_for("127.0.8.1")
            assert (route_a.call_count, route_b.call_count) == (1, 1)
            assert resolver.calls == 1

            clock.advance(8)
            await fetcher.fetch_metrics_for("127.0.8.2")
            assert (route_a.call_count, route_b.call_count) == (2, 2)
            assert resolver.calls == 2

        await fetcher.aclose()

    @pytest.mark.asyncio
    async def test_vanished_address_is_evicted(self, simple_metrics, simple_two_metrics):
        resolver = FakeResolver("127.0.8.1", "127.0.8.2")
        fetcher = KubernetesEndpointFetcher(TARGET, resolver)

        with respx.mock:
            respx.get(URL_A).mock(return_value=Response(200, content=simple_metrics))
            route_b = respx.get(URL_B).mock(return_value=Response(200, content=simple_two_metrics))

            assert await fetcher.fetch_metrics_for("127.0.8.2") is not None

            resolver.addresses = ["127.0.8.1"]
            assert await fetcher.fetch_metrics_for("127.0.8.2") is None
            assert set(fetcher.cache.value) == {"127.0.8.1"}
            assert route_b.call_count == 1

        await fetcher.aclose()

    @pytest.mark.asyncio
    async def test_no_addresses(self):
        fetcher = KubernetesEndpointFetcher(TARGET, FakeResolver())

        assert await fetcher.fetch_all() == {}
        assert await fetcher.fetch_metrics_for("127.0.8.1") is None
        await fetcher.aclose()

    @pytest.mark.asyncio
    async def test_failed_address_fails_round_and_keeps_snapshots(
        self, simple_metrics, simple_two_metrics
    ):
        clock = FakeClock()
        fetcher = KubernetesEndpointFetcher(
            TARGET,
            FakeResolver("127.0.8.1", "127.0.8.2"),
            refresh_interval=5,
            clock=clock,
        )

        with respx.mock:
            respx.get(URL_A).mock(return_value=Response(200, content=simple_metrics))
            route_b = respx.get(URL_B)
            route_b.side_effect = [
                Response(200, content=simple_two_metrics),
                Response(500, text="exporter crashed"),
            ]

            await fetcher.fetch_all()
            before = fetcher.cache.value
            refreshed_at = fetcher.cache.last_refreshed

            clock.advance(10)
            with pytest.raises(UpstreamFetchError):
                await fetcher.fetch_metrics_for("127.0.8.1")

        assert fetcher.cache.value is before
        assert fetcher.cache.last_refreshed == refreshed_at
        await fetcher.aclose()

    @pytest.mark.asyncio
    async def test_resolution_failure_propagates(self):
        resolver = FakeResolver()
        resolver.error = EndpointNotFoundError("endpoints fetch-test/test-ep not found")
        fetcher = KubernetesEndpointFetcher(TARGET, resolver)

        with pytest.raises(EndpointNotFoundError):
            await fetcher.fetch_metrics_for("127.0.8.1")

        assert fetcher.cache.last_refreshed is None
        await fetcher.aclose()

    @pytest.mark.asyncio
    async def test_failure_cancels_outstanding_fetches(self):
        finished: list[str] = []

        class SlowFetcher(KubernetesEndpointFetcher):
            async def _fetch_address(self, address):
                if address == "127.0.8.2":
                    raise UpstreamFetchError("got status code 503: ")
                await asyncio.sleep(5)
                finished.append(address)
                return address, []

        fetcher = SlowFetcher(TARGET, FakeResolver("127.0.8.1", "127.0.8.2"))

        with pytest.raises(UpstreamFetchError):
            await asyncio.wait_for(fetcher.fetch_all(), timeout=2)

        assert finished == []
        assert fetcher.cache.last_refreshed is None
        await fetcher.aclose()

    @pytest.mark.asyncio
    async def test_discovery_entries(self):
        fetcher = KubernetesEndpointFetcher(TARGET, FakeResolver("127.0.8.1", "127.0.8.2"))

        entries = await fetcher.discovery_entries("proxy.example.com", "/pods")

        assert [e.to_dict() for e in entries] == [
            {
                "targets": ["proxy.example.com"],
                "labels": {
                    "__metrics_path__": "/pods/127.0.8.1",
                    "instance": "127.0.8.1",
                    "metrics_path": "/pods",
                },
            },
            {
                "targets": ["proxy.example.com"],
                "labels": {
                    "__metrics_path__": "/pods/127.0.8.2",
                    "instance": "127.0.8.2",
                    "metrics_path": "/pods",
                },
            },
        ]
        await fetcher.aclose()

    @pytest.mark.asyncio
    async def test_discovery_not_found_propagates(self):
        resolver = FakeResolver()
        resolver.error = EndpointNotFoundError("not found")
        fetcher = KubernetesEndpointFetcher(TARGET, resolver)

        with pytest.raises(EndpointNotFoundError):
            await fetcher.discovery_entries("proxy.example.com", "/pods")

        await fetcher.aclose()
