"""Fetchers backing the configured endpoints."""

from filterproxy.targets.base import (
    DiscoveryEntry,
    MetricsFetcher,
    MultiMetricsFetcher,
    TargetFetcher,
)
from filterproxy.targets.factory import build_fetcher, build_fetchers
from filterproxy.targets.kubernetes import (
    EndpointResolver,
    KubernetesEndpointFetcher,
    KubernetesEndpointResolver,
    addresses_for_port,
)
from filterproxy.targets.static import StaticFetcher

__all__ = [
    "DiscoveryEntry",
    "EndpointResolver",
    "KubernetesEndpointFetcher",
    "KubernetesEndpointResolver",
    "MetricsFetcher",
    "MultiMetricsFetcher",
    "StaticFetcher",
    "TargetFetcher",
    "addresses_for_port",
    "build_fetcher",
    "build_fetchers",
]
