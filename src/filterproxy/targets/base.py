"""
Base classes for proxied targets.

Every configured endpoint is backed by one fetcher. A fetcher serves the
upstream metrics and describes itself for HTTP service discovery.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from filterproxy.metrics.models import MetricFamily

METRICS_PATH_LABEL = "__metrics_path__"
PUBLIC_METRICS_PATH_LABEL = "metrics_path"
INSTANCE_LABEL = "instance"


@dataclass(frozen=True)
class DiscoveryEntry:
    """One target group of an HTTP service discovery document."""

    targets: tuple[str, ...]
    labels: Mapping[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the discovery document shape, labels sorted by name."""
        return {
            "targets": list(self.targets),
            "labels": dict(sorted(self.labels.items())),
        }


class TargetFetcher(ABC):
    """
    Abstract base class for the fetchers behind configured endpoints.

    All fetchers must implement:
    - discovery_entries(): Describe the fetcher's targets for discovery
    - aclose(): Release the fetcher's HTTP client
    """

    @property
    @abstractmethod
    def kind(self) -> str:
        """Fetcher kind for identification in logs."""

    @abstractmethod
    async def discovery_entries(self, base_target: str, base_path: str) -> list[DiscoveryEntry]:
        """
        Describe this fetcher's targets.

        Args:
            base_target: Address scrapers use to reach this proxy
            base_path: Path this fetcher is mounted at

        Returns:
            Discovery entries, each labelled with its metrics path
        """

    async def aclose(self) -> None:
        """Release held resources."""
        return None


class MetricsFetcher(TargetFetcher):
    """A fetcher serving a single upstream."""

    @abstractmethod
    async def fetch_metrics(self) -> list[MetricFamily]:
        """Return the current metric families of the upstream."""


class MultiMetricsFetcher(TargetFetcher):
    """A fetcher serving one upstream per resolved address."""

    @abstractmethod
    async def fetch_metrics_for(self, address: str) -> list[MetricFamily] | None:
        """
        Return the current metric families of one address.

        Returns:
            The families, or None if the address is not currently resolved
        """
