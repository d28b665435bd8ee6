"""
Discovery document aggregation.

Fans a discovery request out to every registered fetcher and unions their
entries. A failing fetcher only removes its own entries.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field

import structlog

from filterproxy.targets.base import DiscoveryEntry, TargetFetcher

logger = structlog.get_logger()


@dataclass
class MultiTargetDiscovery:
    """Best-effort union of the discovery entries of many fetchers."""

    fetchers: Mapping[str, TargetFetcher] = field(default_factory=dict)

    async def discover(self, base_target: str, base_path: str = "") -> list[DiscoveryEntry]:
        """
        Collect discovery entries from every fetcher.

        Args:
            base_target: Address scrapers use to reach this proxy
            base_path: Prefix for every fetcher's mount path

        Returns:
            Entries of all fetchers that answered, in registration order
        """
        paths = list(self.fetchers)
        results = await asyncio.gather(
            *(self.fetchers[path].discovery_entries(base_target, base_path + path) for path in paths),
            return_exceptions=True,
        )

        entries: list[DiscoveryEntry] = []
        for path, entries_or_error in zip(paths, results, strict=True):
            if isinstance(entries_or_error, BaseException):
                if not isinstance(entries_or_error, Exception):
                    raise entries_or_error
                logger.warning(
                    "discovery_member_failed",
                    path=path,
                    error_type=type(entries_or_error).__name__,
                    error=str(entries_or_error),
                )
                continue
            entries.extend(entries_or_error)

        return entries
