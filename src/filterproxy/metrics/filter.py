"""
Label filtering of metric families.

A metric is kept only if it carries *all* requested labels with exactly the
requested values. Families left without metrics are dropped.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from filterproxy.core.errors import ClientInputError
from filterproxy.metrics.models import MetricFamily


def filter_families(
    families: Sequence[MetricFamily],
    constraints: Mapping[str, str],
) -> list[MetricFamily]:
    """
    Filter metric families by an exact-match label constraint set.

    Args:
        families: Decoded families, in exposition order
        constraints: Mapping of label name to required value

    Returns:
        Families in their original order, each with only the matching
        metrics. An empty constraint set returns the input unchanged.
    """
    if not constraints:
        return list(families)

    required = dict(constraints)
    result: list[MetricFamily] = []
    for family in families:
        kept = tuple(metric for metric in family.metrics if metric.matches(required))
        if not kept:
            continue
        result.append(family.with_metrics(kept))
    return result


def parse_filter_params(items: Iterable[tuple[str, str]]) -> dict[str, str]:
    """
    Build a label constraint set from query string pairs.

    Args:
        items: (key, value) pairs in query string order, repeated keys included

    Raises:
        ClientInputError: If any key is given more than once
    """
    constraints: dict[str, str] = {}
    for key, value in items:
        if key in constraints:
            raise ClientInputError(
                "query parameter given more than once",
                details={"parameter": key},
            )
        constraints[key] = value
    return constraints
