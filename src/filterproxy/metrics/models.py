"""
Metric family models.

A MetricFamily is produced by decoding an upstream exposition body and is
never mutated afterwards. Filtering builds new families that share the
original Metric objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from prometheus_client.samples import Sample


@dataclass(frozen=True)
class Metric:
    """One series of a family: its identifying labels plus its value samples.

    Counters and gauges carry a single sample. Histograms and summaries carry
    every bucket/quantile/sum/count sample of the series, so ``le`` and
    ``quantile`` are not part of ``labels``.
    """

    labels: dict[str, str]
    samples: tuple[Sample, ...] = ()

    @property
    def value(self) -> float | None:
        """Value of a single-sample metric (counter, gauge, untyped)."""
        if len(self.samples) != 1:
            return None
        return self.samples[0].value

    def matches(self, constraints: dict[str, str]) -> bool:
        """True if every constrained label is present with the required value."""
        for key, required in constraints.items():
            if key not in self.labels or self.labels[key] != required:
                return False
        return True


@dataclass(frozen=True)
class MetricFamily:
    """A named collection of metrics sharing type and help text.

    ``name`` is the family name as the text format exposes it, so counters keep
    whatever name the upstream declared, with or without ``_total``.
    """

    name: str
    documentation: str
    type: str
    unit: str = ""
    metrics: tuple[Metric, ...] = field(default_factory=tuple)

    def with_metrics(self, metrics: tuple[Metric, ...]) -> MetricFamily:
        """Copy of this family carrying only ``metrics``."""
        return replace(self, metrics=metrics)

