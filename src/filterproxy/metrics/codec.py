"""
Exposition codec adapter.

Decodes upstream exposition bodies into the MetricFamily model with the
parsers shipped with prometheus_client, and renders families back in the
Prometheus text format under the names the upstream exposed them with.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from typing import Callable

from prometheus_client.metrics_core import Metric as PrometheusMetric
from prometheus_client.openmetrics.parser import (
    text_string_to_metric_families as parse_openmetrics,
)
from prometheus_client.parser import text_string_to_metric_families as parse_text
from prometheus_client.samples import Sample
from prometheus_client.utils import floatToGoString

from filterproxy.metrics.models import Metric, MetricFamily

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

OPENMETRICS_MEDIA_TYPE = "application/openmetrics-text"
TEXT_MEDIA_TYPE = "text/plain"

# Sent upstream so exporters never answer with the protobuf format.
ACCEPT_HEADER = (
    "application/openmetrics-text;version=1.0.0,"
    "text/plain;version=0.0.4;q=0.5,"
    "*/*;q=0.1"
)

# Labels that belong to a sample's value rather than to the series identity.
_PAYLOAD_LABELS = {
    "histogram": frozenset({"le"}),
    "gaugehistogram": frozenset({"le"}),
    "summary": frozenset({"quantile"}),
}

# OpenMetrics family names omit the suffix their samples carry.
_OPENMETRICS_SUFFIXES = {
    "counter": "_total",
    "info": "_info",
}

# OpenMetrics types without a text format equivalent.
_TEXT_TYPES = {
    "unknown": "untyped",
    "info": "gauge",
    "stateset": "gauge",
    "gaugehistogram": "histogram",
}

_COUNTER_TYPE_LINE = re.compile(r"^[ \t]*#[ \t]+TYPE[ \t]+(\S+)[ \t]+counter[ \t]*$", re.MULTILINE)

ParsedFamily = tuple[str, PrometheusMetric, list[Sample]]
Reader = Callable[[str], Iterator[ParsedFamily]]


class DecodeError(ValueError):
    """Raised when an exposition body cannot be decoded."""


def _read_text(text: str) -> Iterator[ParsedFamily]:
    declared_counters = set(_COUNTER_TYPE_LINE.findall(text))
    for family in parse_text(text):
        if family.type != "counter":
            yield family.name, family, list(family.samples)
        elif family.name in declared_counters:
            # The parser appends _total to samples of counters declared without it.
            suffixed = family.name + "_total"
            samples = [
                s._replace(name=family.name) if s.name == suffixed else s for s in family.samples
            ]
            yield family.name, family, samples
        else:
            yield family.name + "_total", family, list(family.samples)


def _read_openmetrics(text: str) -> Iterator[ParsedFamily]:
    for family in parse_openmetrics(text):
        name = family.name + _OPENMETRICS_SUFFIXES.get(family.type, "")
        yield name, family, list(family.samples)


def _reader_for(content_type: str | None) -> Reader:
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    if media_type == OPENMETRICS_MEDIA_TYPE:
        return _read_openmetrics
    if media_type in ("", TEXT_MEDIA_TYPE):
        return _read_text
    raise DecodeError(f"unsupported exposition content type: {content_type!r}")


def _group_metrics(family_type: str, samples: Iterable[Sample]) -> tuple[Metric, ...]:
    payload_labels = _PAYLOAD_LABELS.get(family_type, frozenset())
    grouped: dict[tuple[tuple[str, str], ...], tuple[dict[str, str], list]] = {}

    for sample in samples:
        labels = {k: v for k, v in sample.labels.items() if k not in payload_labels}
        key = tuple(sorted(labels.items()))
        if key not in grouped:
            grouped[key] = (labels, [])
        grouped[key][1].append(sample)

    return tuple(Metric(labels=labels, samples=tuple(samples)) for labels, samples in grouped.values())


def decode(body: bytes, content_type: str | None) -> list[MetricFamily]:
    """
    Decode an exposition body into metric families.

    Args:
        body: Raw response body
        content_type: Declared Content-Type of the body (selects the parser)

    Returns:
        Families in document order, named as exposed in the text format

    Raises:
        DecodeError: If the body is malformed; no partial result is returned
    """
    reader = _reader_for(content_type)
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodeError(f"exposition body is not valid UTF-8: {exc}") from exc

    parsed: list[ParsedFamily] = []
    try:
        for name, family, samples in reader(text):
            # Samples without metadata arrive as one family per line.
            if parsed and parsed[-1][0] == name and parsed[-1][1].type == family.type:
                parsed[-1][2].extend(samples)
                continue
            parsed.append((name, family, samples))
    except Exception as exc:
        raise DecodeError(f"failed to decode exposition body: {exc}") from exc

    return [
        MetricFamily(
            name=name,
            documentation=family.documentation,
            type=family.type,
            unit=family.unit,
            metrics=_group_metrics(family.type, samples),
        )
        for name, family, samples in parsed
    ]


def _escape_help(text: str) -> str:
    return text.replace("\\", r"\\").replace("\n", r"\n")


def _escape_label_value(value: str) -> str:
    return value.replace("\\", r"\\").replace("\n", r"\n").replace('"', r"\"")


def _sample_line(sample: Sample) -> str:
    line = sample.name
    if sample.labels:
        labels = ",".join(
            f'{key}="{_escape_label_value(value)}"' for key, value in sorted(sample.labels.items())
        )
        line += "{" + labels + "}"
    line += " " + floatToGoString(sample.value)
    if sample.timestamp is not None:
        line += f" {round(float(sample.timestamp) * 1000):d}"
    return line + "\n"


def encode(families: Iterable[MetricFamily]) -> bytes:
    """Render families in the Prometheus text exposition format."""
    lines: list[str] = []
    for family in families:
        if family.documentation:
            lines.append(f"# HELP {family.name} {_escape_help(family.documentation)}\n")
        lines.append(f"# TYPE {family.name} {_TEXT_TYPES.get(family.type, family.type)}\n")
        for metric in family.metrics:
            lines.extend(_sample_line(sample) for sample in metric.samples)
    return "".join(lines).encode("utf-8")
