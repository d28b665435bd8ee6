"""Metric family models, the exposition codec adapter and the label filter."""

from filterproxy.metrics.codec import CONTENT_TYPE, DecodeError, decode, encode
from filterproxy.metrics.filter import filter_families, parse_filter_params
from filterproxy.metrics.models import Metric, MetricFamily

__all__ = [
    "CONTENT_TYPE",
    "DecodeError",
    "Metric",
    "MetricFamily",
    "decode",
    "encode",
    "filter_families",
    "parse_filter_params",
]
