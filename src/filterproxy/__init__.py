"""
filterproxy - label-filtering, caching proxy for Prometheus exporters.

Re-exposes upstream exporter metrics under configured paths, filters them by
the labels a scraper asks for, and publishes HTTP service discovery documents
for fleets of exporters resolved from Kubernetes endpoints.
"""

__version__ = "0.1.0"
