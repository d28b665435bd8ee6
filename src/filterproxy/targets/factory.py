"""
Fetcher construction.

The fetcher kind of an endpoint is decided once, here, from the tagged
target in its configuration.
"""

from __future__ import annotations

from typing import Callable

import structlog

from filterproxy.config.credentials import resolve_credential
from filterproxy.config.loader import EndpointConfig, KubernetesTarget, ProxyConfig, StaticTarget
from filterproxy.config.settings import Settings
from filterproxy.core.errors import ConfigurationError
from filterproxy.targets.base import TargetFetcher
from filterproxy.targets.kubernetes import (
    EndpointResolver,
    KubernetesEndpointFetcher,
    KubernetesEndpointResolver,
)
from filterproxy.targets.static import StaticFetcher

logger = structlog.get_logger()

ResolverFactory = Callable[[Settings], EndpointResolver]


def default_resolver_factory(settings: Settings) -> EndpointResolver:
    """Create and initialize the Kubernetes API resolver."""
    resolver = KubernetesEndpointResolver(
        kubeconfig=settings.kubeconfig,
        context=settings.kube_context,
        timeout=settings.http_timeout,
    )
    resolver.ensure_initialized()
    return resolver


def build_fetcher(
    endpoint: EndpointConfig,
    settings: Settings,
    resolver: EndpointResolver | None = None,
) -> TargetFetcher:
    """
    Create the fetcher serving one endpoint.

    Raises:
        CredentialError: If the endpoint's credential cannot be resolved
        ConfigurationError: If a Kubernetes target has no resolver
    """
    auth_token = resolve_credential(endpoint.auth, settings.service_account_token_path)
    common = {
        "auth_token": auth_token,
        "refresh_interval": endpoint.refresh_interval,
        "insecure_skip_verify": endpoint.insecure_skip_verify,
        "http_timeout": settings.http_timeout,
        "fetch_timeout": settings.fetch_timeout,
    }

    target = endpoint.target
    if isinstance(target, StaticTarget):
        return StaticFetcher(target.url, **common)
    if isinstance(target, KubernetesTarget):
        if resolver is None:
            raise ConfigurationError(f"endpoint {endpoint.name!r} needs a Kubernetes resolver")
        return KubernetesEndpointFetcher(target, resolver, **common)
    raise ConfigurationError(f"endpoint {endpoint.name!r} has an unsupported target")


def build_fetchers(
    config: ProxyConfig,
    settings: Settings,
    resolver_factory: ResolverFactory = default_resolver_factory,
) -> dict[str, TargetFetcher]:
    """
    Create the fetchers of all configured endpoints, keyed by mount path.

    The resolver is only created when at least one endpoint targets
    Kubernetes, and is shared by all of them.
    """
    resolver: EndpointResolver | None = None
    if any(isinstance(e.target, KubernetesTarget) for e in config.endpoints.values()):
        resolver = resolver_factory(settings)

    fetchers: dict[str, TargetFetcher] = {}
    for name, endpoint in config.endpoints.items():
        fetcher = build_fetcher(endpoint, settings, resolver)
        logger.info("endpoint_registered", endpoint=name, path=endpoint.path, kind=fetcher.kind)
        fetchers[endpoint.path] = fetcher
    return fetchers
