"""
Endpoint configuration file loading.

The file is YAML:

    addr: ":8082"
    endpoints:
      node:
        path: /node
        target: http://localhost:9100/metrics
        refresh_interval: 10s
      pods:
        path: /pods
        kubernetes_target:
          name: my-exporter
          namespace: monitoring
          port: 9100

Every problem is reported as a ConfigurationError; the process does not
start with a partial configuration.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

import httpx
import structlog
import yaml

from filterproxy.config.credentials import AuthConfig
from filterproxy.core.errors import ConfigurationError

logger = structlog.get_logger()

DEFAULT_ADDR = ":80"
HEALTH_PATH = "/-/healthy"

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Any) -> float:
    """
    Parse a duration into seconds.

    Accepts plain numbers (seconds) and Go-style strings such as
    "500ms", "10s" or "1m30s".
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if text in ("", "0"):
            return 0.0
        pos = 0
        seconds = 0.0
        for match in _DURATION_PART.finditer(text):
            if match.start() != pos:
                raise ConfigurationError(f"invalid duration: {value!r}")
            seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
            pos = match.end()
        if pos != len(text):
            raise ConfigurationError(f"invalid duration: {value!r}")
    else:
        raise ConfigurationError(f"invalid duration: {value!r}")

    if seconds < 0:
        raise ConfigurationError(f"duration must not be negative: {value!r}")
    return seconds


def _validate_target_url(endpoint: str, url: str) -> str:
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as exc:
        raise ConfigurationError(f"endpoint {endpoint!r}: invalid target {url!r}: {exc}") from exc
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ConfigurationError(f"endpoint {endpoint!r}: target must be an http(s) URL")
    return url


def parse_addr(addr: str) -> tuple[str, int]:
    """Split a listen address of the form "host:port" or ":port"."""
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise ConfigurationError(f"invalid listen address: {addr!r}")
    try:
        port_number = int(port)
    except ValueError as exc:
        raise ConfigurationError(f"invalid listen address: {addr!r}") from exc
    if not 0 < port_number < 65536:
        raise ConfigurationError(f"invalid listen port: {addr!r}")
    return host.strip("[]") or "0.0.0.0", port_number


@dataclass(frozen=True)
class StaticTarget:
    """An exporter reachable at one fixed URL."""

    url: str


@dataclass(frozen=True)
class KubernetesTarget:
    """Exporters behind a Kubernetes Endpoints resource."""

    name: str
    namespace: str
    port: int
    path: str = "/metrics"
    scheme: str = "http"

    @classmethod
    def from_dict(cls, endpoint: str, data: dict[str, Any]) -> KubernetesTarget:
        if not isinstance(data, dict):
            raise ConfigurationError(f"endpoint {endpoint!r}: kubernetes_target must be a mapping")

        name = data.get("name")
        namespace = data.get("namespace")
        if not name or not namespace:
            raise ConfigurationError(
                f"endpoint {endpoint!r}: kubernetes_target requires name and namespace"
            )

        port = data.get("port")
        if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
            raise ConfigurationError(f"endpoint {endpoint!r}: invalid kubernetes_target port {port!r}")

        scheme = data.get("scheme") or "http"
        if scheme not in ("http", "https"):
            raise ConfigurationError(f"endpoint {endpoint!r}: invalid scheme {scheme!r}")

        path = data.get("path") or "/metrics"
        if not path.startswith("/"):
            path = "/" + path

        return cls(name=str(name), namespace=str(namespace), port=port, path=path, scheme=scheme)


EndpointTarget = Union[StaticTarget, KubernetesTarget]


@dataclass(frozen=True)
class EndpointConfig:
    """One proxied endpoint."""

    name: str
    path: str
    target: EndpointTarget
    refresh_interval: float = 0.0
    auth: AuthConfig = field(default_factory=AuthConfig)
    insecure_skip_verify: bool = False

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> EndpointConfig:
        if not isinstance(data, dict):
            raise ConfigurationError(f"endpoint {name!r} must be a mapping")

        path = data.get("path")
        if not isinstance(path, str) or not path.startswith("/"):
            raise ConfigurationError(f"endpoint {name!r}: path must start with '/'")
        path = path.rstrip("/")
        if not path or path == HEALTH_PATH:
            raise ConfigurationError(f"endpoint {name!r}: path {data['path']!r} is reserved")

        static_url = data.get("target")
        kube_data = data.get("kubernetes_target")
        if static_url and kube_data:
            raise ConfigurationError(
                f"endpoint {name!r}: target and kubernetes_target are mutually exclusive"
            )

        target: EndpointTarget
        if static_url:
            target = StaticTarget(url=_validate_target_url(name, str(static_url)))
        elif kube_data:
            target = KubernetesTarget.from_dict(name, kube_data)
        else:
            raise ConfigurationError(
                f"endpoint {name!r}: one of target or kubernetes_target is required"
            )

        return cls(
            name=name,
            path=path,
            target=target,
            refresh_interval=parse_duration(data.get("refresh_interval", 0)),
            auth=AuthConfig.from_dict(data.get("auth")),
            insecure_skip_verify=bool(data.get("insecure_skip_verify", False)),
        )


@dataclass(frozen=True)
class ProxyConfig:
    """The complete endpoint configuration."""

    addr: str = DEFAULT_ADDR
    endpoints: dict[str, EndpointConfig] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProxyConfig:
        if not isinstance(data, dict):
            raise ConfigurationError("configuration must be a mapping")

        raw_endpoints = data.get("endpoints") or {}
        if not isinstance(raw_endpoints, dict) or not raw_endpoints:
            raise ConfigurationError("configuration defines no endpoints")

        endpoints: dict[str, EndpointConfig] = {}
        seen_paths: dict[str, str] = {}
        for name, endpoint_data in raw_endpoints.items():
            endpoint = EndpointConfig.from_dict(str(name), endpoint_data)
            if endpoint.path in seen_paths:
                raise ConfigurationError(
                    f"endpoints {seen_paths[endpoint.path]!r} and {endpoint.name!r} "
                    f"share path {endpoint.path!r}"
                )
            seen_paths[endpoint.path] = endpoint.name
            endpoints[endpoint.name] = endpoint

        addr = str(data.get("addr") or DEFAULT_ADDR)
        parse_addr(addr)
        return cls(addr=addr, endpoints=endpoints)


def load_config(path: str | Path | None) -> ProxyConfig:
    """
    Load the endpoint configuration file.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    if not path:
        raise ConfigurationError("no configuration file given")

    config_path = Path(path)
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigurationError(
            f"failed to open configuration file: {exc}",
            details={"path": str(config_path)},
        ) from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(
            f"failed to parse configuration file: {exc}",
            details={"path": str(config_path)},
        ) from exc

    config = ProxyConfig.from_dict(data)
    logger.debug("loaded_config", path=str(config_path), endpoints=len(config.endpoints))
    return config
