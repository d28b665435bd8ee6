"""
filterproxy configuration system.

Provides:
- Pydantic-based process settings (environment variables, .env files)
- The YAML endpoint configuration file
- Upstream credential resolution
"""

from filterproxy.config.credentials import AuthConfig, AuthType, resolve_credential
from filterproxy.config.loader import (
    EndpointConfig,
    KubernetesTarget,
    ProxyConfig,
    StaticTarget,
    load_config,
    parse_addr,
    parse_duration,
)
from filterproxy.config.settings import Settings, get_settings

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    # Credentials
    "AuthConfig",
    "AuthType",
    "resolve_credential",
    # Endpoint file
    "EndpointConfig",
    "KubernetesTarget",
    "ProxyConfig",
    "StaticTarget",
    "load_config",
    "parse_addr",
    "parse_duration",
]
