"""
Process settings using Pydantic.

Provides environment-based configuration loading with FILTERPROXY_ prefix.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SERVICE_ACCOUNT_TOKEN_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/token"


class Settings(BaseSettings):
    """Process settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FILTERPROXY_",
    )

    # Endpoint configuration file
    config: str | None = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json, console

    # Kubernetes
    service_account_token_path: str = DEFAULT_SERVICE_ACCOUNT_TOKEN_PATH
    kubeconfig: str | None = None
    kube_context: str | None = None

    # Timeouts (seconds)
    http_timeout: float = 5.0
    fetch_timeout: float = 10.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
