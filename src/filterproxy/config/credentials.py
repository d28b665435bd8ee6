"""
Upstream credential resolution.

Turns an endpoint's auth section into the Authorization header value sent
to its exporter.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any

from filterproxy.config.settings import DEFAULT_SERVICE_ACCOUNT_TOKEN_PATH
from filterproxy.core.errors import CredentialError


class AuthType(StrEnum):
    """Supported upstream authentication modes."""

    NONE = ""
    BEARER = "Bearer"
    KUBERNETES = "Kubernetes"


@dataclass(frozen=True)
class AuthConfig:
    """Authentication settings of one endpoint."""

    type: AuthType = AuthType.NONE
    token: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> AuthConfig:
        data = data or {}
        raw_type = data.get("type") or ""
        try:
            auth_type = AuthType(raw_type)
        except ValueError as exc:
            raise CredentialError(f"unknown auth type: {raw_type!r}") from exc
        return cls(type=auth_type, token=str(data.get("token") or ""))


def resolve_credential(
    auth: AuthConfig,
    token_path: str | Path = DEFAULT_SERVICE_ACCOUNT_TOKEN_PATH,
) -> str:
    """
    Resolve the Authorization header value for an endpoint.

    Args:
        auth: Endpoint auth settings
        token_path: Mounted service account token, read for Kubernetes mode

    Returns:
        Empty string for no auth, otherwise "Bearer <token>"

    Raises:
        CredentialError: If the mode is unsupported or the token is unavailable
    """
    if auth.type is AuthType.NONE:
        return ""

    if auth.type is AuthType.BEARER:
        if not auth.token:
            raise CredentialError("bearer auth configured without a token")
        return f"Bearer {auth.token}"

    if auth.type is AuthType.KUBERNETES:
        try:
            token = Path(token_path).read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise CredentialError(
                f"failed to get kubernetes serviceaccount token: {exc}",
                details={"path": str(token_path)},
            ) from exc
        if not token:
            raise CredentialError(
                "kubernetes serviceaccount token is empty",
                details={"path": str(token_path)},
            )
        return f"Bearer {token}"

    raise CredentialError(f"unknown auth type: {auth.type!r}")
