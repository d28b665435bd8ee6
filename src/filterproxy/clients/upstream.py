from __future__ import annotations

import httpx
import structlog

from filterproxy.core.errors import UpstreamFetchError
from filterproxy.metrics.codec import ACCEPT_HEADER, DecodeError, decode
from filterproxy.metrics.models import MetricFamily

logger = structlog.get_logger()

DEFAULT_USER_AGENT = "filterproxy/0.1.0"

# Upper bound on the upstream error body kept for diagnostics.
_MAX_ERROR_BODY = 4096


def is_success_status(status_code: int) -> bool:
    """Determine if an upstream HTTP status code is a success."""
    return 200 <= status_code < 300


def build_client(
    *,
    timeout: float = 5.0,
    insecure_skip_verify: bool = False,
) -> httpx.AsyncClient:
    """Create the HTTP client one fetcher uses for all of its upstream calls."""
    return httpx.AsyncClient(
        timeout=timeout,
        verify=not insecure_skip_verify,
        headers={"User-Agent": DEFAULT_USER_AGENT},
    )


async def fetch_metrics(
    client: httpx.AsyncClient,
    url: str,
    auth_token: str = "",
) -> list[MetricFamily]:
    """
    GET an exporter's metrics and decode them.

    Args:
        client: HTTP client to send the request with
        url: Exporter URL
        auth_token: Full Authorization header value, empty for none

    Raises:
        UpstreamFetchError: On transport failure, a non-2xx status or a
            body that cannot be decoded
    """
    headers = {"Accept": ACCEPT_HEADER}
    if auth_token:
        headers["Authorization"] = auth_token

    try:
        response = await client.get(url, headers=headers)
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        logger.warning("upstream_network_error", url=url, error=str(exc))
        raise UpstreamFetchError(
            f"request to {url} failed: {exc}",
            details={"url": url},
        ) from exc

    if not is_success_status(response.status_code):
        body = response.text[:_MAX_ERROR_BODY]
        logger.warning(
            "upstream_status_error",
            url=url,
            status=response.status_code,
            body=body,
        )
        raise UpstreamFetchError(
            f"got status code {response.status_code}: {body}",
            details={"url": url, "status": response.status_code},
        )

    try:
        return decode(response.content, response.headers.get("content-type"))
    except DecodeError as exc:
        logger.warning("upstream_decode_error", url=url, error=str(exc))
        raise UpstreamFetchError(str(exc), details={"url": url}) from exc
