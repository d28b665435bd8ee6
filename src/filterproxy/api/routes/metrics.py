"""
Metrics and discovery routes.

Routes are generated from the configured endpoints:

- static endpoint:   GET <path>            filtered metrics
- cluster endpoint:  GET <path>            discovery document of the endpoint
                     GET <path>/{address}  filtered metrics of one address
- always:            GET /                 discovery document of all endpoints
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from http import HTTPStatus

import structlog
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from filterproxy.core.errors import ClientInputError, FilterProxyError
from filterproxy.discovery import MultiTargetDiscovery
from filterproxy.metrics.codec import CONTENT_TYPE, encode
from filterproxy.metrics.filter import filter_families, parse_filter_params
from filterproxy.metrics.models import MetricFamily
from filterproxy.targets.base import (
    DiscoveryEntry,
    MetricsFetcher,
    MultiMetricsFetcher,
    TargetFetcher,
)

logger = structlog.get_logger()

Handler = Callable[..., Awaitable[Response]]
DiscoverySource = Callable[[str, str], Awaitable[list[DiscoveryEntry]]]


def _status_response(status_code: int, message: str | None = None) -> Response:
    return PlainTextResponse(message or HTTPStatus(status_code).phrase, status_code=status_code)


def _render_metrics(families: Sequence[MetricFamily], constraints: dict[str, str]) -> Response:
    try:
        body = encode(filter_families(families, constraints))
    except Exception as exc:
        logger.error("metrics_encode_failed", error=str(exc))
        return _status_response(status.HTTP_500_INTERNAL_SERVER_ERROR)
    return Response(content=body, media_type=CONTENT_TYPE)


def _fetch_failed(path: str, exc: FilterProxyError) -> Response:
    logger.warning(
        "upstream_fetch_failed",
        path=path,
        error_type=type(exc).__name__,
        message=exc.message,
        **exc.details,
    )
    return _status_response(exc.http_status)


def metrics_handler(path: str, fetcher: MetricsFetcher) -> Handler:
    """Serve the filtered metrics of a single-upstream fetcher."""

    async def handle(request: Request) -> Response:
        try:
            constraints = parse_filter_params(request.query_params.multi_items())
        except ClientInputError as exc:
            logger.debug("invalid_query", path=path, **exc.details)
            return _status_response(exc.http_status, exc.message)

        try:
            families = await fetcher.fetch_metrics()
        except FilterProxyError as exc:
            return _fetch_failed(path, exc)

        return _render_metrics(families, constraints)

    return handle


def multi_metrics_handler(path: str, fetcher: MultiMetricsFetcher) -> Handler:
    """Serve the filtered metrics of one address of a cluster fetcher."""

    async def handle(request: Request, address: str) -> Response:
        try:
            constraints = parse_filter_params(request.query_params.multi_items())
        except ClientInputError as exc:
            logger.debug("invalid_query", path=path, **exc.details)
            return _status_response(exc.http_status, exc.message)

        try:
            families = await fetcher.fetch_metrics_for(address)
        except FilterProxyError as exc:
            return _fetch_failed(f"{path}/{address}", exc)

        if families is None:
            return _status_response(status.HTTP_404_NOT_FOUND)

        return _render_metrics(families, constraints)

    return handle


def discovery_handler(source: DiscoverySource) -> Handler:
    """Serve a discovery document built from ``source``."""

    async def handle(request: Request) -> Response:
        base_target = request.headers.get("host", "")
        base_path = request.url.path.rstrip("/")
        try:
            entries = await source(base_target, base_path)
        except Exception as exc:
            logger.error(
                "discovery_failed",
                path=request.url.path,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return _status_response(status.HTTP_500_INTERNAL_SERVER_ERROR)

        return JSONResponse([entry.to_dict() for entry in entries])

    return handle


def build_router(fetchers: Mapping[str, TargetFetcher]) -> APIRouter:
    """Create the routes of all configured endpoints, keyed by mount path."""
    router = APIRouter()
    discovery = MultiTargetDiscovery(fetchers)
    router.add_api_route("/", discovery_handler(discovery.discover), methods=["GET"])

    for path, fetcher in fetchers.items():
        if isinstance(fetcher, MultiMetricsFetcher):
            router.add_api_route(path, discovery_handler(fetcher.discovery_entries), methods=["GET"])
            router.add_api_route(
                f"{path}/{{address}}",
                multi_metrics_handler(path, fetcher),
                methods=["GET"],
            )
        elif isinstance(fetcher, MetricsFetcher):
            router.add_api_route(path, metrics_handler(path, fetcher), methods=["GET"])
        else:
            raise TypeError(f"unsupported fetcher for {path}: {type(fetcher).__name__}")

    return router
