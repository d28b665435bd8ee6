from __future__ import annotations

from collections.abc import Mapping
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI

from filterproxy import __version__
from filterproxy.api.routes import health, metrics
from filterproxy.config import Settings, get_settings, load_config
from filterproxy.logging import configure_logging
from filterproxy.targets import TargetFetcher, build_fetchers

logger = structlog.get_logger()


def create_app(fetchers: Mapping[str, TargetFetcher]) -> FastAPI:
    """Create the proxy application serving ``fetchers``, keyed by mount path."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        for path, fetcher in fetchers.items():
            await fetcher.aclose()
            logger.debug("fetcher_closed", path=path)

    app = FastAPI(
        title="filterproxy",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.fetchers = dict(fetchers)

    app.include_router(health.router, tags=["health"])
    app.include_router(metrics.build_router(fetchers), tags=["metrics"])
    return app


def create_app_from_settings(settings: Settings | None = None) -> FastAPI:
    """Load the endpoint configuration named by ``settings`` and build the app."""
    settings = settings or get_settings()
    config = load_config(settings.config)
    return create_app(build_fetchers(config, settings))


def app_factory() -> FastAPI:
    """Entry point for ``uvicorn --factory filterproxy.api.main:app_factory``."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    return create_app_from_settings(settings)
