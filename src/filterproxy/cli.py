"""
filterproxy command line entry point.

Usage:
    filterproxy --config config.yaml [--log-level LEVEL] [--log-format json|console]

Settings not given on the command line are read from FILTERPROXY_*
environment variables.
"""

from __future__ import annotations

import argparse
import sys
from typing import Sequence

import structlog
import uvicorn

from filterproxy import __version__
from filterproxy.api.main import create_app
from filterproxy.config import Settings, get_settings, load_config, parse_addr
from filterproxy.core.errors import ExitCode, main_with_error_handling
from filterproxy.logging import configure_logging
from filterproxy.targets import build_fetchers

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="filterproxy",
        description="Label-filtering caching proxy for Prometheus exporters",
    )
    parser.add_argument("--config", help="Path to the endpoint configuration file")
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)")
    parser.add_argument("--log-format", choices=["json", "console"], help="Log output format")
    parser.add_argument("--version", action="version", version=f"filterproxy {__version__}")
    return parser


def settings_from_args(args: argparse.Namespace, base: Settings | None = None) -> Settings:
    """Overlay command line flags on the environment settings."""
    settings = base or get_settings()
    overrides = {
        key: value
        for key, value in (
            ("config", args.config),
            ("log_level", args.log_level),
            ("log_format", args.log_format),
        )
        if value is not None
    }
    return settings.model_copy(update=overrides)


@main_with_error_handling()
def run(settings: Settings) -> int:
    config = load_config(settings.config)
    host, port = parse_addr(config.addr)
    app = create_app(build_fetchers(config, settings))

    logger.info("listening", host=host, port=port, endpoints=len(config.endpoints))
    uvicorn.run(app, host=host, port=port, log_config=None, timeout_keep_alive=120)
    return ExitCode.SUCCESS


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    settings = settings_from_args(args)
    configure_logging(settings.log_level, settings.log_format)
    sys.exit(run(settings))


if __name__ == "__main__":
    main()
