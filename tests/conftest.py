"""Root test configuration."""

import logging
from pathlib import Path

import pytest
import structlog

FIXTURES = Path(__file__).parent / "fixtures"


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def read_fixture(name: str) -> bytes:
    return (FIXTURES / "metrics" / name).read_bytes()


@pytest.fixture
def simple_metrics() -> bytes:
    return read_fixture("simple.prom")


@pytest.fixture
def simple_two_metrics() -> bytes:
    return read_fixture("simple_two.prom")


class FakeClock:
    """Manually advanced clock, in seconds."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
