"""Root test configuration."""

import logging

import pytest
import structlog

from cfhub.clients.base import RetryPolicy


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


@pytest.fixture
def fast_retry_policy():
    """Three attempts with millisecond back-off so retry tests stay quick."""
    return RetryPolicy(max_attempts=3, initial_delay=0.01, backoff_multiplier=2.0, max_delay=0.05)
