"""Suite-wide fixtures: JSON logging, log capture and a fixed clock."""

import json
import logging
from datetime import datetime, timezone

import pytest

from school_kernel.domain.clock import DeterministicClock
from school_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

_KERNEL_LOGGER = "school_kernel"


class _JsonRecordCollector(logging.Handler):
    """Formats each record with StructuredFormatter and keeps the parsed dict."""

    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.setFormatter(StructuredFormatter())
        self.records: list[dict] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(json.loads(self.format(record)))


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    reset_logging()
    configure_logging(level=logging.DEBUG, handler=logging.NullHandler())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Parsed JSON records emitted under ``school_kernel`` during the test.

    Call the fixture value to get the records seen so far::

        scheduler.tick()
        assert "job_triggered" in [r["message"] for r in captured_logs()]
    """
    collector = _JsonRecordCollector()
    kernel = logging.getLogger(_KERNEL_LOGGER)
    saved_level = kernel.level
    kernel.setLevel(logging.DEBUG)
    kernel.addHandler(collector)
    try:
        yield lambda: list(collector.records)
    finally:
        kernel.removeHandler(collector)
        kernel.setLevel(saved_level)


# =============================================================================
# Clock
# =============================================================================


@pytest.fixture
def clock():
    """Sunday 2024-03-10 12:00 UTC."""
    return DeterministicClock(datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc))
