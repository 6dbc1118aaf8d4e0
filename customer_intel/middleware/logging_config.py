"""
Structured Logging

structlog setup for the sweeps, the workflow engine and the CLI.

- JSON lines in production, coloured console output locally
- `sweep` / `sweep_id` bound for everything logged inside a sweep
- Helpers for workflow lifecycle events and outbound dispatch calls

Calculation modules (scoring, segmentation, trends) log through the standard
library; configure_logging() routes those records at the same level.
"""

import logging
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog

_SHARED_PROCESSORS = (
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.StackInfoRenderer(),
    structlog.dev.set_exc_info,
)


def configure_logging(log_level: str = "INFO", json_logs: bool = True):
    """
    Configure structlog and stdlib logging.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_logs: JSON renderer with UTC ISO timestamps when True,
            console renderer with local timestamps otherwise
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if json_logs:
        tail = [structlog.processors.TimeStamper(fmt="iso", utc=True), structlog.processors.JSONRenderer()]
    else:
        tail = [structlog.processors.TimeStamper(fmt="%H:%M:%S", utc=False), structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[*_SHARED_PROCESSORS, *tail],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        level=level,
        force=True,
    )


@contextmanager
def sweep_context(sweep: str) -> Iterator[str]:
    """
    Tag every log line inside the block with the sweep name and a fresh id.

        with sweep_context("due_jobs"):
            logger.info("due_jobs_found", count=3)
    """
    sweep_id = uuid.uuid4().hex[:12]
    tokens = structlog.contextvars.bind_contextvars(sweep=sweep, sweep_id=sweep_id)
    try:
        yield sweep_id
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


def get_logger(name: Optional[str] = None):
    return structlog.get_logger(name)


def log_business_event(event_type: str, **details):
    """Workflow lifecycle record (started, stopped, completed)."""
    get_logger("customer_intel.business").info(event_type, category="business", **details)


def log_integration_call(
    integration: str,
    operation: str,
    duration: float,
    success: bool = True,
    error: Optional[str] = None
):
    """Outcome and latency of one outbound call (email / chat provider)."""
    logger = get_logger("customer_intel.integrations").bind(
        integration=integration,
        operation=operation,
        duration_ms=round(duration * 1000, 1),
    )
    if success:
        logger.info("integration_call_succeeded")
    else:
        logger.warning("integration_call_failed", error=error)
