"""
Structured logging setup for the nightly wellness jobs.
Provides JSON-formatted logs with consistent fields for production monitoring.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging with JSON output for production.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("psycopg.pool").setLevel(logging.WARNING)


def bind_job_run(job_name: str, run_id: str) -> None:
    """Attach job name and run id to every log line of the current task."""
    structlog.contextvars.bind_contextvars(job=job_name, run_id=run_id)


def clear_job_run() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def log_job_summary(job_name: str, metrics: dict[str, Any]) -> None:
    """Log a job's final metrics with consistent fields."""
    logger = get_logger("jobs")

    log_data = {k: v for k, v in metrics.items() if k != "errors"}
    log_data["event_type"] = "job_summary"

    if metrics.get("processing_errors") or metrics.get("users_failed"):
        logger.warning("Job completed with errors", job_name=job_name, **log_data)
    else:
        logger.info("Job completed", job_name=job_name, **log_data)
