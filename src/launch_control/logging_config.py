import logging
import sys
from pathlib import Path
from typing import TextIO

import structlog

_log_file: TextIO | None = None


def configure_logging(log_dir: Path | None = None, level: str = "INFO") -> None:
    """Configure structured logging for the supervisor daemon.

    Events go to stderr, or are appended to ``launch_control.log`` inside
    ``log_dir`` when one is given. Reconfiguring closes the file opened by
    the previous call.
    """
    global _log_file
    if _log_file is not None:
        _log_file.close()
        _log_file = None

    logger_factory = structlog.PrintLoggerFactory(sys.stderr)
    if log_dir:
        log_dir.mkdir(parents=True, exist_ok=True)
        _log_file = (log_dir / "launch_control.log").open("a", buffering=1)
        logger_factory = structlog.WriteLoggerFactory(_log_file)

    renderer = (
        structlog.dev.ConsoleRenderer()
        if sys.stderr.isatty() and not log_dir
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=False,
    )


def get_logger(workload_id: str | None = None, **kwargs: object) -> structlog.BoundLogger:
    """Get a structured logger, optionally bound to a workload id."""
    log = structlog.get_logger()
    if workload_id:
        log = log.bind(workload=workload_id)
    if kwargs:
        log = log.bind(**kwargs)
    return log
