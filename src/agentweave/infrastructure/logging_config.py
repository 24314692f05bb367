"""structlog configuration for console or JSON output."""

import logging

import structlog


def setup_logging(level: str = "INFO", log_format: str = "console") -> None:
    """
    Configure stdlib logging and structlog processors.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ...)
        log_format: "console" for human-readable output, "json" for one JSON
            object per line
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")
    logging.basicConfig(level=numeric_level, format="%(message)s")

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            (
                structlog.processors.JSONRenderer()
                if log_format == "json"
                else structlog.dev.ConsoleRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )
