"""
Logging configuration using structlog.

JSON output is the default so logs from scheduled or CI invocations can be
shipped as-is; interactive CLI sessions can switch to the console renderer.
"""

from typing import Any, TextIO

import structlog


def configure_logging(log_level: str = "INFO", json_output: bool = True, stream: TextIO | None = None) -> None:
    """Configure structured logging.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Render JSON lines; False renders human-readable console output
        stream: Where log lines go (defaults to stdout). The CLI passes
            stderr so command output stays clean.
    """
    renderer: Any = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level.upper()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a logger instance.

    Args:
        name: Logger name, usually the calling module's __name__

    Returns:
        A structlog bound logger; events are snake_case strings with
        keyword context.

    Example:
        >>> log = get_logger(__name__)
        >>> log.info("step_started", step_id=step.id, step_number=4)
        >>> log.warning("step_persist_failed", step_id=step.id, error=str(e))
    """
    return structlog.get_logger(name)
