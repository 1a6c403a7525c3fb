"""
Structured logging setup using structlog.
Provides configurable output formats and a helper for per-check context.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union
import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[Union[str, Path]] = None,
    debug: bool = False
) -> None:
    """
    Set up structured logging with configurable output formats.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format (json or console)
        log_file: Optional log file path
        debug: Add call-site information to every event
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if debug:
        processors.append(structlog.processors.CallsiteParameterAdder())

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_handler.setFormatter(logging.Formatter('%(message)s'))
        logging.getLogger().addHandler(file_handler)

    logger = structlog.get_logger(__name__)
    logger.info(
        "Logging system initialized",
        level=log_level,
        format=log_format,
        file=str(log_file) if log_file else None,
        debug=debug
    )


class CheckLogger:
    """
    Logger for a single source check with bound context.
    """

    def __init__(self, name: str = "check_pipeline"):
        self.logger = structlog.get_logger(name)
        self.context = {}

    def bind_context(self, **kwargs) -> 'CheckLogger':
        """
        Bind context variables to the logger.

        Args:
            **kwargs: Context variables to bind

        Returns:
            Self for method chaining
        """
        self.context.update(kwargs)
        return self

    def clear_context(self) -> 'CheckLogger':
        """Clear all context variables."""
        self.context.clear()
        return self

    def log_check_start(self, url: str, kind: str) -> None:
        self.logger.info("Source check started", url=url, kind=kind, **self.context)

    def log_fetched(self, total_items: int) -> None:
        self.logger.debug("Source listing fetched", total_items=total_items, **self.context)

    def log_check_complete(self, total_items: int, new_items: int, duration_seconds: float) -> None:
        self.logger.info(
            "Source check completed",
            total_items=total_items,
            new_items=new_items,
            duration_seconds=duration_seconds,
            **self.context
        )

    def log_error(self, error: str, step: Optional[str] = None) -> None:
        """Log error with context."""
        self.logger.error("Source check failed", error=error, step=step, **self.context)

    def log_degraded(self, operation: str, error: str) -> None:
        """Log a bookkeeping failure that does not abort the check."""
        self.logger.warning(
            "Session bookkeeping degraded",
            operation=operation,
            error=error,
            **self.context
        )
