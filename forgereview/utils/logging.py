"""forgereview logging config

## Setup

Logging is automatically configured when this module is imported. It uses structlog for structured logging. Logs are
pretty-printed in local env (FORGEREVIEW_ENVIRONMENT='local') and are JSON-formatted in other envs.

Example usage:

```
from forgereview.utils.logging import get_logger

logger = get_logger(__name__)
logger.info("Fetched diff", pull_request="owner/repo#12")
```

## Log context

Backends wrap each forge call in LogContext, so every line logged while the call is in flight (transport
warnings, diagnostic records, batch summaries) carries forge, pull_request and operation:

```
from forgereview.utils.logging import LogContext, get_logger

with LogContext(forge="github", pull_request="owner/repo#12", operation="send-review"):
    logger.info("Submitting review")  # Includes forge, pull_request and operation
```

The bound keys are dropped again when the block exits, also when it raises.

### Standard logging integration

Python's standard `logging` module is routed through structlog, so library code using `logging.getLogger()`
(httpx, redis) is formatted the same way.
"""

from __future__ import annotations

import logging
import os
from typing import Any

import structlog
import structlog.contextvars

from forgereview.utils.config import get_forgereview_environment


def _is_local_environment() -> bool:
    """Check if we're running in a local development environment.

    Returns:
        True if running locally, False otherwise
    """
    return get_forgereview_environment() == "local"


def _get_log_renderer() -> structlog.types.Processor:
    """Get the appropriate console renderer based on environment.

    Can be overridden with LOG_RENDERER environment variable:
    - 'console': Force ConsoleRenderer (human-readable with colors)
    - 'json': Force JSONRenderer (structured JSON output)

    Returns:
        ConsoleRenderer for local dev, JSONRenderer otherwise
    """
    log_renderer = os.getenv("LOG_RENDERER", "").lower()
    if log_renderer == "console":
        use_console = True
    elif log_renderer == "json":
        use_console = False
    else:
        use_console = _is_local_environment()

    if use_console:
        return structlog.dev.ConsoleRenderer(
            colors=True,
            pad_event=0,
            force_colors=False,
            repr_native_str=False,
            exception_formatter=structlog.dev.plain_traceback,
            sort_keys=True,
            event_key="message",
        )
    else:
        return structlog.processors.JSONRenderer()


def configure_logging() -> None:
    """Configure structlog with environment-appropriate settings using built-in contextvars.

    Local development: Human-readable console output with colors
    Everything else: JSON format for log aggregation
    """
    common_processors: list[structlog.types.Processor] = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.contextvars.merge_contextvars,
        structlog.processors.EventRenamer("message"),
        structlog.stdlib.filter_by_level,  # Must come after add_log_level
    ]

    structlog.configure(
        processors=common_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Standard library loggers handle their own filtering, so filter_by_level is left out here
    foreign_processors = [p for p in common_processors if p != structlog.stdlib.filter_by_level]
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_get_log_renderer(),
            foreign_pre_chain=foreign_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(stream_handler)

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    numeric_log_level = getattr(logging, log_level, logging.INFO)
    root_logger.setLevel(numeric_log_level)

    # httpx logs every request at INFO; keep it quiet unless we're debugging
    if numeric_log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


configure_logging()


# Binds keys for the duration of a with block, e.g. the operation a backend is running
LogContext = structlog.contextvars.bound_contextvars


def get_logger(name: str, **kwargs: Any) -> structlog.stdlib.BoundLogger:
    """Get a logger instance. Wrapper around structlog.get_logger for convenience.

    Args:
        name: Logger name (usually __name__ from the calling module)
        **kwargs: Context bound to every message from this logger

    Example:
        ```python
        from forgereview.utils.logging import get_logger

        logger = get_logger(__name__, forge="github")
        logger.info("Starting")  # Includes forge
        ```
    """
    logger = structlog.get_logger(name, **kwargs)
    return logger
