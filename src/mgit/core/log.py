"""Structured logging setup for mgit.

Library modules call ``structlog.get_logger(__name__)`` and log events with
key/value context. The CLI calls :func:`setup_logging` once at startup.
"""

import logging
import os
import sys
from typing import Any, List, Optional

import structlog

DEFAULT_LEVEL = "WARNING"


def setup_logging(level: Optional[str] = None, json_output: bool = False) -> None:
    """Configure structlog and the stdlib root logger to write to stderr."""
    level_name = (level or os.environ.get("MGIT_LOG_LEVEL") or DEFAULT_LEVEL).upper()

    shared_processors: List[Any] = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: Any
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level_name, logging.WARNING))

    # GitPython logs every subprocess at DEBUG
    logging.getLogger("git").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
