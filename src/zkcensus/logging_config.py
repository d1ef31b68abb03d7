"""
Structured logging setup for the zkcensus system.

Modules log through ``structlog.get_logger(__name__)``; this module decides
how those events are rendered. JSON lines are meant for log aggregation,
the console renderer for local runs.
"""

import logging
import sys
from typing import List, Optional

import structlog
from structlog.typing import Processor

from .config import LOG_LEVEL, STRUCTURED_LOGGING


def configure_logging(
    level: Optional[str] = None, structured: Optional[bool] = None
) -> None:
    """
    Configure structlog processors and the minimum level.

    Parameters
    ----------
    level : str, optional
        Level name; defaults to ``LOG_LEVEL``.
    structured : bool, optional
        JSON output when True, console output otherwise; defaults to
        ``STRUCTURED_LOGGING``.
    """
    level_name = (level or LOG_LEVEL).upper()
    structured = STRUCTURED_LOGGING if structured is None else structured

    shared_processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if structured:
        final_processor: Processor = structlog.processors.JSONRenderer(default=str)
    else:
        final_processor = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=shared_processors + [final_processor],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level_name, logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
