"""
Structured logging utilities.

Provides logging setup for the service and a context manager for timed
operation logging.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from src.core.config.logging_config import LoggingConfig

logger = logging.getLogger(__name__)


def configure_logging(logging_config: LoggingConfig) -> None:
    """
    Configure stdlib logging and route structlog through it.

    Args:
        logging_config: Level, format and optional file path
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if logging_config.file_path:
        handlers.append(logging.FileHandler(logging_config.file_path, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, logging_config.level.upper(), logging.INFO),
        format=logging_config.format,
        handlers=handlers,
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@asynccontextmanager
async def log_operation(
    operation: str,
    subject_ids: dict[str, str] | None = None,
    **context: Any,
) -> Any:  # AsyncGenerator[None, None]
    """
    Context manager for structured operation logging.

    Logs operation start, completion, and errors with timing information.

    Args:
        operation: Name of the operation being performed
        subject_ids: Dictionary of subject identifiers (e.g., {"tier": "memory"})
        **context: Additional context to include in logs

    Example:
        async with log_operation("cache_sweep", entries=cache.total_entries):
            await asyncio.to_thread(cache.sweep)
    """
    start_time = time.time()
    log_context = {
        "operation": operation,
        **(subject_ids or {}),
        **context,
    }

    logger.debug(f"🚀 Starting {operation}", extra=log_context)

    try:
        yield
    except Exception as e:
        latency_ms = int((time.time() - start_time) * 1000)
        logger.error(
            f"❌ {operation} failed after {latency_ms}ms",
            extra={**log_context, "error": str(e), "latency_ms": latency_ms},
            exc_info=True,
        )
        raise
    else:
        latency_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"✅ {operation} completed in {latency_ms}ms",
            extra={**log_context, "latency_ms": latency_ms},
        )
