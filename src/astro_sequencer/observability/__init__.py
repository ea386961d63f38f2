"""Observability for astro-sequencer.

Structured logging shared by the device layer and the session engine.

Example:
    from astro_sequencer.observability import get_logger, LogContext

    logger = get_logger(__name__)

    with LogContext(target="NGC 7000"):
        logger.info("Guiding settled", attempt=1, settle_pixels=0.5)
"""

from astro_sequencer.observability.logging import (
    JSONFormatter,
    LogContext,
    StructuredFormatter,
    StructuredLogger,
    configure_logging,
    current_context,
    get_logger,
    reset_logging,
)

__all__ = [
    "JSONFormatter",
    "LogContext",
    "StructuredFormatter",
    "StructuredLogger",
    "configure_logging",
    "current_context",
    "get_logger",
    "reset_logging",
]
