"""
Centralized logging for the performance-test manual input backend.

Structured, level-based logging using Python's built-in logging module.

Usage:
    from api.shared.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Fetched %d input tags for perf %s", len(tags), perf_id)
    logger.warning("Save already in progress for perf %s", perf_id)
    logger.error("Backend call failed: %s", err)
"""

import logging
import sys

_configured = False


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging for the backend.

    Call once at startup (main.py). Subsequent calls only adjust the level.
    """
    global _configured
    resolved = getattr(logging, str(level).upper(), logging.INFO)
    if _configured:
        logging.getLogger().setLevel(resolved)
        return

    logging.basicConfig(
        level=resolved,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger scoped to the backend namespace.

    Args:
        name: Module name (typically ``__name__``).
    """
    return logging.getLogger(name)
