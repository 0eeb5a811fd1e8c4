"""Logging setup for the fulfillment service."""
import logging
import sys
import threading
from typing import Optional

_LOGGER_PREFIX = "fulfillment"
_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False
_lock = threading.Lock()


def configure_logging(level: str = "INFO", handler: Optional[logging.Handler] = None) -> None:
    """Attach a single stream handler to the fulfillment logger tree (idempotent)."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    h = handler or logging.StreamHandler(sys.stderr)
    h.setFormatter(logging.Formatter(_LOG_FORMAT))
    root_logger.addHandler(h)


def reset_logging() -> None:
    """Reset logging configuration. FOR TESTING ONLY."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
