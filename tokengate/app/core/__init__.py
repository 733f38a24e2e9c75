"""Core utilities for the rate limiter."""

from tokengate.app.core.config import settings
from tokengate.app.core.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
]
