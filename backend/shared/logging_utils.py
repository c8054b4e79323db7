"""
Logging helpers.

Provides the shared log format and a rate-limited logger for diagnostics
emitted from per-frame code paths.
"""

import logging
import time
from typing import Callable, Dict, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """
    Configure root logging with the application format.

    Args:
        level: Logging level name (default INFO)
    """
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


class RateLimitedLogger:
    """
    Emit each message key at most once per interval.

    Inference runs on every frame, so its diagnostics go through this
    wrapper instead of straight to the logger.
    """

    def __init__(
        self,
        logger: logging.Logger,
        interval_seconds: float = 2.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize rate-limited logger.

        Args:
            logger: Underlying logger
            interval_seconds: Minimum seconds between two emissions of one key
            clock: Monotonic clock (default time.monotonic)
        """
        self.logger = logger
        self.interval_seconds = interval_seconds
        self.clock = clock or time.monotonic
        self._last_emitted: Dict[str, float] = {}

    def log(self, key: str, level: int, message: str) -> bool:
        """
        Log message unless the key was emitted within the interval.

        Returns:
            True if the message was emitted
        """
        now = self.clock()
        last = self._last_emitted.get(key)
        if last is not None and now - last < self.interval_seconds:
            return False

        self._last_emitted[key] = now
        self.logger.log(level, message)
        return True

    def debug(self, key: str, message: str) -> bool:
        return self.log(key, logging.DEBUG, message)

    def info(self, key: str, message: str) -> bool:
        return self.log(key, logging.INFO, message)

    def warning(self, key: str, message: str) -> bool:
        return self.log(key, logging.WARNING, message)

    def reset(self) -> None:
        """Forget all emission times."""
        self._last_emitted.clear()
