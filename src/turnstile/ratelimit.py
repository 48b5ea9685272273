import logging
import time
from typing import Callable

from .state import RateWindow

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_WINDOW_SECONDS = 60.0

logger = logging.getLogger("turnstile")


class RateLimiter:
    """Bounds refresh attempts inside a resetting time window.

    A refresh token that the server keeps rejecting would otherwise cause an
    endless refresh storm; once more than ``max_attempts`` refreshes happen within
    ``window`` seconds the caller is told to force a logout instead.
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        window: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if window <= 0:
            raise ValueError("window must be > 0")
        self.max_attempts = max_attempts
        self.window = window
        self._clock = clock
        self._window = RateWindow(started_at=clock())

    @property
    def attempts(self) -> int:
        return self._window.attempts

    def record_attempt(self) -> None:
        now = self._clock()
        if self._window.elapsed(now) >= self.window:
            if self._window.attempts > 0:
                logger.debug("refresh attempt window elapsed; resetting counter")
            self._window.restart(now)
        self._window.attempts += 1

    def should_force_logout(self) -> bool:
        if self._window.attempts <= self.max_attempts:
            return False
        logger.warning(
            f"{self._window.attempts} refresh attempts within {self.window:.0f}s; forcing logout"
        )
        self._window.restart(self._clock())
        return True

    def reset(self) -> None:
        self._window.restart(self._clock())
