"""Fixed-interval request gate for outbound upstream calls."""

import time
from typing import Callable


class RequestGate:
    """Spaces outbound calls and applies a fixed backoff on rate limiting."""

    def __init__(
        self,
        min_interval: float = 0.5,
        rate_limit_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the gate.

        Args:
            min_interval: Minimum seconds between two calls through the gate
            rate_limit_delay: Seconds to wait after a rate-limit response
            sleep: Sleep function, replaceable in tests
            clock: Monotonic clock, replaceable in tests
        """
        if min_interval < 0 or rate_limit_delay < 0:
            raise ValueError("Gate delays cannot be negative")
        self.min_interval = min_interval
        self.rate_limit_delay = rate_limit_delay
        self._sleep = sleep
        self._clock = clock
        self._last_call: float | None = None

    def wait(self) -> float:
        """Block until the next call is allowed.

        Returns:
            Seconds slept
        """
        slept = 0.0
        if self._last_call is not None:
            elapsed = self._clock() - self._last_call
            remaining = self.min_interval - elapsed
            if remaining > 0:
                self._sleep(remaining)
                slept = remaining
        self._last_call = self._clock()
        return slept

    def backoff(self) -> float:
        """Wait the extended delay after the upstream signalled rate limiting."""
        self._sleep(self.rate_limit_delay)
        self._last_call = self._clock()
        return self.rate_limit_delay
