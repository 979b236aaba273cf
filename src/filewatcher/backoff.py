"""Exponential backoff for reconnect and ack retries."""

import threading
from typing import Optional


class ExponentialBackoff:
    """
    Growing delay between attempts, reset after a success.
    
    The first failure waits ``min_ms``; each further failure multiplies the
    delay by ``factor`` up to ``max_ms``.
    """

    def __init__(
        self,
        min_ms: int = 500,
        max_ms: int = 30000,
        factor: float = 1.5,
        stop_event: Optional[threading.Event] = None,
    ):
        self.min_ms = min_ms
        self.max_ms = max_ms
        self.factor = factor
        self._stop_event = stop_event or threading.Event()
        self._current_ms = float(min_ms)

    @property
    def current_ms(self) -> int:
        return int(self._current_ms)

    def next_delay_ms(self) -> int:
        """Return the delay for this failure and grow the next one."""
        delay = self._current_ms
        self._current_ms = min(self._current_ms * self.factor, float(self.max_ms))
        return int(delay)

    def fail_and_wait(self) -> bool:
        """
        Sleep for the current delay.
        
        Returns:
            False if the stop event was set while waiting
        """
        delay = self.next_delay_ms()
        return not self._stop_event.wait(delay / 1000.0)

    def reset(self) -> None:
        self._current_ms = float(self.min_ms)
