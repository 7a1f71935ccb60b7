"""
Retry state machine for registry requests.

States:
    ATTEMPTING -> a request may be sent
    BACKOFF    -> the last attempt failed retriably; wait `delay` seconds
    SUCCEEDED  -> terminal, response accepted
    EXHAUSTED  -> terminal, retry budget spent; `last_error` is surfaced

The machine only tracks state; the client does the I/O and the sleeping.
"""

from enum import Enum
from typing import Optional


class RetryState(str, Enum):
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


def backoff_delay(attempt: int) -> float:
    """Pure exponential backoff before retry `attempt` (1-based): 1s, 2s, 4s..."""
    if attempt <= 0:
        return 0.0
    return float(2 ** (attempt - 1))


class RetryStateMachine:
    """Drives one logical request through up to `max_retries` retries."""

    def __init__(self, max_retries: int):
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        self.max_retries = max_retries
        self.attempt = 0
        self.state = RetryState.ATTEMPTING
        self.delay = 0.0
        self.last_error: Optional[Exception] = None

    @property
    def retries_remaining(self) -> bool:
        return self.attempt < self.max_retries

    def succeed(self) -> None:
        self.state = RetryState.SUCCEEDED

    def fail(self, error: Exception, delay: Optional[float] = None) -> RetryState:
        """
        Record a retriable failure of the current attempt.

        Args:
            error: The classified error
            delay: Seconds to wait before the next attempt; defaults to
                exponential backoff for the next attempt number

        Returns:
            BACKOFF if another attempt is allowed, else EXHAUSTED
        """
        self.last_error = error
        if not self.retries_remaining:
            self.state = RetryState.EXHAUSTED
            return self.state
        self.delay = backoff_delay(self.attempt + 1) if delay is None else max(0.0, delay)
        self.state = RetryState.BACKOFF
        return self.state

    def next_attempt(self) -> float:
        """
        Leave BACKOFF for the next attempt.

        Returns:
            The delay to sleep before sending
        """
        if self.state is not RetryState.BACKOFF:
            raise RuntimeError(f"cannot start a new attempt from state {self.state.value}")
        self.attempt += 1
        self.state = RetryState.ATTEMPTING
        delay, self.delay = self.delay, 0.0
        return delay
