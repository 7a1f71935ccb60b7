"""
Token-bucket rate limiter for registry API requests.

Problem: N crawl workers share one API budget. If every worker throttles on
its own, the registry sees N times the intended rate.

Solution: One limiter instance shared by every worker. Each request takes a
token; tokens refill at the target rate up to a bucket of one second's worth.
The recent-request ring doubles as a trailing one-second ceiling so a full
bucket spent right after a refill cannot push more than `r` requests into any
one-second window.

Usage:
    limiter = TokenBucketRateLimiter(requests_per_second=10)

    # In every worker:
    limiter.wait(cancel_event)
    response = session.get(url)
"""

import threading
import time
from collections import deque
from typing import Dict, Optional

from ..constants import RATE_LIMITER_HISTORY_SIZE
from .cancellation import check_cancelled, sleep_or_cancel


class TokenBucketRateLimiter:
    """
    Thread-safe token bucket.

    Access to the counters is serialized by one lock. Callers are capped to
    a handful of requests per second, so contention is negligible.
    """

    def __init__(self, requests_per_second: int, history_size: int = RATE_LIMITER_HISTORY_SIZE):
        """
        Initialize the limiter with a full bucket.

        Args:
            requests_per_second: Target rate, must be positive
            history_size: Minimum number of request timestamps retained for stats
        """
        if requests_per_second <= 0:
            raise ValueError(f"requests_per_second must be positive, got {requests_per_second}")

        self.requests_per_second = requests_per_second
        self.max_tokens = requests_per_second
        self.refill_interval = 1.0 / requests_per_second
        self._tokens = requests_per_second
        self._last_refill = time.monotonic()
        self._history: deque = deque(maxlen=max(history_size, requests_per_second))
        self._lock = threading.Lock()

    def _refill(self, now: float) -> None:
        """Add the tokens owed since the last refill. Caller holds the lock."""
        tokens_to_add = int((now - self._last_refill) / self.refill_interval)
        if tokens_to_add > 0:
            self._tokens = min(self.max_tokens, self._tokens + tokens_to_add)
            self._last_refill = now

    def _window_full(self, now: float) -> bool:
        """True if `max_tokens` requests already landed in the trailing second."""
        if len(self._history) < self.max_tokens:
            return False
        # History is ordered; the r-th most recent request bounds the window
        return now - self._history[-self.max_tokens] < 1.0

    def wait(self, cancel_event: Optional[threading.Event] = None) -> None:
        """
        Block until a request is permitted.

        Args:
            cancel_event: Optional cancellation signal checked while waiting

        Raises:
            CancelledError: If cancelled before a token became available
        """
        while True:
            check_cancelled(cancel_event)
            with self._lock:
                now = time.monotonic()
                self._refill(now)
                if self._tokens > 0 and not self._window_full(now):
                    self._tokens -= 1
                    self._history.append(now)
                    return
            sleep_or_cancel(self.refill_interval, cancel_event)

    def get_stats(self) -> Dict[str, int]:
        """
        Count recent requests from the retained history.

        Returns:
            Dict with requests_last_second and requests_last_minute
        """
        with self._lock:
            now = time.monotonic()
            last_second = sum(1 for t in self._history if now - t < 1.0)
            last_minute = sum(1 for t in self._history if now - t < 60.0)
        return {
            "requests_last_second": last_second,
            "requests_last_minute": last_minute,
        }
