"""
Cooperative cancellation helpers.

A single `threading.Event` is threaded through every call that can block.
Setting it makes limiter waits, backoff sleeps and queue feeds return
promptly with `CancelledError`; work already in flight is left to finish.
"""

import threading
import time
from typing import Optional

from ..errors import CancelledError


def is_cancelled(cancel_event: Optional[threading.Event]) -> bool:
    """Return True if the cancellation signal has been raised."""
    return cancel_event is not None and cancel_event.is_set()


def check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    """Raise CancelledError if the cancellation signal has been raised."""
    if is_cancelled(cancel_event):
        raise CancelledError("operation cancelled")


def sleep_or_cancel(seconds: float, cancel_event: Optional[threading.Event] = None) -> None:
    """
    Sleep for `seconds`, waking early if cancelled.

    Args:
        seconds: Time to sleep
        cancel_event: Optional cancellation signal

    Raises:
        CancelledError: If the signal is raised before or during the sleep
    """
    check_cancelled(cancel_event)
    if seconds <= 0:
        return
    if cancel_event is None:
        time.sleep(seconds)
        return
    if cancel_event.wait(seconds):
        raise CancelledError("operation cancelled")
