"""
Charity register API client.

Fetches organization details, name/number searches and financial history from
the register's REST API, with:
- round-robin over several subscription keys (per-key usage stats)
- a shared token-bucket rate limiter
- an explicit retry state machine (exponential backoff, Retry-After on 429)
- cooperative cancellation at every wait
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import requests

from ..constants import (
    DEFAULT_CLIENT_MAX_RETRIES,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_USER_AGENT,
    REGISTRY_BASE_URL,
    REGISTRY_KEY_HEADER,
)
from ..errors import ClientError, NotFoundError, RateLimitedError, ResponseDecodeError, TransientError
from ..utils.cancellation import sleep_or_cancel
from ..utils.rate_limiter import TokenBucketRateLimiter
from ..utils.retry import RetryState, RetryStateMachine


@dataclass
class KeyStats:
    """Usage counters for one API key (in-process only)."""

    label: str = ""  # masked key, for display
    total_requests: int = 0
    failed_requests: int = 0
    rate_limited: int = 0
    last_used: Optional[datetime] = None


def mask_key(key: str) -> str:
    """Display form of an API key: first 8 + "..." + last 4, or "***" + last 4 for short keys."""
    if len(key) > 12:
        return f"{key[:8]}...{key[-4:]}"
    return f"***{key[-4:]}"


def _parse_retry_after(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        seconds = int(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class RegistryClient:
    """
    Client for the charity register API with multi-key support.

    Thread-safe: one instance is shared by all crawler workers.
    """

    def __init__(
        self,
        api_keys: List[str],
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        max_retries: int = DEFAULT_CLIENT_MAX_RETRIES,
        timeout: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        base_url: str = REGISTRY_BASE_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
        logger=None,
        verbose: bool = False,
    ):
        """
        Initialize the registry client.

        Args:
            api_keys: One or more subscription keys, used round-robin
            rate_limiter: Shared limiter; None disables client-side limiting
            max_retries: Retries after the first attempt for retriable failures
            timeout: Per-request timeout in seconds
            base_url: API root (no trailing slash)
            user_agent: User-Agent header value
            session: Optional requests session (tests inject a mock)
            logger: Logger instance
            verbose: Log each retry and key rotation
        """
        keys = [k for k in (api_keys or []) if k]
        if not keys:
            raise ValueError("at least one API key is required")

        self.api_keys = keys
        self.rate_limiter = rate_limiter
        self.max_retries = max_retries
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(__name__)
        self.verbose = verbose

        self._lock = threading.Lock()
        self._key_index = 0
        self._key_stats = [KeyStats(label=mask_key(key)) for key in keys]

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def fetch_details(self, registered_number: int, cancel_event: Optional[threading.Event] = None) -> Dict[str, Any]:
        """Fetch the full details payload for a registration number."""
        return self._get(f"/allcharitydetailsV2/{registered_number}/0", cancel_event)

    def search_by_name(self, query: str, cancel_event: Optional[threading.Event] = None) -> List[Dict[str, Any]]:
        """Search organizations by name."""
        result = self._get(f"/searchCharityName/{quote(query, safe='')}", cancel_event)
        return result or []

    def search_by_number(
        self, registered_number: int | str, cancel_event: Optional[threading.Event] = None
    ) -> List[Dict[str, Any]]:
        """Look up one registration number; wrapped in a list like the other searches."""
        result = self._get(f"/charityRegNumber/{registered_number}/0", cancel_event)
        return [result]

    def fetch_financial_history(
        self, registered_number: int, cancel_event: Optional[threading.Event] = None
    ) -> List[Dict[str, Any]]:
        """Fetch the per-year financial history for a registration number."""
        result = self._get(f"/charityfinancialhistory/{registered_number}/0", cancel_event)
        return result or []

    def get_key_stats(self) -> List[KeyStats]:
        """Snapshot of per-key usage, one entry per key in rotation order."""
        with self._lock:
            return [replace(stats) for stats in self._key_stats]

    # ------------------------------------------------------------------
    # Request execution
    # ------------------------------------------------------------------

    def _next_key(self) -> Tuple[int, str]:
        """Round-robin key selection; records the attempt on the chosen key."""
        with self._lock:
            slot = self._key_index % len(self.api_keys)
            self._key_index += 1
            stats = self._key_stats[slot]
            stats.total_requests += 1
            stats.last_used = datetime.now()
        return slot, self.api_keys[slot]

    def _record_failure(self, slot: int, rate_limited: bool = False) -> None:
        with self._lock:
            stats = self._key_stats[slot]
            stats.failed_requests += 1
            if rate_limited:
                stats.rate_limited += 1

    def _get(self, path: str, cancel_event: Optional[threading.Event]) -> Any:
        url = f"{self.base_url}{path}"
        machine = RetryStateMachine(self.max_retries)
        delay = 0.0

        while True:
            slot, key = self._next_key()
            if self.rate_limiter is not None:
                self.rate_limiter.wait(cancel_event)
            if delay > 0:
                if self.verbose:
                    self.logger.info(
                        f"Retry {machine.attempt}/{self.max_retries} after {delay:.0f}s (using key {mask_key(key)})"
                    )
                sleep_or_cancel(delay, cancel_event)

            try:
                data = self._send(url, key)
            except RateLimitedError as e:
                self._record_failure(slot, rate_limited=True)
                wait = e.retry_after if e.retry_after is not None else float(2**machine.attempt)
                rotate = len(self.api_keys) > 1 and machine.retries_remaining
                if self.verbose:
                    action = "rotating to next API key" if rotate else f"waiting {wait:.0f}s before retry"
                    self.logger.warning(f"Rate limited (429) on key {mask_key(key)}, {action}")
                if machine.fail(e, 0.0 if rotate else wait) is RetryState.EXHAUSTED:
                    raise
                delay = machine.next_attempt()
            except TransientError as e:
                self._record_failure(slot)
                if machine.fail(e) is RetryState.EXHAUSTED:
                    raise
                delay = machine.next_attempt()
                if self.verbose:
                    self.logger.warning(f"{e}, waiting {delay:.0f}s before retry")
            except NotFoundError:
                raise
            except ClientError:
                self._record_failure(slot)
                raise
            else:
                machine.succeed()
                return data

    def _send(self, url: str, key: str) -> Any:
        """One GET, classified into a value or a typed error."""
        headers = {
            REGISTRY_KEY_HEADER: key,
            "User-Agent": self.user_agent,
            "Accept": "application/json",
        }
        try:
            response = self.session.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransientError(f"Request failed: {e}") from e

        status = response.status_code
        if status == 200:
            try:
                return response.json()
            except ValueError as e:
                raise ResponseDecodeError(f"Invalid JSON in response: {e}", status_code=status) from e

        if status == 404:
            raise NotFoundError()

        body = response.text
        if status == 429:
            raise RateLimitedError(retry_after=_parse_retry_after(response.headers.get("Retry-After")), body=body)

        if status >= 500:
            raise TransientError(f"Server error ({status})", status_code=status, body=body)

        raise ClientError(f"API error ({status}): {body}", status_code=status, body=body)
