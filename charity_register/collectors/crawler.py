"""
Registry crawler.

Walks an inclusive range of registration numbers through the registry API,
storing every organization found. Designed for multi-day runs:
- W worker threads share one client (and so one rate limiter)
- a checkpoint row is saved every K dispatched numbers, so a restart resumes
  where the feeder left off
- a cancellation event stops the feed promptly; in-flight records finish
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, ContextManager, Dict, Optional

from ..constants import DEFAULT_CHECKPOINT_INTERVAL, DEFAULT_CONCURRENCY
from ..db.client import DatabaseError
from ..db.client import transaction as db_transaction
from ..db.repository import (
    CheckpointRepository,
    FinancialRepository,
    Organization,
    OrganizationRepository,
    TrusteeRepository,
)
from ..errors import NotFoundError, PersistenceError
from ..utils.worker_pool import WorkerPool
from .registry_client import RegistryClient
from .registry_parser import (
    merge_financial_history,
    parse_financial,
    parse_linked_number,
    parse_organisation_number,
    parse_organization,
    parse_registration_number,
    parse_trustees,
)

SUCCESS = "success"
SKIPPED = "skipped"


@dataclass
class CrawlStats:
    """Counters shared by every crawl worker."""

    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    current_id: int = 0
    started_at: float = field(default_factory=time.monotonic)
    finished_at: Optional[float] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, outcome: str) -> None:
        with self._lock:
            self.processed += 1
            if outcome == SUCCESS:
                self.successful += 1
            elif outcome == SKIPPED:
                self.skipped += 1
            else:
                self.failed += 1

    def set_current(self, registered_number: int) -> None:
        with self._lock:
            self.current_id = registered_number

    def snapshot(self) -> "CrawlStats":
        with self._lock:
            return CrawlStats(
                processed=self.processed,
                successful=self.successful,
                failed=self.failed,
                skipped=self.skipped,
                current_id=self.current_id,
                started_at=self.started_at,
                finished_at=self.finished_at,
            )

    def finish(self) -> None:
        with self._lock:
            self.finished_at = time.monotonic()

    def rate(self) -> float:
        """Processed numbers per second."""
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        elapsed = end - self.started_at
        with self._lock:
            return self.processed / elapsed if elapsed > 0 else 0.0


class Crawler:
    """Fetches a range of registration numbers into the store."""

    def __init__(
        self,
        client: RegistryClient,
        workers: int = DEFAULT_CONCURRENCY,
        checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
        verbose: bool = False,
        fetch_financial_history: bool = False,
        organizations: Optional[OrganizationRepository] = None,
        financials: Optional[FinancialRepository] = None,
        trustees: Optional[TrusteeRepository] = None,
        checkpoints: Optional[CheckpointRepository] = None,
        transaction: Optional[Callable[[], ContextManager[Any]]] = None,
        logger=None,
        on_progress: Optional[Callable[[CrawlStats], None]] = None,
    ):
        """
        Initialize the crawler.

        Args:
            client: Registry client shared by all workers
            workers: Number of worker threads (W)
            checkpoint_interval: Save a checkpoint every K dispatched numbers
            verbose: Log every failed number
            fetch_financial_history: Also fetch the spending breakdown per organization
            organizations: Organization repository
            financials: Financial repository
            trustees: Trustee repository
            checkpoints: Checkpoint repository
            transaction: Context manager factory yielding a cursor
            logger: Logger instance
            on_progress: Called with a stats snapshot after every processed number
        """
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.client = client
        self.workers = workers
        self.checkpoint_interval = max(1, checkpoint_interval)
        self.verbose = verbose
        self.fetch_financial_history = fetch_financial_history
        self.organizations = organizations or OrganizationRepository()
        self.financials = financials or FinancialRepository()
        self.trustees = trustees or TrusteeRepository()
        self.checkpoints = checkpoints or CheckpointRepository()
        self._transaction = transaction or db_transaction
        self.logger = logger or logging.getLogger(__name__)
        self.on_progress = on_progress
        self.stats = CrawlStats()

    def resolve_start(self, start: int, end: int, resume_from: Optional[int] = None) -> int:
        """
        First number to dispatch.

        An explicit resume value wins. Otherwise a checkpoint inside
        [start, end] resumes at the number after it.
        """
        if resume_from:
            self.logger.info(f"Resuming from explicit number: {resume_from}")
            return resume_from

        checkpoint = self.checkpoints.load()
        if checkpoint is not None and start <= checkpoint.last_registered_number <= end:
            resume_at = checkpoint.last_registered_number + 1
            self.logger.info(f"Resuming from checkpoint: {checkpoint.last_registered_number} (next: {resume_at})")
            return resume_at
        return start

    def run(
        self,
        start: int,
        end: int,
        resume_from: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> CrawlStats:
        """Crawl [start, end] and return the final stats."""
        if end < start:
            raise ValueError(f"end ({end}) is before start ({start})")

        first = self.resolve_start(start, end, resume_from)
        self.stats = CrawlStats()
        last_dispatched: Optional[int] = None

        self.logger.info(
            f"Starting crawl: numbers {first}-{end}, {self.workers} workers, "
            f"checkpoint every {self.checkpoint_interval}"
        )

        def on_dispatch(registered_number: int, dispatched: int) -> None:
            nonlocal last_dispatched
            last_dispatched = registered_number
            self.stats.set_current(registered_number)
            if dispatched % self.checkpoint_interval == 0:
                self._save_checkpoint(registered_number)

        pool = WorkerPool(max_workers=self.workers, logger=self.logger)
        pool.run_queue(
            lambda n: self._work(n, cancel_event),
            range(first, end + 1),
            cancel_event=cancel_event,
            on_dispatch=on_dispatch,
            desc="Crawl",
        )

        if last_dispatched is not None:
            self._save_checkpoint(last_dispatched)

        self.stats.finish()
        self._log_summary()
        return self.stats.snapshot()

    def process_id(
        self,
        registered_number: int,
        cancel_event: Optional[threading.Event] = None,
        skip_existing: bool = True,
    ) -> str:
        """
        Fetch and store one registration number.

        Args:
            registered_number: Registration number to fetch
            cancel_event: Optional cancellation signal
            skip_existing: Return "skipped" without fetching when the number is already stored

        Returns:
            "success" or "skipped"

        Raises:
            Any fetch, parse or store error other than not-found
        """
        if skip_existing and self.organizations.exists(registered_number):
            return SKIPPED

        try:
            details = self.client.fetch_details(registered_number, cancel_event)
        except NotFoundError:
            return SKIPPED

        self._store(registered_number, details, cancel_event, with_history=self.fetch_financial_history)
        return SUCCESS

    def refresh(self, registered_number: int, cancel_event: Optional[threading.Event] = None) -> Organization:
        """
        Re-fetch one organization and replace its stored rows.

        Always merges the financial history breakdown, and replaces the stored
        trustee list with the fetched one.

        Raises:
            NotFoundError: the registry has no such record
        """
        details = self.client.fetch_details(registered_number, cancel_event)
        organization = self._store(registered_number, details, cancel_event, with_history=True, replace_trustees=True)
        self.logger.info(f"Refreshed {registered_number}: {organization.name}")
        return organization

    def _store(
        self,
        registered_number: int,
        details: Dict[str, Any],
        cancel_event: Optional[threading.Event],
        with_history: bool,
        replace_trustees: bool = False,
    ) -> Organization:
        """Parse a details payload and write organization, financial and trustees in one transaction."""
        organization = parse_organization(
            details, registered_number, self._stored_organisation_number(details, registered_number)
        )
        financial = parse_financial(details, organization.registered_number)
        trustees = parse_trustees(details, organization.registered_number)

        if financial is not None and with_history:
            try:
                history = self.client.fetch_financial_history(registered_number, cancel_event)
            except NotFoundError:
                history = []
            merge_financial_history(financial, history)

        if financial is not None:
            financial.trustees = len(trustees)

        try:
            with self._transaction() as cursor:
                self.organizations.upsert(organization, cursor=cursor)
                if financial is not None:
                    self.financials.upsert(financial, cursor=cursor)
                if replace_trustees:
                    self.trustees.delete_for(organization.registered_number, cursor=cursor)
                for trustee in trustees:
                    self.trustees.upsert(trustee, cursor=cursor)
        except DatabaseError as e:
            raise PersistenceError(f"failed to store {registered_number}, rolled back: {e}") from e

        return organization

    def _stored_organisation_number(self, details: Dict[str, Any], requested: int) -> Optional[int]:
        """Store key for a payload that lacks its own organisation number."""
        if parse_organisation_number(details) is not None:
            return None
        return self.organizations.find_organisation_number(
            parse_registration_number(details, requested), parse_linked_number(details)
        )

    def _work(self, registered_number: int, cancel_event: Optional[threading.Event]) -> None:
        """Worker body: every outcome is counted, errors never escape."""
        try:
            outcome = self.process_id(registered_number, cancel_event)
        except Exception as e:
            outcome = "failed"
            if self.verbose:
                self.logger.warning(f"Failed to process {registered_number}: {e}")
        self.stats.record(outcome)
        if self.on_progress is not None:
            self.on_progress(self.stats.snapshot())

    def _save_checkpoint(self, registered_number: int) -> None:
        try:
            self.checkpoints.save(registered_number)
        except DatabaseError as e:
            self.logger.error(f"Failed to save checkpoint {registered_number}: {e}")

    def _log_summary(self) -> None:
        snap = self.stats.snapshot()
        self.logger.info(
            f"Crawl complete: {snap.processed} processed, {snap.successful} successful, {snap.failed} failed, "
            f"{snap.skipped} skipped, last number {snap.current_id} ({self.stats.rate():.2f}/sec)"
        )
        for key_stats in self.client.get_key_stats():
            self.logger.info(
                f"API key {key_stats.label}: {key_stats.total_requests} requests, {key_stats.failed_requests} failed, "
                f"{key_stats.rate_limited} rate limited"
            )
