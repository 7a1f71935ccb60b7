"""Worker pool with exception handling for parallel processing.

This module provides two ways to fan work out to threads:

- `map()`: a ThreadPoolExecutor over a known list (used for bulk downloads).
- `run_queue()`: a bounded queue fed by a single feeder thread and drained by
  a fixed number of worker threads (used by the crawler, whose id range can be
  far too large to submit up front).
"""

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Iterable, Optional

from .cancellation import is_cancelled

_SENTINEL = object()
_FEED_POLL_SECONDS = 0.1


class WorkerPool:
    """Thread pool wrapper with exception handling and shared stats."""

    def __init__(self, max_workers: int = 10, logger=None):
        """
        Initialize worker pool.

        Args:
            max_workers: Maximum number of concurrent worker threads (default: 10)
            logger: Optional logger instance for logging
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers
        self.logger = logger or logging.getLogger(__name__)
        self._stats_lock = threading.Lock()
        self.stats = {
            "max_workers": max_workers,
            "total_submitted": 0,
            "total_completed": 0,
            "total_successful": 0,
            "total_failed": 0,
            "total_cancelled": 0,
        }

    def _count(self, key: str, amount: int = 1) -> None:
        with self._stats_lock:
            self.stats[key] += amount

    def map(self, func: Callable, items: list, desc: str = "Processing") -> list:
        """
        Process items in parallel with exception handling.

        Args:
            func: Worker function to execute
            items: List of items to process
            desc: Description for progress reporting

        Returns:
            List of tuples: (success: bool, item: any, result_or_error: any)
        """
        results = []
        if not items:
            return results

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(items))) as executor:
            future_to_item = {executor.submit(func, item): item for item in items}
            self._count("total_submitted", len(items))

            for future in as_completed(future_to_item):
                item = future_to_item[future]
                self._count("total_completed")
                try:
                    result = future.result()
                except Exception as e:
                    self._count("total_failed")
                    results.append((False, item, e))
                    self.logger.error(f"{desc}: Failed for item {item}: {e}")
                else:
                    self._count("total_successful")
                    results.append((True, item, result))
                    self.logger.debug(f"{desc}: Success for item {item}")

        self.logger.info(
            f"{desc} complete: {self.stats['total_successful']} successful, {self.stats['total_failed']} failed"
        )
        return results

    def run_queue(
        self,
        func: Callable[[Any], Any],
        items: Iterable,
        cancel_event: Optional[threading.Event] = None,
        on_dispatch: Optional[Callable[[Any, int], None]] = None,
        queue_size: Optional[int] = None,
        desc: str = "Processing",
    ) -> None:
        """
        Feed items through a bounded queue to `max_workers` threads.

        Each item is handed to exactly one worker exactly once. The feeder
        stops early when `cancel_event` is set; workers then drain what is
        left in the queue without processing it.

        Args:
            func: Called once per item in a worker thread; exceptions are
                counted as failures and logged
            items: Items to dispatch, consumed lazily
            cancel_event: Optional cancellation signal
            on_dispatch: Called in the feeder thread after each successful
                enqueue with (item, dispatched_count)
            queue_size: Queue bound (default: 2 x max_workers)
            desc: Description for logging
        """
        work_queue: queue.Queue = queue.Queue(maxsize=queue_size or self.max_workers * 2)

        def worker() -> None:
            while True:
                item = work_queue.get()
                try:
                    if item is _SENTINEL:
                        return
                    if is_cancelled(cancel_event):
                        self._count("total_cancelled")
                        continue
                    try:
                        func(item)
                    except Exception as e:
                        self._count("total_failed")
                        self.logger.error(f"{desc}: Failed for item {item}: {e}")
                    else:
                        self._count("total_successful")
                    finally:
                        self._count("total_completed")
                finally:
                    work_queue.task_done()

        def feeder() -> None:
            dispatched = 0
            try:
                for item in items:
                    if not self._put(work_queue, item, cancel_event):
                        self.logger.info(f"{desc}: cancellation received, stopping feed after {dispatched} items")
                        break
                    dispatched += 1
                    self._count("total_submitted")
                    if on_dispatch is not None:
                        on_dispatch(item, dispatched)
            finally:
                for _ in range(self.max_workers):
                    work_queue.put(_SENTINEL)

        workers = [
            threading.Thread(target=worker, name=f"worker-{i}", daemon=True) for i in range(self.max_workers)
        ]
        for thread in workers:
            thread.start()

        feeder_thread = threading.Thread(target=feeder, name="feeder", daemon=True)
        feeder_thread.start()
        feeder_thread.join()
        for thread in workers:
            thread.join()

        self.logger.info(
            f"{desc} complete: {self.stats['total_successful']} successful, {self.stats['total_failed']} failed"
        )

    @staticmethod
    def _put(work_queue: queue.Queue, item: Any, cancel_event: Optional[threading.Event]) -> bool:
        """Enqueue, polling the cancellation signal while the queue is full."""
        while True:
            if is_cancelled(cancel_event):
                return False
            try:
                work_queue.put(item, timeout=_FEED_POLL_SECONDS)
                return True
            except queue.Full:
                continue

    def get_stats(self) -> dict:
        """Get worker pool statistics."""
        with self._stats_lock:
            return dict(self.stats)
