"""
Streaming importer for register extract files.

Each extract is one JSON array, often larger than memory. Elements are decoded
one at a time with ijson, validated into their pydantic record model, and
written in batches; each batch is one transaction.

Failure policy:
- an element that fails validation is counted failed; the stream continues
- a record that fails a store rule (no registration number, no trustee name,
  no period end) is counted skipped
- a per-record database error is counted failed; the batch continues
- a failed commit rolls the batch back and counts the whole batch failed
- a JSON syntax error ends the file: pending records are still written
"""

import io
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO, Callable, ContextManager, List, Optional, Type

import ijson
from pydantic import BaseModel, ValidationError

from ..constants import DEFAULT_BATCH_SIZE, DEFAULT_PROGRESS_INTERVAL
from ..db.client import DatabaseError
from ..db.client import transaction as db_transaction
from ..db.repository import (
    FilingHistoryRepository,
    FinancialRepository,
    OrganizationRepository,
    TrusteeRepository,
)
from ..errors import ImportFormatError
from ..models import FilingHistoryDumpRecord, FinancialDumpRecord, OrganizationDumpRecord, TrusteeDumpRecord

UTF8_BOM = b"\xef\xbb\xbf"

# Outcome of writing one record inside a batch
WRITTEN = "written"
SKIPPED = "skipped"


@dataclass
class ImportProgress:
    """Counters for one import run, safe to update from several threads."""

    processed: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    started_at: float = field(default_factory=time.monotonic)
    finished_at: Optional[float] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add(self, processed: int = 0, success: int = 0, failed: int = 0, skipped: int = 0) -> None:
        with self._lock:
            self.processed += processed
            self.success += success
            self.failed += failed
            self.skipped += skipped

    def snapshot(self) -> "ImportProgress":
        with self._lock:
            return ImportProgress(
                processed=self.processed,
                success=self.success,
                failed=self.failed,
                skipped=self.skipped,
                started_at=self.started_at,
                finished_at=self.finished_at,
            )

    def finish(self) -> None:
        with self._lock:
            self.finished_at = time.monotonic()

    def elapsed(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at

    def rate(self) -> float:
        """Records per second since the run started."""
        elapsed = self.elapsed()
        with self._lock:
            return self.processed / elapsed if elapsed > 0 else 0.0


@dataclass
class _Family:
    label: str
    model: Type[BaseModel]
    write: Callable[[Any, Any], str]
    accept: Callable[[Any], bool] = lambda record: True


def open_json_array(stream: BinaryIO) -> io.BufferedReader:
    """
    Position a binary stream at the opening `[` of a JSON array.

    Strips a UTF-8 BOM and leading whitespace.

    Raises:
        ImportFormatError: if the first significant byte is not `[`
    """
    reader = stream if isinstance(stream, io.BufferedReader) else io.BufferedReader(stream)
    if reader.peek(len(UTF8_BOM))[: len(UTF8_BOM)] == UTF8_BOM:
        reader.read(len(UTF8_BOM))
    while True:
        head = reader.peek(1)[:1]
        if not head:
            raise ImportFormatError("expected a JSON array, got empty input")
        if head.isspace():
            reader.read(1)
            continue
        if head != b"[":
            raise ImportFormatError(f"expected a JSON array, got {head!r}")
        return reader


class StreamImporter:
    """Imports the four extract families into the store."""

    def __init__(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
        verbose: bool = False,
        organizations: Optional[OrganizationRepository] = None,
        trustees: Optional[TrusteeRepository] = None,
        financials: Optional[FinancialRepository] = None,
        filings: Optional[FilingHistoryRepository] = None,
        transaction: Optional[Callable[[], ContextManager[Any]]] = None,
        logger=None,
    ):
        """
        Initialize the importer.

        Args:
            batch_size: Records per transaction
            progress_interval: Log progress every N processed records
            verbose: Log every rejected record
            organizations: Organization repository
            trustees: Trustee repository
            financials: Financial repository
            filings: Filing history repository
            transaction: Context manager factory yielding a cursor
            logger: Logger instance
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.batch_size = batch_size
        self.progress_interval = max(1, progress_interval)
        self.verbose = verbose
        self.organizations = organizations or OrganizationRepository()
        self.trustees = trustees or TrusteeRepository()
        self.financials = financials or FinancialRepository()
        self.filings = filings or FilingHistoryRepository()
        self._transaction = transaction or db_transaction
        self.logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def import_organizations(self, path: str | Path) -> ImportProgress:
        return self._import_path(path, self._organizations_family())

    def import_organizations_from_stream(self, stream: BinaryIO) -> ImportProgress:
        return self._import_stream(stream, self._organizations_family())

    def import_trustees(self, path: str | Path) -> ImportProgress:
        return self._import_path(path, self._trustees_family())

    def import_trustees_from_stream(self, stream: BinaryIO) -> ImportProgress:
        return self._import_stream(stream, self._trustees_family())

    def import_financials(self, path: str | Path) -> ImportProgress:
        return self._import_path(path, self._financials_family())

    def import_financials_from_stream(self, stream: BinaryIO) -> ImportProgress:
        return self._import_stream(stream, self._financials_family())

    def import_filing_history(self, path: str | Path) -> ImportProgress:
        return self._import_path(path, self._filing_history_family())

    def import_filing_history_from_stream(self, stream: BinaryIO) -> ImportProgress:
        return self._import_stream(stream, self._filing_history_family())

    # ------------------------------------------------------------------
    # Per-family record writers
    # ------------------------------------------------------------------

    def _organizations_family(self) -> _Family:
        def write(record: OrganizationDumpRecord, cursor) -> str:
            if record.registered_charity_number == 0:
                return SKIPPED
            self.organizations.upsert(record.to_organization(), cursor=cursor)
            summary = record.to_summary_financial()
            if summary is not None:
                self.financials.upsert(summary, cursor=cursor)
            return WRITTEN

        return _Family("organizations", OrganizationDumpRecord, write)

    def _trustees_family(self) -> _Family:
        def write(record: TrusteeDumpRecord, cursor) -> str:
            if record.registered_charity_number == 0 or not (record.trustee_name or "").strip():
                return SKIPPED
            self.trustees.upsert(record.to_trustee(), cursor=cursor)
            return WRITTEN

        return _Family("trustees", TrusteeDumpRecord, write)

    def _financials_family(self) -> _Family:
        def write(record: FinancialDumpRecord, cursor) -> str:
            financial = record.to_financial()
            if record.registered_charity_number == 0 or financial is None:
                return SKIPPED
            self.financials.upsert(financial, cursor=cursor)
            return WRITTEN

        return _Family(
            "financials",
            FinancialDumpRecord,
            write,
            accept=lambda record: record.latest_fin_period_submitted_ind,
        )

    def _filing_history_family(self) -> _Family:
        def write(record: FilingHistoryDumpRecord, cursor) -> str:
            if record.organisation_number == 0 or not record.ar_cycle_reference:
                return SKIPPED
            self.filings.upsert(record.to_filing(), cursor=cursor)
            return WRITTEN

        return _Family("filing history", FilingHistoryDumpRecord, write)

    # ------------------------------------------------------------------
    # Streaming and batching
    # ------------------------------------------------------------------

    def _import_path(self, path: str | Path, family: _Family) -> ImportProgress:
        self.logger.info(f"Starting {family.label} import from: {path}")
        with open(path, "rb") as f:
            return self._import_stream(f, family)

    def _import_stream(self, stream: BinaryIO, family: _Family) -> ImportProgress:
        progress = ImportProgress()
        reader = open_json_array(stream)
        batch: List[BaseModel] = []
        next_report = self.progress_interval
        index = 0

        try:
            for index, element in enumerate(ijson.items(reader, "item", use_float=True), start=1):
                try:
                    record = family.model.model_validate(element)
                except ValidationError as e:
                    progress.add(processed=1, failed=1)
                    if self.verbose:
                        self.logger.warning(f"Failed to decode {family.label} record {index}: {e}")
                else:
                    if family.accept(record):
                        batch.append(record)
                    else:
                        progress.add(processed=1, skipped=1)

                if len(batch) >= self.batch_size:
                    self._flush(batch, family, progress)
                    batch = []

                if progress.processed >= next_report:
                    self._log_progress(progress)
                    next_report = (progress.processed // self.progress_interval + 1) * self.progress_interval
        except ijson.JSONError as e:
            self.logger.error(f"Malformed JSON in {family.label} after record {index}, stopping this file: {e}")
            progress.add(failed=1)

        if batch:
            self._flush(batch, family, progress)

        progress.finish()
        self._log_final(family.label, progress)
        return progress.snapshot()

    def _flush(self, batch: List[BaseModel], family: _Family, progress: ImportProgress) -> None:
        """Write one batch in one transaction."""
        success = failed = skipped = 0
        try:
            with self._transaction() as cursor:
                for record in batch:
                    try:
                        outcome = family.write(record, cursor)
                    except DatabaseError as e:
                        failed += 1
                        if self.verbose:
                            self.logger.warning(f"Failed to insert {family.label} record: {e}")
                        continue
                    if outcome == SKIPPED:
                        skipped += 1
                    else:
                        success += 1
        except DatabaseError as e:
            self.logger.error(f"Failed to commit {family.label} batch of {len(batch)}, rolled back: {e}")
            progress.add(processed=len(batch), failed=len(batch))
            return

        progress.add(processed=len(batch), success=success, failed=failed, skipped=skipped)

    def _log_progress(self, progress: ImportProgress) -> None:
        snap = progress.snapshot()
        self.logger.info(
            f"Progress: {snap.processed} processed ({snap.success} success, {snap.failed} failed, "
            f"{snap.skipped} skipped) | Rate: {progress.rate():.2f}/sec"
        )

    def _log_final(self, label: str, progress: ImportProgress) -> None:
        snap = progress.snapshot()
        elapsed = progress.elapsed()
        self.logger.info(
            f"{label.capitalize()} import complete: {snap.processed} processed, {snap.success} successful, "
            f"{snap.failed} failed, {snap.skipped} skipped in {elapsed:.1f}s ({progress.rate():.2f} records/second)"
        )
