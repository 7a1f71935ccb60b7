"""
Bulk extract downloader.

The register publishes full extracts as zipped JSON arrays, one archive per
record family. Archives are fetched into memory (with a progress callback),
retried with a fixed delay, and the first regular file is unpacked.
"""

import io
import logging
import threading
import zipfile
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import requests

from ..constants import (
    DEFAULT_USER_AGENT,
    DOWNLOAD_CHUNK_SIZE,
    DOWNLOAD_MAX_RETRIES,
    DOWNLOAD_RETRY_DELAY_SECONDS,
    DOWNLOAD_TIMEOUT_SECONDS,
    EXTRACT_URL_TEMPLATE,
)
from ..errors import DownloadError
from ..utils.cancellation import check_cancelled, sleep_or_cancel
from ..utils.worker_pool import WorkerPool

ProgressHandler = Callable[["RegisterExtract", int, int], None]


class RegisterExtract(str, Enum):
    """Extract files published by the register."""

    CHARITY = "charity"
    CHARITY_TRUSTEE = "charity_trustee"
    ANNUAL_RETURN_PARTB = "charity_annual_return_partb"
    ANNUAL_RETURN_HISTORY = "charity_annual_return_history"


def default_file_set() -> List[RegisterExtract]:
    """All extracts needed for a complete import."""
    return [
        RegisterExtract.CHARITY,
        RegisterExtract.CHARITY_TRUSTEE,
        RegisterExtract.ANNUAL_RETURN_PARTB,
        RegisterExtract.ANNUAL_RETURN_HISTORY,
    ]


@dataclass
class DownloadedFile:
    """An unpacked extract held in memory."""

    resource: RegisterExtract
    file_name: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    def reader(self) -> io.BytesIO:
        """A fresh binary stream over the data."""
        return io.BytesIO(self.data)


def extract_first_file(archive: bytes) -> Tuple[str, bytes]:
    """Name and content of the first regular file in a ZIP archive."""
    with zipfile.ZipFile(io.BytesIO(archive)) as zf:
        for info in zf.infolist():
            if info.is_dir():
                continue
            return info.filename, zf.read(info)
    raise zipfile.BadZipFile("no files found in ZIP archive")


class BulkDownloader:
    """Downloads register extracts, one worker thread per file."""

    def __init__(
        self,
        timeout: int = DOWNLOAD_TIMEOUT_SECONDS,
        max_retries: int = DOWNLOAD_MAX_RETRIES,
        retry_delay: float = DOWNLOAD_RETRY_DELAY_SECONDS,
        base_url_template: str = EXTRACT_URL_TEMPLATE,
        session: Optional[requests.Session] = None,
        progress_handler: Optional[ProgressHandler] = None,
        logger=None,
    ):
        """
        Initialize the downloader.

        Args:
            timeout: Per-request timeout in seconds
            max_retries: Total attempts per file
            retry_delay: Fixed seconds between attempts
            base_url_template: URL with a `{name}` placeholder for the extract name
            session: Optional requests session (tests inject a mock)
            progress_handler: Called with (resource, bytes_read, total_bytes) per chunk
            logger: Logger instance
        """
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.base_url_template = base_url_template
        self.session = session or requests.Session()
        self.progress_handler = progress_handler
        self.logger = logger or logging.getLogger(__name__)

    def url_for(self, resource: RegisterExtract) -> str:
        return self.base_url_template.format(name=RegisterExtract(resource).value)

    def download_file(
        self, resource: RegisterExtract, cancel_event: Optional[threading.Event] = None
    ) -> DownloadedFile:
        """Download and unpack one extract."""
        resource = RegisterExtract(resource)
        url = self.url_for(resource)
        self.logger.info(f"Downloading {resource.value} from {url}")

        archive = self._download_with_retry(url, resource, cancel_event)
        self.logger.info(f"Download complete for {resource.value} ({len(archive)} bytes), extracting...")

        file_name, data = extract_first_file(archive)
        self.logger.info(f"Extraction complete for {resource.value}: {file_name} ({len(data)} bytes)")
        return DownloadedFile(resource=resource, file_name=file_name, data=data)

    def download_files(
        self, resources: List[RegisterExtract], cancel_event: Optional[threading.Event] = None
    ) -> Tuple[Dict[RegisterExtract, DownloadedFile], Optional[DownloadError]]:
        """
        Download several extracts in parallel.

        Returns:
            (successful downloads by resource, DownloadError carrying every
            failure or None when all succeeded)
        """
        if not resources:
            return {}, None

        pool = WorkerPool(max_workers=len(resources), logger=self.logger)
        results = pool.map(lambda r: self.download_file(r, cancel_event), list(resources), desc="Download")

        files: Dict[RegisterExtract, DownloadedFile] = {}
        failures: Dict[str, Exception] = {}
        for success, resource, result in results:
            if success:
                files[RegisterExtract(resource)] = result
            else:
                failures[RegisterExtract(resource).value] = result

        return files, DownloadError(failures) if failures else None

    def _download_with_retry(
        self, url: str, resource: RegisterExtract, cancel_event: Optional[threading.Event]
    ) -> bytes:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            if attempt > 1:
                self.logger.info(f"Retrying {resource.value} (attempt {attempt}/{self.max_retries})...")
                sleep_or_cancel(self.retry_delay, cancel_event)
            try:
                return self._download(url, resource, cancel_event)
            except (requests.RequestException, OSError) as e:
                last_error = e
                self.logger.warning(f"Download attempt {attempt} failed for {resource.value}: {e}")

        raise last_error

    def _download(self, url: str, resource: RegisterExtract, cancel_event: Optional[threading.Event]) -> bytes:
        """One streamed GET into memory."""
        check_cancelled(cancel_event)
        response = self.session.get(url, headers={"User-Agent": DEFAULT_USER_AGENT}, timeout=self.timeout, stream=True)
        try:
            if response.status_code != 200:
                raise requests.HTTPError(f"unexpected status code: {response.status_code}", response=response)

            total = int(response.headers.get("Content-Length") or 0)
            buffer = io.BytesIO()
            read = 0
            for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                if not chunk:
                    continue
                buffer.write(chunk)
                read += len(chunk)
                if self.progress_handler is not None and total > 0:
                    self.progress_handler(resource, read, total)
                check_cancelled(cancel_event)
            return buffer.getvalue()
        finally:
            response.close()
