"""
Exception taxonomy for the register pipeline.

Not-found is an expected absence and is never retried. Rate-limited and
transient errors are retried by the registry client. Client errors surface
immediately. Record-level decode and persistence failures are counted by the
importers and crawler; they never abort a run.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class CancelledError(PipelineError):
    """Raised when a blocking wait observes the cancellation signal."""


class RegistryError(PipelineError):
    """Error talking to the registry API."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class NotFoundError(RegistryError):
    """The requested record does not exist (HTTP 404)."""

    def __init__(self, message: str = "not found (404)"):
        super().__init__(message, status_code=404)


class RateLimitedError(RegistryError):
    """The registry rejected the request with HTTP 429."""

    def __init__(self, message: str = "rate limited (429)", retry_after: Optional[int] = None, body: str = ""):
        super().__init__(message, status_code=429, body=body)
        self.retry_after = retry_after


class TransientError(RegistryError):
    """Server-side (5xx) or network failure, worth retrying."""


class ClientError(RegistryError):
    """Non-retriable 4xx response."""


class ResponseDecodeError(ClientError):
    """A 200 response whose body could not be decoded."""


class OrganizationNotFoundError(NotFoundError):
    """No primary organization row exists for a registration number."""

    def __init__(self, registered_number: int):
        super().__init__(f"organization with registration number {registered_number} not found")
        self.registered_number = registered_number


class DownloadError(PipelineError):
    """One or more bulk extract downloads failed."""

    def __init__(self, failures: dict[str, Exception]):
        self.failures = dict(failures)
        detail = "; ".join(f"{name}: {err}" for name, err in sorted(self.failures.items()))
        super().__init__(f"some downloads failed: {detail}")


class ImportFormatError(PipelineError):
    """The import source is not a JSON array."""


class PersistenceError(PipelineError):
    """A store transaction failed and was rolled back."""


class IncompleteRecordError(PipelineError):
    """A registry payload lacks a field the store needs as a key."""
