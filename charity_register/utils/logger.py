"""
Logging infrastructure for the charity register pipeline.

Provides:
- Structured logging with timestamps
- File and console output
- Error tracking and reporting
- Run start/complete banners for crawl, import and scoring runs
"""

import logging
import sys
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(filename)s:%(lineno)d | %(message)s"
PHASE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | {phase} | %(filename)s:%(lineno)d | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S,%f"

# Libraries whose records should share our format instead of their own handlers
EXTERNAL_LOGGERS = ["urllib3", "requests", "pymysql"]


class MillisecondsFormatter(logging.Formatter):
    """Custom formatter that includes milliseconds and aligns log levels."""

    def formatTime(self, record, datefmt=None):  # noqa: N802 - must match parent class method name
        """Override formatTime to include milliseconds."""
        ct = datetime.fromtimestamp(record.created)
        if datefmt and "%f" in datefmt:
            s = ct.strftime(datefmt.replace(",%f", ""))
            return s + f",{int(record.msecs):03d}"
        elif datefmt:
            return ct.strftime(datefmt)
        else:
            return ct.strftime("%Y-%m-%d %H:%M:%S") + f",{int(record.msecs):03d}"


def _format_string(phase: Optional[str]) -> str:
    return PHASE_LOG_FORMAT.format(phase=phase) if phase else LOG_FORMAT


def _format_kwargs(message: str, kwargs: dict) -> str:
    if not kwargs:
        return message
    formatted_data = " ".join(f"{k}={v}" for k, v in kwargs.items())
    return f"{message} [{formatted_data}]"


class PipelineLogger:
    """
    Centralized logger for the pipeline with structured output.

    Exposes the same debug/info/warning/error methods as `logging.Logger`, so
    components that accept a logger work with either.
    """

    def __init__(
        self,
        name: str = "charity_register",
        log_level: str = "INFO",
        log_file: Optional[str] = None,
        log_dir: Optional[Path] = None,
        phase: Optional[str] = None,
    ):
        """
        Initialize the pipeline logger.

        Args:
            name: Logger name
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
            log_file: Optional log file name
            log_dir: Directory for log files (defaults to ./logs)
            phase: Optional run phase name (e.g., "crawl", "import")
        """
        level = getattr(logging, log_level.upper())
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)
        self.phase = phase

        # Prevent propagation to root logger to avoid duplicate logs
        self.logger.propagate = False

        if self.logger.handlers:
            self.logger.handlers.clear()

        fmt_str = _format_string(phase)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_formatter = MillisecondsFormatter(fmt_str, datefmt=LOG_DATE_FORMAT)
        console_handler.setFormatter(console_formatter)
        self.logger.addHandler(console_handler)

        self.errors = []
        self.warnings = []

        if log_file:
            if log_dir is None:
                log_dir = Path.cwd() / "logs"

            log_dir.mkdir(parents=True, exist_ok=True)
            log_path = log_dir / log_file

            file_handler = logging.FileHandler(log_path)
            file_handler.setLevel(logging.DEBUG)  # Log everything to file
            file_handler.setFormatter(MillisecondsFormatter(fmt_str, datefmt=LOG_DATE_FORMAT))
            self.logger.addHandler(file_handler)

            self.info(f"Logging to file: {log_path}")

        # Module loggers (logging.getLogger(__name__)) reach the console via root
        _configure_root(level, console_formatter)

    def isEnabledFor(self, level: int) -> bool:  # noqa: N802 - mirrors logging.Logger
        return self.logger.isEnabledFor(level)

    def debug(self, message: str, **kwargs):
        """Log debug message with optional structured data."""
        self.logger.debug(_format_kwargs(message, kwargs), stacklevel=2)

    def info(self, message: str, **kwargs):
        """Log info message with optional structured data."""
        self.logger.info(_format_kwargs(message, kwargs), stacklevel=2)

    def warning(self, message: str, **kwargs):
        """Log warning message and track for reporting."""
        message = _format_kwargs(message, kwargs)
        self.logger.warning(message, stacklevel=2)
        self.warnings.append(
            {
                "message": message,
                "timestamp": datetime.now().isoformat(),
                "data": kwargs,
            }
        )

    def error(self, message: str, exception: Optional[Exception] = None, **kwargs):
        """Log error message and track for reporting."""
        if exception:
            message = f"{message} | Exception: {str(exception)}"
        message = _format_kwargs(message, kwargs)

        self.logger.error(message, exc_info=exception is not None, stacklevel=2)
        self.errors.append(
            {
                "message": message,
                "exception": str(exception) if exception else None,
                "timestamp": datetime.now().isoformat(),
                "data": kwargs,
            }
        )

    def log_run_start(self, description: str, **kwargs):
        """Log start of a crawl, import or scoring run."""
        self.info("=" * 60)
        self.info(f"{description} started", **kwargs)
        self.info("=" * 60)

    def log_run_complete(self, description: str, duration_seconds: float, **kwargs):
        """Log completion of a run."""
        self.info("=" * 60)
        self.info(f"{description} completed", duration_seconds=round(duration_seconds, 2), **kwargs)
        self.info("=" * 60)

    @contextmanager
    def time_operation(self, operation: str, **kwargs):
        """
        Context manager to time and log one named operation.

        Usage:
            with logger.time_operation("import organizations", path=path):
                # ... perform operation ...
        """
        start_time = datetime.now()
        self.info(f"Starting {operation}", **kwargs)

        try:
            yield
        except Exception as e:
            duration = (datetime.now() - start_time).total_seconds()
            self.error(f"Failed {operation}", exception=e, duration_seconds=round(duration, 2), **kwargs)
            raise

        duration = (datetime.now() - start_time).total_seconds()
        self.info(f"Completed {operation}", duration_seconds=round(duration, 2), **kwargs)

    def get_error_summary(self) -> dict:
        """Get summary of errors and warnings for reporting."""
        return {
            "total_errors": len(self.errors),
            "total_warnings": len(self.warnings),
            "errors": self.errors,
            "warnings": self.warnings,
        }


def _configure_root(level: int, formatter: logging.Formatter):
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    root_handler = logging.StreamHandler(sys.stdout)
    root_handler.setLevel(level)
    root_handler.setFormatter(formatter)
    root_logger.addHandler(root_handler)

    for lib_name in EXTERNAL_LOGGERS:
        lib_logger = logging.getLogger(lib_name)
        lib_logger.handlers.clear()
        lib_logger.propagate = True
        # Connection-pool chatter is only interesting when debugging
        lib_logger.setLevel(max(level, logging.WARNING))

