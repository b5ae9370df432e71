"""
Logging configuration for adherence batch runs.

Provides:
- Console and size-rotated file handlers
- Redaction of patient identifiers and credentials
- Optional JSON-structured output
- Run ID correlation across a batch

Version: 1.0.0
"""

import json
import logging
import os
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional, Union

# Context variable for run correlation ID
run_id_context: ContextVar[str] = ContextVar("run_id", default="")

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_LOG_FORMAT_WITH_RUN_ID = "%(asctime)s - [%(run_id)s] - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_BACKUP_COUNT = 5

# Keys whose values must never reach a log sink
SENSITIVE_PATTERNS = frozenset({
    "member_id", "mrn", "medical_record",
    "ssn", "social_security",
    "dob", "date_of_birth",
    "patient_name", "first_name", "last_name",
    "phone", "email", "address",
    "password", "secret", "token", "api_key",
    "authorization", "bearer",
})


class RunIdFilter(logging.Filter):
    """Adds run_id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = run_id_context.get() or "no-run-id"
        return True


class SanitizingFilter(logging.Filter):
    """
    Redacts ``key=value`` / ``key: value`` pairs whose key looks sensitive.

    Patient IDs are pseudonymous in this engine and are left alone; member
    numbers, MRNs, names and contact details are not.
    """

    def __init__(self, patterns: Optional[frozenset] = None):
        super().__init__()
        self.patterns = patterns or SENSITIVE_PATTERNS
        self._regexes = [
            re.compile(rf"({re.escape(p)})\s*[=:]\s*['\"]?([^'\"\s,}}]+)['\"]?", re.IGNORECASE)
            for p in sorted(self.patterns)
        ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._sanitize(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: "[REDACTED]" if self._is_sensitive_key(k) else v
                    for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    self._sanitize(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )
        return True

    def _sanitize(self, text: str) -> str:
        text_lower = text.lower()
        for pattern, regex in zip(sorted(self.patterns), self._regexes):
            if pattern in text_lower:
                text = regex.sub(r"\1=[REDACTED]", text)
        return text

    def _is_sensitive_key(self, key: str) -> bool:
        key_lower = key.lower()
        return any(pattern in key_lower for pattern in self.patterns)


class StructuredFormatter(logging.Formatter):
    """Formatter that emits one JSON object per log record."""

    def __init__(
        self,
        include_run_id: bool = True,
        extra_fields: Optional[Dict[str, Any]] = None,
    ):
        super().__init__()
        self.include_run_id = include_run_id
        self.extra_fields = extra_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
        }
        if self.include_run_id and hasattr(record, "run_id"):
            log_data["run_id"] = record.run_id

        log_data["message"] = record.getMessage()

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        log_data.update(self.extra_fields)
        return json.dumps(log_data, default=str)


def setup_logging(
    log_file: Optional[Union[str, Path]] = None,
    log_level: int = logging.INFO,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    enable_console: bool = True,
    enable_sanitization: bool = True,
    enable_run_id: bool = True,
    structured_output: bool = False,
    log_format: Optional[str] = None,
) -> logging.Logger:
    """
    Configure root logging for an adherence run.

    Args:
        log_file: Path to log file (None = console only)
        log_level: Logging level (default INFO)
        max_bytes: Maximum log file size before rotation (default 10MB)
        backup_count: Number of rotated files to keep
        enable_console: Log to stderr
        enable_sanitization: Redact sensitive key/value pairs
        enable_run_id: Tag records with the current run ID
        structured_output: Use JSON output
        log_format: Custom format string (ignored with structured_output)

    Returns:
        Configured root logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = []

    if log_format is None:
        log_format = DEFAULT_LOG_FORMAT_WITH_RUN_ID if enable_run_id else DEFAULT_LOG_FORMAT

    if structured_output:
        formatter: logging.Formatter = StructuredFormatter(include_run_id=enable_run_id)
    else:
        formatter = logging.Formatter(log_format, datefmt=DEFAULT_DATE_FORMAT)

    filters = []
    if enable_sanitization:
        filters.append(SanitizingFilter())
    if enable_run_id:
        filters.append(RunIdFilter())

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        for f in filters:
            console_handler.addFilter(f)
        root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        for f in filters:
            file_handler.addFilter(f)
        root_logger.addHandler(file_handler)

        # Logs may carry clinical context
        if os.name == "posix":
            try:
                os.chmod(log_path, 0o600)
            except OSError as e:
                root_logger.debug(f"Could not restrict log file permissions: {e}")

    return root_logger


def get_run_id() -> str:
    return run_id_context.get()


class LogContext:
    """
    Context manager binding a run ID for the duration of a batch.

    Example:
        with LogContext(run_id):
            logger.info("Starting adherence batch")
    """

    def __init__(self, run_id: str):
        self.run_id = run_id
        self._token = None

    def __enter__(self) -> str:
        self._token = run_id_context.set(self.run_id)
        return self.run_id

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        run_id_context.reset(self._token)


__all__ = [
    "setup_logging",
    "get_run_id",
    "LogContext",
    "run_id_context",
    "RunIdFilter",
    "SanitizingFilter",
    "StructuredFormatter",
    "DEFAULT_LOG_FORMAT",
    "DEFAULT_MAX_BYTES",
    "DEFAULT_BACKUP_COUNT",
    "SENSITIVE_PATTERNS",
]
