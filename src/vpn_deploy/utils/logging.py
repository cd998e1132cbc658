"""Logging infrastructure with structured JSON logging."""

import logging
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


LOG_FILE_NAME = 'vpn-deploy.jsonl'

# Structured fields copied from log records onto JSON lines
STRUCTURED_FIELDS = (
    'operation',
    'provider',
    'step',
    'resource_kind',
    'resource_id',
    'duration',
)

# Maximum number of characters returned by read_log()
MAX_LOG_CHARS = 500_000


class JSONFormatter(logging.Formatter):
    """Custom formatter that outputs logs as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: The log record to format

        Returns:
            JSON-formatted log string
        """
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        # Add exception info if present
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        # Add extra fields
        for field_name in STRUCTURED_FIELDS:
            if hasattr(record, field_name):
                log_data[field_name] = getattr(record, field_name)

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output."""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for console.

        Args:
            record: The log record to format

        Returns:
            Formatted log string with colors
        """
        color = self.COLORS.get(record.levelname, '')
        reset = self.RESET

        timestamp = datetime.now(timezone.utc).strftime('%H:%M:%S')
        level = f"{color}{record.levelname:8}{reset}"
        message = record.getMessage()

        # Prefix with provider/step if present
        if hasattr(record, 'step') and hasattr(record, 'provider'):
            message = f"[{record.provider} {record.step}] {message}"
        elif hasattr(record, 'resource_id'):
            message = f"[{record.resource_id}] {message}"

        return f"{timestamp} {level} {message}"


def setup_logging(log_level: str = 'info', log_dir: Optional[Path] = None) -> Optional[Path]:
    """Setup logging infrastructure.

    Args:
        log_level: Logging level (debug, info, warning, error)
        log_dir: Directory for the JSON log file; console only when None

    Returns:
        Path of the JSON log file, or None when file logging is disabled
    """
    # Convert string level to logging constant
    level = getattr(logging, log_level.upper())

    # Setup root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Remove existing handlers
    root_logger.handlers.clear()

    # Console handler with human-readable format
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(ConsoleFormatter())
    root_logger.addHandler(console_handler)

    log_file = None
    if log_dir is not None:
        # File logging is best-effort; the controller still runs without it
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            log_file = log_dir / LOG_FILE_NAME
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(logging.DEBUG)  # Always log debug to file
            file_handler.setFormatter(JSONFormatter())
            root_logger.addHandler(file_handler)
        except OSError as e:
            root_logger.warning(f"File logging disabled: {e}")
            log_file = None

    # Reduce noise from SDKs and transports
    for noisy in ('boto3', 'botocore', 'urllib3', 'paramiko', 'invoke', 'fabric'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return log_file


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Name of the logger (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


def read_log(log_file: Path, max_chars: int = MAX_LOG_CHARS) -> str:
    """Read the log file, keeping only the tail of very large files.

    Args:
        log_file: Path to the log file
        max_chars: Maximum number of characters to return

    Returns:
        Log content, or an empty string when no log exists
    """
    if not log_file.exists():
        return ''

    content = log_file.read_text(errors='replace')
    if len(content) <= max_chars:
        return content

    truncated = content[-max_chars:]
    newline = truncated.find('\n')
    if newline == -1:
        return truncated
    return f"[... truncated, showing last ~{max_chars // 1000} KB ...]\n{truncated[newline + 1:]}"


def clear_log(log_file: Path) -> None:
    """Truncate the log file if it exists."""
    if log_file.exists():
        log_file.write_text('')


class LogContext:
    """Context manager for adding structured fields to logs."""

    def __init__(self, logger: logging.Logger, **kwargs: Any):
        """Initialize log context.

        Args:
            logger: Logger to add context to
            **kwargs: Key-value pairs to add to log records
        """
        self.logger = logger
        self.context = kwargs
        self.old_factory = None

    def __enter__(self):
        """Enter context and add fields to logger."""
        old_factory = logging.getLogRecordFactory()

        def record_factory(*args, **kwargs):
            record = old_factory(*args, **kwargs)
            for key, value in self.context.items():
                setattr(record, key, value)
            return record

        self.old_factory = old_factory
        logging.setLogRecordFactory(record_factory)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit context and restore original factory."""
        if self.old_factory:
            logging.setLogRecordFactory(self.old_factory)
