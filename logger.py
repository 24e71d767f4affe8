"""
Logging configuration for the KYC/KYB Verification Workflow.

Provides structured logging with appropriate levels and formatting,
plus a case-scoped adapter so every workflow line carries its case id.
"""

import logging
import sys
from typing import Optional

from config import get_config


# Module-level logger cache
_loggers: dict[str, logging.Logger] = {}
_initialized: bool = False

# Third-party loggers that are too chatty at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "PIL")


def setup_logging(
    level: Optional[str] = None,
    format_string: Optional[str] = None,
    stream: Optional[object] = None,
    log_file: Optional[str] = None,
):
    """
    Initialize the logging system.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_string: Custom format string for log messages
        stream: Output stream (defaults to sys.stderr)
        log_file: Optional path of a file that receives the same records
    """
    global _initialized

    config = get_config()

    log_level = level or config.log_level
    log_format = format_string or config.log_format
    output_stream = stream or sys.stderr

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(log_format)

    console_handler = logging.StreamHandler(output_stream)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    _initialized = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for the given name.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Configured logger instance
    """
    global _initialized, _loggers

    if not _initialized:
        setup_logging()

    if name not in _loggers:
        _loggers[name] = logging.getLogger(name)

    return _loggers[name]


class CaseLoggerAdapter(logging.LoggerAdapter):
    """Prefixes messages with the verification case id."""

    def process(self, msg, kwargs):
        return f"[{self.extra['case_id']}] {msg}", kwargs


def get_case_logger(name: str, case_id: str) -> CaseLoggerAdapter:
    """Get a logger that tags every message with a case id."""
    return CaseLoggerAdapter(get_logger(name), {"case_id": case_id})
