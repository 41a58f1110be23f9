"""
Structured logging configuration for the verification service.

Provides JSON-formatted logs for production and human-readable logs for development.
Every handler masks email addresses, so a raw address never reaches the output
even when a call site forgets to pass it through mask_email.
"""

import logging
import re
import sys
from typing import Any, Dict
from datetime import datetime, timezone
from pythonjsonlogger import jsonlogger

from otpverify.core.identity import mask_email

_EMAIL_IN_TEXT_RE = re.compile(r"[^\s@'\"<>()\[\],;]+@[^\s@'\"<>()\[\],;]+\.[^\s@'\"<>()\[\],;]+")


class EmailMaskingFilter(logging.Filter):
    """Rewrites the formatted message with every email address masked"""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = _EMAIL_IN_TEXT_RE.sub(lambda m: mask_email(m.group(0)), message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    Custom JSON formatter that adds standard fields to all log records.
    """

    service = "otpverify"

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['module'] = record.module
        log_record['function'] = record.funcName
        log_record['service'] = self.service

        # Add line number for errors/warnings
        if record.levelno >= logging.WARNING:
            log_record['line'] = record.lineno
            log_record['pathname'] = record.pathname


def setup_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Whether to use JSON formatting (True for production, False for development)
    """
    # Remove any existing handlers
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)

    if json_logs:
        formatter = CustomJsonFormatter(
            '%(timestamp)s %(level)s %(logger)s %(module)s %(funcName)s %(message)s'
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    console_handler.setFormatter(formatter)
    console_handler.addFilter(EmailMaskingFilter())

    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.addHandler(console_handler)

    # Set specific log levels for noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)
