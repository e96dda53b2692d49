"""
Logging Utilities for Request Sentinel.

Provides the logger setup used by the CLI and the Flask integration:
- Structured logging with JSON output for SIEM ingestion
- Plain console format for interactive use
- Size-based log rotation for file output

Modules obtain their loggers with logging.getLogger(__name__); this module
only decides where those records go and how they look.
"""

import logging
import logging.handlers
import json
import os
import sys
from datetime import datetime, timezone
from typing import Optional


PLAIN_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs one JSON object per record. Extra attributes passed through
    ``extra=`` (for example ``identity`` or ``request_id``) are copied into
    the object.
    """

    DEFAULT_FIELDS = {
        'args', 'asctime', 'created', 'exc_info', 'exc_text', 'filename',
        'funcName', 'levelname', 'levelno', 'lineno', 'module', 'msecs',
        'message', 'msg', 'name', 'pathname', 'process', 'processName',
        'relativeCreated', 'stack_info', 'thread', 'threadName', 'taskName'
    }

    def __init__(self, include_context: bool = False):
        """
        Initialize JSON formatter.

        Args:
            include_context: Whether to include thread/process context
        """
        super().__init__()
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON string
        """
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in self.DEFAULT_FIELDS and not key.startswith('_'):
                if isinstance(value, (str, int, float, bool, type(None))):
                    log_entry[key] = value
                else:
                    log_entry[key] = str(value)

        if self.include_context:
            log_entry.update({
                'thread': record.threadName,
                'process': record.process,
            })

        return json.dumps(log_entry, ensure_ascii=False)


def setup_logger(name: str = "sentinel",
                 log_file: Optional[str] = None,
                 log_level: str = "INFO",
                 enable_json: bool = False) -> logging.Logger:
    """
    Set up and configure logger.

    Args:
        name: Logger name (``sentinel`` configures the whole package)
        log_file: Optional log file path
        log_level: Logging level
        enable_json: Whether to use JSON formatting

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Already configured
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    if enable_json:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(PLAIN_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=10,
            encoding='utf-8'
        )
        # Files are always structured
        file_handler.setFormatter(JSONFormatter())
        logger.addHandler(file_handler)

    return logger

