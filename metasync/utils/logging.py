"""
Logging utilities for metasync
==============================

Centralized logging configuration and utilities:
- Colored console output with sync context (backend, bucket)
- Rotating file log plus a JSON-formatted error log
- Thread-local context so concurrent bucket tasks tag their own records
- Noise reduction for boto3/botocore/pymongo loggers
"""

import sys
import logging
import logging.handlers
import json
import traceback
from datetime import datetime
from typing import Any, Dict, List, Optional
from pathlib import Path
import threading

# Thread-local storage for context
_context = threading.local()

_CONTEXT_FIELDS = ('backend_id', 'bucket')


def _current_context() -> Dict[str, Any]:
    return {key: getattr(_context, key) for key in _CONTEXT_FIELDS if hasattr(_context, key)}


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def __init__(self, include_fields: Optional[List[str]] = None):
        super().__init__()
        self.include_fields = include_fields

    def format(self, record):
        """Format log record as JSON"""
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'thread_name': record.threadName,
        }

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info),
            }

        log_data.update(_current_context())

        # Add custom fields from record
        for key, value in record.__dict__.items():
            if key.startswith('custom_') and key not in log_data:
                log_data[key] = value

        if self.include_fields:
            log_data = {k: v for k, v in log_data.items() if k in self.include_fields}

        return json.dumps(log_data, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """Colored console formatter for better readability"""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
        'RESET': '\033[0m'
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and hasattr(sys.stderr, 'isatty') and sys.stderr.isatty()

    def format(self, record):
        """Format log record with colors"""
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        level = record.levelname.ljust(8)
        logger_name = record.name.split('.')[-1]
        message = record.getMessage()

        context = _current_context()
        context_parts = []
        if 'backend_id' in context:
            context_parts.append(f"backend:{str(context['backend_id'])[:12]}")
        if 'bucket' in context:
            context_parts.append(f"bucket:{context['bucket']}")
        context_str = f"[{','.join(context_parts)}]" if context_parts else ""

        formatted = f"{timestamp} {level} {logger_name:15} {context_str:20} {message}"

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        if self.use_colors:
            color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
            formatted = f"{color}{formatted}{self.COLORS['RESET']}"

        return formatted


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[str] = "logs",
    enable_json: bool = False,
    enable_console_colors: bool = True,
) -> logging.Logger:
    """
    Setup centralized logging configuration

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files, None for console only
        enable_json: Whether to use JSON formatting for the main log file
        enable_console_colors: Whether to use colored console output

    Returns:
        Configured root logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    if enable_console_colors:
        console_formatter = ColoredConsoleFormatter()
    else:
        console_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)-8s] %(name)-15s %(message)s',
            datefmt='%H:%M:%S'
        )
    console_handler.setFormatter(console_formatter)
    console_handler.setLevel(getattr(logging, level.upper()))
    root_logger.addHandler(console_handler)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path / "metasync.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5
        )
        if enable_json:
            file_handler.setFormatter(JSONFormatter())
        else:
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s [%(levelname)-8s] %(name)-20s %(message)s'
            ))
        file_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(file_handler)

        # Separate file for errors
        error_handler = logging.handlers.RotatingFileHandler(
            log_path / "errors.log",
            maxBytes=5 * 1024 * 1024,
            backupCount=3
        )
        error_handler.setFormatter(JSONFormatter())
        error_handler.setLevel(logging.ERROR)
        root_logger.addHandler(error_handler)

    configure_logger_levels()

    root_logger.debug("metasync logging initialized (level=%s, log_dir=%s)", level, log_dir)
    return root_logger


def configure_logger_levels():
    """Configure specific logger levels to reduce noise"""
    logging.getLogger('boto3').setLevel(logging.WARNING)
    logging.getLogger('botocore').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('pymongo').setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the specified name

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


class LogContext:
    """Context manager for temporary logging context"""

    def __init__(self, **context):
        self.context = context
        self.original_context = {}

    def __enter__(self):
        for key in self.context:
            if hasattr(_context, key):
                self.original_context[key] = getattr(_context, key)

        for key, value in self.context.items():
            setattr(_context, key, value)

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for key in self.context:
            if key in self.original_context:
                setattr(_context, key, self.original_context[key])
            elif hasattr(_context, key):
                delattr(_context, key)


def with_backend_context(backend_id: str):
    """Context manager for backend-level logging"""
    return LogContext(backend_id=backend_id)


def with_bucket_context(backend_id: str, bucket: str):
    """Context manager for bucket task logging"""
    return LogContext(backend_id=backend_id, bucket=bucket)
