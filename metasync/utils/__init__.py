"""
Utility functions for metasync
==============================

This package provides:
- Structured logging configuration
- Input validation for sync requests and query pipelines
"""

from .logging import setup_logging, get_logger, LogContext
from .validation import MetadataValidator, ValidationError, safe_validate

__all__ = [
    'setup_logging',
    'get_logger',
    'LogContext',
    'MetadataValidator',
    'ValidationError',
    'safe_validate'
]
