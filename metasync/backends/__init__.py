"""
Backends for metasync
=====================

- S3Backend: provider client used to introspect an S3-compatible backend
- MongoBackend: document store holding one metadata aggregate per backend
"""

from .s3_backend import S3Backend
from .mongodb_backend import MongoBackend, init_client, close_client

__all__ = [
    'S3Backend',
    'MongoBackend',
    'init_client',
    'close_client',
]
