"""
metasync - Object storage metadata synchronization
==================================================

Mirrors structural metadata (buckets, objects, tags, storage class,
encryption, lifecycle attributes) from S3-compatible backends into a
tenant-scoped MongoDB collection, so management consoles can browse storage
inventory without calling the provider every time.

Quick Start:
-----------
```python
from metasync import MetadataService, BackendIdentity, CallContext

service = MetadataService()
service.sync_metadata(BackendIdentity(id="b-01", name="archive", type="aws-s3",
                                      region="eu-west-1", tenant_id="acme"))

backends = service.list_metadata([], CallContext(tenant_id="acme"))
```

Architecture:
- service.py: sync and list entry points
- collector.py: concurrent per-bucket collection and object enumeration
- assembler.py: backend-level aggregate
- tenant.py: tenant scoping of queries
- query.py: list filters -> aggregation stages
- backends/: S3 provider client and MongoDB store
- monitoring/: Prometheus metrics
- config/: YAML + environment configuration
- utils/: logging and validation
"""

import logging
import warnings

__version__ = "1.0.0"
__description__ = "Object storage metadata synchronization into a tenant-scoped document store"

from .config import config, Config
from .errors import (
    MetadataError,
    ProviderError,
    BucketCollectionError,
    StoreError,
    ContextError,
    InvalidQueryError,
    SyncCancelled,
)
from .model import BackendIdentity, BackendAggregate, BucketSnapshot, ObjectRecord
from .tenant import CallContext, tenant_filter
from .query import ListRequest, build_pipeline
from .service import MetadataService

_validation_results = config.validate_config()
_failed_services = [service for service, valid in _validation_results.items() if not valid]
if _failed_services:
    warnings.warn(
        f"Some services are not properly configured: {', '.join(_failed_services)}. "
        f"Check your .env file and services.yml.",
        UserWarning,
        stacklevel=2,
    )


def get_version():
    """Get the current version of metasync"""
    return __version__


def check_system_health():
    """
    Report configuration validity for every service

    Returns:
        dict: config_services mapping and an overall config_valid flag
    """
    validation_results = config.validate_config()
    return {
        "config_services": validation_results,
        "config_valid": all(validation_results.values()),
    }


__all__ = [
    "MetadataService",
    "BackendIdentity",
    "BackendAggregate",
    "BucketSnapshot",
    "ObjectRecord",
    "CallContext",
    "tenant_filter",
    "ListRequest",
    "build_pipeline",
    "MetadataError",
    "ProviderError",
    "BucketCollectionError",
    "StoreError",
    "ContextError",
    "InvalidQueryError",
    "SyncCancelled",
    "config",
    "Config",
    "__version__",
    "get_version",
    "check_system_health",
]

logging.getLogger(__name__).addHandler(logging.NullHandler())
