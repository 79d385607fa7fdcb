"""
Error taxonomy for metasync
===========================

- ProviderError: enumeration or per-item metadata fetch failed on the storage provider
- StoreError: persistence or connectivity failure against the document store
- ContextError: the call context carries neither a tenant id nor an admin flag
"""

from typing import List, Optional, Tuple


class MetadataError(Exception):
    """Base class for all metasync errors"""
    pass


class ProviderError(MetadataError):
    """Remote storage provider rejected or failed a call"""

    def __init__(self, message: str, operation: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
        self.code = code


class BucketCollectionError(ProviderError):
    """One or more bucket tasks failed during a sync cycle"""

    def __init__(self, failures: List[Tuple[str, BaseException]]):
        self.failures = failures
        names = ", ".join(name for name, _ in failures)
        super().__init__(
            f"metadata collection failed for {len(failures)} bucket(s): {names}",
            operation="collect_buckets",
        )


class StoreError(MetadataError):
    """Document store write, read or connection failure"""
    pass


class ContextError(MetadataError):
    """Tenant identity and admin flag could not be resolved from the call context"""
    pass


class InvalidQueryError(MetadataError, ValueError):
    """Aggregation pipeline contains a stage that is not allowed"""
    pass


class SyncCancelled(MetadataError):
    """Sync cycle was cancelled or ran past its deadline"""
    pass


__all__ = [
    'MetadataError',
    'ProviderError',
    'BucketCollectionError',
    'StoreError',
    'ContextError',
    'InvalidQueryError',
    'SyncCancelled',
]
