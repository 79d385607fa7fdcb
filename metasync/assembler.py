"""Build the backend-level aggregate once every bucket task has finished."""

from typing import List

from .model import BackendAggregate, BackendIdentity, BucketSnapshot


def assemble(identity: BackendIdentity, buckets: List[BucketSnapshot]) -> BackendAggregate:
    """Copy the backend's identity fields and attach the already ordered buckets."""
    return BackendAggregate(
        id=identity.id,
        name=identity.name,
        type=identity.type,
        region=identity.region,
        tenant_id=identity.tenant_id,
        buckets=list(buckets),
    )


__all__ = ['assemble']
