#!/usr/bin/env python3
"""
metasync quick start
====================

Syncs one backend and lists what was stored, once as its tenant and once as
an admin. Needs a reachable MongoDB and S3 credentials (see .env.example).

Usage:
    python examples/quick_start.py --backend-id b-01 --name archive --region eu-west-1 --tenant-id acme
"""

import argparse
import sys

from metasync import BackendIdentity, CallContext, ListRequest, MetadataService, build_pipeline
from metasync.errors import MetadataError
from metasync.utils.logging import setup_logging


def main() -> int:
    parser = argparse.ArgumentParser(description='metasync quick start')
    parser.add_argument('--backend-id', required=True)
    parser.add_argument('--name', required=True)
    parser.add_argument('--region', required=True)
    parser.add_argument('--tenant-id', required=True)
    parser.add_argument('--timeout', type=float, default=600)
    args = parser.parse_args()

    setup_logging(level="INFO", log_dir=None)
    service = MetadataService()

    identity = BackendIdentity(id=args.backend_id, name=args.name, type="aws-s3",
                               region=args.region, tenant_id=args.tenant_id)
    try:
        aggregate = service.sync_metadata(identity, timeout=args.timeout)
    except MetadataError as e:
        print(f"Sync failed: {e}")
        return 1

    print(f"Synced {len(aggregate.buckets)} buckets for {aggregate.name}")
    for bucket in aggregate.buckets:
        print(f"  {bucket.name:40} {bucket.region:15} {bucket.object_count:8} objects {bucket.total_size:14} bytes")

    pipeline = build_pipeline(ListRequest(bucket_size=1024 * 1024, bucket_size_operator="gte"))
    for backend in service.list_metadata(pipeline, CallContext(tenant_id=args.tenant_id)):
        print(f"{backend.name}: {len(backend.buckets)} buckets over 1 MiB")

    everything = service.list_metadata([], CallContext(is_admin=True))
    print(f"Backends visible to an admin: {len(everything)}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
