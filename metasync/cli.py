"""
metasync command line
=====================

Usage:
    metasync sync --backend-id ID --name NAME --type aws-s3 --region REGION [OPTIONS]
    metasync list (--tenant-id T | --admin) [--pipeline JSON | filter options]
    metasync delete --backend-id ID
    metasync health [--json]
"""

import argparse
import json
import sys
from dataclasses import asdict
from typing import List, Optional

from .backends.s3_backend import S3Backend
from .config import config
from .errors import MetadataError
from .model import BackendIdentity
from .monitoring import init_metrics
from .query import ListRequest, build_pipeline
from .service import MetadataService
from .tenant import CallContext
from .utils.logging import setup_logging
from .utils.validation import ValidationError


def _dump(data) -> str:
    return json.dumps(data, indent=2, default=str)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='metasync', description='Object storage metadata sync')
    parser.add_argument('--log-level', default='INFO', help='Logging level')
    parser.add_argument('--log-dir', default=None, help='Directory for log files (console only if omitted)')
    parser.add_argument('--metrics-port', type=int, help='Expose Prometheus metrics on this port')
    sub = parser.add_subparsers(dest='command', required=True)

    sync = sub.add_parser('sync', help='Run one full sync cycle for a backend')
    sync.add_argument('--backend-id', required=True)
    sync.add_argument('--name', required=True)
    sync.add_argument('--type', default='aws-s3')
    sync.add_argument('--region', required=True)
    sync.add_argument('--tenant-id')
    sync.add_argument('--endpoint', help='S3-compatible endpoint URL')
    sync.add_argument('--timeout', type=float, help='Abort the cycle after this many seconds')

    lst = sub.add_parser('list', help='Query stored metadata')
    scope = lst.add_mutually_exclusive_group()
    scope.add_argument('--tenant-id')
    scope.add_argument('--admin', action='store_true', help='Query across all tenants')
    lst.add_argument('--pipeline', help='Raw aggregation stages as a JSON list')
    lst.add_argument('--backend-name')
    lst.add_argument('--backend-type')
    lst.add_argument('--bucket-name')
    lst.add_argument('--region')
    lst.add_argument('--bucket-size', type=int)
    lst.add_argument('--bucket-size-operator', default='gte')
    lst.add_argument('--object-name')
    lst.add_argument('--object-size', type=int)
    lst.add_argument('--object-size-operator', default='gte')
    lst.add_argument('--sort-by', default='id')
    lst.add_argument('--sort-order', default='asc')
    lst.add_argument('--offset', type=int, default=0)
    lst.add_argument('--limit', type=int)

    delete = sub.add_parser('delete', help='Remove a backend\'s stored metadata')
    delete.add_argument('--backend-id', required=True)

    health = sub.add_parser('health', help='Check configuration and connectivity')
    health.add_argument('--json', action='store_true', help='Output results in JSON format')

    return parser


def _list_pipeline(args) -> List[dict]:
    if args.pipeline:
        stages = json.loads(args.pipeline)
        if not isinstance(stages, list):
            raise ValidationError('--pipeline must be a JSON list of stages')
        return stages
    return build_pipeline(ListRequest(
        backend_name=args.backend_name,
        type=args.backend_type,
        bucket_name=args.bucket_name,
        region=args.region,
        bucket_size=args.bucket_size,
        bucket_size_operator=args.bucket_size_operator,
        object_name=args.object_name,
        object_size=args.object_size,
        object_size_operator=args.object_size_operator,
        sort_by=args.sort_by,
        sort_order=args.sort_order,
        offset=args.offset,
        limit=args.limit,
    ))


def _health(service: MetadataService, as_json: bool) -> int:
    results = {'config': config.validate_config()}
    try:
        results['mongodb'] = service.store.ping()
    except MetadataError as e:
        results['mongodb'] = False
        results['mongodb_error'] = str(e)
    try:
        results['s3'] = S3Backend(config).ping()
    except MetadataError as e:
        results['s3'] = False
        results['s3_error'] = str(e)

    healthy = results['mongodb'] and results['s3'] and all(results['config'].values())
    if as_json:
        print(_dump(results))
    else:
        config.print_config_summary()
        for name in ('mongodb', 's3'):
            print(f"{name}: {'OK' if results[name] else 'UNREACHABLE'}")
    return 0 if healthy else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    setup_logging(level=args.log_level, log_dir=args.log_dir)

    metrics_port = args.metrics_port or config.get_metrics_config().get('port')
    metrics = init_metrics(metrics_port) if config.get_metrics_config().get('enabled') else None
    service = MetadataService(config, metrics=metrics)

    try:
        if args.command == 'sync':
            identity = BackendIdentity(
                id=args.backend_id,
                name=args.name,
                type=args.type,
                region=args.region,
                tenant_id=args.tenant_id,
                endpoint=args.endpoint,
            )
            aggregate = service.sync_metadata(identity, timeout=args.timeout)
            print(_dump({
                'backend_id': aggregate.id,
                'buckets': len(aggregate.buckets),
                'objects': sum(b.object_count for b in aggregate.buckets),
                'total_size': sum(b.total_size for b in aggregate.buckets),
            }))
        elif args.command == 'list':
            context = CallContext(tenant_id=args.tenant_id, is_admin=True if args.admin else None)
            results = service.list_metadata(_list_pipeline(args), context)
            print(_dump([asdict(r) for r in results]))
        elif args.command == 'delete':
            deleted = service.delete_metadata(args.backend_id)
            print(_dump({'backend_id': args.backend_id, 'deleted': deleted}))
        elif args.command == 'health':
            return _health(service, args.json)
    except (MetadataError, ValidationError, json.JSONDecodeError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
