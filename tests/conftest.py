import copy
import random
import threading
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest

from metasync.errors import ProviderError
from metasync.model import BackendIdentity


class FakeProvider:
    """In-memory provider client with the S3Backend surface used by the collector."""

    def __init__(self, region="us-east-1", buckets=None, locations=None, tags=None, objects=None,
                 heads=None, failures=None, jitter=0.0, page_size=None, parent=None):
        self.region = region
        self.buckets: List[Dict[str, Any]] = buckets or []
        self.locations: Dict[str, str] = locations or {}
        self.tags: Dict[str, Dict[str, str]] = tags or {}
        self.objects: Dict[str, List[Dict[str, Any]]] = objects or {}
        self.heads: Dict[tuple, Dict[str, Any]] = heads or {}
        # (operation, target) -> ProviderError to raise
        self.failures: Dict[tuple, ProviderError] = failures or {}
        self.jitter = jitter
        self.page_size = page_size
        self.calls: List[tuple] = [] if parent is None else parent.calls
        self._calls_lock = threading.Lock() if parent is None else parent._calls_lock
        self.children: Dict[str, "FakeProvider"] = {}

    def _record(self, operation, target):
        with self._calls_lock:
            self.calls.append((operation, target, self.region))
        if self.jitter:
            time.sleep(random.uniform(0, self.jitter))
        error = self.failures.get((operation, target))
        if error is not None:
            raise error

    def for_region(self, region):
        child = self.children.get(region)
        if child is None:
            child = FakeProvider(region, self.buckets, self.locations, self.tags, self.objects,
                                 self.heads, self.failures, self.jitter, self.page_size, parent=self)
            self.children[region] = child
        return child

    def list_buckets(self):
        self._record("list_buckets", "backend")
        return [dict(b) for b in self.buckets]

    def get_bucket_location(self, bucket):
        self._record("get_bucket_location", bucket)
        return self.locations.get(bucket, self.region)

    def get_bucket_tagging(self, bucket):
        self._record("get_bucket_tagging", bucket)
        return dict(self.tags.get(bucket, {}))

    def list_objects(self, bucket, continuation_token=None, max_keys=1000):
        self._record("list_objects_v2", bucket)
        contents = self.objects.get(bucket, [])
        size = self.page_size or max_keys
        start = int(continuation_token or 0)
        page = contents[start:start + size]
        next_start = start + size
        return [dict(c) for c in page], (str(next_start) if next_start < len(contents) else None)

    def head_object(self, bucket, key):
        self._record("head_object", f"{bucket}/{key}")
        return dict(self.heads.get((bucket, key), {"ContentType": "application/octet-stream"}))


def _matches(document: Dict[str, Any], query: Dict[str, Any]) -> bool:
    return all(document.get(key) == value for key, value in query.items())


class FakeCollection:
    """Dict-backed stand-in for a pymongo collection (replace/aggregate/delete)."""

    def __init__(self):
        self.documents: Dict[Any, Dict[str, Any]] = {}
        self.aggregate_calls: List[List[Dict[str, Any]]] = []
        self.replace_calls = 0

    def replace_one(self, filter, replacement, upsert=False):
        self.replace_calls += 1
        key = filter["_id"]
        if key in self.documents or upsert:
            self.documents[key] = copy.deepcopy(replacement)

    def delete_one(self, filter):
        deleted = self.documents.pop(filter["_id"], None)

        class _Result:
            deleted_count = 1 if deleted is not None else 0
        return _Result()

    def aggregate(self, pipeline):
        self.aggregate_calls.append(copy.deepcopy(pipeline))
        docs = [copy.deepcopy(d) for d in self.documents.values()]
        for stage in pipeline:
            (operator, argument), = stage.items()
            if operator == "$match":
                docs = [d for d in docs if _matches(d, argument)]
            elif operator == "$limit":
                docs = docs[:argument]
            elif operator == "$skip":
                docs = docs[argument:]
            elif operator == "$sort":
                (field, order), = argument.items()
                docs.sort(key=lambda d: d.get(field), reverse=order < 0)
            elif operator == "$lookup":
                pass
            else:
                raise NotImplementedError(operator)
        return iter(docs)


class StubConfig:
    """Config double exposing the getters the service and backends read."""

    def __init__(self, **sync_overrides):
        self.sync = {
            'max_workers': 0,
            'on_bucket_error': 'raise',
            'paginate_objects': True,
            'page_size': 1000,
        }
        self.sync.update(sync_overrides)

    def get_sync_config(self):
        return dict(self.sync)

    def get_s3_config(self):
        return {'region': 'us-east-1', 'endpoint_url': None, 'max_attempts': 1, 'max_pool_connections': 10}

    def get_mongodb_config(self):
        return {
            'connection_string': 'mongodb://localhost:27017/',
            'database': 'metadatastore',
            'collection': 'metadatabucket',
            'server_selection_timeout_ms': 100,
        }

    def get_metrics_config(self):
        return {'enabled': False, 'port': None}


def object_entry(key: str, size: int, storage_class: str = "STANDARD") -> Dict[str, Any]:
    return {
        "Key": key,
        "Size": size,
        "LastModified": datetime(2024, 1, 2, 3, 4, 5),
        "StorageClass": storage_class,
    }


@pytest.fixture
def stub_config():
    return StubConfig()


@pytest.fixture
def scenario_provider():
    """Backend with b1 (three objects: 100/150/50 bytes) and an empty b2."""
    return FakeProvider(
        buckets=[
            {"Name": "b1", "CreationDate": datetime(2023, 5, 1)},
            {"Name": "b2", "CreationDate": datetime(2023, 6, 1)},
        ],
        tags={"b1": {"team": "infra"}},
        objects={
            "b1": [object_entry("a.txt", 100), object_entry("b.bin", 150), object_entry("c.log", 50)],
            "b2": [],
        },
        heads={
            ("b1", "a.txt"): {"ContentType": "text/plain", "ServerSideEncryption": "AES256"},
            ("b1", "b.bin"): {"ContentType": "application/octet-stream", "VersionId": "v2"},
            ("b1", "c.log"): {"ContentType": "text/plain", "ReplicationStatus": "COMPLETED"},
        },
    )


@pytest.fixture
def identity():
    return BackendIdentity(id="backend-01", name="archive", type="aws-s3",
                           region="us-east-1", tenant_id="tenant-a")


@pytest.fixture
def collection():
    return FakeCollection()
