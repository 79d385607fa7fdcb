import threading
from unittest.mock import MagicMock, patch

import pytest
from pymongo.errors import AutoReconnect, OperationFailure, ServerSelectionTimeoutError

from metasync.backends import mongodb_backend
from metasync.backends.mongodb_backend import MongoBackend, close_client, init_client
from metasync.errors import ContextError, InvalidQueryError, StoreError
from metasync.model import INT64_MAX, BackendAggregate, BucketSnapshot, ObjectRecord
from metasync.tenant import CallContext


def make_aggregate(backend_id="backend-01", tenant_id="tenant-a", sizes=(100, 150, 50)):
    bucket = BucketSnapshot(name="b1", region="us-east-1", tags={})
    bucket.set_objects([ObjectRecord(name=f"o{i}", size=s) for i, s in enumerate(sizes)])
    return BackendAggregate(id=backend_id, name="archive", type="aws-s3", region="us-east-1",
                            tenant_id=tenant_id, buckets=[bucket])


@pytest.fixture
def store(stub_config, collection):
    return MongoBackend(stub_config, collection=collection)


@pytest.fixture(autouse=True)
def reset_shared_client():
    mongodb_backend._client = None
    yield
    mongodb_backend._client = None


class TestUpsert:
    def test_replaces_by_id_with_upsert(self, stub_config):
        collection = MagicMock()
        aggregate = make_aggregate()

        MongoBackend(stub_config, collection=collection).upsert(aggregate)

        collection.replace_one.assert_called_once_with(
            {"_id": "backend-01"}, aggregate.to_document(), upsert=True
        )

    def test_replay_is_idempotent(self, store, collection):
        store.upsert(make_aggregate())
        first = dict(collection.documents)
        store.upsert(make_aggregate())

        assert collection.documents == first
        assert len(collection.documents) == 1

    def test_full_replace_drops_old_buckets(self, store, collection):
        store.upsert(make_aggregate())
        replacement = BackendAggregate(id="backend-01", name="archive", type="aws-s3",
                                       region="us-east-1", tenant_id="tenant-a", buckets=[])
        store.upsert(replacement)

        assert collection.documents["backend-01"]["buckets"] == []

    def test_driver_error_becomes_store_error(self, stub_config):
        collection = MagicMock()
        collection.replace_one.side_effect = AutoReconnect("connection reset")

        with pytest.raises(StoreError):
            MongoBackend(stub_config, collection=collection).upsert(make_aggregate())

    def test_oversized_total_is_rejected_before_write(self, stub_config):
        collection = MagicMock()
        aggregate = make_aggregate(sizes=(INT64_MAX, 1))

        with pytest.raises(StoreError):
            MongoBackend(stub_config, collection=collection).upsert(aggregate)

        collection.replace_one.assert_not_called()


class TestQuery:
    def test_tenant_scope_is_prepended(self, stub_config):
        collection = MagicMock()
        collection.aggregate.return_value = iter([])
        store = MongoBackend(stub_config, collection=collection)

        store.query([{"$match": {"type": "aws-s3"}}], CallContext(tenant_id="tenant-a"))

        collection.aggregate.assert_called_once_with([
            {"$match": {"tenantid": "tenant-a"}},
            {"$match": {"type": "aws-s3"}},
        ])

    def test_admin_pipeline_runs_unscoped(self, stub_config):
        collection = MagicMock()
        collection.aggregate.return_value = iter([])
        store = MongoBackend(stub_config, collection=collection)

        store.query([{"$limit": 5}], CallContext(is_admin=True))

        collection.aggregate.assert_called_once_with([{"$limit": 5}])

    def test_caller_pipeline_is_not_mutated(self, store):
        pipeline = [{"$limit": 5}]
        store.query(pipeline, CallContext(tenant_id="tenant-a"))
        assert pipeline == [{"$limit": 5}]

    @pytest.mark.parametrize("context", [None, CallContext(), CallContext(is_admin=False)])
    def test_unresolvable_context_fails_before_store_access(self, stub_config, context):
        collection = MagicMock()
        store = MongoBackend(stub_config, collection=collection)

        with pytest.raises(ContextError):
            store.query([], context)

        assert collection.mock_calls == []

    @pytest.mark.parametrize("pipeline", [
        [],
        [{"$match": {"tenantid": "tenant-b"}}],
        [{"$match": {"_id": "backend-b"}}],
        [{"$sort": {"_id": -1}}, {"$limit": 10}],
    ])
    def test_tenant_never_sees_other_tenants(self, store, pipeline):
        store.upsert(make_aggregate("backend-a", "tenant-a"))
        store.upsert(make_aggregate("backend-b", "tenant-b"))

        results = store.query(pipeline, CallContext(tenant_id="tenant-a"))

        assert all(r.tenant_id == "tenant-a" for r in results)

    def test_admin_sees_every_tenant(self, store):
        store.upsert(make_aggregate("backend-a", "tenant-a"))
        store.upsert(make_aggregate("backend-b", "tenant-b"))

        results = store.query([{"$sort": {"_id": 1}}], CallContext(is_admin=True))

        assert [r.id for r in results] == ["backend-a", "backend-b"]
        assert results[0].buckets[0].total_size == 300

    def test_cross_collection_stage_rejected_for_tenant(self, store, collection):
        with pytest.raises(InvalidQueryError):
            store.query([{"$lookup": {"from": "other", "as": "x"}}], CallContext(tenant_id="tenant-a"))
        assert collection.aggregate_calls == []

    @pytest.mark.parametrize("pipeline", [
        [
            {"$facet": {"x": [{"$lookup": {"from": "metadatabucket", "pipeline": [], "as": "all"}}]}},
            {"$unwind": "$x"},
            {"$unwind": "$x.all"},
            {"$replaceRoot": {"newRoot": "$x.all"}},
        ],
        [{"$facet": {"x": [{"$unionWith": {"coll": "metadatabucket"}}]}}],
        [{"$facet": {"outer": [{"$facet": {"inner": [{"$graphLookup": {"from": "metadatabucket"}}]}}]}}],
    ])
    def test_nested_cross_collection_stage_rejected_for_tenant(self, store, collection, pipeline):
        with pytest.raises(InvalidQueryError):
            store.query(pipeline, CallContext(tenant_id="tenant-a"))
        assert collection.aggregate_calls == []

    def test_facet_without_cross_collection_stage_allowed_for_tenant(self, stub_config):
        collection = MagicMock()
        collection.aggregate.return_value = iter([])
        store = MongoBackend(stub_config, collection=collection)

        store.query([{"$facet": {"count": [{"$count": "n"}]}}], CallContext(tenant_id="tenant-a"))

        collection.aggregate.assert_called_once()

    @pytest.mark.parametrize("pipeline", [
        [{"$facet": {"x": [{"$out": "copy"}]}}],
        [{"$lookup": {"from": "other", "pipeline": [{"$merge": {"into": "copy"}}], "as": "x"}}],
    ])
    def test_nested_write_stage_rejected_for_admin(self, store, pipeline):
        with pytest.raises(InvalidQueryError):
            store.query(pipeline, CallContext(is_admin=True))

    def test_reshaped_results_raise_store_error(self, stub_config):
        collection = MagicMock()
        collection.aggregate.return_value = iter([
            {"_id": "backend-01", "buckets": {"name": "b1", "objects": []}},
        ])
        store = MongoBackend(stub_config, collection=collection)

        with pytest.raises(StoreError):
            store.query([{"$unwind": "$buckets"}], CallContext(is_admin=True))

    def test_cross_collection_stage_allowed_for_admin(self, store, collection):
        store.query([{"$lookup": {"from": "other", "as": "x"}}], CallContext(is_admin=True))
        assert len(collection.aggregate_calls) == 1

    @pytest.mark.parametrize("stage", [{"$out": "copy"}, {"$merge": {"into": "copy"}}])
    def test_write_stages_rejected_for_everyone(self, store, stage):
        with pytest.raises(InvalidQueryError):
            store.query([stage], CallContext(is_admin=True))

    def test_malformed_stage_rejected(self, store):
        with pytest.raises(InvalidQueryError):
            store.query([{"$match": {}, "$limit": 1}], CallContext(is_admin=True))

    def test_driver_error_becomes_store_error(self, stub_config):
        collection = MagicMock()
        collection.aggregate.side_effect = OperationFailure("bad stage")

        with pytest.raises(StoreError):
            MongoBackend(stub_config, collection=collection).query([], CallContext(is_admin=True))

    def test_get_respects_scope(self, store):
        store.upsert(make_aggregate("backend-b", "tenant-b"))

        assert store.get("backend-b", CallContext(tenant_id="tenant-a")) is None
        assert store.get("backend-b", CallContext(tenant_id="tenant-b")).id == "backend-b"


def test_delete(store, collection):
    store.upsert(make_aggregate())

    assert store.delete("backend-01") is True
    assert store.delete("backend-01") is False
    assert collection.documents == {}


class TestSharedClient:
    def test_concurrent_init_connects_once(self):
        with patch.object(mongodb_backend, "MongoClient") as client_cls:
            results = []
            threads = [threading.Thread(target=lambda: results.append(init_client("mongodb://x")))
                       for _ in range(8)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        assert client_cls.call_count == 1
        assert all(r is results[0] for r in results)

    def test_failed_ping_raises_and_allows_retry(self):
        with patch.object(mongodb_backend, "MongoClient") as client_cls:
            client_cls.return_value.admin.command.side_effect = [
                ServerSelectionTimeoutError("no servers"),
                {"ok": 1},
            ]

            with pytest.raises(StoreError):
                init_client("mongodb://x")
            assert mongodb_backend._client is None

            client = init_client("mongodb://x")

        assert client is mongodb_backend._client
        assert client_cls.call_count == 2

    def test_backend_uses_shared_client(self, stub_config):
        with patch.object(mongodb_backend, "MongoClient") as client_cls:
            first = MongoBackend(stub_config)
            second = MongoBackend(stub_config)

        assert client_cls.call_count == 1
        assert first.collection is second.collection

    def test_store_close_leaves_shared_client_open(self, stub_config):
        with patch.object(mongodb_backend, "MongoClient") as client_cls:
            with MongoBackend(stub_config) as store:
                store.ping()
            second = MongoBackend(stub_config)

        client_cls.return_value.close.assert_not_called()
        assert mongodb_backend._client is client_cls.return_value
        assert client_cls.call_count == 1
        assert second.collection is not None

    def test_close_resets_handle(self):
        with patch.object(mongodb_backend, "MongoClient") as client_cls:
            init_client("mongodb://x")
            close_client()

        client_cls.return_value.close.assert_called_once()
        assert mongodb_backend._client is None
