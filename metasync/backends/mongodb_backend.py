from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, Sequence

from bson.errors import BSONError
from pymongo import MongoClient
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError

from ..errors import StoreError
from ..model import BackendAggregate
from ..tenant import CallContext, tenant_filter
from ..utils.validation import MetadataValidator

logger = logging.getLogger(__name__)

# Process-wide client, created once by init_client() and shared afterwards
_client: Optional[MongoClient] = None
_client_lock = threading.Lock()


def init_client(connection_string: str, server_selection_timeout_ms: int = 5000) -> MongoClient:
    """
    Return the shared MongoClient, connecting on first use.

    The first successful connect (ping included) wins; later calls return the
    same client without reconnecting. A failed attempt leaves nothing behind,
    so the next call tries again.
    """
    global _client
    with _client_lock:
        if _client is not None:
            return _client
        client = MongoClient(
            connection_string,
            serverSelectionTimeoutMS=server_selection_timeout_ms,
            socketTimeoutMS=30000,
            retryWrites=True,
        )
        try:
            client.admin.command("ping")
        except (ConnectionFailure, ServerSelectionTimeoutError) as e:
            client.close()
            raise StoreError(f"Failed to connect to MongoDB: {e}") from e
        logger.info("Connected and pinged metadata store")
        _client = client
        return _client


def close_client() -> None:
    """Disconnect and drop the shared client."""
    global _client
    with _client_lock:
        if _client is not None:
            _client.close()
            _client = None
            logger.info("Metadata store connection closed")


class MongoBackend:
    """
    MongoDB store for backend metadata aggregates.
    - One document per backend, keyed by backend id (_id)
    - Full-replace upserts, never field-level patches
    - Tenant-scoped aggregation queries, failing closed on a bad context
    """

    def __init__(self, config, collection=None):
        self.config = config
        self.mongo_config = config.get_mongodb_config()
        if collection is not None:
            self.collection = collection
        else:
            client = init_client(
                self.mongo_config["connection_string"],
                self.mongo_config.get("server_selection_timeout_ms", 5000),
            )
            self.collection = client[self.mongo_config["database"]][self.mongo_config["collection"]]

    def upsert(self, aggregate: BackendAggregate) -> None:
        """Replace the stored document for aggregate.id with aggregate, inserting if absent."""
        try:
            document = aggregate.to_document()
            self.collection.replace_one({"_id": aggregate.id}, document, upsert=True)
        except StoreError:
            logger.error("Failed to serialize metadata for backend id: %s", aggregate.id)
            raise
        except (PyMongoError, BSONError) as e:
            logger.error("Failed to sync metadata for backend id: %s. failed with error: %s", aggregate.id, e)
            raise StoreError(f"Failed to store metadata for backend {aggregate.id}: {e}") from e

        logger.info("Metadata successfully synced for backend id: %s", aggregate.id)

    def query(self, pipeline: Sequence[Dict[str, Any]], context: Optional[CallContext]) -> List[BackendAggregate]:
        """
        Run caller-supplied aggregation stages against stored aggregates.

        Tenant-scoped callers get a tenant $match stage in front of their
        stages. The context is resolved before the collection is touched.
        """
        scope = tenant_filter(context)
        stages = MetadataValidator.validate_pipeline(pipeline, privileged=scope is None)
        if scope is not None:
            stages.insert(0, {"$match": scope})

        logger.debug("Pipeline query: %s", stages)
        try:
            documents = list(self.collection.aggregate(stages))
        except PyMongoError as e:
            logger.error("Failed to execute query in database: %s", e)
            raise StoreError(f"Failed to query metadata: {e}") from e

        try:
            return [BackendAggregate.from_document(doc) for doc in documents]
        except (TypeError, ValueError, AttributeError) as e:
            logger.error("Failed to decode query results: %s", e)
            raise StoreError(f"Query results do not decode as backend metadata: {e}") from e

    def get(self, backend_id: str, context: Optional[CallContext]) -> Optional[BackendAggregate]:
        """Fetch one aggregate by backend id within the caller's scope."""
        results = self.query([{"$match": {"_id": backend_id}}, {"$limit": 1}], context)
        return results[0] if results else None

    def delete(self, backend_id: str) -> bool:
        """Remove a backend's stored aggregate. Returns True if one was deleted."""
        try:
            result = self.collection.delete_one({"_id": backend_id})
        except PyMongoError as e:
            raise StoreError(f"Failed to delete metadata for backend {backend_id}: {e}") from e
        logger.info("Deleted metadata for backend id: %s (found=%s)", backend_id, result.deleted_count > 0)
        return result.deleted_count > 0

    def ping(self) -> bool:
        try:
            self.collection.database.client.admin.command("ping")
            return True
        except PyMongoError:
            return False

    def close(self) -> None:
        """
        Release this store instance.

        The MongoDB client is shared by every store in the process and stays
        open; shut it down with close_client() at process exit.
        """
        logger.debug("Store instance released; shared client left open")

    def __enter__(self) -> "MongoBackend":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
