# metasync/service.py
"""
Metadata service

Entry points used by the RPC layer and the CLI:

- sync_metadata(): one full sync cycle for one backend (collect, assemble,
  upsert). Every cycle rebuilds the aggregate from scratch and replaces the
  stored document; nothing is retried here.
- list_metadata(): tenant-scoped query over stored aggregates.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from .assembler import assemble
from .backends.mongodb_backend import MongoBackend
from .backends.s3_backend import S3Backend
from .collector import BucketCollector, ObjectEnumerator, SyncControl
from .config import config as default_config
from .errors import MetadataError, SyncCancelled
from .model import BackendAggregate, BackendIdentity
from .tenant import CallContext, tenant_filter
from .utils.logging import get_logger, with_backend_context
from .utils.validation import MetadataValidator


class MetadataService:
    """
    Sync and query facade over the provider client and the metadata store.

    Args:
        config: Config instance, defaults to the global one
        store: MongoBackend (or compatible); created on first use when omitted
        provider_factory: Builds a provider client for a backend identity
        metrics: SyncMetrics instance; metrics are skipped when None
    """

    def __init__(
        self,
        config=None,
        store: Optional[MongoBackend] = None,
        provider_factory: Optional[Callable[[BackendIdentity], Any]] = None,
        metrics=None,
    ):
        self.config = config or default_config
        self.sync_config: Dict[str, Any] = self.config.get_sync_config()
        self.metrics = metrics
        self.logger = get_logger("metasync.service")
        self._store = store
        self._store_lock = threading.Lock()
        self._provider_factory = provider_factory or (lambda identity: S3Backend(self.config, identity))

    @property
    def store(self) -> MongoBackend:
        with self._store_lock:
            if self._store is None:
                self._store = MongoBackend(self.config)
            return self._store

    def _collector(self, provider) -> BucketCollector:
        enumerator = ObjectEnumerator(
            paginate=self.sync_config.get("paginate_objects", True),
            page_size=self.sync_config.get("page_size", 1000),
        )
        return BucketCollector(
            provider,
            enumerator=enumerator,
            max_workers=self.sync_config.get("max_workers") or None,
            on_bucket_error=self.sync_config.get("on_bucket_error", "raise"),
            metrics=self.metrics,
        )

    def sync_metadata(
        self,
        identity: BackendIdentity,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> BackendAggregate:
        """
        Run one full synchronization cycle for a backend.

        Args:
            identity: Backend to sync
            cancel_event: Set it from another thread to abort the cycle
            timeout: Seconds after which the cycle aborts

        Returns:
            The aggregate that was stored

        Raises:
            ValidationError: If the identity is malformed
            ProviderError: If bucket listing or any bucket's collection fails
            StoreError: If the aggregate cannot be persisted
            SyncCancelled: If cancelled or past the timeout
        """
        MetadataValidator.validate_backend_identity(identity)
        control = SyncControl(cancel_event, timeout)
        started = time.monotonic()
        outcome = "error"

        with with_backend_context(identity.id):
            self.logger.info("Starting metadata sync for backend id: %s (%s)", identity.id, identity.name)
            try:
                provider = self._provider_factory(identity)
                buckets = self._collector(provider).collect(control, backend_id=identity.id)
                aggregate = assemble(identity, buckets)
                control.check("storing metadata")
                self.store.upsert(aggregate)
                outcome = "success"
            except SyncCancelled as e:
                outcome = "cancelled"
                self.logger.warning("metadata sync for backend id: %s cancelled: %s", identity.id, e)
                raise
            except MetadataError as e:
                self.logger.error("metadata collection for backend id: %s failed with error: %s", identity.id, e)
                raise
            finally:
                duration = time.monotonic() - started
                if self.metrics is not None:
                    self.metrics.record_sync(identity.id, outcome, duration)

        if self.metrics is not None:
            self.metrics.record_inventory(
                identity.id,
                buckets=len(aggregate.buckets),
                objects=sum(b.object_count for b in aggregate.buckets),
                total_bytes=sum(b.total_size for b in aggregate.buckets),
            )
        self.logger.info("Metadata sync for backend id: %s finished in %.2fs (%d buckets)",
                         identity.id, duration, len(aggregate.buckets))
        return aggregate

    def list_metadata(self, pipeline: Sequence[Dict[str, Any]], context: Optional[CallContext]) -> List[BackendAggregate]:
        """
        Tenant-scoped query over stored aggregates.

        The context is resolved before the store is opened, so a bad context
        never reaches the database.

        Raises:
            ContextError: If the context has neither a tenant id nor an admin flag
            InvalidQueryError: If the pipeline holds a disallowed stage
            StoreError: If the query fails
        """
        self.logger.info("received list metadata request")
        try:
            tenant_filter(context)
            results = self.store.query(pipeline, context)
        except MetadataError:
            if self.metrics is not None:
                self.metrics.record_query("error")
            raise
        if self.metrics is not None:
            self.metrics.record_query("success")
        return results

    def delete_metadata(self, backend_id: str) -> bool:
        """Remove a backend's stored aggregate."""
        return self.store.delete(backend_id)


__all__ = ['MetadataService']
