"""
Bucket collection for metasync
==============================

Fan-out/join collection of per-bucket metadata for one backend:

- BucketCollector lists the backend's buckets and runs one task per bucket
  on a thread pool. Each task resolves the bucket's region and tags, then
  hands the bucket to the ObjectEnumerator.
- ObjectEnumerator lists a bucket's objects and issues a head request per
  object, sequentially, inside the bucket's task.

Results go into a list pre-sized to the bucket count; task i writes only
slot i, so the returned order is the provider's listing order whatever order
the tasks finish in, and no lock is needed beyond the final join.
"""

from __future__ import annotations

import time
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional

from .errors import BucketCollectionError, ProviderError, SyncCancelled
from .model import BucketSnapshot, ObjectRecord
from .utils.logging import get_logger, with_bucket_context

logger = get_logger(__name__)


class SyncControl:
    """Cancellation flag and deadline shared by every task of one sync cycle."""

    def __init__(self, cancel_event: Optional[threading.Event] = None, timeout: Optional[float] = None):
        self.cancel_event = cancel_event or threading.Event()
        self.deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self.cancel_event.set()

    def is_cancelled(self) -> bool:
        """True once the cycle was cancelled or went past its deadline."""
        if self.deadline is not None and time.monotonic() >= self.deadline:
            self.cancel_event.set()
        return self.cancel_event.is_set()

    def check(self, operation: str) -> None:
        """Raise SyncCancelled if the cycle was cancelled or is past its deadline."""
        if self.cancel_event.is_set():
            raise SyncCancelled(f"sync cancelled before {operation}")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            self.cancel_event.set()
            raise SyncCancelled(f"sync deadline exceeded before {operation}")


def parse_expires(value: Any) -> Optional[datetime]:
    """
    Parse an object's Expires value.

    Accepts datetimes as is, RFC 3339 text (time and offset required), and
    HTTP-date text.
    Returns None (after a warning) for anything else.
    """
    if value is None or isinstance(value, datetime):
        return value

    text = str(value).strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        parsed = None
    # RFC 3339 needs a time and an offset; date-only and naive values do not qualify
    if parsed is not None and parsed.tzinfo is not None:
        return parsed

    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        parsed = None
    if parsed is None:
        logger.warning("unable to parse expiry %r. skipping ExpiresDate field", text)
    return parsed


class ObjectEnumerator:
    """
    Populate a bucket snapshot's objects, object count and total size.

    Args:
        paginate: Follow continuation tokens until the listing is exhausted;
            False reads the first page only
        page_size: Keys requested per listing page
    """

    def __init__(self, paginate: bool = True, page_size: int = 1000):
        self.paginate = paginate
        self.page_size = page_size

    def enumerate(self, provider, snapshot: BucketSnapshot, control: Optional[SyncControl] = None) -> None:
        control = control or SyncControl()
        bucket = snapshot.name
        objects: List[ObjectRecord] = []
        token: Optional[str] = None

        while True:
            control.check(f"listing objects in {bucket}")
            try:
                contents, token = provider.list_objects(bucket, continuation_token=token, max_keys=self.page_size)
            except ProviderError as e:
                logger.error("unable to list objects in bucket %s. failed with error: %s", bucket, e)
                raise

            for entry in contents:
                control.check(f"head object {entry['Key']}")
                objects.append(self._object_record(provider, bucket, entry))

            if not token or not self.paginate:
                break

        snapshot.set_objects(objects)
        logger.debug("bucket %s: %d objects, %d bytes", bucket, snapshot.object_count, snapshot.total_size)

    def _object_record(self, provider, bucket: str, entry: Dict[str, Any]) -> ObjectRecord:
        key = entry["Key"]
        try:
            meta = provider.head_object(bucket, key)
        except ProviderError as e:
            logger.error("cannot perform head object on object %s in bucket %s. failed with error: %s", key, bucket, e)
            raise

        return ObjectRecord(
            name=key,
            size=int(entry.get("Size", 0)),
            last_modified=entry.get("LastModified"),
            storage_class=entry.get("StorageClass") or "STANDARD",
            content_type=meta.get("ContentType", ""),
            encryption=meta.get("ServerSideEncryption"),
            version_id=meta.get("VersionId"),
            expires=parse_expires(meta.get("Expires") or meta.get("ExpiresString")),
            replication_status=meta.get("ReplicationStatus"),
        )


class BucketCollector:
    """
    Collect bucket snapshots for one backend, one concurrent task per bucket.

    Args:
        provider: Provider client bound to the backend's default region
        enumerator: ObjectEnumerator used inside each bucket task
        max_workers: Pool size; 0 or None starts one worker per bucket
        on_bucket_error: "raise" joins failed buckets into one
            BucketCollectionError after all tasks finish; "log" keeps the
            partially filled snapshot in its slot and carries on
        metrics: Optional SyncMetrics receiving provider error counts
    """

    def __init__(
        self,
        provider,
        enumerator: Optional[ObjectEnumerator] = None,
        max_workers: Optional[int] = None,
        on_bucket_error: str = "raise",
        metrics=None,
    ):
        if on_bucket_error not in ("raise", "log"):
            raise ValueError(f"on_bucket_error must be 'raise' or 'log', got {on_bucket_error!r}")
        self.provider = provider
        self.enumerator = enumerator or ObjectEnumerator()
        self.max_workers = max_workers
        self.on_bucket_error = on_bucket_error
        self.metrics = metrics

    def collect(self, control: Optional[SyncControl] = None, backend_id: str = "") -> List[BucketSnapshot]:
        """
        List buckets and collect their metadata concurrently.

        Returns:
            Bucket snapshots in provider listing order

        Raises:
            ProviderError: If the bucket listing fails
            BucketCollectionError: If any bucket task failed and on_bucket_error is "raise"
            SyncCancelled: If the cycle was cancelled or timed out
        """
        control = control or SyncControl()
        control.check("listing buckets")
        try:
            entries = self.provider.list_buckets()
        except ProviderError as e:
            logger.error("unable to list buckets. failed with error: %s", e)
            self._record_error(e)
            raise

        slots: List[Optional[BucketSnapshot]] = [None] * len(entries)
        if not entries:
            return []

        workers = self.max_workers or len(entries)
        futures: List[Future] = []
        stopping = threading.Event()

        def cancel_pending(_finished: Future) -> None:
            # Runs as each task finishes, before its worker picks up the next one.
            # Cancelling a future fires its callbacks too, hence the one-shot guard.
            if stopping.is_set() or not control.is_cancelled():
                return
            stopping.set()
            for future in futures:
                future.cancel()

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bucket-meta") as executor:
            for index, entry in enumerate(entries):
                if control.is_cancelled():
                    break
                future = executor.submit(self._collect_bucket, index, entry, slots, control, backend_id)
                futures.append(future)
                future.add_done_callback(cancel_pending)
            wait(futures)

        failures = []
        cancelled = None
        for entry, future in zip(entries, futures):
            if future.cancelled():
                cancelled = cancelled or SyncCancelled(f"sync cancelled before bucket {entry.get('Name', '')} started")
                continue
            error = future.exception()
            if error is None:
                continue
            if isinstance(error, SyncCancelled):
                cancelled = error
                continue
            failures.append((entry.get("Name", ""), error))

        if cancelled is None and len(futures) < len(entries):
            cancelled = SyncCancelled(f"sync cancelled after starting {len(futures)} of {len(entries)} bucket tasks")
        if cancelled is not None:
            raise cancelled

        if failures:
            if self.on_bucket_error == "raise":
                raise BucketCollectionError(failures)
            logger.warning("metadata collection failed for %d of %d buckets; keeping partial results",
                           len(failures), len(entries))

        return list(slots)

    def _collect_bucket(self, index: int, entry: Dict[str, Any], slots: List[Optional[BucketSnapshot]],
                        control: SyncControl, backend_id: str) -> None:
        snapshot = BucketSnapshot(name=entry["Name"], creation_date=entry.get("CreationDate"))
        slots[index] = snapshot

        with with_bucket_context(backend_id, snapshot.name):
            try:
                control.check(f"locating bucket {snapshot.name}")
                snapshot.region = self.provider.get_bucket_location(snapshot.name)

                # Buckets outside the default region must be read with a client bound to their region
                client = self.provider
                if snapshot.region != self.provider.region:
                    client = self.provider.for_region(snapshot.region)

                control.check(f"fetching tags of {snapshot.name}")
                try:
                    snapshot.tags = client.get_bucket_tagging(snapshot.name)
                except ProviderError as e:
                    logger.error("unable to get bucket tags. failed with error: %s", e)
                    self._record_error(e)

                self.enumerator.enumerate(client, snapshot, control)
            except SyncCancelled:
                raise
            except ProviderError as e:
                logger.error("metadata collection failed for bucket %s: %s", snapshot.name, e)
                self._record_error(e)
                raise

    def _record_error(self, error: ProviderError) -> None:
        if self.metrics is not None:
            self.metrics.record_provider_error(error.operation or "unknown")


__all__ = ['BucketCollector', 'ObjectEnumerator', 'SyncControl', 'parse_expires']
