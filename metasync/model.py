"""
Metadata model for metasync
===========================

One BackendAggregate per storage backend, persisted as a single document with
nested bucket and object arrays. Field names in the stored document are
camelCase; the aggregate id is the document `_id`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from .errors import StoreError

# Largest value a BSON int64 can hold
INT64_MAX = 2 ** 63 - 1


def _check_int64(name: str, value: int) -> int:
    if value > INT64_MAX or value < -INT64_MAX - 1:
        raise StoreError(f"{name}={value} does not fit a 64-bit integer field")
    return value


def _documents(name: str, value: Any) -> List[Mapping[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, Mapping) for item in value):
        raise TypeError(f"{name} must be a list of documents, got {type(value).__name__}")
    return value


@dataclass
class BackendIdentity:
    """Backend as registered by the backend service; input to a sync cycle."""
    id: str
    name: str
    type: str
    region: str
    tenant_id: Optional[str] = None
    endpoint: Optional[str] = None
    access_key: Optional[str] = None
    secret_key: Optional[str] = None


@dataclass
class ObjectRecord:
    name: str
    size: int
    last_modified: Optional[datetime] = None
    storage_class: str = "STANDARD"
    content_type: str = ""
    encryption: Optional[str] = None
    version_id: Optional[str] = None
    expires: Optional[datetime] = None
    replication_status: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "size": _check_int64(f"size of {self.name}", self.size),
            "lastModifiedDate": self.last_modified,
            "storageClass": self.storage_class,
            "objectType": self.content_type,
            "serverSideEncryption": self.encryption,
            "versionId": self.version_id,
            "expiresDate": self.expires,
            "replicationStatus": self.replication_status,
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "ObjectRecord":
        return cls(
            name=doc.get("name", ""),
            size=int(doc.get("size", 0) or 0),
            last_modified=doc.get("lastModifiedDate"),
            storage_class=doc.get("storageClass", "STANDARD"),
            content_type=doc.get("objectType", ""),
            encryption=doc.get("serverSideEncryption"),
            version_id=doc.get("versionId"),
            expires=doc.get("expiresDate"),
            replication_status=doc.get("replicationStatus"),
        )


@dataclass
class BucketSnapshot:
    """
    Metadata for one bucket and the objects it holds.

    `tags` is None when the tag set could not be fetched and {} when the
    bucket simply has no tags.
    """
    name: str
    creation_date: Optional[datetime] = None
    region: str = ""
    tags: Optional[Dict[str, str]] = None
    object_count: int = 0
    total_size: int = 0
    objects: List[ObjectRecord] = field(default_factory=list)

    def set_objects(self, objects: List[ObjectRecord]) -> None:
        """Attach objects and derive count and total size from them."""
        self.objects = objects
        self.object_count = len(objects)
        self.total_size = sum(obj.size for obj in objects)

    def to_document(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "creationDate": self.creation_date,
            "region": self.region,
            "tags": self.tags,
            "numberOfObjects": self.object_count,
            "totalSize": _check_int64(f"totalSize of bucket {self.name}", self.total_size),
            "objects": [obj.to_document() for obj in self.objects],
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "BucketSnapshot":
        return cls(
            name=doc.get("name", ""),
            creation_date=doc.get("creationDate"),
            region=doc.get("region", ""),
            tags=doc.get("tags"),
            object_count=int(doc.get("numberOfObjects", 0) or 0),
            total_size=int(doc.get("totalSize", 0) or 0),
            objects=[ObjectRecord.from_document(o) for o in _documents("objects", doc.get("objects"))],
        )


@dataclass
class BackendAggregate:
    """Full metadata snapshot of one backend. Rebuilt from scratch every sync cycle."""
    id: str
    name: str
    type: str
    region: str
    tenant_id: Optional[str] = None
    buckets: List[BucketSnapshot] = field(default_factory=list)

    def to_document(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "backendName": self.name,
            "type": self.type,
            "region": self.region,
            "tenantid": self.tenant_id,
            "buckets": [bucket.to_document() for bucket in self.buckets],
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "BackendAggregate":
        return cls(
            id=str(doc.get("_id", "")),
            name=doc.get("backendName", ""),
            type=doc.get("type", ""),
            region=doc.get("region", ""),
            tenant_id=doc.get("tenantid"),
            buckets=[BucketSnapshot.from_document(b) for b in _documents("buckets", doc.get("buckets"))],
        )


__all__ = [
    'INT64_MAX',
    'BackendIdentity',
    'ObjectRecord',
    'BucketSnapshot',
    'BackendAggregate',
]
