"""
List request -> aggregation pipeline
====================================

Translates the simple filters a console sends (backend, bucket and object
names, region, sizes, sorting, paging) into aggregation stages for
MongoBackend.query(). Bucket and object filters prune the nested arrays, so
a matching backend comes back with only the matching buckets and objects;
the stored numberOfObjects/totalSize of a bucket are left as synced.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .errors import InvalidQueryError

SIZE_OPERATORS = {
    "lt": "$lt",
    "lte": "$lte",
    "gt": "$gt",
    "gte": "$gte",
    "eq": "$eq",
}

SORT_FIELDS = {
    "id": "_id",
    "name": "backendName",
    "type": "type",
    "region": "region",
}


@dataclass
class ListRequest:
    backend_name: Optional[str] = None
    type: Optional[str] = None
    bucket_name: Optional[str] = None
    region: Optional[str] = None
    bucket_size: Optional[int] = None
    bucket_size_operator: str = "gte"
    object_name: Optional[str] = None
    object_size: Optional[int] = None
    object_size_operator: str = "gte"
    sort_by: str = "id"
    sort_order: str = "asc"
    offset: int = 0
    limit: Optional[int] = None


def _size_operator(name: str) -> str:
    try:
        return SIZE_OPERATORS[name.lower()]
    except KeyError:
        raise InvalidQueryError(
            f"Unknown size operator {name!r}; expected one of {', '.join(SIZE_OPERATORS)}"
        ) from None


def _bucket_conditions(request: ListRequest) -> List[Dict[str, Any]]:
    conditions: List[Dict[str, Any]] = []
    if request.bucket_name:
        conditions.append({"$eq": ["$$bucket.name", request.bucket_name]})
    if request.region:
        conditions.append({"$eq": ["$$bucket.region", request.region]})
    if request.bucket_size is not None:
        operator = _size_operator(request.bucket_size_operator)
        conditions.append({operator: ["$$bucket.totalSize", int(request.bucket_size)]})
    return conditions


def _object_conditions(request: ListRequest) -> List[Dict[str, Any]]:
    conditions: List[Dict[str, Any]] = []
    if request.object_name:
        conditions.append({"$eq": ["$$object.name", request.object_name]})
    if request.object_size is not None:
        operator = _size_operator(request.object_size_operator)
        conditions.append({operator: ["$$object.size", int(request.object_size)]})
    return conditions


def build_pipeline(request: ListRequest) -> List[Dict[str, Any]]:
    """
    Build aggregation stages for a list request.

    Raises:
        InvalidQueryError: For unknown operators or sort fields, or bad paging values
    """
    stages: List[Dict[str, Any]] = []

    match: Dict[str, Any] = {}
    if request.backend_name:
        match["backendName"] = request.backend_name
    if request.type:
        match["type"] = request.type
    if match:
        stages.append({"$match": match})

    bucket_conditions = _bucket_conditions(request)
    if bucket_conditions:
        stages.append({"$addFields": {"buckets": {"$filter": {
            "input": "$buckets",
            "as": "bucket",
            "cond": {"$and": bucket_conditions},
        }}}})

    object_conditions = _object_conditions(request)
    if object_conditions:
        stages.append({"$addFields": {"buckets": {"$map": {
            "input": "$buckets",
            "as": "bucket",
            "in": {"$mergeObjects": ["$$bucket", {"objects": {"$filter": {
                "input": "$$bucket.objects",
                "as": "object",
                "cond": {"$and": object_conditions},
            }}}]},
        }}}})
        # Buckets with no matching object drop out
        stages.append({"$addFields": {"buckets": {"$filter": {
            "input": "$buckets",
            "as": "bucket",
            "cond": {"$gt": [{"$size": "$$bucket.objects"}, 0]},
        }}}})

    if bucket_conditions or object_conditions:
        stages.append({"$match": {"buckets.0": {"$exists": True}}})

    sort_field = SORT_FIELDS.get(request.sort_by.lower())
    if sort_field is None:
        raise InvalidQueryError(f"Cannot sort by {request.sort_by!r}; expected one of {', '.join(SORT_FIELDS)}")
    order = request.sort_order.lower()
    if order not in ("asc", "desc"):
        raise InvalidQueryError(f"Sort order must be 'asc' or 'desc', got {request.sort_order!r}")
    stages.append({"$sort": {sort_field: 1 if order == "asc" else -1}})

    if request.offset < 0:
        raise InvalidQueryError(f"Offset must be >= 0, got {request.offset}")
    if request.offset:
        stages.append({"$skip": request.offset})

    if request.limit is not None:
        if request.limit <= 0:
            raise InvalidQueryError(f"Limit must be > 0, got {request.limit}")
        stages.append({"$limit": request.limit})

    return stages


__all__ = ['ListRequest', 'build_pipeline', 'SIZE_OPERATORS', 'SORT_FIELDS']
