"""
Validation utilities for metasync
=================================

Input validation for sync requests and query pipelines.
"""

import re
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..errors import InvalidQueryError
from ..model import BackendIdentity

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """Custom exception for validation failures"""
    pass


class MetadataValidator:
    """
    Validation for metasync inputs

    Validates:
    - Backend identities handed to a sync cycle
    - Aggregation pipelines handed to a list query
    """

    BACKEND_ID_PATTERN = r'^[A-Za-z0-9_.:-]+$'
    MAX_BACKEND_ID_LENGTH = 128
    MAX_PIPELINE_STAGES = 50

    # Stages that write to another collection
    WRITE_STAGES = frozenset({'$out', '$merge'})
    # Stages that read from another collection or re-read this one unfiltered
    CROSS_COLLECTION_STAGES = frozenset({'$lookup', '$graphLookup', '$unionWith'})

    @classmethod
    def validate_backend_identity(cls, identity: BackendIdentity) -> bool:
        """
        Validate the identity fields copied into a backend aggregate

        Raises:
            ValidationError: If validation fails
        """
        if not isinstance(identity, BackendIdentity):
            raise ValidationError(f"Backend identity must be BackendIdentity, got {type(identity)}")

        backend_id = identity.id
        if not isinstance(backend_id, str) or not backend_id.strip():
            raise ValidationError("Backend id cannot be empty")

        if len(backend_id) > cls.MAX_BACKEND_ID_LENGTH:
            raise ValidationError(
                f"Backend id too long: {len(backend_id)} > {cls.MAX_BACKEND_ID_LENGTH}"
            )

        if not re.match(cls.BACKEND_ID_PATTERN, backend_id):
            raise ValidationError(f"Invalid backend id format: {backend_id}")

        if not identity.region:
            raise ValidationError(f"Backend {backend_id} has no default region")

        if bool(identity.access_key) != bool(identity.secret_key):
            raise ValidationError(f"Backend {backend_id} has an incomplete credential pair")

        return True

    @classmethod
    def validate_pipeline(cls, stages: Sequence[Mapping[str, Any]], privileged: bool) -> List[Dict[str, Any]]:
        """
        Validate aggregation stages and return them as a fresh list

        Write stages are rejected for every caller. Cross-collection stages
        are rejected for tenant-scoped callers since they could read
        documents the tenant match stage never sees. Sub-pipelines nested in
        $facet, $lookup and $unionWith get the same checks.

        Raises:
            InvalidQueryError: If a stage is malformed or not allowed
        """
        if stages is None:
            return []

        cls._check_stages(stages, privileged, "pipeline")
        return [dict(stage) for stage in stages]

    @classmethod
    def _check_stages(cls, stages: Any, privileged: bool, where: str) -> None:
        if isinstance(stages, (str, bytes)) or not isinstance(stages, Sequence):
            raise InvalidQueryError(f"{where} must be a list of stages, got {type(stages)}")

        if len(stages) > cls.MAX_PIPELINE_STAGES:
            raise InvalidQueryError(
                f"{where} too long: {len(stages)} > {cls.MAX_PIPELINE_STAGES} stages"
            )

        for index, stage in enumerate(stages):
            if not isinstance(stage, Mapping) or len(stage) != 1:
                raise InvalidQueryError(f"Stage {index} of {where} must be a single-key mapping: {stage!r}")

            operator, argument = next(iter(stage.items()))
            if not isinstance(operator, str) or not operator.startswith('$'):
                raise InvalidQueryError(f"Stage {index} of {where} has invalid operator: {operator!r}")

            if operator in cls.WRITE_STAGES:
                raise InvalidQueryError(f"Stage {operator} is not allowed in a metadata query")

            if not privileged and operator in cls.CROSS_COLLECTION_STAGES:
                raise InvalidQueryError(f"Stage {operator} is not allowed for tenant-scoped queries")

            for name, sub_stages in cls._sub_pipelines(operator, argument):
                cls._check_stages(sub_stages, privileged, f"{operator}.{name}")

    @staticmethod
    def _sub_pipelines(operator: str, argument: Any):
        """Yield (name, stages) for every pipeline nested in a stage argument"""
        if operator == '$facet':
            if not isinstance(argument, Mapping):
                raise InvalidQueryError(f"$facet takes a mapping of pipelines, got {type(argument)}")
            yield from argument.items()
        elif operator in ('$lookup', '$unionWith') and isinstance(argument, Mapping) and 'pipeline' in argument:
            yield 'pipeline', argument['pipeline']


def safe_validate(func, *args, **kwargs) -> Tuple[bool, Optional[str]]:
    """
    Safely run validation function and return result

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        func(*args, **kwargs)
        return True, None
    except (ValidationError, InvalidQueryError) as e:
        return False, str(e)


__all__ = [
    'ValidationError',
    'MetadataValidator',
    'safe_validate',
]
