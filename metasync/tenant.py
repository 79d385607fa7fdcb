"""
Tenant scoping for metadata queries
===================================

Turns a call's identity context into the predicate that scopes a query to
one tenant. The admin and tenant attributes are taken as given: they are
populated and authenticated by the RPC/auth layer in front of this package,
and nothing here re-derives or checks them.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .errors import ContextError

logger = logging.getLogger(__name__)

# RPC metadata keys and values set by the auth layer
CTX_KEY_TENANT_ID = "Tenantid"
CTX_KEY_IS_ADMIN = "Isadmin"
CTX_VAL_TRUE = "true"

# Document field holding the owning tenant
TENANT_FIELD = "tenantid"


@dataclass(frozen=True)
class CallContext:
    """Externally validated claims carried by a query call."""
    tenant_id: Optional[str] = None
    is_admin: Optional[bool] = None

    @classmethod
    def from_metadata(cls, metadata: Optional[Mapping[str, Any]]) -> "CallContext":
        """
        Build a context from RPC metadata (header names are case-insensitive).

        Missing keys stay None so tenant_filter() can tell "absent" from "false".
        """
        if metadata is None:
            raise ContextError("get context failed")
        normalized = {str(k).lower(): v for k, v in metadata.items()}

        is_admin = None
        raw_admin = normalized.get(CTX_KEY_IS_ADMIN.lower())
        if raw_admin is not None:
            is_admin = str(raw_admin).strip().lower() == CTX_VAL_TRUE

        tenant_id = normalized.get(CTX_KEY_TENANT_ID.lower())
        if tenant_id is not None:
            tenant_id = str(tenant_id)

        return cls(tenant_id=tenant_id, is_admin=is_admin)


def tenant_filter(context: Optional[CallContext]) -> Optional[Dict[str, str]]:
    """
    Derive the scoping predicate for a call.

    Returns:
        None for an admin context (no scoping), else {"tenantid": <tenant>}

    Raises:
        ContextError: If there is no context, or it is not admin and carries no tenant id
    """
    if context is None:
        logger.error("get context failed")
        raise ContextError("get context failed")

    if context.is_admin:
        return None

    if not context.tenant_id:
        logger.error("get tenantid failed")
        raise ContextError("get tenantid failed")

    return {TENANT_FIELD: context.tenant_id}


__all__ = [
    'CallContext',
    'tenant_filter',
    'TENANT_FIELD',
    'CTX_KEY_TENANT_ID',
    'CTX_KEY_IS_ADMIN',
]
