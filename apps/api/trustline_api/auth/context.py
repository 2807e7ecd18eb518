"""Caller context and the tenant-isolation boundary."""

import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader
from sqlalchemy.orm import Session

from trustline_api.auth.api_key import get_operator_key
from trustline_api.auth.scopes import PLATFORM_SCOPE
from trustline_api.db.session import get_db
from trustline_api.errors import PermissionDeniedError

logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name="x-api-key", auto_error=False)


@dataclass(frozen=True)
class CallerContext:
    """Who is calling: operator user id, home tenant and granted scopes."""

    user_id: str
    tenant_id: Optional[str] = None
    scopes: frozenset = field(default_factory=frozenset)
    request_id: Optional[str] = None
    ip_address: Optional[str] = None

    @property
    def is_platform(self) -> bool:
        """Platform (superuser) callers see every tenant."""
        return PLATFORM_SCOPE in self.scopes

    def has_scope(self, scope: str) -> bool:
        return self.is_platform or scope in self.scopes

    def require_scope(self, scope: str) -> None:
        if not self.has_scope(scope):
            raise PermissionDeniedError(f"Scope '{scope}' required")

    def require_platform(self) -> None:
        if not self.is_platform:
            raise PermissionDeniedError("Platform scope required")


def resolve_tenant_scope(caller: CallerContext, requested_tenant_id: Optional[str]) -> Optional[str]:
    """
    Return the tenant a query must be constrained to.

    Platform callers get what they asked for (None means platform-wide).
    Everyone else is pinned to their own tenant, whatever they asked for.
    """
    if caller.is_platform:
        return requested_tenant_id

    if not caller.tenant_id:
        raise PermissionDeniedError("Tenant-scoped caller has no tenant")

    if requested_tenant_id is not None and requested_tenant_id != caller.tenant_id:
        logger.warning(
            "Ignoring tenant filter outside caller tenant",
            extra={
                "caller_user_id": caller.user_id,
                "caller_tenant_id": caller.tenant_id,
                "requested_tenant_id": requested_tenant_id,
            },
        )
    return caller.tenant_id


async def get_caller(
    request: Request,
    x_api_key: Optional[str] = Security(api_key_header),
    db: Session = Depends(get_db),
) -> CallerContext:
    """Resolve the calling operator from the x-api-key header."""
    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Provide x-api-key header.",
        )

    key = get_operator_key(db, x_api_key)
    if not key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or revoked API key.",
        )

    scopes = frozenset(json.loads(key.scopes) if key.scopes else [])
    return CallerContext(
        user_id=key.user_id,
        tenant_id=key.tenant_id,
        scopes=scopes,
        request_id=getattr(request.state, "correlation_id", None),
        ip_address=request.client.host if request.client else None,
    )
