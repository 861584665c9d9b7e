"""
Tenant Context
==============

Request-scoped tenant, user and role, as forwarded by the upstream auth
gateway. This service never authenticates; it trusts these headers.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, status

from src.config import Role


@dataclass(frozen=True)
class TenantContext:
    """Verified caller identity."""
    tenant_id: str
    user_id: Optional[str] = None
    role: Optional[Role] = None


async def get_tenant_context(
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID"),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
    x_user_role: Optional[str] = Header(None, alias="X-User-Role"),
) -> TenantContext:
    """FastAPI dependency building the TenantContext from gateway headers."""
    tenant_id = (x_tenant_id or "").strip()
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Tenant-ID header"
        )

    role = None
    if x_user_role:
        try:
            role = Role(x_user_role.strip().upper())
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown role: {x_user_role}"
            )

    return TenantContext(
        tenant_id=tenant_id,
        user_id=(x_user_id or "").strip() or None,
        role=role,
    )
