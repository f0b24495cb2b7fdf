from typing import Annotated, Optional
import uuid
import logging

from fastapi import Header, HTTPException, status

logger = logging.getLogger(__name__)


async def get_tenant_id(
    x_tenant_id: Annotated[Optional[str], Header(alias="X-Tenant-ID")] = None,
) -> uuid.UUID:
    """
    Dependency to resolve the tenant of the request.

    Every query a service runs is scoped to this id.
    """
    if not x_tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header is required"
        )
    try:
        return uuid.UUID(x_tenant_id)
    except ValueError:
        logger.warning(f"Invalid tenant id in header: {x_tenant_id}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header must be a UUID"
        )


async def get_actor(
    x_user_id: Annotated[Optional[str], Header(alias="X-User-ID")] = None,
) -> Optional[str]:
    """Acting user recorded on audit fields (created_by, cancelled_by, ...)."""
    return x_user_id or None

