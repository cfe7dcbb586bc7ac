from typing import Optional, Sequence

from fastapi import Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.organization import MemberRole
from app.services.organizations import MembershipService


async def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity, forwarded by the auth gateway in ``X-User-Id``."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id


async def require_org_role(
    db: AsyncSession,
    organization_id: str,
    user_id: str,
    roles: Optional[Sequence[MemberRole]] = None,
    detail: str = "Insufficient permissions",
) -> MemberRole:
    """Raise 403 unless the user belongs to the organization (with one of ``roles``)."""
    role = await MembershipService(db).get_role(organization_id, user_id)

    if role is None or (roles is not None and role not in roles):
        raise HTTPException(status_code=403, detail=detail)

    return role
