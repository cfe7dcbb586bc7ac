from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.organization import MemberRole, OrganizationMember


class MembershipService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_role(self, organization_id: str, user_id: str) -> Optional[MemberRole]:
        result = await self.db.execute(
            select(OrganizationMember.role).where(
                OrganizationMember.organization_id == organization_id,
                OrganizationMember.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()
