import enum

from sqlalchemy import Column, DateTime
from sqlalchemy import Enum as SQLEnum
from sqlalchemy import String, UniqueConstraint
from sqlalchemy.sql import func

from app.core.database import Base


class MemberRole(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"


# Roles allowed to create and change tests
WRITE_ROLES = (MemberRole.OWNER, MemberRole.ADMIN, MemberRole.EDITOR)

# Roles allowed to delete tests
ADMIN_ROLES = (MemberRole.OWNER, MemberRole.ADMIN)


class OrganizationMember(Base):
    __tablename__ = "organization_members"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_organization_member"),
    )

    id = Column(String, primary_key=True)
    organization_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    role = Column(SQLEnum(MemberRole), nullable=False, default=MemberRole.VIEWER)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
