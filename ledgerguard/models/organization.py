"""Organization membership model."""

from enum import Enum
from uuid import uuid4

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from ledgerguard.database import Base


class OrganizationRole(str, Enum):
    """Organization roles."""

    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MODERATOR = "MODERATOR"
    MEMBER = "MEMBER"


class OrganizationMember(Base):
    """Links a user to an organization with a role."""

    __tablename__ = "organization_members"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=OrganizationRole.MEMBER.value,
    )
