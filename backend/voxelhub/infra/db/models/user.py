"""User database model."""
from sqlalchemy import Boolean, Column, DateTime, String

from voxelhub.domain.common.types import utcnow
from voxelhub.domain.users.models import User, UserRole
from voxelhub.infra.db.base import Base, value_enum


class UserModel(Base):
    """User model. Credentials are handled outside this service."""

    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, unique=True, nullable=False, index=True)
    role = Column(value_enum(UserRole, "user_role"), nullable=False)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def to_entity(self) -> User:
        """Convert to domain entity."""
        return User(
            id=self.id,
            email=self.email,
            role=self.role,
            first_name=self.first_name,
            last_name=self.last_name,
            is_active=self.is_active,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_entity(cls, entity: User) -> "UserModel":
        """Create from domain entity."""
        return cls(
            id=entity.id,
            email=entity.email,
            role=entity.role,
            first_name=entity.first_name,
            last_name=entity.last_name,
            is_active=entity.is_active,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )
