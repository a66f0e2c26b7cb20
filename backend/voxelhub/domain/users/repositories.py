"""User repository protocol."""
from typing import Protocol

from voxelhub.domain.users.models import User


class UserRepository(Protocol):
    """User repository protocol."""

    async def get_by_id(self, user_id: str) -> User | None:
        """Get user by ID."""
        ...

    async def get_by_email(self, email: str) -> User | None:
        """Get user by email."""
        ...

    async def create(self, user: User) -> User:
        """Create a new user."""
        ...
