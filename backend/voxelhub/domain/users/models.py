"""User domain models."""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class UserRole(str, Enum):
    """Marketplace role."""
    CLIENT = "client"
    MAKER = "maker"


@dataclass
class User:
    """User domain model."""
    id: str
    email: str
    role: UserRole
    first_name: Optional[str]
    last_name: Optional[str]
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @property
    def is_client(self) -> bool:
        return self.role == UserRole.CLIENT

    @property
    def is_maker(self) -> bool:
        return self.role == UserRole.MAKER

    @property
    def display_name(self) -> str:
        # Fallback chain used in notifications
        return self.first_name or self.email or "Cliente"
