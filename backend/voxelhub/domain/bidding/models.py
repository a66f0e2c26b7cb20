"""Bidding domain models."""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class ProjectStatus(str, Enum):
    """Project status enum."""
    ACTIVE = "active"
    RESERVED = "reserved"  # not entered by any current flow
    COMPLETED = "completed"


class BidStatus(str, Enum):
    """Bid status enum."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass
class Project:
    """A client's print request."""
    id: str
    owner_id: str
    title: str
    description: Optional[str]
    material: Optional[str]
    dimensions: Optional[str]
    files: list[str]
    status: ProjectStatus
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def accepts_bids(self) -> bool:
        return self.status == ProjectStatus.ACTIVE and not self.is_deleted


@dataclass
class Bid:
    """A maker's offer against a project."""
    id: str
    project_id: str
    maker_id: str
    price: Decimal
    delivery_days: int
    message: Optional[str]
    status: BidStatus
    is_read: bool
    created_at: datetime
    updated_at: datetime
    delivery_confirmed_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.status == BidStatus.PENDING


@dataclass
class Review:
    """Rating left by one side of a completed project for the other."""
    id: str
    project_id: str
    from_user_id: str
    to_user_id: str
    rating: Decimal
    comment: Optional[str]
    created_at: datetime


@dataclass
class BidEdit:
    """Fields a maker may change on a pending bid."""
    price: Optional[Decimal] = None
    delivery_days: Optional[int] = None
    message: Optional[str] = None

    def is_empty(self) -> bool:
        return self.price is None and self.delivery_days is None and self.message is None
