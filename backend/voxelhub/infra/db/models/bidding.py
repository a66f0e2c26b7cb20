"""Project, bid and review database models."""
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)

from voxelhub.domain.bidding.models import Bid, BidStatus, Project, ProjectStatus, Review
from voxelhub.domain.common.types import to_money, utcnow
from voxelhub.infra.db.base import Base, JSONType, value_enum


class ProjectModel(Base):
    """Project model - a client's print request."""

    __tablename__ = "projects"

    id = Column(String, primary_key=True)
    owner_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    material = Column(String, nullable=True)
    dimensions = Column(String, nullable=True)
    files = Column(JSONType, nullable=False, default=list)  # blob storage keys
    status = Column(value_enum(ProjectStatus, "project_status"), nullable=False, default=ProjectStatus.ACTIVE)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_projects_owner_id", "owner_id"),
        Index("ix_projects_status", "status"),
    )

    def to_entity(self) -> Project:
        """Convert to domain entity."""
        return Project(
            id=self.id,
            owner_id=self.owner_id,
            title=self.title,
            description=self.description,
            material=self.material,
            dimensions=self.dimensions,
            files=list(self.files or []),
            status=self.status,
            created_at=self.created_at,
            updated_at=self.updated_at,
            deleted_at=self.deleted_at,
        )

    @classmethod
    def from_entity(cls, entity: Project) -> "ProjectModel":
        """Create from domain entity."""
        return cls(
            id=entity.id,
            owner_id=entity.owner_id,
            title=entity.title,
            description=entity.description,
            material=entity.material,
            dimensions=entity.dimensions,
            files=list(entity.files),
            status=entity.status,
            deleted_at=entity.deleted_at,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )


class BidModel(Base):
    """Bid model - a maker's offer against a project."""

    __tablename__ = "bids"

    id = Column(String, primary_key=True)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    maker_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    delivery_days = Column(Integer, nullable=False)
    message = Column(Text, nullable=True)
    status = Column(value_enum(BidStatus, "bid_status"), nullable=False, default=BidStatus.PENDING)
    is_read = Column(Boolean, default=False, nullable=False)
    delivery_confirmed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("price >= 0.50", name="ck_bids_min_price"),
        CheckConstraint("delivery_days > 0", name="ck_bids_delivery_days_positive"),
        # At most one accepted bid per project, ever
        Index(
            "uq_bids_one_accepted_per_project",
            "project_id",
            unique=True,
            postgresql_where=text("status = 'accepted'"),
            sqlite_where=text("status = 'accepted'"),
        ),
        # At most one non-rejected bid per maker and project
        Index(
            "uq_bids_open_per_maker_project",
            "project_id",
            "maker_id",
            unique=True,
            postgresql_where=text("status <> 'rejected'"),
            sqlite_where=text("status <> 'rejected'"),
        ),
        Index("ix_bids_project_id", "project_id"),
        Index("ix_bids_maker_id", "maker_id"),
    )

    def to_entity(self) -> Bid:
        """Convert to domain entity."""
        return Bid(
            id=self.id,
            project_id=self.project_id,
            maker_id=self.maker_id,
            price=to_money(self.price),
            delivery_days=self.delivery_days,
            message=self.message,
            status=self.status,
            is_read=self.is_read,
            created_at=self.created_at,
            updated_at=self.updated_at,
            delivery_confirmed_at=self.delivery_confirmed_at,
        )

    @classmethod
    def from_entity(cls, entity: Bid) -> "BidModel":
        """Create from domain entity."""
        return cls(
            id=entity.id,
            project_id=entity.project_id,
            maker_id=entity.maker_id,
            price=entity.price,
            delivery_days=entity.delivery_days,
            message=entity.message,
            status=entity.status,
            is_read=entity.is_read,
            delivery_confirmed_at=entity.delivery_confirmed_at,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )


class ReviewModel(Base):
    """Review model - rating between the two sides of a project."""

    __tablename__ = "reviews"

    id = Column(String, primary_key=True)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    from_user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    to_user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    rating = Column(Numeric(2, 1), nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("project_id", "from_user_id", "to_user_id", name="uq_reviews_project_from_to"),
        CheckConstraint("rating >= 0.5 AND rating <= 5", name="ck_reviews_rating_range"),
        Index("ix_reviews_to_user_id", "to_user_id"),
    )

    def to_entity(self) -> Review:
        """Convert to domain entity."""
        return Review(
            id=self.id,
            project_id=self.project_id,
            from_user_id=self.from_user_id,
            to_user_id=self.to_user_id,
            rating=Decimal(str(self.rating)),
            comment=self.comment,
            created_at=self.created_at,
        )

    @classmethod
    def from_entity(cls, entity: Review) -> "ReviewModel":
        """Create from domain entity."""
        return cls(
            id=entity.id,
            project_id=entity.project_id,
            from_user_id=entity.from_user_id,
            to_user_id=entity.to_user_id,
            rating=entity.rating,
            comment=entity.comment,
            created_at=entity.created_at,
        )
