"""Project, bid and review repositories.

Repositories flush but never commit: the calling service owns the transaction
so multi-row transitions (accept + reject siblings) become visible together.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from voxelhub.domain.bidding.models import (
    Bid,
    BidEdit,
    BidStatus,
    Project,
    ProjectStatus,
    Review,
)
from voxelhub.domain.common.types import utcnow
from voxelhub.infra.db.models.bidding import BidModel, ProjectModel, ReviewModel


class ProjectRepository:
    """Project repository interface."""

    async def create(self, project: Project) -> Project:
        raise NotImplementedError

    async def get(self, project_id: str, include_deleted: bool = False) -> Optional[Project]:
        raise NotImplementedError

    async def get_for_update(self, project_id: str) -> Optional[Project]:
        """Get project with a row-level lock (deleted projects included)."""
        raise NotImplementedError

    async def list_by_owner(self, owner_id: str) -> List[Project]:
        raise NotImplementedError

    async def list_available(self) -> List[Project]:
        raise NotImplementedError

    async def list_by_ids(self, project_ids: List[str]) -> List[Project]:
        raise NotImplementedError

    async def count_active_by_owner(self, owner_id: str) -> int:
        raise NotImplementedError

    async def update_status(self, project_id: str, status: ProjectStatus) -> None:
        raise NotImplementedError

    async def soft_delete(self, project_id: str, deleted_at: datetime) -> None:
        raise NotImplementedError


class BidRepository:
    """Bid repository interface."""

    async def create(self, bid: Bid) -> Bid:
        raise NotImplementedError

    async def get(self, bid_id: str) -> Optional[Bid]:
        raise NotImplementedError

    async def get_for_update(self, bid_id: str) -> Optional[Bid]:
        raise NotImplementedError

    async def list_by_project(self, project_id: str) -> List[Bid]:
        raise NotImplementedError

    async def list_by_maker(self, maker_id: str) -> List[Bid]:
        raise NotImplementedError

    async def find_open_bid(self, maker_id: str, project_id: str) -> Optional[Bid]:
        """Pending or accepted bid from this maker on this project."""
        raise NotImplementedError

    async def update_status(self, bid_id: str, status: BidStatus) -> None:
        raise NotImplementedError

    async def reject_pending(self, project_id: str, except_bid_id: Optional[str] = None) -> List[Bid]:
        """Reject every pending bid on a project; returns the bids that changed."""
        raise NotImplementedError

    async def apply_edit(self, bid_id: str, edit: BidEdit) -> Bid:
        raise NotImplementedError

    async def delete(self, bid_id: str) -> None:
        raise NotImplementedError

    async def confirm_delivery(self, bid_id: str, confirmed_at: datetime) -> None:
        raise NotImplementedError

    async def mark_read(self, project_id: str) -> int:
        raise NotImplementedError

    async def unread_counts_for_owner(self, owner_id: str) -> dict[str, int]:
        """Unread bid count per project for a client's active/reserved projects."""
        raise NotImplementedError


class ReviewRepository:
    """Review repository interface."""

    async def create(self, review: Review) -> Review:
        raise NotImplementedError

    async def get_for_project(self, project_id: str, from_user_id: str, to_user_id: str) -> Optional[Review]:
        raise NotImplementedError

    async def rating_stats(self, to_user_id: str) -> tuple[Decimal, int]:
        """Average rating (2 decimals) and review count received by a user."""
        raise NotImplementedError


class ProjectRepositoryImpl(ProjectRepository):
    """Project repository implementation."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, project: Project) -> Project:
        model = ProjectModel.from_entity(project)
        self.session.add(model)
        await self.session.flush()
        return model.to_entity()

    async def get(self, project_id: str, include_deleted: bool = False) -> Optional[Project]:
        stmt = select(ProjectModel).where(ProjectModel.id == project_id)
        if not include_deleted:
            stmt = stmt.where(ProjectModel.deleted_at.is_(None))
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return model.to_entity() if model else None

    async def get_for_update(self, project_id: str) -> Optional[Project]:
        result = await self.session.execute(
            select(ProjectModel)
            .where(ProjectModel.id == project_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return model.to_entity() if model else None

    async def list_by_owner(self, owner_id: str) -> List[Project]:
        result = await self.session.execute(
            select(ProjectModel)
            .where(and_(ProjectModel.owner_id == owner_id, ProjectModel.deleted_at.is_(None)))
            .order_by(ProjectModel.created_at.desc())
        )
        return [m.to_entity() for m in result.scalars().all()]

    async def list_available(self) -> List[Project]:
        result = await self.session.execute(
            select(ProjectModel)
            .where(
                and_(
                    ProjectModel.status == ProjectStatus.ACTIVE,
                    ProjectModel.deleted_at.is_(None),
                )
            )
            .order_by(ProjectModel.created_at.desc())
        )
        return [m.to_entity() for m in result.scalars().all()]

    async def list_by_ids(self, project_ids: List[str]) -> List[Project]:
        if not project_ids:
            return []
        result = await self.session.execute(
            select(ProjectModel).where(ProjectModel.id.in_(project_ids))
        )
        return [m.to_entity() for m in result.scalars().all()]

    async def count_active_by_owner(self, owner_id: str) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(ProjectModel)
            .where(
                and_(
                    ProjectModel.owner_id == owner_id,
                    ProjectModel.status == ProjectStatus.ACTIVE,
                    ProjectModel.deleted_at.is_(None),
                )
            )
        )
        return int(result.scalar_one())

    async def update_status(self, project_id: str, status: ProjectStatus) -> None:
        await self.session.execute(
            update(ProjectModel)
            .where(ProjectModel.id == project_id)
            .values(status=status, updated_at=utcnow())
        )

    async def soft_delete(self, project_id: str, deleted_at: datetime) -> None:
        await self.session.execute(
            update(ProjectModel)
            .where(ProjectModel.id == project_id)
            .values(deleted_at=deleted_at, updated_at=deleted_at)
        )


class BidRepositoryImpl(BidRepository):
    """Bid repository implementation."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, bid: Bid) -> Bid:
        model = BidModel.from_entity(bid)
        self.session.add(model)
        await self.session.flush()
        return model.to_entity()

    async def get(self, bid_id: str) -> Optional[Bid]:
        result = await self.session.execute(select(BidModel).where(BidModel.id == bid_id))
        model = result.scalar_one_or_none()
        return model.to_entity() if model else None

    async def get_for_update(self, bid_id: str) -> Optional[Bid]:
        result = await self.session.execute(
            select(BidModel)
            .where(BidModel.id == bid_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return model.to_entity() if model else None

    async def list_by_project(self, project_id: str) -> List[Bid]:
        result = await self.session.execute(
            select(BidModel)
            .where(BidModel.project_id == project_id)
            .order_by(BidModel.created_at.desc())
        )
        return [m.to_entity() for m in result.scalars().all()]

    async def list_by_maker(self, maker_id: str) -> List[Bid]:
        result = await self.session.execute(
            select(BidModel)
            .where(BidModel.maker_id == maker_id)
            .order_by(BidModel.created_at.desc())
        )
        return [m.to_entity() for m in result.scalars().all()]

    async def find_open_bid(self, maker_id: str, project_id: str) -> Optional[Bid]:
        result = await self.session.execute(
            select(BidModel).where(
                and_(
                    BidModel.maker_id == maker_id,
                    BidModel.project_id == project_id,
                    BidModel.status != BidStatus.REJECTED,
                )
            )
        )
        model = result.scalars().first()
        return model.to_entity() if model else None

    async def update_status(self, bid_id: str, status: BidStatus) -> None:
        await self.session.execute(
            update(BidModel)
            .where(BidModel.id == bid_id)
            .values(status=status, updated_at=utcnow())
        )

    async def reject_pending(self, project_id: str, except_bid_id: Optional[str] = None) -> List[Bid]:
        conditions = [BidModel.project_id == project_id, BidModel.status == BidStatus.PENDING]
        if except_bid_id:
            conditions.append(BidModel.id != except_bid_id)
        result = await self.session.execute(
            select(BidModel).where(and_(*conditions)).with_for_update()
        )
        pending = [m.to_entity() for m in result.scalars().all()]
        if not pending:
            return []
        await self.session.execute(
            update(BidModel)
            .where(BidModel.id.in_([b.id for b in pending]))
            .values(status=BidStatus.REJECTED, updated_at=utcnow())
        )
        for bid in pending:
            bid.status = BidStatus.REJECTED
        return pending

    async def apply_edit(self, bid_id: str, edit: BidEdit) -> Bid:
        values = {"updated_at": utcnow()}
        if edit.price is not None:
            values["price"] = edit.price
        if edit.delivery_days is not None:
            values["delivery_days"] = edit.delivery_days
        if edit.message is not None:
            values["message"] = edit.message
        await self.session.execute(update(BidModel).where(BidModel.id == bid_id).values(**values))
        result = await self.session.execute(
            select(BidModel).where(BidModel.id == bid_id).execution_options(populate_existing=True)
        )
        return result.scalar_one().to_entity()

    async def delete(self, bid_id: str) -> None:
        await self.session.execute(delete(BidModel).where(BidModel.id == bid_id))

    async def confirm_delivery(self, bid_id: str, confirmed_at: datetime) -> None:
        await self.session.execute(
            update(BidModel)
            .where(BidModel.id == bid_id)
            .values(delivery_confirmed_at=confirmed_at, updated_at=confirmed_at)
        )

    async def mark_read(self, project_id: str) -> int:
        result = await self.session.execute(
            update(BidModel)
            .where(and_(BidModel.project_id == project_id, BidModel.is_read.is_(False)))
            .values(is_read=True, updated_at=utcnow())
        )
        return result.rowcount or 0

    async def unread_counts_for_owner(self, owner_id: str) -> dict[str, int]:
        result = await self.session.execute(
            select(BidModel.project_id, func.count(BidModel.id))
            .join(ProjectModel, ProjectModel.id == BidModel.project_id)
            .where(
                and_(
                    ProjectModel.owner_id == owner_id,
                    ProjectModel.deleted_at.is_(None),
                    ProjectModel.status.in_([ProjectStatus.ACTIVE, ProjectStatus.RESERVED]),
                    BidModel.is_read.is_(False),
                )
            )
            .group_by(BidModel.project_id)
        )
        return {project_id: int(count) for project_id, count in result.all()}


class ReviewRepositoryImpl(ReviewRepository):
    """Review repository implementation."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, review: Review) -> Review:
        model = ReviewModel.from_entity(review)
        self.session.add(model)
        await self.session.flush()
        return model.to_entity()

    async def get_for_project(self, project_id: str, from_user_id: str, to_user_id: str) -> Optional[Review]:
        result = await self.session.execute(
            select(ReviewModel).where(
                and_(
                    ReviewModel.project_id == project_id,
                    ReviewModel.from_user_id == from_user_id,
                    ReviewModel.to_user_id == to_user_id,
                )
            )
        )
        model = result.scalar_one_or_none()
        return model.to_entity() if model else None

    async def rating_stats(self, to_user_id: str) -> tuple[Decimal, int]:
        result = await self.session.execute(
            select(ReviewModel.rating).where(ReviewModel.to_user_id == to_user_id)
        )
        ratings = [Decimal(str(r)) for r in result.scalars().all()]
        if not ratings:
            return Decimal("0.00"), 0
        average = (sum(ratings) / len(ratings)).quantize(Decimal("0.01"))
        return average, len(ratings)
