"""Maker profile, earnings ledger and payout repositories."""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from voxelhub.domain.common.types import utcnow
from voxelhub.domain.settlement.models import (
    Earning,
    EarningSource,
    MakerProfile,
    Payout,
    PayoutDestination,
    PayoutStatus,
    destination_to_dict,
)
from voxelhub.infra.db.models.settlement import EarningModel, MakerProfileModel, PayoutModel

UNSETTLED = (PayoutStatus.PENDING, PayoutStatus.PROCESSING)


class MakerProfileRepository:
    """Maker profile repository interface."""

    async def get(self, user_id: str) -> Optional[MakerProfile]:
        raise NotImplementedError

    async def get_for_update(self, user_id: str) -> Optional[MakerProfile]:
        raise NotImplementedError

    async def save(self, profile: MakerProfile) -> MakerProfile:
        """Insert or update the descriptive fields of a profile."""
        raise NotImplementedError

    async def set_payout_destination(self, user_id: str, destination: PayoutDestination) -> MakerProfile:
        raise NotImplementedError

    async def update_rating(self, user_id: str, rating: Decimal, total_reviews: int) -> None:
        raise NotImplementedError


class EarningRepository:
    """Earnings ledger interface. Append-only: no update or delete."""

    async def create(self, earning: Earning) -> Earning:
        raise NotImplementedError

    async def get_by_source(self, source: EarningSource, source_id: str) -> Optional[Earning]:
        raise NotImplementedError

    async def list_by_maker(self, maker_id: str) -> List[Earning]:
        raise NotImplementedError


class PayoutRepository:
    """Payout repository interface."""

    async def create(self, payout: Payout) -> Payout:
        raise NotImplementedError

    async def get(self, payout_id: str) -> Optional[Payout]:
        raise NotImplementedError

    async def list_by_maker(self, maker_id: str) -> List[Payout]:
        raise NotImplementedError

    async def list_unsettled(self, maker_id: Optional[str] = None) -> List[Payout]:
        """Pending or processing payouts, optionally for one maker."""
        raise NotImplementedError

    async def transition(
        self,
        payout_id: str,
        expected: PayoutStatus,
        new: PayoutStatus,
        provider_reference: Optional[str] = None,
        failure_reason: Optional[str] = None,
        sent_at: Optional[datetime] = None,
    ) -> bool:
        """Compare-and-set the status. Returns False when the row was not in `expected`."""
        raise NotImplementedError


class MakerProfileRepositoryImpl(MakerProfileRepository):
    """Maker profile repository implementation."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_model(self, user_id: str, lock: bool = False) -> Optional[MakerProfileModel]:
        stmt = select(MakerProfileModel).where(MakerProfileModel.user_id == user_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, user_id: str) -> Optional[MakerProfile]:
        model = await self._get_model(user_id)
        return model.to_entity() if model else None

    async def get_for_update(self, user_id: str) -> Optional[MakerProfile]:
        model = await self._get_model(user_id, lock=True)
        return model.to_entity() if model else None

    async def save(self, profile: MakerProfile) -> MakerProfile:
        model = await self._get_model(profile.user_id)
        now = utcnow()
        if model:
            model.bio = profile.bio
            model.city = profile.city
            model.printer_models = list(profile.printer_models)
            model.updated_at = now
        else:
            profile.created_at = profile.created_at or now
            profile.updated_at = now
            model = MakerProfileModel.from_entity(profile)
            self.session.add(model)
        await self.session.flush()
        return model.to_entity()

    async def set_payout_destination(self, user_id: str, destination: PayoutDestination) -> MakerProfile:
        model = await self._get_model(user_id, lock=True)
        model.payout_method = destination.method
        model.payout_destination = destination_to_dict(destination)
        model.updated_at = utcnow()
        await self.session.flush()
        return model.to_entity()

    async def update_rating(self, user_id: str, rating: Decimal, total_reviews: int) -> None:
        await self.session.execute(
            update(MakerProfileModel)
            .where(MakerProfileModel.user_id == user_id)
            .values(rating=rating, total_reviews=total_reviews, updated_at=utcnow())
        )


class EarningRepositoryImpl(EarningRepository):
    """Earnings ledger implementation."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, earning: Earning) -> Earning:
        model = EarningModel.from_entity(earning)
        self.session.add(model)
        await self.session.flush()
        return model.to_entity()

    async def get_by_source(self, source: EarningSource, source_id: str) -> Optional[Earning]:
        result = await self.session.execute(
            select(EarningModel).where(
                and_(EarningModel.source == source, EarningModel.source_id == source_id)
            )
        )
        model = result.scalar_one_or_none()
        return model.to_entity() if model else None

    async def list_by_maker(self, maker_id: str) -> List[Earning]:
        result = await self.session.execute(
            select(EarningModel)
            .where(EarningModel.maker_id == maker_id)
            .order_by(EarningModel.created_at.desc())
        )
        return [m.to_entity() for m in result.scalars().all()]


class PayoutRepositoryImpl(PayoutRepository):
    """Payout repository implementation."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, payout: Payout) -> Payout:
        model = PayoutModel.from_entity(payout)
        self.session.add(model)
        await self.session.flush()
        return model.to_entity()

    async def get(self, payout_id: str) -> Optional[Payout]:
        result = await self.session.execute(
            select(PayoutModel)
            .where(PayoutModel.id == payout_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return model.to_entity() if model else None

    async def list_by_maker(self, maker_id: str) -> List[Payout]:
        result = await self.session.execute(
            select(PayoutModel)
            .where(PayoutModel.maker_id == maker_id)
            .order_by(PayoutModel.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return [m.to_entity() for m in result.scalars().all()]

    async def list_unsettled(self, maker_id: Optional[str] = None) -> List[Payout]:
        stmt = select(PayoutModel).where(PayoutModel.status.in_(UNSETTLED))
        if maker_id:
            stmt = stmt.where(PayoutModel.maker_id == maker_id)
        result = await self.session.execute(
            stmt.order_by(PayoutModel.created_at.asc()).execution_options(populate_existing=True)
        )
        return [m.to_entity() for m in result.scalars().all()]

    async def transition(
        self,
        payout_id: str,
        expected: PayoutStatus,
        new: PayoutStatus,
        provider_reference: Optional[str] = None,
        failure_reason: Optional[str] = None,
        sent_at: Optional[datetime] = None,
    ) -> bool:
        values = {"status": new, "updated_at": utcnow()}
        if provider_reference is not None:
            values["provider_reference"] = provider_reference
        if failure_reason is not None:
            values["failure_reason"] = failure_reason
        if sent_at is not None:
            values["sent_at"] = sent_at
        result = await self.session.execute(
            update(PayoutModel)
            .where(and_(PayoutModel.id == payout_id, PayoutModel.status == expected))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1
