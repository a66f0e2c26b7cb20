"""Maker profile, earnings ledger and payout database models."""
from decimal import Decimal

from sqlalchemy import (
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
)

from voxelhub.domain.common.types import to_money, utcnow
from voxelhub.domain.settlement.models import (
    Earning,
    EarningSource,
    MakerProfile,
    Payout,
    PayoutMethod,
    PayoutStatus,
    destination_from_dict,
    destination_to_dict,
)
from voxelhub.infra.db.base import Base, JSONType, value_enum

# Shared by maker_profiles.payout_method and maker_payouts.method
payout_method_enum = value_enum(PayoutMethod, "payout_method")


class MakerProfileModel(Base):
    """Maker profile model. The payout destination is stored as one JSON document keyed by method."""

    __tablename__ = "maker_profiles"

    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    bio = Column(Text, nullable=True)
    city = Column(String, nullable=True)
    printer_models = Column(JSONType, nullable=False, default=list)
    rating = Column(Numeric(3, 2), nullable=False, default=Decimal("0"))
    total_reviews = Column(Integer, nullable=False, default=0)
    payout_method = Column(payout_method_enum, nullable=True)
    payout_destination = Column(JSONType, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def to_entity(self) -> MakerProfile:
        """Convert to domain entity."""
        destination = None
        if self.payout_method is not None:
            destination = destination_from_dict(self.payout_method, self.payout_destination)
        return MakerProfile(
            user_id=self.user_id,
            bio=self.bio,
            city=self.city,
            printer_models=list(self.printer_models or []),
            rating=Decimal(str(self.rating or 0)),
            total_reviews=self.total_reviews or 0,
            payout_destination=destination,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_entity(cls, entity: MakerProfile) -> "MakerProfileModel":
        """Create from domain entity."""
        model = cls(
            user_id=entity.user_id,
            bio=entity.bio,
            city=entity.city,
            printer_models=list(entity.printer_models),
            rating=entity.rating,
            total_reviews=entity.total_reviews,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )
        if entity.payout_destination is not None:
            model.payout_method = entity.payout_destination.method
            model.payout_destination = destination_to_dict(entity.payout_destination)
        return model


class EarningModel(Base):
    """Earning model - append-only ledger of maker proceeds."""

    __tablename__ = "maker_earnings"

    id = Column(String, primary_key=True)
    maker_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    source = Column(value_enum(EarningSource, "earning_source"), nullable=False)
    source_id = Column(String, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    available_date = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("source", "source_id", name="uq_maker_earnings_source"),
        CheckConstraint("amount > 0", name="ck_maker_earnings_amount_positive"),
        CheckConstraint("available_date > created_at", name="ck_maker_earnings_retention"),
        Index("ix_maker_earnings_maker_id", "maker_id"),
    )

    def to_entity(self) -> Earning:
        """Convert to domain entity."""
        return Earning(
            id=self.id,
            maker_id=self.maker_id,
            source=self.source,
            source_id=self.source_id,
            amount=to_money(self.amount),
            created_at=self.created_at,
            available_date=self.available_date,
        )

    @classmethod
    def from_entity(cls, entity: Earning) -> "EarningModel":
        """Create from domain entity."""
        return cls(
            id=entity.id,
            maker_id=entity.maker_id,
            source=entity.source,
            source_id=entity.source_id,
            amount=entity.amount,
            available_date=entity.available_date,
            created_at=entity.created_at,
        )


class PayoutModel(Base):
    """Payout model - a maker's withdrawal request."""

    __tablename__ = "maker_payouts"

    id = Column(String, primary_key=True)
    maker_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    method = Column(payout_method_enum, nullable=False)
    status = Column(value_enum(PayoutStatus, "payout_status"), nullable=False, default=PayoutStatus.PENDING)
    currency = Column(String(3), nullable=False)
    provider_reference = Column(String, nullable=True)  # py_..., payout batch id, bank transfer id
    failure_reason = Column(Text, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_maker_payouts_amount_positive"),
        Index("ix_maker_payouts_maker_id", "maker_id"),
        Index("ix_maker_payouts_status", "status"),
    )

    def to_entity(self) -> Payout:
        """Convert to domain entity."""
        return Payout(
            id=self.id,
            maker_id=self.maker_id,
            amount=to_money(self.amount),
            method=self.method,
            status=self.status,
            currency=self.currency,
            created_at=self.created_at,
            updated_at=self.updated_at,
            provider_reference=self.provider_reference,
            sent_at=self.sent_at,
            failure_reason=self.failure_reason,
        )

    @classmethod
    def from_entity(cls, entity: Payout) -> "PayoutModel":
        """Create from domain entity."""
        return cls(
            id=entity.id,
            maker_id=entity.maker_id,
            amount=entity.amount,
            method=entity.method,
            status=entity.status,
            currency=entity.currency,
            provider_reference=entity.provider_reference,
            failure_reason=entity.failure_reason,
            sent_at=entity.sent_at,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )
