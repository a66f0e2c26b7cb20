"""Settlement domain models: earnings ledger, payouts and payout destinations."""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Optional, Union


class PayoutMethod(str, Enum):
    """Payout method enum."""
    STRIPE = "stripe"
    PAYPAL = "paypal"
    BANK = "bank"


class PayoutStatus(str, Enum):
    """Payout status enum."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PayoutStatus.COMPLETED, PayoutStatus.FAILED)


class EarningStatus(str, Enum):
    """Derived earning status: pending until the retention window has passed."""
    PENDING = "pending"
    AVAILABLE = "available"


class EarningSource(str, Enum):
    """What produced an earning."""
    BID = "bid"
    DESIGN_PURCHASE = "design_purchase"


# Retention before an earning becomes withdrawable
RETENTION_DAYS = {
    PayoutMethod.BANK: 15,
    PayoutMethod.STRIPE: 7,
    PayoutMethod.PAYPAL: 7,
}
DEFAULT_RETENTION_DAYS = RETENTION_DAYS[PayoutMethod.BANK]

MINIMUM_PAYOUT = {
    PayoutMethod.BANK: Decimal("20.00"),
    PayoutMethod.STRIPE: Decimal("10.00"),
    PayoutMethod.PAYPAL: Decimal("10.00"),
}


def retention_period(method: Optional[PayoutMethod]) -> timedelta:
    """Retention window for an earning, given the maker's payout method at creation."""
    if method is None:
        return timedelta(days=DEFAULT_RETENTION_DAYS)
    return timedelta(days=RETENTION_DAYS[method])


@dataclass(frozen=True)
class BankDestination:
    """SEPA bank transfer destination."""
    method: ClassVar[PayoutMethod] = PayoutMethod.BANK
    iban: str
    account_name: str


@dataclass(frozen=True)
class PayPalDestination:
    """PayPal destination. Either the account id or the email identifies the receiver."""
    method: ClassVar[PayoutMethod] = PayoutMethod.PAYPAL
    account_id: Optional[str] = None
    email: Optional[str] = None

    @property
    def receiver(self) -> Optional[str]:
        return self.account_id or self.email


@dataclass(frozen=True)
class StripeDestination:
    """Stripe Connect destination."""
    method: ClassVar[PayoutMethod] = PayoutMethod.STRIPE
    connect_account_id: Optional[str] = None
    email: Optional[str] = None


PayoutDestination = Union[BankDestination, PayPalDestination, StripeDestination]


def destination_to_dict(destination: PayoutDestination) -> dict:
    """Serialize a destination for the JSON column."""
    if isinstance(destination, BankDestination):
        return {"iban": destination.iban, "account_name": destination.account_name}
    if isinstance(destination, PayPalDestination):
        return {"account_id": destination.account_id, "email": destination.email}
    return {"connect_account_id": destination.connect_account_id, "email": destination.email}


def destination_from_dict(method: PayoutMethod, data: Optional[dict]) -> PayoutDestination:
    """Rebuild the destination variant selected by method."""
    data = data or {}
    if method == PayoutMethod.BANK:
        return BankDestination(iban=data.get("iban", ""), account_name=data.get("account_name", ""))
    if method == PayoutMethod.PAYPAL:
        return PayPalDestination(account_id=data.get("account_id"), email=data.get("email"))
    return StripeDestination(
        connect_account_id=data.get("connect_account_id"),
        email=data.get("email"),
    )


@dataclass
class MakerProfile:
    """Maker profile with its payout configuration."""
    user_id: str
    bio: Optional[str] = None
    city: Optional[str] = None
    printer_models: list[str] = field(default_factory=list)
    rating: Decimal = Decimal("0")
    total_reviews: int = 0
    payout_destination: Optional[PayoutDestination] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def payout_method(self) -> Optional[PayoutMethod]:
        return self.payout_destination.method if self.payout_destination else None


@dataclass
class Earning:
    """Append-only ledger entry for a maker's proceeds."""
    id: str
    maker_id: str
    source: EarningSource
    source_id: str
    amount: Decimal
    created_at: datetime
    available_date: datetime

    def status_at(self, now: datetime) -> EarningStatus:
        return EarningStatus.AVAILABLE if self.available_date <= now else EarningStatus.PENDING


@dataclass
class Payout:
    """A maker's withdrawal request."""
    id: str
    maker_id: str
    amount: Decimal
    method: PayoutMethod
    status: PayoutStatus
    currency: str
    created_at: datetime
    updated_at: datetime
    provider_reference: Optional[str] = None
    sent_at: Optional[datetime] = None
    failure_reason: Optional[str] = None


@dataclass(frozen=True)
class Balance:
    """Maker balance, recomputed from the ledger on every read."""
    total: Decimal
    available: Decimal


@dataclass(frozen=True)
class StatusChange:
    """One reconciled payout status change."""
    payout_id: str
    old_status: PayoutStatus
    new_status: PayoutStatus
