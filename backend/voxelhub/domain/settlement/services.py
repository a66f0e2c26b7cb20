"""Settlement domain services: earnings ledger, maker profile, balance and payouts."""
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Protocol, Union

from sqlalchemy.ext.asyncio import AsyncSession

from voxelhub.domain.common.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from voxelhub.domain.common.types import format_money, generate_id, to_money, utcnow
from voxelhub.domain.realtime.events import Notifier, payout_status_event
from voxelhub.domain.settlement.balance import compute_balance
from voxelhub.domain.settlement.iban import is_valid_iban, normalize_iban
from voxelhub.domain.settlement.models import (
    MINIMUM_PAYOUT,
    Balance,
    BankDestination,
    Earning,
    EarningSource,
    MakerProfile,
    PayPalDestination,
    Payout,
    PayoutDestination,
    PayoutMethod,
    PayoutStatus,
    StatusChange,
    StripeDestination,
    retention_period,
)
from voxelhub.domain.settlement.state_machine import can_transition
from voxelhub.domain.users.models import User
from voxelhub.infra.db.repositories.settlement_repo import (
    EarningRepository,
    MakerProfileRepository,
    PayoutRepository,
)

logger = logging.getLogger(__name__)


class PayoutRunner(Protocol):
    """Drives payouts against the providers outside the request cycle."""

    def schedule(self, payout_id: str) -> None:
        """Start executing a freshly created payout in the background."""
        ...

    async def reconcile(self, maker_id: Optional[str] = None) -> List[StatusChange]:
        """Re-query providers for unsettled payouts and persist changed statuses."""
        ...


def parse_amount(raw: Union[str, int, float, Decimal, None]) -> Decimal:
    try:
        amount = to_money(raw if raw is not None else "")
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError("Invalid amount")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Invalid amount")
    return amount


def build_destination(
    method: Optional[str],
    iban: Optional[str] = None,
    account_name: Optional[str] = None,
    paypal_account_id: Optional[str] = None,
    paypal_email: Optional[str] = None,
    stripe_connect_account_id: Optional[str] = None,
    stripe_email: Optional[str] = None,
) -> PayoutDestination:
    """Build the destination variant for a payout method from the submitted fields."""
    try:
        payout_method = PayoutMethod(method)
    except ValueError:
        raise ValidationError("Invalid payout method")

    if payout_method == PayoutMethod.BANK:
        if not iban or not is_valid_iban(iban):
            raise ValidationError("Invalid IBAN")
        if not account_name or not account_name.strip():
            raise ValidationError("Account holder name is required")
        return BankDestination(iban=normalize_iban(iban), account_name=account_name.strip())
    if payout_method == PayoutMethod.PAYPAL:
        if not paypal_account_id and not paypal_email:
            raise ValidationError("PayPal account id or email is required")
        return PayPalDestination(account_id=paypal_account_id or None, email=paypal_email or None)
    if not stripe_connect_account_id and not stripe_email:
        raise ValidationError("Stripe Connect account id or email is required")
    return StripeDestination(
        connect_account_id=stripe_connect_account_id or None,
        email=stripe_email or None,
    )


class EarningsLedger:
    """Appends earnings. Does not commit: callers own the transaction."""

    def __init__(self, earning_repo: EarningRepository, profile_repo: MakerProfileRepository):
        self.earning_repo = earning_repo
        self.profile_repo = profile_repo

    async def record(
        self,
        maker_id: str,
        source: EarningSource,
        source_id: str,
        amount: Union[Decimal, str],
        now=None,
    ) -> Earning:
        """Record the earning for a source once; a second call returns the first entry."""
        existing = await self.earning_repo.get_by_source(source, source_id)
        if existing:
            return existing
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Earning amount must be positive")

        # retention follows the payout method configured when the money is earned
        profile = await self.profile_repo.get(maker_id)
        method = profile.payout_method if profile else None
        created_at = now or utcnow()
        earning = await self.earning_repo.create(
            Earning(
                id=generate_id(),
                maker_id=maker_id,
                source=source,
                source_id=source_id,
                amount=amount,
                created_at=created_at,
                available_date=created_at + retention_period(method),
            )
        )
        logger.info(
            "Earning %s for maker %s: %s from %s %s, available %s",
            earning.id, maker_id, amount, source.value, source_id, earning.available_date.isoformat(),
        )
        return earning


class MakerProfileService:
    """Maker profile and payout destination."""

    def __init__(self, db: AsyncSession, profile_repo: MakerProfileRepository):
        self.db = db
        self.profile_repo = profile_repo

    async def get_profile(self, maker: User) -> MakerProfile:
        if not maker.is_maker:
            raise AuthorizationError("Only makers have a maker profile")
        profile = await self.profile_repo.get(maker.id)
        if not profile:
            raise NotFoundError("Maker profile", maker.id)
        return profile

    async def upsert_profile(
        self,
        maker: User,
        bio: Optional[str] = None,
        city: Optional[str] = None,
        printer_models: Optional[List[str]] = None,
    ) -> MakerProfile:
        if not maker.is_maker:
            raise AuthorizationError("Only makers can edit a maker profile")
        profile = await self.profile_repo.save(
            MakerProfile(user_id=maker.id, bio=bio, city=city, printer_models=list(printer_models or []))
        )
        await self.db.commit()
        return profile

    async def set_payout_method(self, maker: User, method: Optional[str], **fields) -> MakerProfile:
        """Replace the maker's payout destination."""
        if not maker.is_maker:
            raise AuthorizationError("Only makers can set a payout method")
        destination = build_destination(method, **fields)
        if not await self.profile_repo.get(maker.id):
            raise ConflictError("Please complete your maker profile first")
        profile = await self.profile_repo.set_payout_destination(maker.id, destination)
        await self.db.commit()
        logger.info("Maker %s payout method set to %s", maker.id, destination.method.value)
        return profile


class PayoutService:
    """Balances, earnings history, payout requests and manual bank settlement."""

    def __init__(
        self,
        db: AsyncSession,
        profile_repo: MakerProfileRepository,
        earning_repo: EarningRepository,
        payout_repo: PayoutRepository,
        runner: PayoutRunner,
        notifier: Notifier,
        currency: str = "eur",
        live_mode: bool = False,
    ):
        self.db = db
        self.profile_repo = profile_repo
        self.earning_repo = earning_repo
        self.payout_repo = payout_repo
        self.runner = runner
        self.notifier = notifier
        self.currency = currency
        self.live_mode = live_mode

    async def get_balance(self, maker_id: str, now=None) -> Balance:
        earnings = await self.earning_repo.list_by_maker(maker_id)
        payouts = await self.payout_repo.list_by_maker(maker_id)
        return compute_balance(earnings, payouts, now or utcnow())

    async def list_earnings(self, maker_id: str) -> List[Earning]:
        return await self.earning_repo.list_by_maker(maker_id)

    async def list_payouts(self, maker_id: str) -> List[Payout]:
        return await self.payout_repo.list_by_maker(maker_id)

    async def record_design_sale_earning(
        self, maker_id: str, design_purchase_id: str, amount: Union[Decimal, str]
    ) -> Earning:
        ledger = EarningsLedger(self.earning_repo, self.profile_repo)
        earning = await ledger.record(maker_id, EarningSource.DESIGN_PURCHASE, design_purchase_id, amount)
        await self.db.commit()
        return earning

    def _check_live_destination(self, profile: MakerProfile) -> None:
        destination = profile.payout_destination
        if isinstance(destination, StripeDestination) and not destination.connect_account_id:
            raise ConflictError("Please connect your Stripe account first")
        if isinstance(destination, PayPalDestination) and not destination.receiver:
            raise ConflictError("Please connect your PayPal account first")

    async def request_payout(self, maker: User, amount: Union[str, Decimal, None]) -> Payout:
        """Create a pending payout and hand it to the runner.

        The maker profile row stays locked until commit so two concurrent
        requests cannot both spend the same available balance.
        """
        if not maker.is_maker:
            raise AuthorizationError("Only makers can request payouts")
        value = parse_amount(amount)

        profile = await self.profile_repo.get_for_update(maker.id)
        if not profile or profile.payout_method is None:
            raise ConflictError("Please configure a payout method first")
        method = profile.payout_method
        if self.live_mode:
            self._check_live_destination(profile)

        minimum = MINIMUM_PAYOUT[method]
        if value < minimum:
            if method == PayoutMethod.BANK:
                raise ConflictError(f"Minimum €{format_money(minimum)} required for bank transfers")
            raise ConflictError(f"Minimum €{format_money(minimum)} required for Stripe/PayPal payouts")

        balance = await self.get_balance(maker.id)
        if value > balance.available:
            raise ConflictError(f"Insufficient balance. Available: €{format_money(balance.available)}")

        now = utcnow()
        payout = await self.payout_repo.create(
            Payout(
                id=generate_id(),
                maker_id=maker.id,
                amount=value,
                method=method,
                status=PayoutStatus.PENDING,
                currency=self.currency,
                created_at=now,
                updated_at=now,
            )
        )
        await self.db.commit()
        logger.info("Payout %s requested by maker %s: %s via %s", payout.id, maker.id, value, method.value)
        self.runner.schedule(payout.id)
        return payout

    async def verify_payouts(self, maker: User) -> List[StatusChange]:
        return await self.runner.reconcile(maker.id)

    async def record_bank_transfer(
        self, payout_id: str, transfer_reference: Optional[str], status: Union[str, PayoutStatus]
    ) -> Payout:
        """Move a bank payout forward once the transfer was made by hand."""
        payout = await self.payout_repo.get(payout_id)
        if not payout:
            raise NotFoundError("Payout", payout_id)
        if payout.method != PayoutMethod.BANK:
            raise ConflictError("Only bank payouts are settled manually")
        try:
            new_status = PayoutStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown payout status: {status}")
        if not can_transition(payout.status, new_status):
            raise ConflictError(f"Cannot move payout from {payout.status.value} to {new_status.value}")

        now = utcnow()
        changed = await self.payout_repo.transition(
            payout.id,
            expected=payout.status,
            new=new_status,
            provider_reference=transfer_reference or None,
            sent_at=None if new_status == PayoutStatus.FAILED else now,
        )
        if not changed:
            await self.db.rollback()
            raise ConflictError("Payout status changed concurrently, try again")
        await self.db.commit()
        logger.info("Bank payout %s: %s -> %s", payout.id, payout.status.value, new_status.value)

        await self.notifier.notify(payout.maker_id, payout_status_event(payout.id, new_status.value))
        return await self.payout_repo.get(payout.id)
