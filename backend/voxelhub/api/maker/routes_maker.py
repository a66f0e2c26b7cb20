"""Maker API routes: profile, balance, earnings and payouts."""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Union

from fastapi import APIRouter, Depends, status

from voxelhub.api.deps import (
    ApiModel,
    get_current_user,
    get_payout_service,
    get_profile_service,
)
from voxelhub.domain.common.errors import AuthorizationError
from voxelhub.domain.common.types import utcnow
from voxelhub.domain.settlement.models import (
    BankDestination,
    MakerProfile,
    PayPalDestination,
    Payout,
    StripeDestination,
)
from voxelhub.domain.settlement.services import MakerProfileService, PayoutService
from voxelhub.domain.users.models import User

router = APIRouter()


class ProfileRequest(ApiModel):
    bio: Optional[str] = None
    city: Optional[str] = None
    printer_models: List[str] = []


class PayoutDestinationResponse(ApiModel):
    """Payout destination; only the fields of the configured method are set."""
    method: str
    bank_account_iban: Optional[str] = None
    bank_account_name: Optional[str] = None
    paypal_account_id: Optional[str] = None
    paypal_email: Optional[str] = None
    stripe_connect_account_id: Optional[str] = None
    stripe_email: Optional[str] = None


class ProfileResponse(ApiModel):
    user_id: str
    bio: Optional[str]
    city: Optional[str]
    printer_models: List[str]
    rating: Decimal
    total_reviews: int
    payout: Optional[PayoutDestinationResponse] = None

    @classmethod
    def from_profile(cls, profile: MakerProfile) -> "ProfileResponse":
        destination = profile.payout_destination
        payout = None
        if isinstance(destination, BankDestination):
            payout = PayoutDestinationResponse(
                method=destination.method.value,
                bank_account_iban=destination.iban,
                bank_account_name=destination.account_name,
            )
        elif isinstance(destination, PayPalDestination):
            payout = PayoutDestinationResponse(
                method=destination.method.value,
                paypal_account_id=destination.account_id,
                paypal_email=destination.email,
            )
        elif isinstance(destination, StripeDestination):
            payout = PayoutDestinationResponse(
                method=destination.method.value,
                stripe_connect_account_id=destination.connect_account_id,
                stripe_email=destination.email,
            )
        return cls(
            user_id=profile.user_id,
            bio=profile.bio,
            city=profile.city,
            printer_models=profile.printer_models,
            rating=profile.rating,
            total_reviews=profile.total_reviews,
            payout=payout,
        )


class PayoutMethodRequest(ApiModel):
    """Set payout method request. Only the fields for `method` are used."""
    method: Optional[str] = None
    bank_account_iban: Optional[str] = None
    bank_account_name: Optional[str] = None
    paypal_account_id: Optional[str] = None
    paypal_email: Optional[str] = None
    stripe_connect_account_id: Optional[str] = None
    stripe_email: Optional[str] = None


class PayoutMethodResponse(ApiModel):
    message: str
    profile: ProfileResponse


class BalanceResponse(ApiModel):
    total_balance: Decimal
    available_balance: Decimal
    message: str = "Balance fetched successfully"


class EarningResponse(ApiModel):
    id: str
    source: str
    source_id: str
    amount: Decimal
    status: str
    created_at: datetime
    available_date: datetime


class PayoutRequest(ApiModel):
    amount: Optional[Union[str, Decimal]] = None


class PayoutResponse(ApiModel):
    id: str
    amount: Decimal
    currency: str
    method: str
    status: str
    provider_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    sent_at: Optional[datetime] = None

    @classmethod
    def from_payout(cls, payout: Payout) -> "PayoutResponse":
        return cls(
            id=payout.id,
            amount=payout.amount,
            currency=payout.currency,
            method=payout.method.value,
            status=payout.status.value,
            provider_reference=payout.provider_reference,
            failure_reason=payout.failure_reason,
            created_at=payout.created_at,
            updated_at=payout.updated_at,
            sent_at=payout.sent_at,
        )


class PayoutCreatedResponse(ApiModel):
    message: str
    payout: PayoutResponse


class StatusUpdate(ApiModel):
    id: str
    old_status: str
    new_status: str


class VerifyPayoutsResponse(ApiModel):
    verified: bool
    updates: List[StatusUpdate]


def _require_maker(user: User) -> None:
    if not user.is_maker:
        raise AuthorizationError("Only makers can access maker finances")


@router.get("/profile", response_model=ProfileResponse)
async def get_profile(
    current_user: User = Depends(get_current_user),
    service: MakerProfileService = Depends(get_profile_service),
):
    profile = await service.get_profile(current_user)
    return ProfileResponse.from_profile(profile)


@router.put("/profile", response_model=ProfileResponse)
async def upsert_profile(
    request: ProfileRequest,
    current_user: User = Depends(get_current_user),
    service: MakerProfileService = Depends(get_profile_service),
):
    """Create or update the maker profile."""
    profile = await service.upsert_profile(
        current_user,
        bio=request.bio,
        city=request.city,
        printer_models=request.printer_models,
    )
    return ProfileResponse.from_profile(profile)


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    current_user: User = Depends(get_current_user),
    service: PayoutService = Depends(get_payout_service),
):
    """Total and available balance, recomputed from the ledger."""
    _require_maker(current_user)
    balance = await service.get_balance(current_user.id)
    return BalanceResponse(total_balance=balance.total, available_balance=balance.available)


@router.get("/earnings", response_model=List[EarningResponse])
async def list_earnings(
    current_user: User = Depends(get_current_user),
    service: PayoutService = Depends(get_payout_service),
):
    _require_maker(current_user)
    now = utcnow()
    earnings = await service.list_earnings(current_user.id)
    return [
        EarningResponse(
            id=e.id,
            source=e.source.value,
            source_id=e.source_id,
            amount=e.amount,
            status=e.status_at(now).value,
            created_at=e.created_at,
            available_date=e.available_date,
        )
        for e in earnings
    ]


@router.post("/payout-method", response_model=PayoutMethodResponse)
async def set_payout_method(
    request: PayoutMethodRequest,
    current_user: User = Depends(get_current_user),
    service: MakerProfileService = Depends(get_profile_service),
):
    """Replace the payout destination."""
    profile = await service.set_payout_method(
        current_user,
        request.method,
        iban=request.bank_account_iban,
        account_name=request.bank_account_name,
        paypal_account_id=request.paypal_account_id,
        paypal_email=request.paypal_email,
        stripe_connect_account_id=request.stripe_connect_account_id,
        stripe_email=request.stripe_email,
    )
    return PayoutMethodResponse(
        message="Payout method updated successfully",
        profile=ProfileResponse.from_profile(profile),
    )


@router.post("/request-payout", response_model=PayoutCreatedResponse, status_code=status.HTTP_201_CREATED)
async def request_payout(
    request: PayoutRequest,
    current_user: User = Depends(get_current_user),
    service: PayoutService = Depends(get_payout_service),
):
    """Create a payout; provider execution continues in the background."""
    payout = await service.request_payout(current_user, request.amount)
    return PayoutCreatedResponse(
        message="Payout request created successfully. Verifying with payment provider...",
        payout=PayoutResponse.from_payout(payout),
    )


@router.get("/payouts", response_model=List[PayoutResponse])
async def list_payouts(
    current_user: User = Depends(get_current_user),
    service: PayoutService = Depends(get_payout_service),
):
    _require_maker(current_user)
    payouts = await service.list_payouts(current_user.id)
    return [PayoutResponse.from_payout(p) for p in payouts]


@router.get("/verify-payouts", response_model=VerifyPayoutsResponse)
async def verify_payouts(
    current_user: User = Depends(get_current_user),
    service: PayoutService = Depends(get_payout_service),
):
    """Re-check unsettled payouts with their providers."""
    _require_maker(current_user)
    changes = await service.verify_payouts(current_user)
    return VerifyPayoutsResponse(
        verified=bool(changes),
        updates=[
            StatusUpdate(id=c.payout_id, old_status=c.old_status.value, new_status=c.new_status.value)
            for c in changes
        ],
    )
