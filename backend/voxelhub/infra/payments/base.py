"""Payment provider contract and provider status mapping."""
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from voxelhub.domain.settlement.models import Payout, PayoutDestination, PayoutStatus

# Stripe payout.status -> local status
STRIPE_STATUS_MAP = {
    "paid": PayoutStatus.COMPLETED,
    "in_transit": PayoutStatus.PROCESSING,
    "pending": PayoutStatus.PROCESSING,
    "failed": PayoutStatus.FAILED,
    "canceled": PayoutStatus.FAILED,
}

# PayPal batch_header.batch_status -> local status
PAYPAL_BATCH_STATUS_MAP = {
    "SUCCESS": PayoutStatus.COMPLETED,
    "NEW": PayoutStatus.PROCESSING,
    "PENDING": PayoutStatus.PROCESSING,
    "PROCESSING": PayoutStatus.PROCESSING,
    "DENIED": PayoutStatus.FAILED,
    "CANCELED": PayoutStatus.FAILED,
    "FAILED": PayoutStatus.FAILED,
}


@dataclass(frozen=True)
class ProviderResult:
    """Outcome of submitting a payout.

    follow_up lists statuses the provider will reach later without another
    call (used by simulated providers); the executor applies them one per step.
    """
    status: PayoutStatus
    reference: Optional[str] = None
    follow_up: tuple[PayoutStatus, ...] = ()
    response: Optional[dict[str, Any]] = None
    error: Optional[str] = None


class PayoutProvider(Protocol):
    """Payment provider adapter."""

    name: str

    async def submit(self, payout: Payout, destination: PayoutDestination) -> ProviderResult:
        """Create the payout with the provider."""
        ...

    async def fetch_status(self, reference: str, destination: Optional[PayoutDestination]) -> Optional[PayoutStatus]:
        """Current provider status for a reference, None when the provider reports an unknown status."""
        ...


def amount_in_cents(payout: Payout) -> int:
    return int((payout.amount * 100).to_integral_value())
