"""Stripe Connect payouts."""
import asyncio
import logging
from typing import Optional

import stripe

from voxelhub.domain.common.errors import PaymentProviderError
from voxelhub.domain.settlement.models import Payout, PayoutDestination, PayoutStatus, StripeDestination
from voxelhub.infra.payments.base import STRIPE_STATUS_MAP, ProviderResult, amount_in_cents

logger = logging.getLogger(__name__)


def _connect_account(destination: Optional[PayoutDestination]) -> Optional[str]:
    if isinstance(destination, StripeDestination):
        return destination.connect_account_id
    return None


class StripePayoutProvider:
    """Creates standard payouts on the maker's connected account.

    The stripe SDK is synchronous, so calls run in a worker thread.
    """

    name = "stripe"

    def __init__(self, api_key: str):
        if not api_key:
            raise ValueError("stripe_secret_key is required for live Stripe payouts")
        self.api_key = api_key

    async def submit(self, payout: Payout, destination: PayoutDestination) -> ProviderResult:
        account = _connect_account(destination)
        try:
            created = await asyncio.to_thread(
                stripe.Payout.create,
                amount=amount_in_cents(payout),
                currency=payout.currency.lower(),
                method="standard",
                description=f"VoxelHub maker payout #{payout.id[:8]}",
                api_key=self.api_key,
                stripe_account=account,
            )
        except stripe.StripeError as e:
            raise PaymentProviderError(self.name, e.user_message or str(e)) from e

        status = PayoutStatus.COMPLETED if created["status"] == "paid" else PayoutStatus.PROCESSING
        if STRIPE_STATUS_MAP.get(created["status"]) == PayoutStatus.FAILED:
            status = PayoutStatus.FAILED
        logger.info("Stripe payout %s created for %s: status=%s", created["id"], payout.id, created["status"])
        return ProviderResult(status=status, reference=created["id"], response={"status": created["status"]})

    async def fetch_status(self, reference: str, destination: Optional[PayoutDestination]) -> Optional[PayoutStatus]:
        try:
            retrieved = await asyncio.to_thread(
                stripe.Payout.retrieve,
                reference,
                api_key=self.api_key,
                stripe_account=_connect_account(destination),
            )
        except stripe.StripeError as e:
            raise PaymentProviderError(self.name, e.user_message or str(e)) from e
        status = STRIPE_STATUS_MAP.get(retrieved["status"])
        if status is None:
            logger.warning("Unknown Stripe payout status %r for %s", retrieved["status"], reference)
        return status
