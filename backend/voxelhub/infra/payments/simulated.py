"""Simulated provider used outside production."""
import logging
import time
from typing import Optional

from voxelhub.domain.settlement.models import Payout, PayoutDestination, PayoutStatus
from voxelhub.infra.payments.base import ProviderResult

logger = logging.getLogger(__name__)


class SimulatedPayoutProvider:
    """Accepts every payout and walks it through processing to completed."""

    def __init__(self, name: str, reference_prefix: str):
        self.name = name
        self.reference_prefix = reference_prefix

    def _reference(self) -> str:
        return f"{self.reference_prefix}{int(time.time() * 1000)}"

    async def submit(self, payout: Payout, destination: PayoutDestination) -> ProviderResult:
        reference = self._reference()
        logger.info(
            "Simulated %s payout %s: %s %s (ref %s)",
            self.name, payout.id, payout.amount, payout.currency.upper(), reference,
        )
        return ProviderResult(
            status=PayoutStatus.PENDING,
            reference=reference,
            follow_up=(PayoutStatus.PROCESSING, PayoutStatus.COMPLETED),
            response={"simulated": True},
        )

    async def fetch_status(self, reference: str, destination: Optional[PayoutDestination]) -> Optional[PayoutStatus]:
        # Simulated references are unknown to any provider; the executor timeline settles them
        logger.debug("Simulated %s has no status for %s", self.name, reference)
        return None


def simulated_stripe() -> SimulatedPayoutProvider:
    return SimulatedPayoutProvider("stripe", "py_test_")


def simulated_paypal() -> SimulatedPayoutProvider:
    return SimulatedPayoutProvider("paypal", "PAYID_")
