"""Payout status transitions."""
from voxelhub.domain.settlement.models import PayoutStatus

ALLOWED = {
    PayoutStatus.PENDING: {PayoutStatus.PROCESSING, PayoutStatus.COMPLETED, PayoutStatus.FAILED},
    PayoutStatus.PROCESSING: {PayoutStatus.COMPLETED, PayoutStatus.FAILED},
    PayoutStatus.COMPLETED: set(),
    PayoutStatus.FAILED: set(),
}


def can_transition(old: PayoutStatus, new: PayoutStatus) -> bool:
    return new in ALLOWED.get(old, set())
