"""Balance calculator.

Balances are never stored. Both figures are derived from the earnings ledger and
the payout history each time they are read:

* total     = sum(earnings) - sum(completed payouts)
* available = sum(earnings past retention) - sum(payouts that have not failed)

Pending and processing payouts already reduce the available figure so the same
funds cannot back two payout requests. Both figures are floored at zero.
"""
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from voxelhub.domain.common.types import to_money
from voxelhub.domain.settlement.models import Balance, Earning, Payout, PayoutStatus

ZERO = Decimal("0.00")


def _floor(value: Decimal) -> Decimal:
    return to_money(max(ZERO, value))


def total_balance(earnings: Iterable[Earning], payouts: Iterable[Payout]) -> Decimal:
    earned = sum((e.amount for e in earnings), ZERO)
    withdrawn = sum((p.amount for p in payouts if p.status == PayoutStatus.COMPLETED), ZERO)
    return _floor(earned - withdrawn)


def available_balance(earnings: Iterable[Earning], payouts: Iterable[Payout], now: datetime) -> Decimal:
    released = sum((e.amount for e in earnings if e.available_date <= now), ZERO)
    committed = sum((p.amount for p in payouts if p.status != PayoutStatus.FAILED), ZERO)
    return _floor(released - committed)


def compute_balance(earnings: list[Earning], payouts: list[Payout], now: datetime) -> Balance:
    return Balance(
        total=total_balance(earnings, payouts),
        available=available_balance(earnings, payouts, now),
    )
