"""Common domain types."""
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Union
from uuid import uuid4

CENT = Decimal("0.01")


def generate_id() -> str:
    """Generate a new UUID string."""
    return str(uuid4())


def utcnow() -> datetime:
    """Naive UTC now, matching the naive DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_money(value: Union[Decimal, int, float, str]) -> Decimal:
    """Quantize a value to cents."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value: Decimal) -> str:
    """Render an amount as a 2-decimal string, e.g. '15.00'."""
    return str(to_money(value))
