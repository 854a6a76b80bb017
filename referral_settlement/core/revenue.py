"""Revenue split between the referring ambassador and the platform."""
from typing import Iterable, NamedTuple

DEFAULT_REFERRER_SHARE = 0.1


class RevenueSplit(NamedTuple):
    """Split of one line total."""

    line_total: float
    ambassador_revenue: float
    admin_revenue: float


def split_revenue(
    unit_price: float, quantity: int, referrer_share: float = DEFAULT_REFERRER_SHARE
) -> RevenueSplit:
    """
    Split ``unit_price * quantity`` into the referrer and platform shares.

    Args:
        unit_price: Catalog price of one unit
        quantity: Units ordered, at least 1
        referrer_share: Fraction of the line total paid to the referrer

    Returns:
        RevenueSplit: line total with both shares

    Raises:
        ValueError: If quantity is below 1 or the price is negative
    """
    if quantity < 1:
        raise ValueError("Quantity must be at least 1")
    if unit_price < 0:
        raise ValueError("Price must not be negative")

    line_total = unit_price * quantity
    return RevenueSplit(
        line_total=line_total,
        ambassador_revenue=referrer_share * line_total,
        admin_revenue=(1 - referrer_share) * line_total,
    )


def sum_revenue(items: Iterable) -> tuple[float, float]:
    """Sum ``(ambassador_revenue, admin_revenue)`` over persisted order items."""
    ambassador_revenue = 0.0
    admin_revenue = 0.0
    for item in items:
        ambassador_revenue += item.ambassador_revenue
        admin_revenue += item.admin_revenue
    return ambassador_revenue, admin_revenue


def to_minor_units(amount: float) -> int:
    """Convert a currency amount to the smallest unit (cents)."""
    return int(round(amount * 100))
