"""Billing status lifecycle shared by receipts and the ledger."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from pauselink.errors import InvalidTransitionError

CENT = Decimal("0.01")


class BillingStatus(str, Enum):
    PENDING = "pending"
    BILLABLE = "billable"
    NON_BILLABLE = "non_billable"
    BILLED = "billed"


_TRANSITIONS: dict[BillingStatus, frozenset[BillingStatus]] = {
    BillingStatus.PENDING: frozenset({BillingStatus.BILLABLE, BillingStatus.NON_BILLABLE}),
    BillingStatus.BILLABLE: frozenset({BillingStatus.BILLED, BillingStatus.NON_BILLABLE}),
    BillingStatus.NON_BILLABLE: frozenset(),
    BillingStatus.BILLED: frozenset(),
}


def can_transition(current: BillingStatus | str, target: BillingStatus | str) -> bool:
    return BillingStatus(target) in _TRANSITIONS[BillingStatus(current)]


def transition(current: BillingStatus | str, target: BillingStatus | str) -> BillingStatus:
    """Return ``target`` if the lifecycle allows moving there from ``current``.

    Terminal states (``billed`` and ``non_billable``) accept no further moves;
    re-asserting the current state is treated as a no-op so replays stay safe.
    """

    source = BillingStatus(current)
    destination = BillingStatus(target)
    if source is destination:
        return destination
    if destination not in _TRANSITIONS[source]:
        raise InvalidTransitionError(source.value, destination.value)
    return destination


def impression_status(current: BillingStatus | str, outcome: BillingStatus | str) -> BillingStatus:
    """Status an impression takes after one of its conversions was charged or refused.

    A charge always settles the impression as ``billed``, even after an earlier
    conversion on the same opportunity was refused for funds. Once billed, an
    impression never moves again.
    """

    source = BillingStatus(current)
    result = BillingStatus(outcome)
    if source is BillingStatus.BILLED or result is BillingStatus.BILLED:
        return BillingStatus.BILLED
    if can_transition(source, result):
        return result
    return source


def quantize_money(value: Decimal | float | int | str) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def split_fee(fee: Decimal, publisher_share: Decimal | None, default_ratio: Decimal) -> tuple[Decimal, Decimal]:
    """Split ``fee`` into ``(publisher_share, platform_cut)`` summing exactly to ``fee``."""

    fee = quantize_money(fee)
    if publisher_share is None:
        share = quantize_money(fee * default_ratio)
    else:
        share = quantize_money(publisher_share)
    share = min(max(share, Decimal("0.00")), fee)
    return share, fee - share


__all__ = [
    "BillingStatus",
    "can_transition",
    "impression_status",
    "quantize_money",
    "split_fee",
    "transition",
]
