from __future__ import annotations

from decimal import Decimal

import pytest

from pauselink.domain.billing import (
    BillingStatus,
    can_transition,
    impression_status,
    split_fee,
    transition,
)
from pauselink.errors import InvalidTransitionError


def test_pending_moves_to_billable_then_billed():
    status = transition(BillingStatus.PENDING, BillingStatus.BILLABLE)
    assert transition(status, BillingStatus.BILLED) is BillingStatus.BILLED


def test_billable_can_fall_back_to_non_billable():
    assert transition("billable", "non_billable") is BillingStatus.NON_BILLABLE


@pytest.mark.parametrize("terminal", [BillingStatus.BILLED, BillingStatus.NON_BILLABLE])
def test_terminal_states_reject_moves(terminal):
    for target in BillingStatus:
        if target is terminal:
            continue
        assert not can_transition(terminal, target)
        with pytest.raises(InvalidTransitionError):
            transition(terminal, target)


def test_pending_cannot_skip_to_billed():
    with pytest.raises(InvalidTransitionError) as excinfo:
        transition(BillingStatus.PENDING, BillingStatus.BILLED)
    assert excinfo.value.current == "pending"
    assert excinfo.value.target == "billed"


def test_reasserting_current_state_is_a_no_op():
    assert transition(BillingStatus.BILLED, BillingStatus.BILLED) is BillingStatus.BILLED


def test_split_fee_uses_campaign_share():
    share, cut = split_fee(Decimal("5"), Decimal("3"), Decimal("0.6"))
    assert share == Decimal("3.00")
    assert cut == Decimal("2.00")
    assert share + cut == Decimal("5.00")


def test_split_fee_falls_back_to_default_ratio():
    share, cut = split_fee(Decimal("4.99"), None, Decimal("0.6"))
    assert share == Decimal("2.99")
    assert share + cut == Decimal("4.99")


def test_split_fee_clamps_share_to_fee():
    share, cut = split_fee(Decimal("5"), Decimal("9"), Decimal("0.6"))
    assert (share, cut) == (Decimal("5.00"), Decimal("0.00"))


def test_impression_follows_refusal_until_a_charge_lands():
    refused = impression_status(BillingStatus.PENDING, BillingStatus.NON_BILLABLE)
    assert refused is BillingStatus.NON_BILLABLE
    assert impression_status(refused, BillingStatus.BILLED) is BillingStatus.BILLED


def test_billed_impression_is_final():
    assert impression_status(BillingStatus.BILLED, BillingStatus.NON_BILLABLE) is BillingStatus.BILLED
    assert impression_status(BillingStatus.PENDING, BillingStatus.BILLABLE) is BillingStatus.BILLABLE
