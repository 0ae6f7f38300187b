"""Transaction state machine and metadata merge rules."""

from decimal import Decimal

import pytest

from app.schemas.ledger import (
    LedgerTransaction,
    TransactionMetadata,
    TransactionStatus,
    TransactionType,
    can_transition,
    money,
)


@pytest.mark.parametrize(
    "target",
    [TransactionStatus.COMPLETED, TransactionStatus.FAILED, TransactionStatus.CANCELLED],
)
def test_pending_moves_to_any_final_status(target):
    assert can_transition(TransactionStatus.PENDING, target)


@pytest.mark.parametrize(
    "current",
    [TransactionStatus.COMPLETED, TransactionStatus.FAILED, TransactionStatus.CANCELLED],
)
def test_final_statuses_never_move(current):
    for target in TransactionStatus:
        assert not can_transition(current, target)


def test_pending_does_not_move_to_pending():
    assert not can_transition(TransactionStatus.PENDING, TransactionStatus.PENDING)


def test_metadata_merge_adds_and_overwrites_but_never_drops():
    original = TransactionMetadata(gateway="simulated", package_name="Popular", gateway_status="requires_payment_method")
    merged = original.merge(TransactionMetadata(gateway_status="succeeded", confirmed_via="webhook"))
    assert merged.gateway == "simulated"
    assert merged.package_name == "Popular"
    assert merged.gateway_status == "succeeded"
    assert merged.confirmed_via == "webhook"
    # the receiver is untouched
    assert original.gateway_status == "requires_payment_method"


def test_metadata_merge_keeps_extra_keys():
    original = TransactionMetadata.model_validate({"interview_type": "VOICE", "reason": "x"})
    merged = original.merge({"duration_minutes": 45, "reason": None})
    dumped = merged.model_dump(exclude_none=True)
    assert dumped["interview_type"] == "VOICE"
    assert dumped["duration_minutes"] == 45
    assert dumped["reason"] == "x"


def test_metadata_merge_with_nothing_is_a_copy():
    original = TransactionMetadata(reason="bonus")
    merged = original.merge(None)
    assert merged == original
    assert merged is not original


def test_transaction_is_terminal():
    tx = LedgerTransaction(
        type=TransactionType.PURCHASE,
        status=TransactionStatus.PENDING,
        amount=25,
        account_id="acc",
    )
    assert not tx.is_terminal
    assert tx.model_copy(update={"status": TransactionStatus.CANCELLED}).is_terminal


def test_money_renders_two_decimals():
    assert money(Decimal("19.9")) == "19.90"
    assert money(Decimal("59")) == "59.00"
    assert money(None) is None
