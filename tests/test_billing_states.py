from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from app.domain.billing.states import (
    InvalidTransitionError,
    apply_transition,
    can_transition,
    ensure_transition,
)


@pytest.mark.parametrize(
    "current,target",
    [
        ("pending", "processing"),
        ("pending", "completed"),
        ("processing", "completed"),
        ("processing", "failed"),
        ("completed", "refunded"),
    ],
)
def test_allowed_payment_transitions(current, target):
    assert can_transition("payment", current, target)


@pytest.mark.parametrize(
    "current,target",
    [
        ("completed", "pending"),
        ("failed", "completed"),
        ("refunded", "completed"),
        ("pending", "refunded"),
    ],
)
def test_rejected_payment_transitions(current, target):
    assert not can_transition("payment", current, target)


def test_subscription_transitions():
    assert can_transition("subscription", "trialing", "active")
    assert can_transition("subscription", "past_due", "active")
    assert can_transition("subscription", "inactive", "active")
    assert not can_transition("subscription", "cancelled", "active")
    assert not can_transition("subscription", "expired", "past_due")


def test_invoice_transitions():
    assert can_transition("invoice", "draft", "sent")
    assert can_transition("invoice", "sent", "overdue")
    assert can_transition("invoice", "overdue", "paid")
    assert can_transition("invoice", "paid", "refunded")
    assert not can_transition("invoice", "paid", "draft")
    assert not can_transition("invoice", "cancelled", "sent")


def test_same_state_is_a_no_op_and_unknown_states_are_rejected():
    assert can_transition("invoice", "paid", "paid")
    assert not can_transition("invoice", "archived", "paid")
    assert not can_transition("payment", "pending", "teleported")


def test_ensure_transition_raises_with_context():
    with pytest.raises(InvalidTransitionError) as exc_info:
        ensure_transition("payment", "failed", "completed")

    assert exc_info.value.current == "failed"
    assert exc_info.value.target == "completed"


def test_apply_transition_sets_status_or_raises_conflict():
    row = SimpleNamespace(status="draft")
    apply_transition("invoice", row, "sent")
    assert row.status == "sent"

    with pytest.raises(HTTPException) as exc_info:
        apply_transition("invoice", row, "draft")
    assert exc_info.value.status_code == 409
    assert row.status == "sent"
