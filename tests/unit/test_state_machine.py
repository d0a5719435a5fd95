"""Unit tests for payment and plan status transitions"""

import pytest
import uuid
from dues_gateway.domain.exceptions import ConflictError, InvalidTransitionError
from dues_gateway.domain.models import PaymentStatus, PlanStatus
from dues_gateway.domain.state_machine import (
    can_retry,
    charge_idempotency_key,
    transition_payment,
    transition_plan,
)


@pytest.mark.parametrize(
    "current, target",
    [
        (PaymentStatus.SCHEDULED, PaymentStatus.PROCESSING),
        (PaymentStatus.PROCESSING, PaymentStatus.PAID),
        (PaymentStatus.PROCESSING, PaymentStatus.FAILED),
        (PaymentStatus.FAILED, PaymentStatus.PROCESSING),
    ],
)
def test_allowed_payment_transitions(current, target):
    assert transition_payment(current, target) == target


@pytest.mark.parametrize(
    "current, target",
    [
        (PaymentStatus.SCHEDULED, PaymentStatus.PAID),
        (PaymentStatus.PAID, PaymentStatus.PROCESSING),
        (PaymentStatus.PAID, PaymentStatus.FAILED),
        (PaymentStatus.FAILED, PaymentStatus.PAID),
        (PaymentStatus.PROCESSING, PaymentStatus.PROCESSING),
    ],
)
def test_rejected_payment_transitions(current, target):
    with pytest.raises(InvalidTransitionError):
        transition_payment(current, target)


def test_transitions_accept_stored_strings():
    assert transition_payment("scheduled", "processing") == PaymentStatus.PROCESSING


def test_plan_terminal_states():
    assert transition_plan(PlanStatus.ACTIVE, PlanStatus.CANCELLED) == PlanStatus.CANCELLED
    with pytest.raises(InvalidTransitionError):
        transition_plan(PlanStatus.CANCELLED, PlanStatus.ACTIVE)
    with pytest.raises(InvalidTransitionError):
        transition_plan(PlanStatus.COMPLETED, PlanStatus.CANCELLED)


def test_invalid_transition_is_a_conflict():
    assert issubclass(InvalidTransitionError, ConflictError)


def test_can_retry():
    assert can_retry(1, 3)
    assert can_retry(2, 3)
    assert not can_retry(3, 3)


def test_idempotency_key_is_deterministic():
    plan_id = uuid.UUID("11111111-2222-3333-4444-555555555555")
    assert charge_idempotency_key(plan_id, 1) == "installment:11111111-2222-3333-4444-555555555555:1"
    assert charge_idempotency_key(plan_id, 1) == charge_idempotency_key(plan_id, 1, attempt=1)
    assert charge_idempotency_key(plan_id, 2, attempt=3).endswith(":2:attempt-3")
