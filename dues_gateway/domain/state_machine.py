"""Allowed status transitions for installment payments and plans"""

from typing import Dict, FrozenSet

from dues_gateway.domain.exceptions import InvalidTransitionError
from dues_gateway.domain.models import PaymentStatus, PlanStatus

PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.SCHEDULED: frozenset({PaymentStatus.PROCESSING}),
    PaymentStatus.PROCESSING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PROCESSING}),  # retry
    PaymentStatus.PAID: frozenset(),
}

PLAN_TRANSITIONS: Dict[PlanStatus, FrozenSet[PlanStatus]] = {
    PlanStatus.ACTIVE: frozenset({PlanStatus.COMPLETED, PlanStatus.CANCELLED}),
    PlanStatus.COMPLETED: frozenset(),
    PlanStatus.CANCELLED: frozenset(),
}


def transition_payment(current: PaymentStatus, target: PaymentStatus) -> PaymentStatus:
    """Validate a payment transition and return the new status"""
    current, target = PaymentStatus(current), PaymentStatus(target)
    if target not in PAYMENT_TRANSITIONS[current]:
        raise InvalidTransitionError(f"Payment cannot move from {current.value} to {target.value}")
    return target


def transition_plan(current: PlanStatus, target: PlanStatus) -> PlanStatus:
    """Validate a plan transition and return the new status"""
    current, target = PlanStatus(current), PlanStatus(target)
    if target not in PLAN_TRANSITIONS[current]:
        raise InvalidTransitionError(f"Plan cannot move from {current.value} to {target.value}")
    return target


def can_retry(attempt_count: int, max_attempts: int) -> bool:
    """A failed payment may be re-submitted while attempts remain"""
    return attempt_count < max_attempts


def charge_idempotency_key(plan_id, installment_number: int, attempt: int = 1) -> str:
    """
    Deterministic processor idempotency key for one charge attempt.

    The first attempt is keyed on (plan, installment) alone so a replayed
    submission of the same logical charge is collapsed by the processor.
    Later attempts get their own key because the processor would otherwise
    replay the earlier decline.
    """
    key = f"installment:{plan_id}:{installment_number}"
    if attempt > 1:
        key = f"{key}:attempt-{attempt}"
    return key
