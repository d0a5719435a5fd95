"""Eligibility rules deciding whether a balance may be split into installments"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable, Optional

from dues_gateway.domain.exceptions import AuthorizationError, ConflictError, EligibilityError


class DenyReason(str, Enum):
    NOT_ELIGIBLE = "not_eligible"
    PLAN_SIZE_NOT_ALLOWED = "plan_size_not_allowed"
    NO_OUTSTANDING_BALANCE = "no_outstanding_balance"
    ACTIVE_PLAN_EXISTS = "active_plan_exists"
    PAYMENT_METHOD_NOT_OWNED = "payment_method_not_owned"
    DEADLINE_PASSED = "deadline_passed"
    PAYOUTS_NOT_ENABLED = "payouts_not_enabled"


@dataclass(frozen=True)
class EligibilityDecision:
    """Allow, or Deny with a specific reason"""

    allowed: bool
    reason: Optional[DenyReason] = None
    detail: str = ""

    @classmethod
    def allow(cls) -> "EligibilityDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenyReason, detail: str) -> "EligibilityDecision":
        return cls(allowed=False, reason=reason, detail=detail)

    def raise_for_denial(self) -> None:
        """Map a Deny onto the error kind the API surfaces"""
        if self.allowed:
            return
        if self.reason == DenyReason.ACTIVE_PLAN_EXISTS:
            raise ConflictError(self.detail)
        if self.reason == DenyReason.PAYMENT_METHOD_NOT_OWNED:
            raise AuthorizationError(self.detail)
        raise EligibilityError(self.reason.value, self.detail)


def evaluate_eligibility(
    *,
    is_eligible: Optional[bool],
    allowed_plan_sizes: Iterable[int],
    num_installments: int,
    balance_cents: int,
    has_active_plan: bool,
    payment_method_owned: bool,
    due_date: Optional[date] = None,
    today: Optional[date] = None,
) -> EligibilityDecision:
    """
    Run the eligibility checks in order; the first failure wins.

    is_eligible is None when no eligibility record exists for the balance.
    """
    if not is_eligible:
        return EligibilityDecision.deny(
            DenyReason.NOT_ELIGIBLE,
            "Not eligible for installment payments. Contact your treasurer.",
        )

    allowed = sorted(set(allowed_plan_sizes))
    if num_installments not in allowed:
        available = ", ".join(str(size) for size in allowed) or "none"
        return EligibilityDecision.deny(
            DenyReason.PLAN_SIZE_NOT_ALLOWED,
            f"{num_installments}-payment plan not allowed. Available: {available}",
        )

    if balance_cents <= 0:
        return EligibilityDecision.deny(DenyReason.NO_OUTSTANDING_BALANCE, "No outstanding balance")

    if has_active_plan:
        return EligibilityDecision.deny(
            DenyReason.ACTIVE_PLAN_EXISTS,
            "An active installment plan already exists for these dues",
        )

    if not payment_method_owned:
        return EligibilityDecision.deny(
            DenyReason.PAYMENT_METHOD_NOT_OWNED,
            "Payment method not found or does not belong to you",
        )

    if due_date is not None and today is not None and due_date <= today:
        return EligibilityDecision.deny(DenyReason.DEADLINE_PASSED, "Dues deadline has already passed")

    return EligibilityDecision.allow()
