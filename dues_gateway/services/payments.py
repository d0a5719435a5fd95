"""Installment payment lifecycle: submission, confirmation, retries and the scheduled-charge sweep"""

import logging
import time
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from dues_gateway.config import settings
from dues_gateway.domain.eligibility import DenyReason
from dues_gateway.domain.exceptions import ChargeDeclinedError, DomainException, EligibilityError
from dues_gateway.domain.fees import FeeCalculator
from dues_gateway.domain.models import (
    ChargeRequest,
    ChargeResult,
    ChargeStatus,
    ConfirmationOutcome,
    FeeBreakdown,
    PaymentMethodType,
    PaymentStatus,
    PlanStatus,
    SweepSummary,
)
from dues_gateway.domain.state_machine import (
    can_retry,
    charge_idempotency_key,
    transition_payment,
    transition_plan,
)
from dues_gateway.infrastructure.clients.processor import PaymentProcessorClient
from dues_gateway.infrastructure.database.models import ChargeRecord, InstallmentPayment, InstallmentPlan
from dues_gateway.infrastructure.database.repositories import (
    ChargeRepository,
    DuesRepository,
    PaymentRepository,
    PayoutAccountRepository,
)
from dues_gateway.infrastructure.observability.logging import (
    log_charge_submitted,
    log_confirmation,
    log_sweep_completed,
)
from dues_gateway.infrastructure.observability.metrics import (
    confirmation_counter,
    record_charge,
    sweep_payment_counter,
)
from dues_gateway.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

# Processor statuses that settle an off-session charge without waiting for a webhook
SETTLED_SUCCESS_STATUSES = frozenset({"succeeded"})
SETTLED_FAILURE_STATUSES = frozenset({"failed", "canceled", "requires_action", "requires_payment_method"})


@dataclass
class ConfirmationResult:
    """What apply_confirmation did with one processor event"""

    charge_ref: str
    applied: bool
    reason: Optional[str] = None
    payment_status: Optional[str] = None
    plan_status: Optional[str] = None


class PaymentStateMachine:
    """
    Drives installment payments through scheduled → processing → paid/failed
    and plans through active → completed/cancelled.

    Every status write goes through the transition rules in
    domain.state_machine. Public entry points that own a unit of work
    (apply_confirmation, process_due_payments) commit their own changes.
    """

    def __init__(
        self,
        db: Session,
        processor: Optional[PaymentProcessorClient] = None,
        fee_calculator: Optional[FeeCalculator] = None,
        max_attempts: Optional[int] = None,
        retry_interval_hours: Optional[int] = None,
        clock: Callable = utcnow,
    ):
        self.db = db
        self.processor = processor
        self.fee_calculator = fee_calculator or FeeCalculator(settings.fee_schedule())
        self.max_attempts = max_attempts if max_attempts is not None else settings.max_charge_attempts
        self.retry_interval = timedelta(
            hours=retry_interval_hours if retry_interval_hours is not None else settings.retry_interval_hours
        )
        self.clock = clock
        self.payments = PaymentRepository(db)
        self.charges = ChargeRepository(db)
        self.dues = DuesRepository(db)
        self.payout_accounts = PayoutAccountRepository(db)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def mark_submitted(self, payment: InstallmentPayment, charge_ref: Optional[str]) -> None:
        """scheduled/failed → processing; counts one charge attempt"""
        payment.status = transition_payment(payment.status, PaymentStatus.PROCESSING).value
        payment.external_charge_ref = charge_ref
        payment.attempt_count = (payment.attempt_count or 0) + 1
        payment.next_retry_at = None
        payment.failure_reason = None

    def mark_paid(self, payment: InstallmentPayment) -> None:
        """
        processing → paid.

        Credits the dues balance once (the transition itself cannot repeat)
        and completes the plan when every installment is paid. A plan that is
        no longer active keeps its status.
        """
        now = self.clock()
        payment.status = transition_payment(payment.status, PaymentStatus.PAID).value
        payment.paid_at = now

        plan = payment.plan
        self.db.flush()
        dues = self.dues.get_for_update(plan.dues_id)
        dues.apply_payment(payment.due_cents, now.date())

        if plan.status != PlanStatus.ACTIVE:
            logger.warning(
                "Payment settled on inactive plan",
                extra={"plan_id": str(plan.id), "payment_id": str(payment.id), "plan_status": plan.status},
            )
            return

        unpaid = [p for p in plan.payments if p.status != PaymentStatus.PAID]
        if unpaid:
            plan.next_due_date = unpaid[0].scheduled_date
        else:
            plan.status = transition_plan(plan.status, PlanStatus.COMPLETED).value
            plan.completed_at = now
            plan.next_due_date = None

    def mark_failed(self, payment: InstallmentPayment, reason: str) -> bool:
        """
        processing → failed.

        Adds the plan's late fee on the first failure of an installment.
        Schedules a retry while attempts remain. Once they are exhausted the
        plan is flagged for manual attention and cancelled.

        Returns:
            True when the payment has no retries left
        """
        payment.status = transition_payment(payment.status, PaymentStatus.FAILED).value
        payment.failure_reason = reason[:500]
        self._apply_late_fee(payment)

        if can_retry(payment.attempt_count or 0, self.max_attempts):
            payment.next_retry_at = self.clock() + self.retry_interval
            return False

        payment.next_retry_at = None
        plan = payment.plan
        plan.requires_attention = True
        if plan.status == PlanStatus.ACTIVE:
            self.cancel(plan, "retries_exhausted")
        logger.error(
            "Installment retries exhausted",
            extra={
                "plan_id": str(plan.id),
                "payment_id": str(payment.id),
                "installment_number": payment.installment_number,
                "attempts": payment.attempt_count,
            },
        )
        return True

    def cancel(self, plan: InstallmentPlan, reason: Optional[str] = None) -> None:
        """active → cancelled"""
        plan.status = transition_plan(plan.status, PlanStatus.CANCELLED).value
        plan.cancelled_at = self.clock()
        plan.cancellation_reason = reason
        plan.next_due_date = None

    def _apply_late_fee(self, payment: InstallmentPayment) -> None:
        """Charge the plan's late fee once per installment, added to the dues and to the retry amount"""
        plan = payment.plan
        if not plan.late_fee_enabled or not plan.late_fee_cents or payment.late_fee_cents:
            return
        if plan.status != PlanStatus.ACTIVE:
            return

        self.db.flush()
        dues = self.dues.get_for_update(plan.dues_id)
        dues.apply_late_fee(plan.late_fee_cents, self.clock().date())
        payment.late_fee_cents = plan.late_fee_cents
        logger.info(
            "Late fee applied",
            extra={
                "plan_id": str(plan.id),
                "payment_id": str(payment.id),
                "installment_number": payment.installment_number,
                "late_fee_cents": plan.late_fee_cents,
            },
        )

    # ------------------------------------------------------------------
    # Charge submission
    # ------------------------------------------------------------------

    def record_submission(
        self,
        payment: InstallmentPayment,
        result: ChargeResult,
        attempt: int,
        idempotency_key: str,
        fees: FeeBreakdown,
    ) -> ChargeRecord:
        """Persist an accepted charge and move the payment to processing"""
        # A replayed idempotent submission returns the charge we already know
        charge = self.charges.get_by_charge_ref(result.charge_ref)
        if charge is None:
            charge = self.charges.create_charge(
                payment,
                attempt_number=attempt,
                idempotency_key=idempotency_key,
                fees=fees,
                external_charge_ref=result.charge_ref,
            )
        self.mark_submitted(payment, result.charge_ref)
        return charge

    async def charge_installment(self, payment: InstallmentPayment) -> str:
        """
        Charge a due installment off-session.

        Returns:
            "submitted" (awaiting confirmation), "paid" or "failed"

        Raises:
            GatewayError: Processor unavailable; nothing is recorded so the
                same attempt (same idempotency key) is repeated next sweep
        """
        plan = payment.plan
        account = self.payout_accounts.get_by_chapter(plan.chapter_id)
        if account is None or not account.charges_enabled:
            raise EligibilityError(
                DenyReason.PAYOUTS_NOT_ENABLED.value, f"Chapter {plan.chapter_id} payouts not enabled"
            )

        method_type = PaymentMethodType(plan.payment_method_type)
        attempt = (payment.attempt_count or 0) + 1
        idempotency_key = charge_idempotency_key(plan.id, payment.installment_number, attempt)
        fees = self.fee_calculator.calculate(payment.due_cents, method_type)

        request = ChargeRequest(
            amount_cents=fees.total_charge_cents,
            payment_method_ref=plan.payment_method_ref,
            method_type=method_type,
            idempotency_key=idempotency_key,
            destination=account.external_account_ref,
            net_amount_cents=fees.net_cents,
            confirm=True,
            metadata={
                "dues_id": str(plan.dues_id),
                "member_id": plan.member_id,
                "chapter_id": plan.chapter_id,
                "plan_id": str(plan.id),
                "payment_id": str(payment.id),
                "installment_number": str(payment.installment_number),
                "type": "installment_auto",
            },
        )

        try:
            result = await self.processor.submit_charge(request)
        except ChargeDeclinedError as e:
            self.charges.create_charge(
                payment,
                attempt_number=attempt,
                idempotency_key=idempotency_key,
                fees=fees,
                status=ChargeStatus.FAILED,
                failure_reason=str(e),
            )
            self.mark_submitted(payment, None)
            self.mark_failed(payment, str(e))
            record_charge("declined", method_type.value)
            return "failed"

        charge = self.record_submission(payment, result, attempt, idempotency_key, fees)
        record_charge("submitted", method_type.value)
        log_charge_submitted(
            str(plan.id),
            str(payment.id),
            payment.installment_number,
            result.charge_ref,
            fees.total_charge_cents,
            method_type.value,
        )

        if result.status in SETTLED_SUCCESS_STATUSES:
            self._settle(charge, payment, ConfirmationOutcome.SUCCEEDED)
            return "paid"
        if result.status in SETTLED_FAILURE_STATUSES:
            self._settle(charge, payment, ConfirmationOutcome.FAILED, f"Payment status: {result.status}")
            return "failed"
        return "submitted"

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    def _settle(
        self,
        charge: ChargeRecord,
        payment: InstallmentPayment,
        outcome: ConfirmationOutcome,
        failure_reason: Optional[str] = None,
    ) -> Optional[bool]:
        """
        Make a pending charge terminal and move its payment.

        Returns:
            True when the payment moved, False when the charge is no longer the
            payment's current attempt, None when another delivery already
            settled the charge
        """
        self.db.flush()
        succeeded = outcome == ConfirmationOutcome.SUCCEEDED
        settled = self.charges.settle_pending(
            charge,
            ChargeStatus.SUCCEEDED if succeeded else ChargeStatus.FAILED,
            self.clock(),
            None if succeeded else failure_reason,
        )
        if not settled:
            return None

        payment = self.payments.get_for_update(payment.id)
        if payment.external_charge_ref != charge.external_charge_ref or payment.status != PaymentStatus.PROCESSING:
            return False

        if outcome == ConfirmationOutcome.SUCCEEDED:
            self.mark_paid(payment)
        else:
            self.mark_failed(payment, failure_reason or "payment_failed")
        return True

    def apply_confirmation(
        self,
        charge_ref: str,
        outcome: ConfirmationOutcome,
        failure_reason: Optional[str] = None,
    ) -> ConfirmationResult:
        """
        Apply a processor confirmation for a submitted charge.

        Idempotent by charge_ref: the first delivery settles the charge, later
        deliveries are acknowledged without side effects. Confirmations for a
        cancelled plan are still recorded but never reactivate it.
        """
        outcome = ConfirmationOutcome(outcome)
        charge = self.charges.get_by_charge_ref(charge_ref)

        applied = None
        if charge is not None and charge.status == ChargeStatus.PENDING:
            applied = self._settle(charge, charge.payment, outcome, failure_reason)
            if applied is None:
                # A concurrent delivery settled the charge after we read it
                self.db.rollback()
            else:
                self.db.commit()

        if charge is None:
            result = ConfirmationResult(charge_ref=charge_ref, applied=False, reason="unknown_charge")
        elif applied is None:
            payment = charge.payment
            result = ConfirmationResult(
                charge_ref=charge_ref,
                applied=False,
                reason="duplicate",
                payment_status=payment.status,
                plan_status=payment.plan.status,
            )
        else:
            payment = charge.payment
            result = ConfirmationResult(
                charge_ref=charge_ref,
                applied=applied,
                reason=None if applied else "stale_charge",
                payment_status=payment.status,
                plan_status=payment.plan.status,
            )

        confirmation_counter.labels(outcome=outcome.value, applied=str(result.applied).lower()).inc()
        log_confirmation(charge_ref, outcome.value, result.applied, result.reason)
        return result

    # ------------------------------------------------------------------
    # Scheduled sweep
    # ------------------------------------------------------------------

    async def process_due_payments(self, today: Optional[date] = None) -> SweepSummary:
        """
        Attempt a charge for every due installment.

        Each payment is committed or rolled back on its own, so a failure on
        one does not block the others. Within a plan an installment is only
        charged once all earlier installments are paid.
        """
        start_time = time.time()
        today = today or date.today()
        due = self.payments.list_due(today, self.clock(), self.max_attempts)
        logger.info("Installment sweep started", extra={"due_count": len(due)})

        summary = SweepSummary()
        for payment in due:
            summary.processed += 1
            payment_id = str(payment.id)
            try:
                if not self.payments.earlier_installments_paid(payment):
                    summary.skipped += 1
                    sweep_payment_counter.labels(result="skipped").inc()
                    continue

                outcome = await self.charge_installment(payment)
                self.db.commit()

                if outcome == "failed":
                    summary.failed += 1
                else:
                    summary.submitted += 1
                sweep_payment_counter.labels(result=outcome).inc()

            except DomainException as e:
                self.db.rollback()
                summary.errors += 1
                summary.error_details.append(f"Payment {payment_id}: {e}")
                sweep_payment_counter.labels(result="error").inc()
                logger.error(f"Installment charge error: {e}", extra={"payment_id": payment_id})

            except Exception as e:
                self.db.rollback()
                summary.errors += 1
                summary.error_details.append(f"Payment {payment_id}: unexpected error")
                sweep_payment_counter.labels(result="error").inc()
                logger.exception(f"Unexpected installment charge error: {e}", extra={"payment_id": payment_id})

        duration_ms = (time.time() - start_time) * 1000
        log_sweep_completed(
            summary.processed, summary.submitted, summary.failed, summary.skipped, summary.errors, duration_ms
        )
        return summary
