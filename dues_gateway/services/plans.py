"""Installment plan orchestration: atomic creation, first charge, cancellation"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dues_gateway.config import settings
from dues_gateway.domain.eligibility import DenyReason
from dues_gateway.domain.exceptions import (
    AuthorizationError,
    ChargeDeclinedError,
    ConflictError,
    DomainException,
    EligibilityError,
    GatewayError,
    NotFoundError,
    ValidationError,
)
from dues_gateway.domain.fees import FeeCalculator
from dues_gateway.domain.installments import generate_installment_plan
from dues_gateway.domain.models import (
    ChargeRequest,
    FeeBreakdown,
    PaymentMethodType,
    PaymentStatus,
    PlanStatus,
    Requester,
)
from dues_gateway.domain.state_machine import charge_idempotency_key
from dues_gateway.infrastructure.clients.processor import PaymentProcessorClient
from dues_gateway.infrastructure.database.models import (
    ConnectedPayoutAccount,
    InstallmentPayment,
    InstallmentPlan,
    MemberDues,
)
from dues_gateway.infrastructure.database.repositories import (
    DuesRepository,
    PaymentMethodRepository,
    PaymentRepository,
    PayoutAccountRepository,
    PlanRepository,
)
from dues_gateway.infrastructure.observability.logging import log_charge_submitted
from dues_gateway.infrastructure.observability.metrics import (
    plan_creation_counter,
    record_charge,
    record_plan_created,
)
from dues_gateway.services.eligibility import EligibilityGate
from dues_gateway.services.payments import PaymentStateMachine

logger = logging.getLogger(__name__)


@dataclass
class PlanCreationResult:
    """Created (or resumed) plan plus what the client needs to confirm the first charge"""

    plan: InstallmentPlan
    payments: List[InstallmentPayment]
    fees: FeeBreakdown
    confirmation_handle: Optional[str]
    resumed: bool = False


class PlanOrchestrator:
    """
    Creates installment plans for dues balances.

    Flow:
    1. Lock the balance row and verify ownership
    2. Run the eligibility gate, then check the chapter can receive payouts
    3. Split the balance and schedule due dates
    4. Persist plan + payments and commit
    5. Compute fees and submit the first charge to the processor
    6. Move the first payment to processing and record the charge
    """

    def __init__(
        self,
        db: Session,
        processor: PaymentProcessorClient,
        fee_calculator: Optional[FeeCalculator] = None,
        state_machine: Optional[PaymentStateMachine] = None,
    ):
        self.db = db
        self.processor = processor
        self.fee_calculator = fee_calculator or FeeCalculator(settings.fee_schedule())
        self.state_machine = state_machine or PaymentStateMachine(db, processor, self.fee_calculator)
        self.gate = EligibilityGate(db)
        self.dues = DuesRepository(db)
        self.plans = PlanRepository(db)
        self.payments = PaymentRepository(db)
        self.payment_methods = PaymentMethodRepository(db)
        self.payout_accounts = PayoutAccountRepository(db)

    async def create_plan(
        self,
        dues_id: uuid.UUID,
        num_installments: int,
        payment_method_ref: str,
        requester: Requester,
        today: Optional[date] = None,
    ) -> PlanCreationResult:
        """
        Create an installment plan and submit its first charge.

        The plan rows are committed before the processor is called. If the
        processor call fails the plan stays active with its first installment
        scheduled; repeating the same request re-submits that charge under the
        same idempotency key instead of creating another plan.

        Raises:
            ValidationError, NotFoundError, AuthorizationError,
            EligibilityError, ConflictError, GatewayError
        """
        today = today or date.today()
        if not settings.min_installments <= num_installments <= settings.max_installments:
            raise ValidationError(
                f"num_installments must be between {settings.min_installments} and {settings.max_installments}"
            )
        if not payment_method_ref:
            raise ValidationError("payment_method_ref is required for auto-charging")

        try:
            dues = self.dues.get_for_update(dues_id)
            if dues is None:
                raise NotFoundError("Member dues record not found")
            if dues.member_id != requester.user_id:
                raise AuthorizationError("You can only create plans for your own dues")

            decision = self.gate.check(dues, num_installments, payment_method_ref, requester, today)
            if not decision.allowed:
                if decision.reason == DenyReason.ACTIVE_PLAN_EXISTS:
                    pending = self._resumable_plan(dues, num_installments, payment_method_ref, requester)
                    if pending is not None:
                        account = self._payout_account(dues.chapter_id)
                        self.db.commit()
                        logger.info("Resuming first charge of existing plan", extra={"plan_id": str(pending.id)})
                        return await self._submit_first_charge(pending, account, resumed=True)
                decision.raise_for_denial()

            account = self._payout_account(dues.chapter_id)

            method = self.payment_methods.get_owned(payment_method_ref, requester.user_id)
            installments = generate_installment_plan(
                dues.balance_cents,
                num_installments,
                start_date=today,
                deadline=dues.due_date,
                interval_days=settings.schedule_interval_days,
            )
            plan = self.plans.create_plan(
                dues=dues,
                num_installments=num_installments,
                installment_base_cents=dues.balance_cents // num_installments,
                payment_method_ref=payment_method_ref,
                payment_method_type=PaymentMethodType(method.method_type),
                installments=installments,
                late_fee_cents=settings.late_fee_cents if settings.late_fee_enabled else 0,
            )
            self.db.commit()

        except IntegrityError as e:
            # Lost a race with a concurrent request for the same balance
            self.db.rollback()
            plan_creation_counter.labels(outcome="conflict").inc()
            raise ConflictError("An active installment plan already exists for these dues") from e

        except DomainException as e:
            self.db.rollback()
            outcome = "conflict" if isinstance(e, ConflictError) else "denied"
            plan_creation_counter.labels(outcome=outcome).inc()
            raise

        return await self._submit_first_charge(plan, account)

    def _payout_account(self, chapter_id: str) -> ConnectedPayoutAccount:
        account = self.payout_accounts.get_by_chapter(chapter_id)
        if account is None or not account.charges_enabled:
            raise EligibilityError(DenyReason.PAYOUTS_NOT_ENABLED.value, "Chapter payment processing not set up")
        return account

    def _resumable_plan(
        self,
        dues: MemberDues,
        num_installments: int,
        payment_method_ref: str,
        requester: Requester,
    ) -> Optional[InstallmentPlan]:
        """Active plan from an earlier identical request whose first charge never reached the processor"""
        plan = self.plans.get_active_for_dues(dues.id)
        if plan is None or not plan.payments:
            return None
        first = plan.payments[0]
        if (
            plan.member_id == requester.user_id
            and plan.payment_method_ref == payment_method_ref
            and plan.num_installments == num_installments
            and first.status == PaymentStatus.SCHEDULED
            and (first.attempt_count or 0) == 0
        ):
            return plan
        return None

    async def _submit_first_charge(
        self,
        plan: InstallmentPlan,
        account: ConnectedPayoutAccount,
        resumed: bool = False,
    ) -> PlanCreationResult:
        first = plan.payments[0]
        method_type = PaymentMethodType(plan.payment_method_type)
        fees = self.fee_calculator.calculate(first.amount_cents, method_type)
        idempotency_key = charge_idempotency_key(plan.id, first.installment_number)
        plan_id = str(plan.id)

        request = ChargeRequest(
            amount_cents=fees.total_charge_cents,
            payment_method_ref=plan.payment_method_ref,
            method_type=method_type,
            idempotency_key=idempotency_key,
            destination=account.external_account_ref,
            net_amount_cents=fees.net_cents,
            confirm=False,  # client completes strong customer authentication
            metadata={
                "dues_id": str(plan.dues_id),
                "member_id": plan.member_id,
                "chapter_id": plan.chapter_id,
                "plan_id": plan_id,
                "payment_id": str(first.id),
                "installment_number": str(first.installment_number),
                "type": "installment",
            },
        )

        try:
            result = await self.processor.submit_charge(request)
        except GatewayError as e:
            self.db.rollback()
            plan_creation_counter.labels(outcome="gateway_error").inc()
            record_charge("declined" if isinstance(e, ChargeDeclinedError) else "error", method_type.value)
            logger.error(
                f"First installment charge failed: {e}",
                extra={"plan_id": plan_id, "idempotency_key": idempotency_key},
            )
            raise

        self.state_machine.record_submission(first, result, 1, idempotency_key, fees)
        self.db.commit()

        record_plan_created(plan.num_installments, resumed=resumed)
        record_charge("submitted", method_type.value)
        log_charge_submitted(
            plan_id, str(first.id), first.installment_number, result.charge_ref, fees.total_charge_cents, method_type.value
        )

        return PlanCreationResult(
            plan=plan,
            payments=list(plan.payments),
            fees=fees,
            confirmation_handle=result.confirmation_handle,
            resumed=resumed,
        )

    def _authorize_plan_access(self, plan: Optional[InstallmentPlan], requester: Requester) -> InstallmentPlan:
        if plan is None:
            raise NotFoundError("Installment plan not found")
        if plan.member_id != requester.user_id and not requester.operates_chapter(plan.chapter_id):
            raise AuthorizationError("Not allowed to access this installment plan")
        return plan

    def get_plan(self, plan_id: uuid.UUID, requester: Requester) -> InstallmentPlan:
        """Plan with installments, visible to its member and the chapter's operators"""
        return self._authorize_plan_access(self.plans.get_plan_by_id(plan_id), requester)

    def list_plans(self, requester: Requester, limit: int = 20) -> List[InstallmentPlan]:
        """Caller's own plans, newest first"""
        return self.plans.get_plans_by_member(requester.user_id, limit=limit)

    def list_chapter_active_plans(self, chapter_id: str, requester: Requester) -> List[InstallmentPlan]:
        """Treasurer view of every active plan in the chapter"""
        self._authorize_chapter(chapter_id, requester)
        return self.plans.get_active_for_chapter(chapter_id)

    def list_upcoming_payments(
        self,
        chapter_id: str,
        requester: Requester,
        days_ahead: int = 7,
        today: Optional[date] = None,
    ) -> List[InstallmentPayment]:
        """Scheduled installments of the chapter due within days_ahead (overdue ones included)"""
        self._authorize_chapter(chapter_id, requester)
        if days_ahead < 0:
            raise ValidationError("days_ahead must not be negative")
        until = (today or date.today()) + timedelta(days=days_ahead)
        return self.payments.list_upcoming_for_chapter(chapter_id, until)

    @staticmethod
    def _authorize_chapter(chapter_id: str, requester: Requester) -> None:
        if not requester.operates_chapter(chapter_id):
            raise AuthorizationError("Only chapter treasurers can view chapter installment plans")

    def cancel_plan(self, plan_id: uuid.UUID, requester: Requester, reason: Optional[str] = None) -> InstallmentPlan:
        """
        Cancel an active plan (member or chapter operator action).

        Installments already submitted keep their status so a late
        confirmation is still recorded against them.
        """
        plan = self._authorize_plan_access(self.plans.get_plan_by_id(plan_id), requester)
        if plan.status != PlanStatus.ACTIVE:
            raise ConflictError("Only active plans can be cancelled")

        default_reason = "cancelled_by_member" if plan.member_id == requester.user_id else "cancelled_by_operator"
        self.state_machine.cancel(plan, reason or default_reason)
        self.db.commit()

        logger.info(
            "Installment plan cancelled",
            extra={"plan_id": str(plan.id), "cancelled_by": requester.user_id, "reason": plan.cancellation_reason},
        )
        return plan
