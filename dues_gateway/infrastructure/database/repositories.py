"""Data access layer for dues, eligibility, plans, payments and charges"""

import uuid
from datetime import date, datetime
from typing import Iterable, List, Optional
from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session
from dues_gateway.infrastructure.database.models import (
    ChargeRecord,
    ConnectedPayoutAccount,
    InstallmentEligibility,
    InstallmentPayment,
    InstallmentPlan,
    MemberDues,
    SavedPaymentMethod,
)
from dues_gateway.domain.models import (
    ChargeStatus,
    FeeBreakdown,
    Installment,
    PaymentMethodType,
    PaymentStatus,
    PlanStatus,
)


class DuesRepository:
    """Repository for member dues balances"""

    def __init__(self, db: Session):
        self.db = db

    def get_for_update(self, dues_id: uuid.UUID) -> Optional[MemberDues]:
        """Fetch a balance and lock its row until the transaction ends; reloads a stale copy"""
        return (
            self.db.query(MemberDues)
            .filter(MemberDues.id == dues_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get(self, dues_id: uuid.UUID) -> Optional[MemberDues]:
        return self.db.get(MemberDues, dues_id)


class EligibilityRepository:
    """Repository for installment eligibility grants"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_dues(self, dues_id: uuid.UUID) -> Optional[InstallmentEligibility]:
        return (
            self.db.query(InstallmentEligibility)
            .filter(InstallmentEligibility.dues_id == dues_id)
            .first()
        )

    def upsert(
        self,
        dues_id: uuid.UUID,
        chapter_id: str,
        is_eligible: bool,
        allowed_plan_sizes: Iterable[int],
        enabled_by: Optional[str],
        enabled_at: Optional[datetime],
        notes: Optional[str] = None,
    ) -> InstallmentEligibility:
        """Create or replace the eligibility record for a balance"""
        record = self.get_by_dues(dues_id)
        if record is None:
            record = InstallmentEligibility(dues_id=dues_id, chapter_id=chapter_id)
            self.db.add(record)

        record.is_eligible = is_eligible
        record.allowed_plan_sizes = sorted(set(allowed_plan_sizes))
        record.enabled_by = enabled_by
        record.enabled_at = enabled_at
        record.notes = notes
        self.db.flush()
        return record


class PaymentMethodRepository:
    """Repository for members' saved payment methods"""

    def __init__(self, db: Session):
        self.db = db

    def get_owned(self, external_method_ref: str, user_id: str) -> Optional[SavedPaymentMethod]:
        """Fetch a saved method only if it belongs to user_id"""
        return (
            self.db.query(SavedPaymentMethod)
            .filter(
                SavedPaymentMethod.external_method_ref == external_method_ref,
                SavedPaymentMethod.user_id == user_id,
            )
            .first()
        )


class PayoutAccountRepository:
    """Repository for chapters' connected payout accounts"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_chapter(self, chapter_id: str) -> Optional[ConnectedPayoutAccount]:
        return self.db.get(ConnectedPayoutAccount, chapter_id)


class PlanRepository:
    """Repository for installment plans"""

    def __init__(self, db: Session):
        self.db = db

    def create_plan(
        self,
        dues: MemberDues,
        num_installments: int,
        installment_base_cents: int,
        payment_method_ref: str,
        payment_method_type: PaymentMethodType,
        installments: List[Installment],
        late_fee_cents: int = 0,
    ) -> InstallmentPlan:
        """Create an active plan with its scheduled installments; late_fee_cents 0 disables late fees"""
        db_plan = InstallmentPlan(
            dues_id=dues.id,
            member_id=dues.member_id,
            chapter_id=dues.chapter_id,
            total_cents=sum(inst.amount_cents for inst in installments),
            num_installments=num_installments,
            installment_base_cents=installment_base_cents,
            payment_method_ref=payment_method_ref,
            payment_method_type=PaymentMethodType(payment_method_type).value,
            status=PlanStatus.ACTIVE.value,
            next_due_date=installments[0].scheduled_date if installments else None,
            requires_attention=False,
            late_fee_enabled=late_fee_cents > 0,
            late_fee_cents=late_fee_cents,
        )
        self.db.add(db_plan)
        self.db.flush()

        for inst in installments:
            db_payment = InstallmentPayment(
                plan_id=db_plan.id,
                installment_number=inst.installment_number,
                amount_cents=inst.amount_cents,
                scheduled_date=inst.scheduled_date,
                status=PaymentStatus.SCHEDULED.value,
                attempt_count=0,
            )
            self.db.add(db_payment)

        self.db.flush()
        return db_plan

    def get_plan_by_id(self, plan_id: uuid.UUID) -> Optional[InstallmentPlan]:
        """Fetch plan with installments"""
        return (
            self.db.query(InstallmentPlan)
            .filter(InstallmentPlan.id == plan_id)
            .first()
        )

    def get_active_for_dues(self, dues_id: uuid.UUID) -> Optional[InstallmentPlan]:
        return (
            self.db.query(InstallmentPlan)
            .filter(
                InstallmentPlan.dues_id == dues_id,
                InstallmentPlan.status == PlanStatus.ACTIVE.value,
            )
            .first()
        )

    def get_plans_by_member(self, member_id: str, limit: int = 20) -> List[InstallmentPlan]:
        return (
            self.db.query(InstallmentPlan)
            .filter(InstallmentPlan.member_id == member_id)
            .order_by(InstallmentPlan.created_at.desc())
            .limit(limit)
            .all()
        )

    def get_active_for_chapter(self, chapter_id: str) -> List[InstallmentPlan]:
        """Active plans of a chapter, soonest next payment first"""
        return (
            self.db.query(InstallmentPlan)
            .filter(
                InstallmentPlan.chapter_id == chapter_id,
                InstallmentPlan.status == PlanStatus.ACTIVE.value,
            )
            .order_by(InstallmentPlan.next_due_date, InstallmentPlan.created_at)
            .all()
        )


class PaymentRepository:
    """Repository for installment payments"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, payment_id: uuid.UUID) -> Optional[InstallmentPayment]:
        return self.db.get(InstallmentPayment, payment_id)

    def get_for_update(self, payment_id: uuid.UUID) -> Optional[InstallmentPayment]:
        return (
            self.db.query(InstallmentPayment)
            .filter(InstallmentPayment.id == payment_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get_for_plan(self, plan_id: uuid.UUID) -> List[InstallmentPayment]:
        return (
            self.db.query(InstallmentPayment)
            .filter(InstallmentPayment.plan_id == plan_id)
            .order_by(InstallmentPayment.installment_number)
            .all()
        )

    def list_due(self, today: date, now: datetime, max_attempts: int) -> List[InstallmentPayment]:
        """
        Payments of active plans that are due for a charge attempt.

        Includes scheduled payments whose date has arrived and failed payments
        whose retry time has arrived with attempts left.
        """
        return (
            self.db.query(InstallmentPayment)
            .join(InstallmentPlan, InstallmentPayment.plan_id == InstallmentPlan.id)
            .filter(InstallmentPlan.status == PlanStatus.ACTIVE.value)
            .filter(
                or_(
                    and_(
                        InstallmentPayment.status == PaymentStatus.SCHEDULED.value,
                        InstallmentPayment.scheduled_date <= today,
                    ),
                    and_(
                        InstallmentPayment.status == PaymentStatus.FAILED.value,
                        InstallmentPayment.attempt_count < max_attempts,
                        InstallmentPayment.next_retry_at <= now,
                    ),
                )
            )
            .order_by(InstallmentPayment.plan_id, InstallmentPayment.installment_number)
            .all()
        )

    def list_upcoming_for_chapter(self, chapter_id: str, until: date) -> List[InstallmentPayment]:
        """Scheduled payments of a chapter's active plans falling on or before until"""
        return (
            self.db.query(InstallmentPayment)
            .join(InstallmentPlan, InstallmentPayment.plan_id == InstallmentPlan.id)
            .filter(
                InstallmentPlan.chapter_id == chapter_id,
                InstallmentPlan.status == PlanStatus.ACTIVE.value,
                InstallmentPayment.status == PaymentStatus.SCHEDULED.value,
                InstallmentPayment.scheduled_date <= until,
            )
            .order_by(InstallmentPayment.scheduled_date, InstallmentPayment.installment_number)
            .all()
        )

    def earlier_installments_paid(self, payment: InstallmentPayment) -> bool:
        """True when every lower-numbered installment of the plan is paid"""
        unpaid = (
            self.db.query(InstallmentPayment.id)
            .filter(
                InstallmentPayment.plan_id == payment.plan_id,
                InstallmentPayment.installment_number < payment.installment_number,
                InstallmentPayment.status != PaymentStatus.PAID.value,
            )
            .first()
        )
        return unpaid is None


class ChargeRepository:
    """Repository for charge attempts"""

    def __init__(self, db: Session):
        self.db = db

    def create_charge(
        self,
        payment: InstallmentPayment,
        attempt_number: int,
        idempotency_key: str,
        fees: FeeBreakdown,
        external_charge_ref: Optional[str] = None,
        status: ChargeStatus = ChargeStatus.PENDING,
        failure_reason: Optional[str] = None,
    ) -> ChargeRecord:
        """Record one charge attempt with its fee split"""
        db_charge = ChargeRecord(
            payment_id=payment.id,
            attempt_number=attempt_number,
            idempotency_key=idempotency_key,
            external_charge_ref=external_charge_ref,
            payment_method_type=fees.method_type.value,
            base_cents=fees.base_cents,
            processor_fee_cents=fees.processor_fee_cents,
            platform_fee_cents=fees.platform_fee_cents,
            total_charge_cents=fees.total_charge_cents,
            net_cents=fees.net_cents,
            status=ChargeStatus(status).value,
            failure_reason=failure_reason,
        )
        self.db.add(db_charge)
        self.db.flush()
        return db_charge

    def settle_pending(
        self,
        charge: ChargeRecord,
        status: ChargeStatus,
        confirmed_at: datetime,
        failure_reason: Optional[str] = None,
    ) -> bool:
        """
        Move a charge out of pending with a single conditional UPDATE.

        Returns False when the row was no longer pending, i.e. a concurrent
        delivery settled it first. On success the in-session copy is reloaded.
        """
        values = {"status": ChargeStatus(status).value, "confirmed_at": confirmed_at}
        if failure_reason is not None:
            values["failure_reason"] = failure_reason

        result = self.db.execute(
            update(ChargeRecord)
            .where(ChargeRecord.id == charge.id, ChargeRecord.status == ChargeStatus.PENDING.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        self.db.refresh(charge)
        return True

    def get_by_charge_ref(self, external_charge_ref: str) -> Optional[ChargeRecord]:
        return (
            self.db.query(ChargeRecord)
            .filter(ChargeRecord.external_charge_ref == external_charge_ref)
            .first()
        )

    def get_for_payment(self, payment_id: uuid.UUID) -> List[ChargeRecord]:
        return (
            self.db.query(ChargeRecord)
            .filter(ChargeRecord.payment_id == payment_id)
            .order_by(ChargeRecord.attempt_number)
            .all()
        )
