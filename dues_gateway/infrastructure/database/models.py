"""SQLAlchemy ORM models for dues balances, installment plans and charges"""

import uuid
from sqlalchemy import (
    Column,
    String,
    BigInteger,
    Boolean,
    DateTime,
    Date,
    Integer,
    ForeignKey,
    Text,
    JSON,
    Index,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from dues_gateway.domain.models import ChargeStatus, DuesStatus, PaymentStatus, PlanStatus

Base = declarative_base()


class MemberDues(Base):
    """Outstanding dues balance for one member and billing period"""

    __tablename__ = "member_dues"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    member_id = Column(Text, nullable=False, index=True)
    chapter_id = Column(Text, nullable=False, index=True)
    total_cents = Column(BigInteger, nullable=False)
    amount_paid_cents = Column(BigInteger, nullable=False, default=0)
    balance_cents = Column(BigInteger, nullable=False)
    due_date = Column(Date, nullable=True)
    status = Column(Text, nullable=False, default=DuesStatus.PENDING.value)
    paid_date = Column(Date, nullable=True)
    late_fee_cents = Column(BigInteger, nullable=False, default=0)
    late_fee_applied_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def apply_payment(self, amount_cents: int, paid_on) -> None:
        """Credit a settled payment; keeps balance = total - amount_paid"""
        self.amount_paid_cents = (self.amount_paid_cents or 0) + amount_cents
        self.balance_cents = self.total_cents - self.amount_paid_cents
        if self.balance_cents <= 0:
            self.status = DuesStatus.PAID.value
            self.paid_date = paid_on
        else:
            self.status = DuesStatus.PARTIAL.value

    def apply_late_fee(self, fee_cents: int, applied_on) -> None:
        """Add a late fee to the amount owed; the first application date is kept"""
        self.late_fee_cents = (self.late_fee_cents or 0) + fee_cents
        self.total_cents = self.total_cents + fee_cents
        self.balance_cents = self.total_cents - (self.amount_paid_cents or 0)
        if self.late_fee_applied_date is None:
            self.late_fee_applied_date = applied_on


class InstallmentEligibility(Base):
    """Operator-granted permission to split a dues balance"""

    __tablename__ = "installment_eligibility"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    dues_id = Column(Uuid(as_uuid=True), ForeignKey("member_dues.id", ondelete="CASCADE"), nullable=False, unique=True)
    chapter_id = Column(Text, nullable=False, index=True)
    is_eligible = Column(Boolean, nullable=False, default=False)
    allowed_plan_sizes = Column(JSON, nullable=False, default=list)
    enabled_by = Column(Text, nullable=True)
    enabled_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class ConnectedPayoutAccount(Base):
    """Chapter's processor account receiving net installment proceeds"""

    __tablename__ = "connected_payout_account"

    chapter_id = Column(Text, primary_key=True)
    external_account_ref = Column(Text, nullable=False)
    charges_enabled = Column(Boolean, nullable=False, default=False)


class SavedPaymentMethod(Base):
    """Payment method a member saved with the processor"""

    __tablename__ = "saved_payment_method"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    external_method_ref = Column(Text, nullable=False, unique=True)
    method_type = Column(Text, nullable=False)
    last4 = Column(String(4), nullable=True)
    brand = Column(Text, nullable=True)


class InstallmentPlan(Base):
    """Agreement to pay a dues balance in N scheduled charges"""

    __tablename__ = "installment_plan"
    __table_args__ = (
        # At most one active plan per balance
        Index(
            "uq_installment_plan_active_dues",
            "dues_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    dues_id = Column(Uuid(as_uuid=True), ForeignKey("member_dues.id", ondelete="CASCADE"), nullable=False, index=True)
    member_id = Column(Text, nullable=False, index=True)
    chapter_id = Column(Text, nullable=False, index=True)
    total_cents = Column(BigInteger, nullable=False)
    num_installments = Column(Integer, nullable=False)
    installment_base_cents = Column(BigInteger, nullable=False)
    payment_method_ref = Column(Text, nullable=False)
    payment_method_type = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default=PlanStatus.ACTIVE.value)
    next_due_date = Column(Date, nullable=True)
    requires_attention = Column(Boolean, nullable=False, default=False)
    late_fee_enabled = Column(Boolean, nullable=False, default=False)
    late_fee_cents = Column(BigInteger, nullable=False, default=0)
    cancellation_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    dues = relationship("MemberDues")
    payments = relationship(
        "InstallmentPayment",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="InstallmentPayment.installment_number",
    )


class InstallmentPayment(Base):
    """Individual scheduled charge within an installment plan"""

    __tablename__ = "installment_payment"
    __table_args__ = (UniqueConstraint("plan_id", "installment_number", name="uq_installment_payment_number"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    plan_id = Column(Uuid(as_uuid=True), ForeignKey("installment_plan.id", ondelete="CASCADE"), nullable=False)
    installment_number = Column(Integer, nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    late_fee_cents = Column(BigInteger, nullable=False, default=0)
    scheduled_date = Column(Date, nullable=False, index=True)
    status = Column(Text, nullable=False, default=PaymentStatus.SCHEDULED.value, index=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    external_charge_ref = Column(Text, nullable=True, index=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    next_retry_at = Column(DateTime(timezone=True), nullable=True)
    failure_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    plan = relationship("InstallmentPlan", back_populates="payments")
    charges = relationship("ChargeRecord", back_populates="payment", cascade="all, delete-orphan")

    @property
    def due_cents(self) -> int:
        """Installment amount plus any late fee added after a failed attempt"""
        return self.amount_cents + (self.late_fee_cents or 0)


class ChargeRecord(Base):
    """One charge attempt against the processor, kept for reconciliation"""

    __tablename__ = "charge_record"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    payment_id = Column(Uuid(as_uuid=True), ForeignKey("installment_payment.id", ondelete="CASCADE"), nullable=False)
    attempt_number = Column(Integer, nullable=False)
    idempotency_key = Column(Text, nullable=False)
    external_charge_ref = Column(Text, nullable=True, unique=True)
    payment_method_type = Column(Text, nullable=False)
    base_cents = Column(BigInteger, nullable=False)
    processor_fee_cents = Column(BigInteger, nullable=False)
    platform_fee_cents = Column(BigInteger, nullable=False)
    total_charge_cents = Column(BigInteger, nullable=False)
    net_cents = Column(BigInteger, nullable=False)
    status = Column(Text, nullable=False, default=ChargeStatus.PENDING.value)
    failure_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    confirmed_at = Column(DateTime(timezone=True), nullable=True)

    payment = relationship("InstallmentPayment", back_populates="charges")
