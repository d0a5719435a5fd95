"""Domain models - pure Python dataclasses and enums representing billing entities"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional


class PaymentMethodType(str, Enum):
    CARD = "card"
    BANK_ACCOUNT = "bank_account"


class PlanStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    SCHEDULED = "scheduled"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"


class DuesStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


class ChargeStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ConfirmationOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Role(str, Enum):
    MEMBER = "member"
    TREASURER = "treasurer"
    ADMIN = "admin"


OPERATOR_ROLES = frozenset({Role.TREASURER, Role.ADMIN})


@dataclass(frozen=True)
class Requester:
    """Authenticated caller as resolved by the auth guard"""

    user_id: str
    role: Role
    chapter_id: Optional[str] = None

    @property
    def is_operator(self) -> bool:
        return self.role in OPERATOR_ROLES

    def operates_chapter(self, chapter_id: str) -> bool:
        """Treasurers act on their own chapter, admins on any"""
        if self.role == Role.ADMIN:
            return True
        return self.role == Role.TREASURER and self.chapter_id == chapter_id


@dataclass
class Installment:
    """Single payment in a repayment plan"""

    installment_number: int
    scheduled_date: date
    amount_cents: int


@dataclass
class FeeBreakdown:
    """Processor/platform fee split for one charge"""

    method_type: PaymentMethodType
    base_cents: int
    processor_fee_cents: int
    platform_fee_cents: int
    total_charge_cents: int
    net_cents: int


@dataclass
class ChargeRequest:
    """Charge submission sent to the payment processor"""

    amount_cents: int  # what the payer is charged (base + pass-through fee)
    payment_method_ref: str
    method_type: PaymentMethodType
    idempotency_key: str
    destination: str
    net_amount_cents: int
    confirm: bool = False
    metadata: Optional[dict] = None


@dataclass
class ChargeResult:
    """Processor response to a charge submission"""

    charge_ref: str
    confirmation_handle: Optional[str]
    status: str


@dataclass
class SweepSummary:
    """Outcome counts of one scheduled-charge sweep"""

    processed: int = 0
    submitted: int = 0
    failed: int = 0
    skipped: int = 0
    errors: int = 0
    error_details: List[str] = field(default_factory=list)
