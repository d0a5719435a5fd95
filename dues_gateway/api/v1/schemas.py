"""Pydantic schemas for API request/response validation"""

import uuid
from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from dues_gateway.domain.models import ConfirmationOutcome


class CreatePlanRequest(BaseModel):
    """Request body for POST /v1/installment-plans"""

    member_dues_id: uuid.UUID = Field(..., description="Dues balance to split")
    num_installments: int = Field(..., description="Number of payments")
    payment_method_ref: str = Field(..., min_length=1, description="Saved processor payment method")


class ScheduleItem(BaseModel):
    """Single installment in a plan's schedule"""

    installment_number: int
    amount: Decimal
    scheduled_date: date
    status: str = "scheduled"
    late_fee: Decimal = Decimal("0.00")


class CreatePlanResponse(BaseModel):
    """Response for POST /v1/installment-plans"""

    plan_id: str
    total_amount: Decimal
    num_installments: int
    installment_amount: Decimal
    first_payment_amount: Decimal
    first_payment_confirmation_handle: Optional[str] = None
    first_payment_total_charge: Decimal
    processor_fee: Decimal
    payment_method_type: str
    schedule: List[ScheduleItem]


class PlanResponse(BaseModel):
    """Response for GET /v1/installment-plans/{plan_id}"""

    plan_id: str
    dues_id: str
    member_id: str
    status: str
    total_amount: Decimal
    num_installments: int
    installment_amount: Decimal
    payment_method_type: str
    next_due_date: Optional[date] = None
    requires_attention: bool = False
    cancellation_reason: Optional[str] = None
    created_at: Optional[str] = None
    cancelled_at: Optional[str] = None
    schedule: List[ScheduleItem]


class PlanListResponse(BaseModel):
    """Response for GET /v1/installment-plans"""

    member_id: str
    plans: List[PlanResponse]


class CancelPlanRequest(BaseModel):
    """Request body for POST /v1/installment-plans/{plan_id}/cancel"""

    reason: Optional[str] = Field(None, max_length=500)


class EligibilityRequest(BaseModel):
    """Request body for PUT /v1/dues/{dues_id}/eligibility"""

    is_eligible: bool
    allowed_plan_sizes: List[int] = Field(default_factory=lambda: [2, 3])
    notes: Optional[str] = Field(None, max_length=1000)


class EligibilityResponse(BaseModel):
    """Eligibility record for a dues balance"""

    dues_id: str
    is_eligible: bool
    allowed_plan_sizes: List[int]
    enabled_by: Optional[str] = None
    notes: Optional[str] = None


class BulkEligibilityRequest(BaseModel):
    """Request body for PUT /v1/chapters/{chapter_id}/eligibility"""

    dues_ids: List[uuid.UUID] = Field(..., min_length=1, max_length=500)
    is_eligible: bool
    allowed_plan_sizes: List[int] = Field(default_factory=lambda: [2, 3])


class BulkEligibilityResponse(BaseModel):
    chapter_id: str
    updated: int


class ChapterPlansResponse(BaseModel):
    """Response for GET /v1/chapters/{chapter_id}/installment-plans"""

    chapter_id: str
    plans: List[PlanResponse]


class UpcomingPayment(BaseModel):
    """Scheduled installment awaiting the sweep"""

    plan_id: str
    member_id: str
    installment_number: int
    amount: Decimal
    scheduled_date: date


class UpcomingPaymentsResponse(BaseModel):
    chapter_id: str
    days_ahead: int
    payments: List[UpcomingPayment]


class ConfirmationEvent(BaseModel):
    """Processor webhook payload for a charge outcome"""

    charge_ref: str = Field(..., min_length=1)
    outcome: ConfirmationOutcome
    failure_reason: Optional[str] = None


class ConfirmationResponse(BaseModel):
    """Response for POST /v1/webhooks/processor"""

    charge_ref: str
    applied: bool
    reason: Optional[str] = None
    payment_status: Optional[str] = None
    plan_status: Optional[str] = None


class SweepResponse(BaseModel):
    """Response for POST /v1/jobs/installment-sweep"""

    processed: int
    submitted: int
    failed: int
    skipped: int
    errors: int
    error_details: List[str] = []
