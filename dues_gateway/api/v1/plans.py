"""/v1/installment-plans - create, fetch, list and cancel installment plans"""

import logging
import time
import uuid
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from dues_gateway.api.dependencies import (
    enforce_payment_rate_limit,
    get_current_requester,
    get_processor_client,
    get_request_id,
)
from dues_gateway.api.v1.schemas import (
    CancelPlanRequest,
    CreatePlanRequest,
    CreatePlanResponse,
    PlanListResponse,
    PlanResponse,
    ScheduleItem,
)
from dues_gateway.domain.exceptions import DomainException, GatewayError, ValidationError
from dues_gateway.domain.models import Requester
from dues_gateway.domain.money import cents_to_decimal
from dues_gateway.infrastructure.clients.processor import PaymentProcessorClient
from dues_gateway.infrastructure.database.models import InstallmentPayment, InstallmentPlan
from dues_gateway.infrastructure.database.session import get_db
from dues_gateway.infrastructure.observability.logging import log_plan_created
from dues_gateway.services.plans import PlanOrchestrator

router = APIRouter()


def _parse_plan_id(plan_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(plan_id)
    except ValueError:
        raise ValidationError("Invalid plan ID format")


def _schedule(payments: List[InstallmentPayment]) -> List[ScheduleItem]:
    return [
        ScheduleItem(
            installment_number=p.installment_number,
            amount=cents_to_decimal(p.amount_cents),
            scheduled_date=p.scheduled_date,
            status=p.status,
            late_fee=cents_to_decimal(p.late_fee_cents or 0),
        )
        for p in payments
    ]


def plan_to_response(plan: InstallmentPlan) -> PlanResponse:
    return PlanResponse(
        plan_id=str(plan.id),
        dues_id=str(plan.dues_id),
        member_id=plan.member_id,
        status=plan.status,
        total_amount=cents_to_decimal(plan.total_cents),
        num_installments=plan.num_installments,
        installment_amount=cents_to_decimal(plan.installment_base_cents),
        payment_method_type=plan.payment_method_type,
        next_due_date=plan.next_due_date,
        requires_attention=plan.requires_attention,
        cancellation_reason=plan.cancellation_reason,
        created_at=plan.created_at.isoformat() if plan.created_at else None,
        cancelled_at=plan.cancelled_at.isoformat() if plan.cancelled_at else None,
        schedule=_schedule(plan.payments),
    )


@router.post("/installment-plans", response_model=CreatePlanResponse)
async def create_installment_plan(
    request_body: CreatePlanRequest,
    request: Request,
    db: Session = Depends(get_db),
    processor: PaymentProcessorClient = Depends(get_processor_client),
    requester: Requester = Depends(enforce_payment_rate_limit),
):
    """
    Split a dues balance into installments and start the first charge.

    Flow:
    1. Lock the balance and run eligibility checks
    2. Persist plan + scheduled payments
    3. Submit the first charge (client confirms it with the returned handle)
    4. Return the plan and its schedule
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        result = await PlanOrchestrator(db, processor).create_plan(
            dues_id=request_body.member_dues_id,
            num_installments=request_body.num_installments,
            payment_method_ref=request_body.payment_method_ref,
            requester=requester,
        )

    except GatewayError as e:
        logging.error(
            f"First charge submission failed: {e}",
            extra={"request_id": request_id, "dues_id": str(request_body.member_dues_id)},
        )
        raise

    except DomainException as e:
        logging.warning(
            f"Plan creation rejected: {e}",
            extra={"request_id": request_id, "dues_id": str(request_body.member_dues_id)},
        )
        raise

    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    plan = result.plan
    duration_ms = (time.time() - start_time) * 1000
    log_plan_created(request_id, str(plan.id), plan.member_id, plan.total_cents, plan.num_installments, duration_ms)

    first = result.payments[0]
    return CreatePlanResponse(
        plan_id=str(plan.id),
        total_amount=cents_to_decimal(plan.total_cents),
        num_installments=plan.num_installments,
        installment_amount=cents_to_decimal(plan.installment_base_cents),
        first_payment_amount=cents_to_decimal(first.amount_cents),
        first_payment_confirmation_handle=result.confirmation_handle,
        first_payment_total_charge=cents_to_decimal(result.fees.total_charge_cents),
        processor_fee=cents_to_decimal(result.fees.processor_fee_cents),
        payment_method_type=plan.payment_method_type,
        schedule=_schedule(result.payments),
    )


@router.get("/installment-plans", response_model=PlanListResponse)
def list_installment_plans(
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    requester: Requester = Depends(get_current_requester),
):
    """Caller's installment plans, newest first"""
    plans = PlanOrchestrator(db, processor=None).list_plans(requester, limit=limit)
    return PlanListResponse(member_id=requester.user_id, plans=[plan_to_response(p) for p in plans])


@router.get("/installment-plans/{plan_id}", response_model=PlanResponse)
def get_installment_plan(
    plan_id: str,
    db: Session = Depends(get_db),
    requester: Requester = Depends(get_current_requester),
):
    """Retrieve an installment plan with its payment schedule."""
    plan = PlanOrchestrator(db, processor=None).get_plan(_parse_plan_id(plan_id), requester)
    return plan_to_response(plan)


@router.post("/installment-plans/{plan_id}/cancel", response_model=PlanResponse)
def cancel_installment_plan(
    plan_id: str,
    request: Request,
    request_body: CancelPlanRequest | None = None,
    db: Session = Depends(get_db),
    requester: Requester = Depends(enforce_payment_rate_limit),
):
    """Cancel an active plan. Remaining scheduled installments are never charged."""
    plan_uuid = _parse_plan_id(plan_id)
    reason = request_body.reason if request_body else None
    try:
        plan = PlanOrchestrator(db, processor=None).cancel_plan(plan_uuid, requester, reason=reason)
    except DomainException as e:
        db.rollback()
        logging.warning(f"Plan cancellation rejected: {e}", extra={"request_id": get_request_id(request)})
        raise
    return plan_to_response(plan)
