"""/v1/chapters/{chapter_id} - Treasurer views of a chapter's installment plans"""

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from dues_gateway.api.dependencies import get_request_id, require_operator
from dues_gateway.api.v1.plans import plan_to_response
from dues_gateway.api.v1.schemas import (
    BulkEligibilityRequest,
    BulkEligibilityResponse,
    ChapterPlansResponse,
    UpcomingPayment,
    UpcomingPaymentsResponse,
)
from dues_gateway.domain.exceptions import DomainException
from dues_gateway.domain.models import Requester
from dues_gateway.domain.money import cents_to_decimal
from dues_gateway.infrastructure.database.session import get_db
from dues_gateway.services.eligibility import set_bulk_eligibility
from dues_gateway.services.plans import PlanOrchestrator

router = APIRouter()


@router.get("/chapters/{chapter_id}/installment-plans", response_model=ChapterPlansResponse)
def list_chapter_plans(
    chapter_id: str,
    db: Session = Depends(get_db),
    requester: Requester = Depends(require_operator),
):
    """Active plans of the chapter, soonest next payment first"""
    plans = PlanOrchestrator(db, processor=None).list_chapter_active_plans(chapter_id, requester)
    return ChapterPlansResponse(chapter_id=chapter_id, plans=[plan_to_response(p) for p in plans])


@router.get("/chapters/{chapter_id}/upcoming-payments", response_model=UpcomingPaymentsResponse)
def list_upcoming_payments(
    chapter_id: str,
    days_ahead: int = Query(7, ge=0, le=90),
    db: Session = Depends(get_db),
    requester: Requester = Depends(require_operator),
):
    """Scheduled installments the sweep will pick up within days_ahead"""
    payments = PlanOrchestrator(db, processor=None).list_upcoming_payments(
        chapter_id, requester, days_ahead=days_ahead
    )
    return UpcomingPaymentsResponse(
        chapter_id=chapter_id,
        days_ahead=days_ahead,
        payments=[
            UpcomingPayment(
                plan_id=str(p.plan_id),
                member_id=p.plan.member_id,
                installment_number=p.installment_number,
                amount=cents_to_decimal(p.due_cents),
                scheduled_date=p.scheduled_date,
            )
            for p in payments
        ],
    )


@router.put("/chapters/{chapter_id}/eligibility", response_model=BulkEligibilityResponse)
def update_bulk_eligibility(
    chapter_id: str,
    request_body: BulkEligibilityRequest,
    request: Request,
    db: Session = Depends(get_db),
    requester: Requester = Depends(require_operator),
):
    """Grant or revoke installment payments for many balances of the chapter at once."""
    try:
        records = set_bulk_eligibility(
            db,
            chapter_id,
            request_body.dues_ids,
            requester,
            is_eligible=request_body.is_eligible,
            allowed_plan_sizes=request_body.allowed_plan_sizes,
        )
    except DomainException as e:
        db.rollback()
        logging.warning(f"Bulk eligibility update rejected: {e}", extra={"request_id": get_request_id(request)})
        raise

    logging.info(
        "Installment eligibility updated in bulk",
        extra={
            "request_id": get_request_id(request),
            "chapter_id": chapter_id,
            "updated": len(records),
            "is_eligible": request_body.is_eligible,
            "updated_by": requester.user_id,
        },
    )
    return BulkEligibilityResponse(chapter_id=chapter_id, updated=len(records))
