"""PUT /v1/dues/{dues_id}/eligibility - Treasurer-managed installment eligibility"""

import logging
import uuid

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from dues_gateway.api.dependencies import get_request_id, require_operator
from dues_gateway.api.v1.schemas import EligibilityRequest, EligibilityResponse
from dues_gateway.domain.exceptions import DomainException, ValidationError
from dues_gateway.domain.models import Requester
from dues_gateway.infrastructure.database.session import get_db
from dues_gateway.services.eligibility import set_eligibility

router = APIRouter()


@router.put("/dues/{dues_id}/eligibility", response_model=EligibilityResponse)
def update_eligibility(
    dues_id: str,
    request_body: EligibilityRequest,
    request: Request,
    db: Session = Depends(get_db),
    requester: Requester = Depends(require_operator),
):
    """Grant or revoke installment payments for one member's dues balance."""
    try:
        dues_uuid = uuid.UUID(dues_id)
    except ValueError:
        raise ValidationError("Invalid dues ID format")

    try:
        record = set_eligibility(
            db,
            dues_uuid,
            requester,
            is_eligible=request_body.is_eligible,
            allowed_plan_sizes=request_body.allowed_plan_sizes,
            notes=request_body.notes,
        )
    except DomainException as e:
        db.rollback()
        logging.warning(f"Eligibility update rejected: {e}", extra={"request_id": get_request_id(request)})
        raise

    logging.info(
        "Installment eligibility updated",
        extra={
            "request_id": get_request_id(request),
            "dues_id": dues_id,
            "is_eligible": record.is_eligible,
            "updated_by": requester.user_id,
        },
    )

    return EligibilityResponse(
        dues_id=str(record.dues_id),
        is_eligible=record.is_eligible,
        allowed_plan_sizes=list(record.allowed_plan_sizes or []),
        enabled_by=record.enabled_by,
        notes=record.notes,
    )
