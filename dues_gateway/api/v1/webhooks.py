"""POST /v1/webhooks/processor - Charge confirmations from the payment processor"""

import pydantic
from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from dues_gateway.api.v1.schemas import ConfirmationEvent, ConfirmationResponse
from dues_gateway.domain.exceptions import ValidationError
from dues_gateway.infrastructure.clients.processor import verify_webhook_signature
from dues_gateway.infrastructure.database.session import get_db
from dues_gateway.services.payments import PaymentStateMachine

router = APIRouter()


@router.post("/webhooks/processor", response_model=ConfirmationResponse)
async def processor_webhook(
    request: Request,
    db: Session = Depends(get_db),
    x_processor_signature: str | None = Header(default=None),
):
    """
    Apply a charge outcome reported by the processor.

    Deliveries are idempotent by charge_ref. Unknown and duplicate charges are
    acknowledged with applied=false so the processor stops redelivering.
    """
    body = await request.body()
    verify_webhook_signature(body, x_processor_signature)

    try:
        event = ConfirmationEvent.model_validate_json(body)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Malformed confirmation event: {e.error_count()} error(s)")

    result = PaymentStateMachine(db).apply_confirmation(event.charge_ref, event.outcome, event.failure_reason)

    return ConfirmationResponse(
        charge_ref=result.charge_ref,
        applied=result.applied,
        reason=result.reason,
        payment_status=result.payment_status,
        plan_status=result.plan_status,
    )
