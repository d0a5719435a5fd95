"""POST /v1/jobs/installment-sweep - Manually trigger the due-installment sweep"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from dues_gateway.api.dependencies import get_processor_client, require_admin
from dues_gateway.api.v1.schemas import SweepResponse
from dues_gateway.domain.models import Requester
from dues_gateway.infrastructure.clients.processor import PaymentProcessorClient
from dues_gateway.infrastructure.database.session import get_db
from dues_gateway.services.payments import PaymentStateMachine

router = APIRouter()


@router.post("/jobs/installment-sweep", response_model=SweepResponse)
async def run_installment_sweep(
    as_of: Optional[date] = Query(None, description="Treat this date as today"),
    db: Session = Depends(get_db),
    processor: PaymentProcessorClient = Depends(get_processor_client),
    requester: Requester = Depends(require_admin),
):
    """Charge every installment that is due. The background worker runs the same sweep."""
    summary = await PaymentStateMachine(db, processor).process_due_payments(today=as_of)
    return SweepResponse(
        processed=summary.processed,
        submitted=summary.submitted,
        failed=summary.failed,
        skipped=summary.skipped,
        errors=summary.errors,
        error_details=summary.error_details,
    )
