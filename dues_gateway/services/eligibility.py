"""Store-backed eligibility gate and operator eligibility management"""

import uuid
from datetime import date
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from dues_gateway.config import settings
from dues_gateway.domain.eligibility import EligibilityDecision, evaluate_eligibility
from dues_gateway.domain.exceptions import AuthorizationError, NotFoundError, ValidationError
from dues_gateway.domain.models import Requester
from dues_gateway.infrastructure.database.models import InstallmentEligibility, MemberDues
from dues_gateway.infrastructure.database.repositories import (
    DuesRepository,
    EligibilityRepository,
    PaymentMethodRepository,
    PlanRepository,
)
from dues_gateway.utils.date_utils import utcnow


class EligibilityGate:
    """Gathers eligibility facts from the stores and runs the ordered checks"""

    def __init__(self, db: Session):
        self.eligibility = EligibilityRepository(db)
        self.plans = PlanRepository(db)
        self.payment_methods = PaymentMethodRepository(db)

    def check(
        self,
        dues: MemberDues,
        num_installments: int,
        payment_method_ref: str,
        requester: Requester,
        today: Optional[date] = None,
    ) -> EligibilityDecision:
        record = self.eligibility.get_by_dues(dues.id)
        method = self.payment_methods.get_owned(payment_method_ref, requester.user_id)

        return evaluate_eligibility(
            is_eligible=record.is_eligible if record else None,
            allowed_plan_sizes=record.allowed_plan_sizes if record else [],
            num_installments=num_installments,
            balance_cents=dues.balance_cents,
            has_active_plan=self.plans.get_active_for_dues(dues.id) is not None,
            payment_method_owned=method is not None,
            due_date=dues.due_date,
            today=today or date.today(),
        )


def _validated_sizes(is_eligible: bool, allowed_plan_sizes: Iterable[int]) -> List[int]:
    sizes = sorted(set(allowed_plan_sizes))
    for size in sizes:
        if not settings.min_installments <= size <= settings.max_installments:
            raise ValidationError(
                f"Plan sizes must be between {settings.min_installments} and {settings.max_installments}"
            )
    if is_eligible and not sizes:
        raise ValidationError("At least one plan size is required when enabling installments")
    return sizes


def set_eligibility(
    db: Session,
    dues_id: uuid.UUID,
    requester: Requester,
    is_eligible: bool,
    allowed_plan_sizes: Iterable[int] = (2, 3),
    notes: Optional[str] = None,
) -> InstallmentEligibility:
    """
    Grant or revoke installment eligibility for a balance (treasurer action).

    Raises:
        NotFoundError: No such balance
        AuthorizationError: Caller does not operate the balance's chapter
        ValidationError: A plan size is outside the configured bounds
    """
    dues = DuesRepository(db).get(dues_id)
    if dues is None:
        raise NotFoundError("Member dues record not found")
    if not requester.operates_chapter(dues.chapter_id):
        raise AuthorizationError("Only chapter treasurers can manage installment eligibility")

    sizes = _validated_sizes(is_eligible, allowed_plan_sizes)
    record = EligibilityRepository(db).upsert(
        dues_id=dues.id,
        chapter_id=dues.chapter_id,
        is_eligible=is_eligible,
        allowed_plan_sizes=sizes,
        enabled_by=requester.user_id if is_eligible else None,
        enabled_at=utcnow() if is_eligible else None,
        notes=notes,
    )
    db.commit()
    return record


def set_bulk_eligibility(
    db: Session,
    chapter_id: str,
    dues_ids: Iterable[uuid.UUID],
    requester: Requester,
    is_eligible: bool,
    allowed_plan_sizes: Iterable[int] = (2, 3),
) -> List[InstallmentEligibility]:
    """
    Apply one eligibility setting to many balances of a chapter in a single commit.

    Either every balance is updated or none is.

    Raises:
        AuthorizationError: Caller does not operate the chapter
        ValidationError: Empty id list or a plan size outside the bounds
        NotFoundError: A balance does not exist or belongs to another chapter
    """
    if not requester.operates_chapter(chapter_id):
        raise AuthorizationError("Only chapter treasurers can manage installment eligibility")

    ids = list(dict.fromkeys(dues_ids))
    if not ids:
        raise ValidationError("At least one dues balance is required")
    sizes = _validated_sizes(is_eligible, allowed_plan_sizes)

    dues_repo = DuesRepository(db)
    eligibility = EligibilityRepository(db)
    enabled_at = utcnow() if is_eligible else None
    records = []
    for dues_id in ids:
        dues = dues_repo.get(dues_id)
        if dues is None or dues.chapter_id != chapter_id:
            db.rollback()
            raise NotFoundError(f"Member dues record {dues_id} not found in chapter {chapter_id}")
        records.append(
            eligibility.upsert(
                dues_id=dues.id,
                chapter_id=chapter_id,
                is_eligible=is_eligible,
                allowed_plan_sizes=sizes,
                enabled_by=requester.user_id if is_eligible else None,
                enabled_at=enabled_at,
            )
        )

    db.commit()
    return records
