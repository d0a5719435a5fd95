"""Integration tests for plan creation, resume and cancellation against the test database"""

import pytest
import uuid
from datetime import date
from dues_gateway.domain.exceptions import (
    AuthorizationError,
    ConflictError,
    EligibilityError,
    GatewayError,
    NotFoundError,
    ValidationError,
)
from dues_gateway.domain.eligibility import EligibilityDecision
from dues_gateway.domain.models import PaymentStatus, PlanStatus, Requester, Role
from dues_gateway.infrastructure.database.models import ChargeRecord, InstallmentPayment, InstallmentPlan
from dues_gateway.infrastructure.database.repositories import ChargeRepository
from dues_gateway.services.eligibility import EligibilityGate
from dues_gateway.services.plans import PlanOrchestrator

START = date(2025, 1, 15)


async def create(db, processor, dues, requester, num_installments=3, method_ref="pm_card_1", today=START):
    return await PlanOrchestrator(db, processor).create_plan(
        dues.id, num_installments, method_ref, requester, today=today
    )


async def test_create_plan_end_to_end(db, processor, seed_dues, member):
    """$750 in 3 from 2025-01-15 with no deadline"""
    dues = seed_dues(balance_cents=75000)

    result = await create(db, processor, dues, member)
    plan = result.plan

    assert plan.status == PlanStatus.ACTIVE.value
    assert plan.total_cents == 75000
    assert [p.amount_cents for p in result.payments] == [25000, 25000, 25000]
    assert [p.scheduled_date for p in result.payments] == [
        date(2025, 1, 15),
        date(2025, 2, 14),
        date(2025, 3, 16),
    ]

    first = result.payments[0]
    assert first.status == PaymentStatus.PROCESSING.value
    assert first.attempt_count == 1
    assert first.external_charge_ref == "ch_1"
    assert all(p.status == PaymentStatus.SCHEDULED.value for p in result.payments[1:])

    charges = ChargeRepository(db).get_for_payment(first.id)
    assert len(charges) == 1
    assert charges[0].idempotency_key == f"installment:{plan.id}:1"
    assert charges[0].total_charge_cents == 25778
    assert charges[0].status == "pending"

    assert result.confirmation_handle == "ch_1_secret"
    assert result.fees.processor_fee_cents == 778


async def test_first_charge_request(db, processor, seed_dues, member):
    """Client-confirmed card charge routed to the chapter's payout account"""
    dues = seed_dues(balance_cents=75000)
    result = await create(db, processor, dues, member)

    processor.submit_charge.assert_awaited_once()
    request = processor.submit_charge.await_args.args[0]
    assert request.amount_cents == 25778
    assert request.confirm is False
    assert request.destination == "acct_chapter_1"
    assert request.net_amount_cents == 24750
    assert request.idempotency_key == f"installment:{result.plan.id}:1"
    assert request.metadata["installment_number"] == "1"


async def test_bank_account_plan_charges_base_amount(db, processor, seed_dues, member):
    dues = seed_dues(balance_cents=50000, method_ref="pm_bank_1", method_type="bank_account")
    result = await create(db, processor, dues, member, num_installments=2, method_ref="pm_bank_1")

    assert result.plan.payment_method_type == "bank_account"
    assert result.fees.total_charge_cents == 25000
    assert result.fees.processor_fee_cents == 200


async def test_schedule_ends_on_dues_deadline(db, processor, seed_dues, member):
    dues = seed_dues(balance_cents=30000, due_date=date(2025, 3, 16))
    result = await create(db, processor, dues, member)

    assert result.payments[-1].scheduled_date == date(2025, 3, 16)
    assert result.payments[0].scheduled_date == START


async def test_second_plan_for_same_dues_conflicts(db, processor, seed_dues, member):
    dues = seed_dues()
    await create(db, processor, dues, member)

    with pytest.raises(ConflictError):
        await create(db, processor, dues, member)
    with pytest.raises(ConflictError):
        await create(db, processor, dues, member, num_installments=2)

    assert db.query(InstallmentPlan).count() == 1


async def test_not_eligible_creates_nothing(db, processor, seed_dues, member):
    dues = seed_dues(eligible=None)

    with pytest.raises(EligibilityError) as exc_info:
        await create(db, processor, dues, member)

    assert exc_info.value.reason == "not_eligible"
    assert db.query(InstallmentPlan).count() == 0
    assert db.query(InstallmentPayment).count() == 0
    assert db.query(ChargeRecord).count() == 0
    processor.submit_charge.assert_not_awaited()


async def test_plan_size_not_allowed(db, processor, seed_dues, member):
    dues = seed_dues(allowed_plan_sizes=(2, 3))

    with pytest.raises(EligibilityError) as exc_info:
        await create(db, processor, dues, member, num_installments=4)

    assert exc_info.value.reason == "plan_size_not_allowed"
    assert str(exc_info.value) == "4-payment plan not allowed. Available: 2, 3"


@pytest.mark.parametrize("num_installments", [1, 13])
async def test_plan_size_out_of_range(db, processor, seed_dues, member, num_installments):
    dues = seed_dues(allowed_plan_sizes=(2, 3))

    with pytest.raises(ValidationError):
        await create(db, processor, dues, member, num_installments=num_installments)


async def test_paid_off_balance(db, processor, seed_dues, member):
    dues = seed_dues(balance_cents=0)

    with pytest.raises(EligibilityError) as exc_info:
        await create(db, processor, dues, member)
    assert exc_info.value.reason == "no_outstanding_balance"


async def test_deadline_passed(db, processor, seed_dues, member):
    dues = seed_dues(due_date=date(2025, 1, 10))

    with pytest.raises(EligibilityError) as exc_info:
        await create(db, processor, dues, member)
    assert exc_info.value.reason == "deadline_passed"


async def test_payouts_not_enabled(db, processor, seed_dues, member):
    dues = seed_dues(charges_enabled=False)

    with pytest.raises(EligibilityError) as exc_info:
        await create(db, processor, dues, member)
    assert exc_info.value.reason == "payouts_not_enabled"


async def test_eligibility_reported_before_payout_setup(db, processor, seed_dues, member):
    """A balance that is not eligible is reported as such even when the chapter has no payouts"""
    dues = seed_dues(eligible=None, charges_enabled=False)

    with pytest.raises(EligibilityError) as exc_info:
        await create(db, processor, dues, member)
    assert exc_info.value.reason == "not_eligible"


async def test_active_plan_index_rejects_request_past_gate(db, processor, seed_dues, member, monkeypatch):
    """A request that slips past the active-plan check still cannot add a second active plan"""
    dues = seed_dues()
    first = await create(db, processor, dues, member)

    monkeypatch.setattr(EligibilityGate, "check", lambda self, *args, **kwargs: EligibilityDecision.allow())
    with pytest.raises(ConflictError):
        await create(db, processor, dues, member, num_installments=2)

    assert db.query(InstallmentPlan).count() == 1
    assert db.query(InstallmentPayment).count() == 3
    assert first.plan.status == PlanStatus.ACTIVE.value
    assert processor.submit_charge.await_count == 1


async def test_payment_method_of_another_member(db, processor, seed_dues, member):
    seed_dues(member_id="member_2", method_ref="pm_card_2")
    dues = seed_dues()

    with pytest.raises(AuthorizationError):
        await create(db, processor, dues, member, method_ref="pm_card_2")
    assert db.query(InstallmentPlan).count() == 0


async def test_dues_of_another_member(db, processor, seed_dues, other_member):
    dues = seed_dues()

    with pytest.raises(AuthorizationError):
        await create(db, processor, dues, other_member)


async def test_unknown_dues(db, processor, seed_dues, member):
    seed_dues()

    with pytest.raises(NotFoundError):
        await PlanOrchestrator(db, processor).create_plan(uuid.uuid4(), 3, "pm_card_1", member, today=START)


async def test_gateway_failure_keeps_plan_and_resumes(db, processor, seed_dues, member):
    """Processor outage: plan persists with its first installment still scheduled"""
    dues = seed_dues()
    processor.submit_charge.side_effect = GatewayError("Processor timeout after 10s")

    with pytest.raises(GatewayError):
        await create(db, processor, dues, member)

    plan = db.query(InstallmentPlan).one()
    first = plan.payments[0]
    assert plan.status == PlanStatus.ACTIVE.value
    assert first.status == PaymentStatus.SCHEDULED.value
    assert first.attempt_count == 0
    assert db.query(ChargeRecord).count() == 0

    processor.submit_charge.side_effect = processor.accept
    result = await create(db, processor, dues, member)

    assert result.resumed is True
    assert result.plan.id == plan.id
    assert result.payments[0].status == PaymentStatus.PROCESSING.value
    assert db.query(InstallmentPlan).count() == 1

    keys = [call.args[0].idempotency_key for call in processor.submit_charge.await_args_list]
    assert keys == [f"installment:{plan.id}:1", f"installment:{plan.id}:1"]


async def test_resume_requires_identical_request(db, processor, seed_dues, member):
    dues = seed_dues()
    processor.submit_charge.side_effect = GatewayError("down")
    with pytest.raises(GatewayError):
        await create(db, processor, dues, member)

    processor.submit_charge.side_effect = processor.accept
    with pytest.raises(ConflictError):
        await create(db, processor, dues, member, num_installments=2)


async def test_get_plan_visibility(db, processor, seed_dues, member, other_member, treasurer):
    dues = seed_dues()
    plan_id = (await create(db, processor, dues, member)).plan.id
    orchestrator = PlanOrchestrator(db, processor)

    assert orchestrator.get_plan(plan_id, member).id == plan_id
    assert orchestrator.get_plan(plan_id, treasurer).id == plan_id
    with pytest.raises(AuthorizationError):
        orchestrator.get_plan(plan_id, other_member)
    with pytest.raises(NotFoundError):
        orchestrator.get_plan(uuid.uuid4(), member)


async def test_list_plans_only_returns_own(db, processor, seed_dues, member, other_member):
    dues = seed_dues()
    await create(db, processor, dues, member)
    orchestrator = PlanOrchestrator(db, processor)

    assert len(orchestrator.list_plans(member)) == 1
    assert orchestrator.list_plans(other_member) == []


async def test_member_cancels_plan(db, processor, seed_dues, member):
    dues = seed_dues()
    plan_id = (await create(db, processor, dues, member)).plan.id
    orchestrator = PlanOrchestrator(db, processor)

    plan = orchestrator.cancel_plan(plan_id, member)

    assert plan.status == PlanStatus.CANCELLED.value
    assert plan.cancellation_reason == "cancelled_by_member"
    assert plan.cancelled_at is not None
    assert plan.payments[0].status == PaymentStatus.PROCESSING.value

    with pytest.raises(ConflictError):
        orchestrator.cancel_plan(plan_id, member)


async def test_treasurer_cancels_plan(db, processor, seed_dues, member, treasurer):
    dues = seed_dues()
    plan_id = (await create(db, processor, dues, member)).plan.id

    plan = PlanOrchestrator(db, processor).cancel_plan(plan_id, treasurer, reason="member request by phone")
    assert plan.cancellation_reason == "member request by phone"


async def test_other_member_cannot_cancel(db, processor, seed_dues, member, other_member):
    dues = seed_dues()
    plan_id = (await create(db, processor, dues, member)).plan.id

    with pytest.raises(AuthorizationError):
        PlanOrchestrator(db, processor).cancel_plan(plan_id, other_member)


async def test_new_plan_allowed_after_cancel(db, processor, seed_dues, member):
    dues = seed_dues()
    plan_id = (await create(db, processor, dues, member)).plan.id
    PlanOrchestrator(db, processor).cancel_plan(plan_id, member)

    result = await create(db, processor, dues, member, num_installments=2)
    assert result.plan.id != plan_id
    assert db.query(InstallmentPlan).count() == 2


async def test_chapter_active_plans(db, processor, seed_dues, member, other_member, treasurer):
    await create(db, processor, seed_dues(), member)
    other_dues = seed_dues(member_id="member_2", method_ref="pm_card_2")
    other = await create(db, processor, other_dues, other_member, method_ref="pm_card_2")
    orchestrator = PlanOrchestrator(db, processor)
    orchestrator.cancel_plan(other.plan.id, other_member)

    plans = orchestrator.list_chapter_active_plans("chapter_1", treasurer)

    assert [p.member_id for p in plans] == ["member_1"]


async def test_chapter_views_require_chapter_operator(db, processor, seed_dues, member):
    await create(db, processor, seed_dues(), member)
    orchestrator = PlanOrchestrator(db, processor)
    foreign_treasurer = Requester(user_id="treasurer_9", role=Role.TREASURER, chapter_id="chapter_9")

    with pytest.raises(AuthorizationError):
        orchestrator.list_chapter_active_plans("chapter_1", member)
    with pytest.raises(AuthorizationError):
        orchestrator.list_upcoming_payments("chapter_1", foreign_treasurer)

    admin = Requester(user_id="admin_1", role=Role.ADMIN)
    assert len(orchestrator.list_chapter_active_plans("chapter_1", admin)) == 1


async def test_upcoming_payments_window(db, processor, seed_dues, member, treasurer):
    """Installments fall on 2025-01-15 (already submitted), 2025-02-14 and 2025-03-16"""
    await create(db, processor, seed_dues(), member)
    orchestrator = PlanOrchestrator(db, processor)
    today = date(2025, 2, 10)

    week = orchestrator.list_upcoming_payments("chapter_1", treasurer, today=today)
    assert [p.installment_number for p in week] == [2]
    assert week[0].scheduled_date == date(2025, 2, 14)

    assert orchestrator.list_upcoming_payments("chapter_1", treasurer, days_ahead=3, today=today) == []

    later = orchestrator.list_upcoming_payments("chapter_1", treasurer, days_ahead=60, today=today)
    assert [p.installment_number for p in later] == [2, 3]

    # Overdue scheduled installments stay in the list
    overdue = orchestrator.list_upcoming_payments("chapter_1", treasurer, days_ahead=0, today=date(2025, 2, 20))
    assert [p.installment_number for p in overdue] == [2]

    with pytest.raises(ValidationError):
        orchestrator.list_upcoming_payments("chapter_1", treasurer, days_ahead=-1, today=today)
