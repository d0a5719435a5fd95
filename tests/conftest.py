"""Pytest fixtures for testing"""

import itertools
import pytest
from datetime import date, datetime, timezone
from typing import Callable, Generator, Optional
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from dues_gateway.api.dependencies import get_processor_client, payment_rate_limiter
from dues_gateway.api.main import create_app
from dues_gateway.domain.models import ChargeResult, Requester, Role
from dues_gateway.infrastructure.auth import create_access_token
from dues_gateway.infrastructure.clients.processor import PaymentProcessorClient
from dues_gateway.infrastructure.database.models import (
    Base,
    ConnectedPayoutAccount,
    InstallmentEligibility,
    MemberDues,
    SavedPaymentMethod,
)
from dues_gateway.infrastructure.database.session import get_db

MEMBER_ID = "member_1"
OTHER_MEMBER_ID = "member_2"
CHAPTER_ID = "chapter_1"
PAYOUT_ACCOUNT_REF = "acct_chapter_1"
CARD_METHOD_REF = "pm_card_1"

# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def second_session(db: Session) -> Generator[Session, None, None]:
    """Independent session on the same database, for interleaving two workers"""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def processor() -> AsyncMock:
    """Processor client double that accepts every charge with a fresh charge ref"""
    mock = AsyncMock(spec=PaymentProcessorClient)
    refs = itertools.count(1)

    async def accept(request):
        n = next(refs)
        return ChargeResult(charge_ref=f"ch_{n}", confirmation_handle=f"ch_{n}_secret", status="processing")

    mock.submit_charge.side_effect = accept
    mock.accept = accept
    return mock


@pytest.fixture
def client(db: Session, processor: AsyncMock) -> TestClient:
    """Create FastAPI test client with test database and processor double"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_processor_client] = lambda: processor
    payment_rate_limiter.reset()
    return TestClient(app)


@pytest.fixture
def seed_dues(db: Session) -> Callable[..., MemberDues]:
    """Factory for a dues balance with its eligibility, payout account and saved card"""

    def _seed(
        balance_cents: int = 75000,
        member_id: str = MEMBER_ID,
        chapter_id: str = CHAPTER_ID,
        due_date: Optional[date] = None,
        eligible: Optional[bool] = True,
        allowed_plan_sizes=(2, 3),
        method_ref: Optional[str] = CARD_METHOD_REF,
        method_type: str = "card",
        charges_enabled: bool = True,
    ) -> MemberDues:
        dues = MemberDues(
            member_id=member_id,
            chapter_id=chapter_id,
            total_cents=balance_cents,
            amount_paid_cents=0,
            balance_cents=balance_cents,
            due_date=due_date,
            status="pending",
        )
        db.add(dues)
        db.flush()

        if eligible is not None:
            db.add(
                InstallmentEligibility(
                    dues_id=dues.id,
                    chapter_id=chapter_id,
                    is_eligible=eligible,
                    allowed_plan_sizes=list(allowed_plan_sizes),
                )
            )

        if db.get(ConnectedPayoutAccount, chapter_id) is None:
            db.add(
                ConnectedPayoutAccount(
                    chapter_id=chapter_id,
                    external_account_ref=PAYOUT_ACCOUNT_REF,
                    charges_enabled=charges_enabled,
                )
            )

        if method_ref:
            existing = db.query(SavedPaymentMethod).filter(SavedPaymentMethod.external_method_ref == method_ref).first()
            if existing is None:
                db.add(
                    SavedPaymentMethod(
                        user_id=member_id,
                        external_method_ref=method_ref,
                        method_type=method_type,
                        last4="4242",
                    )
                )

        db.commit()
        return dues

    return _seed


@pytest.fixture
def member() -> Requester:
    return Requester(user_id=MEMBER_ID, role=Role.MEMBER)


@pytest.fixture
def other_member() -> Requester:
    return Requester(user_id=OTHER_MEMBER_ID, role=Role.MEMBER)


@pytest.fixture
def treasurer() -> Requester:
    return Requester(user_id="treasurer_1", role=Role.TREASURER, chapter_id=CHAPTER_ID)


@pytest.fixture
def clock() -> "FrozenClock":
    return FrozenClock(datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc))


class FrozenClock:
    """Settable stand-in for utcnow"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta) -> None:
        self.now = self.now + delta


def auth_headers(sub: str = MEMBER_ID, role: Role = Role.MEMBER, chapter_id: Optional[str] = None) -> dict:
    token = create_access_token(sub=sub, role=role, chapter_id=chapter_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def member_headers() -> dict:
    return auth_headers()


@pytest.fixture
def treasurer_headers() -> dict:
    return auth_headers("treasurer_1", Role.TREASURER, CHAPTER_ID)


@pytest.fixture
def admin_headers() -> dict:
    return auth_headers("admin_1", Role.ADMIN)


@pytest.fixture
def other_member_headers() -> dict:
    return auth_headers(OTHER_MEMBER_ID)
