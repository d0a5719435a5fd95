"""Processor client against the mock processor server over ASGI"""

import pytest
import httpx
from dues_gateway.domain.exceptions import ChargeDeclinedError
from dues_gateway.domain.models import ChargeRequest, PaymentMethodType
from dues_gateway.infrastructure.clients.processor import PaymentProcessorClient
from mock_services.processor_server.main import app


@pytest.fixture
def client() -> PaymentProcessorClient:
    return PaymentProcessorClient(
        base_url="http://processor.mock",
        api_key="sk_test",
        max_retries=0,
        transport=httpx.ASGITransport(app=app),
    )


def charge(method_ref: str, key: str, confirm: bool = False) -> ChargeRequest:
    return ChargeRequest(
        amount_cents=20000,
        payment_method_ref=method_ref,
        method_type=PaymentMethodType.BANK_ACCOUNT,
        idempotency_key=key,
        destination="acct_chapter_1",
        net_amount_cents=19640,
        confirm=confirm,
    )


async def test_first_charge_awaits_client_confirmation(client):
    result = await client.submit_charge(charge("pm_bank_1", "installment:mock-a:1"))

    assert result.status == "requires_confirmation"
    assert result.confirmation_handle == f"{result.charge_ref}_secret"


async def test_same_key_replays_same_charge(client):
    first = await client.submit_charge(charge("pm_bank_1", "installment:mock-b:1"))
    replay = await client.submit_charge(charge("pm_bank_1", "installment:mock-b:1"))
    retry = await client.submit_charge(charge("pm_bank_1", "installment:mock-b:1:attempt-2"))

    assert replay.charge_ref == first.charge_ref
    assert retry.charge_ref != first.charge_ref


async def test_off_session_charge(client):
    result = await client.submit_charge(charge("pm_card_instant", "installment:mock-c:2", confirm=True))
    assert result.status == "succeeded"


async def test_declined_method(client):
    with pytest.raises(ChargeDeclinedError) as exc_info:
        await client.submit_charge(charge("pm_insufficient_funds", "installment:mock-d:2", confirm=True))
    assert exc_info.value.code == "insufficient_funds"


async def test_decline_is_replayed_for_same_key(client):
    key = "installment:mock-e:2"
    with pytest.raises(ChargeDeclinedError):
        await client.submit_charge(charge("pm_card_declined", key, confirm=True))

    # The stored outcome wins even if the retried request body differs
    with pytest.raises(ChargeDeclinedError) as exc_info:
        await client.submit_charge(charge("pm_bank_1", key, confirm=True))
    assert exc_info.value.code == "card_declined"

    result = await client.submit_charge(charge("pm_bank_1", f"{key}:attempt-2", confirm=True))
    assert result.status == "processing"
