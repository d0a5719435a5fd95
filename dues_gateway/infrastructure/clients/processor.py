"""Payment processor HTTP client with idempotent charge submission and retry logic"""

import asyncio
import hashlib
import hmac
import logging
from typing import Any, Dict

import httpx

from dues_gateway.config import settings
from dues_gateway.domain.exceptions import AuthenticationError, ChargeDeclinedError, GatewayError
from dues_gateway.domain.models import ChargeRequest, ChargeResult
from dues_gateway.infrastructure.observability.metrics import (
    processor_failure_counter,
    processor_latency_histogram,
)

logger = logging.getLogger(__name__)


class PaymentProcessorClient:
    """Client for the external payment processor's charge API"""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.processor_api_base
        self.api_key = api_key or settings.processor_api_key
        self.timeout = timeout or settings.processor_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.processor_max_retries
        self.backoff_base = backoff_base if backoff_base is not None else settings.processor_backoff_base
        self.transport = transport

    def _payload(self, request: ChargeRequest) -> Dict[str, Any]:
        return {
            "amount_cents": request.amount_cents,
            "currency": settings.currency,
            "payment_method": request.payment_method_ref,
            "payment_method_type": request.method_type.value,
            "confirm": request.confirm,
            "off_session": request.confirm,
            "transfer": {
                "destination": request.destination,
                "amount_cents": request.net_amount_cents,
            },
            "metadata": request.metadata or {},
        }

    async def submit_charge(self, request: ChargeRequest) -> ChargeResult:
        """
        Submit a charge under an idempotency key.

        Retry strategy:
        - Exponential backoff: base, 2*base, 4*base, ... (base^attempt)
        - Retries on 5xx errors and network failures only; the idempotency
          key makes a replayed submission collapse onto the first one
        - 402 means the processor declined the charge and is never retried

        Raises:
            ChargeDeclinedError: Processor declined the charge
            GatewayError: On timeout, HTTP errors, or invalid response
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Idempotency-Key": request.idempotency_key,
        }
        payload = self._payload(request)

        attempt = 0
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            while True:
                try:
                    with processor_latency_histogram.time():
                        response = await client.post(
                            f"{self.base_url}/v1/charges",
                            json=payload,
                            headers=headers,
                        )
                    if response.status_code == 402:
                        body = _safe_json(response)
                        raise ChargeDeclinedError(
                            body.get("message", "Charge declined"),
                            code=body.get("code", "declined"),
                        )
                    response.raise_for_status()
                    data = response.json()

                    return ChargeResult(
                        charge_ref=data["id"],
                        confirmation_handle=data.get("client_secret"),
                        status=data.get("status", "processing"),
                    )

                except ChargeDeclinedError:
                    raise

                except httpx.HTTPStatusError as e:
                    processor_failure_counter.inc()
                    if e.response.status_code < 500:
                        raise GatewayError(f"Processor rejected request: {e.response.status_code}") from e
                    attempt += 1
                    if attempt > self.max_retries:
                        raise GatewayError(f"Processor error: {e.response.status_code}") from e

                except httpx.TimeoutException as e:
                    processor_failure_counter.inc()
                    attempt += 1
                    if attempt > self.max_retries:
                        raise GatewayError(f"Processor timeout after {self.timeout}s") from e

                except httpx.RequestError as e:
                    processor_failure_counter.inc()
                    attempt += 1
                    if attempt > self.max_retries:
                        raise GatewayError(f"Processor unreachable: {e}") from e

                except (KeyError, ValueError, TypeError) as e:
                    processor_failure_counter.inc()
                    raise GatewayError(f"Invalid charge response from processor: {e}") from e

                backoff = self.backoff_base * (2 ** (attempt - 1))
                logger.warning(
                    "Retrying charge submission",
                    extra={"idempotency_key": request.idempotency_key, "attempt": attempt, "backoff_s": backoff},
                )
                await asyncio.sleep(backoff)


def _safe_json(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


SIGNATURE_PREFIX = "sha256="


def sign_webhook_payload(payload: bytes, secret: str | None = None) -> str:
    """Signature header value the processor sends with a webhook body"""
    secret = secret if secret is not None else settings.processor_webhook_secret
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_webhook_signature(payload: bytes, signature: str | None, secret: str | None = None) -> None:
    """
    Check the X-Processor-Signature header against the raw request body.

    Raises:
        AuthenticationError: Missing or mismatched signature
    """
    if not signature:
        raise AuthenticationError("Missing webhook signature")
    expected = sign_webhook_payload(payload, secret)
    if not hmac.compare_digest(expected, signature.strip()):
        raise AuthenticationError("Invalid webhook signature")
