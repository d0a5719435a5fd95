"""Background worker: periodically charges due installments"""

import asyncio
import logging
import time
from typing import Optional

from dues_gateway.config import settings
from dues_gateway.domain.models import SweepSummary
from dues_gateway.infrastructure.clients.processor import PaymentProcessorClient
from dues_gateway.infrastructure.database.session import SessionLocal
from dues_gateway.infrastructure.observability.logging import setup_logging
from dues_gateway.services.payments import PaymentStateMachine

logger = logging.getLogger(__name__)


async def run_sweep_once(processor: Optional[PaymentProcessorClient] = None) -> SweepSummary:
    """Run a single sweep in its own session"""
    processor = processor or PaymentProcessorClient()
    with SessionLocal() as db:
        return await PaymentStateMachine(db, processor).process_due_payments()


async def run_loop(interval_seconds: Optional[int] = None) -> None:
    interval = interval_seconds or settings.sweep_interval_seconds
    processor = PaymentProcessorClient()
    logger.info("Installment worker started", extra={"interval_seconds": interval})

    while True:
        started = time.time()
        try:
            await run_sweep_once(processor)
        except Exception as e:
            # a broken sweep must not stop the next one
            logger.exception(f"Installment sweep failed: {e}")

        elapsed = time.time() - started
        await asyncio.sleep(max(1, interval - int(elapsed)))


def main() -> None:
    setup_logging(settings.log_level)
    try:
        asyncio.run(run_loop())
    except KeyboardInterrupt:
        logger.info("Installment worker stopped")


if __name__ == "__main__":
    main()
