"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = "dues-gateway"


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Reduce noise from HTTP client internals
    logging.getLogger("httpx").setLevel(logging.WARNING)


def log_plan_created(
    request_id: str,
    plan_id: str,
    member_id: str,
    total_cents: int,
    num_installments: int,
    duration_ms: float,
) -> None:
    """Log structured plan creation outcome for analysis"""
    logging.info(
        "Installment plan created",
        extra={
            "request_id": request_id,
            "plan_id": plan_id,
            "member_id": member_id,
            "step": "plan_created",
            "total_cents": total_cents,
            "num_installments": num_installments,
            "duration_ms": duration_ms,
        },
    )


def log_charge_submitted(
    plan_id: str,
    payment_id: str,
    installment_number: int,
    charge_ref: str,
    total_charge_cents: int,
    method_type: str,
) -> None:
    """Log a charge accepted by the processor"""
    logging.info(
        "Installment charge submitted",
        extra={
            "plan_id": plan_id,
            "payment_id": payment_id,
            "installment_number": installment_number,
            "charge_ref": charge_ref,
            "total_charge_cents": total_charge_cents,
            "payment_method_type": method_type,
            "step": "charge_submitted",
        },
    )


def log_confirmation(charge_ref: str, outcome: str, applied: bool, reason: str | None = None) -> None:
    """Log processor confirmation handling (including duplicates)"""
    logging.info(
        "Charge confirmation received",
        extra={
            "charge_ref": charge_ref,
            "outcome": outcome,
            "applied": applied,
            "reason": reason,
            "step": "confirmation",
        },
    )


def log_sweep_completed(processed: int, submitted: int, failed: int, skipped: int, errors: int, duration_ms: float) -> None:
    logging.info(
        "Installment sweep completed",
        extra={
            "processed": processed,
            "submitted": submitted,
            "failed": failed,
            "skipped": skipped,
            "errors": errors,
            "duration_ms": duration_ms,
            "step": "sweep_complete",
        },
    )
