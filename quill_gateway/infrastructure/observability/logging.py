"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from quill_gateway.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


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


def log_generation(
    request_id: str,
    user_id: str,
    transaction_id: str,
    credits_used: int,
    section_count: int,
    refinement_cycles: int,
    quality_score: int,
    requires_review: bool,
    duration_ms: float,
) -> None:
    """Log structured generation outcome for analysis"""
    logging.info(
        "Generation completed",
        extra={
            "request_id": request_id,
            "user_id": user_id,
            "transaction_id": transaction_id,
            "step": "generation_complete",
            "credits_used": credits_used,
            "section_count": section_count,
            "refinement_cycles": refinement_cycles,
            "quality_score": quality_score,
            "requires_review": requires_review,
            "duration_ms": duration_ms,
        },
    )


def log_reconciliation_debt(
    user_id: str,
    transaction_id: str,
    credits: int,
    words: int,
    reason: str,
) -> None:
    """
    Record credits that were reserved but could not be restored.

    Operators settle these by hand; the log line carries everything needed
    to replay the compensation.
    """
    logging.error(
        "Reconciliation debt: compensation failed",
        extra={
            "user_id": user_id,
            "transaction_id": transaction_id,
            "step": "reconciliation_debt",
            "credits_to_restore": credits,
            "words_to_restore": words,
            "reason": reason,
        },
    )
