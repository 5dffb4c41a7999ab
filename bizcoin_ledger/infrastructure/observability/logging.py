"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from bizcoin_ledger.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.utcnow().isoformat()
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


def log_transaction(
    student_id: str,
    classroom_id: str,
    transaction_type: str,
    amount: int,
    balance_after: int,
    transaction_id: int,
    request_id: Optional[str] = None,
) -> None:
    """Log structured ledger movement for audits"""
    logging.info(
        "Token transaction applied",
        extra={
            "request_id": request_id,
            "student_id": student_id,
            "classroom_id": classroom_id,
            "step": "transaction_applied",
            "transaction_type": transaction_type,
            "transaction_id": transaction_id,
            "amount": amount,
            "balance_after": balance_after,
        },
    )


def log_rejected_debit(student_id: str, classroom_id: str, transaction_type: str, balance: int, requested: int) -> None:
    logging.warning(
        "Debit rejected",
        extra={
            "student_id": student_id,
            "classroom_id": classroom_id,
            "step": "debit_rejected",
            "transaction_type": transaction_type,
            "balance": balance,
            "requested": requested,
        },
    )
