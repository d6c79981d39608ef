"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from pythonjsonlogger import jsonlogger

from revenue_attestor.config import settings


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
    formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_fetch(
    provider: str,
    records: int,
    pages: int,
    partial: bool,
    skipped: int,
    duration_ms: float,
) -> None:
    """Log structured fetch + normalization outcome for one provider"""
    logging.getLogger("revenue_attestor.fetch").info(
        "Provider feed collected",
        extra={
            "provider": provider,
            "step": "fetch_complete",
            "records": records,
            "pages": pages,
            "partial": partial,
            "skipped": skipped,
            "duration_ms": duration_ms,
        },
    )


def log_attestation(
    request_id: str,
    merchant_id: str,
    attestation_hash: str,
    net_sales: str,
    currency: str,
    duration_ms: float,
) -> None:
    """Log structured attestation outcome for audit"""
    logging.getLogger("revenue_attestor.attestation").info(
        "Attestation built",
        extra={
            "request_id": request_id,
            "merchant_id": merchant_id,
            "step": "attestation_complete",
            "hash": attestation_hash,
            "net_sales": net_sales,
            "currency": currency,
            "duration_ms": duration_ms,
        },
    )
