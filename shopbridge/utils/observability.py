"""
Structured Logging & Observability
Production-grade logging that's both human-readable and machine-parseable.
"""
import sys
from loguru import logger
from typing import Any
from shopbridge.config import get_settings


def configure_logging():
    """
    Configure loguru for production observability.

    In development: Human-readable colorized output
    In production: Structured JSON logs for ingestion (ELK, Datadog, etc.)
    """
    settings = get_settings()

    # Remove default handler
    logger.remove()

    if not settings.enable_structured_logging:
        logger.add(
            sys.stderr,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "{message}"
            ),
            level=settings.log_level,
            colorize=True,
        )
    else:
        logger.add(
            sys.stderr,
            format="{message}",
            level=settings.log_level,
            serialize=True,  # Output as JSON
        )

    logger.info(f"Logging configured: level={settings.log_level}, structured={settings.enable_structured_logging}")


def log_delivery_attempt(
    message_id: str,
    kind: str,
    outcome: str,
    attempts: int,
    duration_ms: float | None = None,
    error: str | None = None,
):
    """
    Structured logging for a single delivery attempt.

    Args:
        message_id: Queue row being delivered
        kind: Message kind (order, auto_dm, ...)
        outcome: "sent", "retry" or "failed"
        attempts: Attempt count after this try
        duration_ms: Platform call latency
        error: Error text for unsuccessful attempts
    """
    log_data = {
        "event_type": "delivery_attempt",
        "message_id": message_id,
        "kind": kind,
        "outcome": outcome,
        "attempts": attempts,
    }

    if duration_ms is not None:
        log_data["duration_ms"] = round(duration_ms, 2)
    if error:
        log_data["error"] = error

    level = "INFO" if outcome == "sent" else "WARNING"
    logger.bind(**log_data).log(level, f"Delivery {outcome}: {kind} {message_id} (attempt {attempts})")


def log_business_event(
    event_type: str,
    subject_id: str,
    **details: Any
):
    """
    Log business-critical events for audit and analytics.

    Examples:
        - Order recorded from a webhook or reconciliation sync
        - Welcome DM scheduled or skipped by the compliance gate
        - Webhook rejected

    Args:
        event_type: Type of event (e.g., "order_recorded", "webhook_rejected")
        subject_id: Order id, member id or message id the event concerns
        **details: Event-specific data
    """
    log_data = {
        "event_type": event_type,
        "subject_id": subject_id,
        **details
    }

    logger.bind(**log_data).success(f"Business Event: {event_type}")
