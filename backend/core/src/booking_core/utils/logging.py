"""Logging for the booking engine.

Every record carries a correlation ID taken from a ContextVar. The API
middleware sets it per request (echoing X-Correlation-ID) and the hold
sweeper sets one per sweep, so one request or sweep can be followed across
the locker, reconciler and ledger.

Modules get their logger through get_logger(__name__). Processes install
the formatter once with configure_logging().
"""

import logging
import uuid
from contextvars import ContextVar
from typing import Any

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

NO_CORRELATION_ID = "no-correlation-id"
DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Bind a correlation ID to the current context, minting one if needed."""
    cid = correlation_id or str(uuid.uuid4())
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def clear_correlation_id() -> None:
    _correlation_id.set(None)


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        return True


class StructuredFormatter(logging.Formatter):
    """Prefixes each line with ``[correlation_id]``."""

    def format(self, record: logging.LogRecord) -> str:
        cid = getattr(record, "correlation_id", None) or get_correlation_id()
        record.correlation_id = cid or NO_CORRELATION_ID
        return f"[{record.correlation_id}] {super().format(record)}"


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if not any(isinstance(f, CorrelationIdFilter) for f in logger.filters):
        logger.addFilter(CorrelationIdFilter())
    return logger


def configure_logging(level: int | str = logging.INFO) -> None:
    """Install the structured formatter on the root logger.

    Calling it again only updates the level.
    """
    root = logging.getLogger()
    root.setLevel(level)

    if any(isinstance(h.formatter, StructuredFormatter) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter(DEFAULT_FORMAT))
    handler.addFilter(CorrelationIdFilter())
    root.addHandler(handler)


def _render(prefix: str, context: dict[str, Any], skip: set[str]) -> str:
    parts = [prefix]
    parts.extend(f"{key}={value}" for key, value in context.items() if key not in skip)
    return " | ".join(parts)


def _present(**fields: Any) -> dict[str, Any]:
    """Drop fields that were not supplied (None or empty string)."""
    return {key: value for key, value in fields.items() if value is not None and value != ""}


def log_payment_operation(
    logger: logging.Logger,
    operation: str,
    *,
    payment_id: str | None = None,
    booking_id: str | None = None,
    amount_cents: int | None = None,
    status: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log one step of a payment or refund.

    Logged at ERROR when ``error`` is given, INFO otherwise. Keyword
    context goes both into the message and onto the record as ``extra``.
    """
    context = {
        "operation": operation,
        **_present(
            payment_id=payment_id,
            booking_id=booking_id,
            amount_cents=amount_cents,
            status=status,
            error=error,
        ),
        **extra,
    }
    message = _render(f"Payment operation: {operation}", context, {"operation"})
    logger.log(logging.ERROR if error else logging.INFO, message, extra=context)


# Webhook results that are expected noise rather than progress
_QUIET_WEBHOOK_RESULTS = {"duplicate", "skipped"}


def log_webhook_event(
    logger: logging.Logger,
    event_type: str,
    event_id: str,
    *,
    booking_id: str | None = None,
    payment_id: str | None = None,
    result: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log the outcome of a Stripe webhook delivery.

    ``result`` is one of success, duplicate, skipped or error and picks the
    level: error -> ERROR, duplicate/skipped -> WARNING, else INFO.
    """
    context = {
        "event_type": event_type,
        "event_id": event_id,
        **_present(booking_id=booking_id, payment_id=payment_id, result=result, error=error),
        **extra,
    }
    message = _render(
        f"Webhook event: {event_type} ({event_id})",
        _present(result=result, booking=booking_id, error=error),
        set(),
    )

    if result == "error":
        level = logging.ERROR
    elif result in _QUIET_WEBHOOK_RESULTS:
        level = logging.WARNING
    else:
        level = logging.INFO
    logger.log(level, message, extra=context)


def log_booking_transition(
    logger: logging.Logger,
    booking_id: str,
    from_status: str | None,
    to_status: str,
    **extra: Any,
) -> None:
    """Log a status change; ``from_status`` is None for a new hold."""
    context: dict[str, Any] = {
        "booking_id": booking_id,
        "from_status": from_status or "-",
        "to_status": to_status,
        **extra,
    }
    message = _render(
        f"Booking transition: {context['from_status']} -> {to_status}",
        context,
        {"from_status", "to_status"},
    )
    logger.info(message, extra=context)
