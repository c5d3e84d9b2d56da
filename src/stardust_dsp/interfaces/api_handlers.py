"""API-facing handlers that delegate to application services."""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from stardust_dsp.application.notifications import NOTIFICATIONS
from stardust_dsp.errors import (
    DocumentNotFoundError,
    InvalidPeriodError,
    InvalidRequestError,
    PlayCompletedError,
    ReportDeliveryError,
    StatementLockedError,
)
from stardust_dsp.interfaces.cli_handlers import delivery_status, outcome_to_dict
from stardust_dsp.interfaces.runtime import Runtime
from stardust_dsp.utils.config import load_app_config


@lru_cache(maxsize=1)
def get_runtime() -> Runtime:
    """Process-wide runtime built from ``$STARDUST_CONFIG`` or defaults."""

    return Runtime.from_config(load_app_config())


def error_response(error: Exception) -> tuple[int, dict[str, str]]:
    """HTTP status and ``{"code", "message"}`` detail for a domain error."""

    if isinstance(error, DocumentNotFoundError):
        return 404, {"code": "not_found", "message": str(error)}
    if isinstance(error, InvalidRequestError):
        return 400, error.as_dict()
    if isinstance(error, InvalidPeriodError):
        return 400, {"code": "invalid_period", "message": str(error)}
    if isinstance(error, PlayCompletedError):
        return 409, {"code": "play_completed", "message": str(error)}
    if isinstance(error, StatementLockedError):
        return 409, {"code": "statement_locked", "message": str(error)}
    if isinstance(error, ReportDeliveryError):
        return 502, {"code": "delivery_failed", "message": str(error)}
    return 500, {"code": "internal_error", "message": str(error)}


def acknowledgment_document(runtime: Runtime, delivery_id: str) -> str:
    """The DDEX acknowledgment XML sent for a completed delivery."""

    delivery = runtime.deliveries.get(delivery_id)
    if not delivery.acknowledgment:
        raise DocumentNotFoundError("acknowledgments", delivery_id)
    document = runtime.store.get(NOTIFICATIONS, delivery.acknowledgment["documentId"])
    if document is None or not document.get("content"):
        raise DocumentNotFoundError(NOTIFICATIONS, delivery.acknowledgment["documentId"])
    return document["content"]


def receive_object(
    runtime: Runtime,
    bucket: str,
    name: str,
    size: int | None = None,
    content_type: str | None = None,
) -> dict[str, Any]:
    return outcome_to_dict(runtime.receiver.handle_object(bucket, name, size=size, content_type=content_type))


def request_reprocess(runtime: Runtime, delivery_id: str) -> dict[str, Any]:
    return outcome_to_dict(runtime.receiver.reprocess(delivery_id))


__all__ = [
    "acknowledgment_document",
    "delivery_status",
    "error_response",
    "get_runtime",
    "receive_object",
    "request_reprocess",
]
