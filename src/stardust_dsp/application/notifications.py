"""Distributor-visible notifications and the critical error log."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from stardust_dsp.application.ports import DocumentStore, Filter
from stardust_dsp.utils.timestamps import utc_now_iso

LOGGER = logging.getLogger(__name__)

NOTIFICATIONS = "notifications"
CRITICAL_ERRORS = "criticalErrors"

CRITICAL_TYPES = frozenset({"processing_failed", "validation_failed", "validation_error", "parse_failed"})


@dataclass
class NotificationCenter:
    store: DocumentStore
    clock: Callable[[], str] = utc_now_iso

    def raise_notification(self, notification_type: str, data: dict[str, Any], key: str | None = None) -> str:
        """Store a notification; a ``key`` makes repeated raises overwrite instead of duplicate."""

        document = {"type": notification_type, **data, "createdAt": self.clock(), "read": False}
        if key is None:
            key = self.store.add(NOTIFICATIONS, document)
        else:
            self.store.set(NOTIFICATIONS, key, document)
        LOGGER.info(
            "notification_created",
            extra={
                "notification_id": key,
                "notification_type": notification_type,
                "distributor_id": data.get("distributorId"),
                "delivery_id": data.get("deliveryId"),
            },
        )
        if notification_type in CRITICAL_TYPES:
            self.store.set(
                CRITICAL_ERRORS,
                key,
                {
                    "deliveryId": data.get("deliveryId"),
                    "distributorId": data.get("distributorId"),
                    "error": data.get("error") or data.get("message"),
                    "type": notification_type,
                    "timestamp": self.clock(),
                    "resolved": False,
                },
            )
        return key

    def list_for_distributor(self, distributor_id: str, limit: int = 50) -> list[dict[str, Any]]:
        documents = self.store.query(
            NOTIFICATIONS,
            [Filter("distributorId", "==", distributor_id)],
            order_by="createdAt",
            descending=True,
            limit=limit,
        )
        return [{"id": item.key, **item.data} for item in documents]

    def mark_read(self, notification_id: str) -> None:
        self.store.update(NOTIFICATIONS, notification_id, {"read": True, "readAt": self.clock()})
