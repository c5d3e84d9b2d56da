"""Delivery record access shared by every ingestion stage."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from stardust_dsp.application.ports import DocumentStore, Filter, MessageQueue
from stardust_dsp.domain.jobs import ERROR_TOPIC, ErrorNotification
from stardust_dsp.domain.models import Delivery, Distributor, ProcessingStatus, ensure_transition
from stardust_dsp.errors import DocumentNotFoundError
from stardust_dsp.utils.timestamps import utc_now_iso

LOGGER = logging.getLogger(__name__)

DELIVERIES = "deliveries"
DISTRIBUTORS = "distributors"


@dataclass
class DeliveryRepository:
    """Reads deliveries and applies forward-only status changes."""

    store: DocumentStore
    clock: Callable[[], str] = utc_now_iso

    def find(self, delivery_id: str) -> Delivery | None:
        document = self.store.get(DELIVERIES, delivery_id)
        return Delivery.from_document(document) if document else None

    def get(self, delivery_id: str) -> Delivery:
        delivery = self.find(delivery_id)
        if delivery is None:
            raise DocumentNotFoundError(DELIVERIES, delivery_id)
        return delivery

    def create(self, delivery: Delivery) -> None:
        now = self.clock()
        delivery.created_at = delivery.created_at or now
        delivery.processing.timestamps.setdefault("received", now)
        self.store.set(DELIVERIES, delivery.id, delivery.to_document())

    def transition(self, delivery_id: str, target: ProcessingStatus, fields: dict[str, Any] | None = None) -> Delivery:
        """Move to ``target`` (raising ``StatusTransitionError`` for backward moves) and write ``fields``."""

        delivery = self.get(delivery_id)
        ensure_transition(delivery.status, target)
        updates: dict[str, Any] = {
            "processing.status": target.value,
            f"processing.timestamps.{target.value}": self.clock(),
        }
        updates.update(fields or {})
        self.store.update(DELIVERIES, delivery_id, updates)
        LOGGER.info(
            "delivery_status_changed",
            extra={"delivery_id": delivery_id, "from_status": delivery.status.value, "to_status": target.value},
        )
        return self.get(delivery_id)

    def fail(self, delivery_id: str, target: ProcessingStatus, error: str, detail: str | None = None) -> Delivery:
        return self.transition(
            delivery_id,
            target,
            {"processing.error": error, "processing.errorDetail": detail},
        )

    def update_fields(self, delivery_id: str, fields: dict[str, Any]) -> None:
        """Write fields that do not touch the status."""

        self.store.update(DELIVERIES, delivery_id, fields)

    def record_attempt(self, delivery_id: str, stage: str) -> int:
        delivery = self.get(delivery_id)
        attempts = delivery.processing.attempts.get(stage, 0) + 1
        self.store.update(DELIVERIES, delivery_id, {f"processing.attempts.{stage}": attempts})
        return attempts

    def reset_for_reprocess(self, delivery_id: str) -> Delivery:
        """The one backward move: any status back to ``pending`` on explicit request."""

        delivery = self.get(delivery_id)
        self.store.update(
            DELIVERIES,
            delivery_id,
            {
                "processing.status": ProcessingStatus.PENDING.value,
                "processing.error": None,
                "processing.errorDetail": None,
                "processing.attempts": {},
                "processing.reprocessCount": delivery.processing.reprocess_count + 1,
                "processing.timestamps.reprocessRequested": self.clock(),
                "acknowledgment": None,
            },
        )
        LOGGER.info(
            "delivery_reprocess_requested",
            extra={"delivery_id": delivery_id, "from_status": delivery.status.value},
        )
        return self.get(delivery_id)


@dataclass
class DistributorRegistry:
    store: DocumentStore
    auto_create: bool = True

    def get(self, distributor_id: str) -> Distributor | None:
        document = self.store.get(DISTRIBUTORS, distributor_id)
        return Distributor.from_document({"id": distributor_id, **document}) if document else None

    def verify(self, distributor_id: str) -> Distributor | None:
        """Known and active distributor, an auto-created one, or ``None`` when rejected."""

        distributor = self.get(distributor_id)
        if distributor is None:
            if not self.auto_create:
                LOGGER.warning("distributor_unknown", extra={"distributor_id": distributor_id})
                return None
            distributor = Distributor(id=distributor_id, name=distributor_id)
            document = distributor.to_document()
            document["createdAt"] = utc_now_iso()
            document["autoCreated"] = True
            self.store.set(DISTRIBUTORS, distributor_id, document)
            LOGGER.info("distributor_auto_created", extra={"distributor_id": distributor_id})
            return distributor
        if not distributor.active:
            LOGGER.warning("distributor_inactive", extra={"distributor_id": distributor_id})
            return None
        return distributor

    def active_with_auto_dsr(self) -> list[Distributor]:
        documents = self.store.query(
            DISTRIBUTORS,
            [Filter("active", "==", True), Filter("autoGenerateDSR", "==", True)],
        )
        return [Distributor.from_document({"id": item.key, **item.data}) for item in documents]


@dataclass
class ErrorReporter:
    """Publishes distributor-visible failures to the error topic."""

    queue: MessageQueue

    def report(self, notification: ErrorNotification) -> str:
        message_id = self.queue.publish(ERROR_TOPIC, notification.to_payload())
        LOGGER.warning(
            "error_notification_published",
            extra={
                "delivery_id": notification.delivery_id,
                "error_type": notification.error_type,
                "error_message": notification.message,
            },
        )
        return message_id
