"""Acknowledgment stage and the error-notification consumer."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from stardust_dsp.application.deliveries import DeliveryRepository, DistributorRegistry
from stardust_dsp.application.event_publisher import EventPublisher, NullEventPublisher
from stardust_dsp.application.notifications import NotificationCenter
from stardust_dsp.application.outcome import StageOutcome
from stardust_dsp.ddex_documents import (
    PartyBlock,
    acknowledgment_message_id,
    render_acknowledgment,
    render_error_acknowledgment,
)
from stardust_dsp.domain.events import DeliveryAcknowledged
from stardust_dsp.domain.jobs import AcknowledgmentJob
from stardust_dsp.domain.models import Delivery, ProcessingStatus
from stardust_dsp.utils.timestamps import utc_now

LOGGER = logging.getLogger(__name__)


def _timestamp_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


@dataclass
class _PartyResolver:
    distributors: DistributorRegistry
    platform_party_id: str
    platform_party_name: str

    def platform(self) -> PartyBlock:
        return PartyBlock(self.platform_party_id, self.platform_party_name)

    def recipient(self, delivery: Delivery) -> PartyBlock:
        party_id = delivery.ern.sender.get("partyId") or delivery.sender
        name = delivery.ern.sender.get("partyName")
        if not name:
            distributor = self.distributors.get(delivery.sender)
            name = distributor.name if distributor else delivery.sender
        return PartyBlock(party_id, name)


@dataclass
class AcknowledgmentNotifier:
    deliveries: DeliveryRepository
    distributors: DistributorRegistry
    notifications: NotificationCenter
    platform_party_id: str
    platform_party_name: str
    event_publisher: EventPublisher = NullEventPublisher()
    clock: Callable[[], datetime] = utc_now

    def handle(self, payload: dict[str, Any]) -> StageOutcome:
        job = AcknowledgmentJob.from_payload(payload)
        delivery = self.deliveries.find(job.delivery_id)
        if delivery is None:
            return StageOutcome.terminal(job.delivery_id, "delivery record not found")
        if delivery.status is not ProcessingStatus.COMPLETED:
            return StageOutcome.skipped(job.delivery_id, f"delivery is {delivery.status.value}")
        if delivery.acknowledgment:
            return StageOutcome.skipped(job.delivery_id, "acknowledgment already sent")

        parties = _PartyResolver(self.distributors, self.platform_party_id, self.platform_party_name)
        now = self.clock()
        message_id = acknowledgment_message_id(delivery.ern.message_id, _timestamp_ms(now))
        content = render_acknowledgment(
            message_id=message_id,
            created_at=now.isoformat(),
            sender=parties.platform(),
            recipient=parties.recipient(delivery),
            releases=job.releases,
        )
        document_id = self.notifications.raise_notification(
            "acknowledgment",
            {
                "distributorId": delivery.sender,
                "deliveryId": delivery.id,
                "messageId": message_id,
                "originalMessageId": delivery.ern.message_id,
                "content": content,
                "releases": list(job.releases),
                "message": f"Delivery {delivery.id} processed: {len(job.releases)} release(s)",
            },
            key=f"ACK_{delivery.id}",
        )
        self.deliveries.update_fields(
            delivery.id,
            {"acknowledgment": {"messageId": message_id, "documentId": document_id, "sentAt": now.isoformat()}},
        )
        self.event_publisher.publish(
            DeliveryAcknowledged(
                correlation_id=delivery.id,
                payload_summary={"message_id": message_id, "release_count": len(job.releases)},
            )
        )
        return StageOutcome.completed(delivery.id, message_id=message_id, document_id=document_id)

    def on_exhausted(self, payload: dict[str, Any], detail: str) -> None:
        LOGGER.error("acknowledgment_abandoned", extra={"delivery_id": payload.get("deliveryId"), "error": detail})


@dataclass
class ErrorNotificationHandler:
    """Turns error-topic messages into a notification with an error acknowledgment attached."""

    deliveries: DeliveryRepository
    distributors: DistributorRegistry
    notifications: NotificationCenter
    platform_party_id: str
    platform_party_name: str
    clock: Callable[[], datetime] = utc_now

    def handle(self, payload: dict[str, Any]) -> StageOutcome:
        delivery_id = payload["deliveryId"]
        error_type = payload.get("type") or "failed"
        message = payload.get("message") or "Unknown error occurred"
        errors = list(payload.get("errors") or [])

        delivery = self.deliveries.find(delivery_id)
        data: dict[str, Any] = {
            "deliveryId": delivery_id,
            "distributorId": delivery.sender if delivery else None,
            "message": message,
            "error": message,
            "errors": errors,
            "warnings": list(payload.get("warnings") or []),
        }
        reprocess_count = 0
        if delivery is not None:
            reprocess_count = delivery.processing.reprocess_count
            parties = _PartyResolver(self.distributors, self.platform_party_id, self.platform_party_name)
            now = self.clock()
            message_id = acknowledgment_message_id(delivery.ern.message_id, _timestamp_ms(now), error=True)
            data["acknowledgment"] = {
                "messageId": message_id,
                "content": render_error_acknowledgment(
                    message_id=message_id,
                    created_at=now.isoformat(),
                    sender=parties.platform(),
                    recipient=parties.recipient(delivery),
                    error_message=message,
                    error_code=error_type.upper(),
                    errors=errors,
                ),
            }

        key = f"ERR_{delivery_id}_{error_type}_{reprocess_count}"
        self.notifications.raise_notification(error_type, data, key=key)
        return StageOutcome.completed(delivery_id, notification_id=key)

    def on_exhausted(self, payload: dict[str, Any], detail: str) -> None:
        LOGGER.error("error_notification_dropped", extra={"delivery_id": payload.get("deliveryId"), "error": detail})
