"""Delivery intake: a landed manifest becomes a Delivery record and a parse job."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from stardust_dsp.application.deliveries import DeliveryRepository, DistributorRegistry, ErrorReporter
from stardust_dsp.application.event_publisher import EventPublisher, NullEventPublisher
from stardust_dsp.application.notifications import NotificationCenter
from stardust_dsp.application.outcome import StageOutcome
from stardust_dsp.application.ports import MessageQueue
from stardust_dsp.domain.events import DeliveryReceived, StageFailed
from stardust_dsp.domain.jobs import ErrorNotification, ParseJob
from stardust_dsp.domain.models import Delivery, PackageInfo, ProcessingStatus

LOGGER = logging.getLogger(__name__)

MANIFEST_PATH = re.compile(r"^deliveries/([^/]+)/([^/]+)/manifest\.xml$")


def delivery_id_for(distributor_id: str, timestamp_token: str) -> str:
    return f"{distributor_id}_{timestamp_token}"


@dataclass
class DeliveryReceiver:
    deliveries: DeliveryRepository
    distributors: DistributorRegistry
    queue: MessageQueue
    errors: ErrorReporter
    notifications: NotificationCenter
    event_publisher: EventPublisher = NullEventPublisher()

    def handle_object(
        self,
        bucket: str,
        path: str,
        size: int | None = None,
        content_type: str | None = None,
    ) -> StageOutcome:
        """React to an object-finalize notification for ``bucket``/``path``."""

        match = MANIFEST_PATH.match(path)
        if not match:
            LOGGER.debug("object_ignored", extra={"bucket": bucket, "path": path})
            return StageOutcome.skipped(None, f"not a delivery manifest: {path}")

        distributor_id, timestamp_token = match.groups()
        delivery_id = delivery_id_for(distributor_id, timestamp_token)

        if self.deliveries.find(delivery_id) is not None:
            return StageOutcome.skipped(delivery_id, "delivery already recorded")

        distributor = self.distributors.verify(distributor_id)
        if distributor is None:
            return StageOutcome.terminal(delivery_id, f"distributor {distributor_id} is not accepted")

        delivery = Delivery(
            id=delivery_id,
            sender=distributor_id,
            package=PackageInfo(
                bucket=bucket,
                path=path,
                directory=path.rsplit("/", 1)[0],
                size=size,
                content_type=content_type,
            ),
        )
        self.deliveries.create(delivery)

        try:
            if distributor.auto_process:
                self.queue.publish(ParseJob.topic, ParseJob(delivery_id, path, bucket).to_payload())
            if distributor.send_acknowledgments:
                self.notifications.raise_notification(
                    "delivery_received",
                    {
                        "distributorId": distributor_id,
                        "deliveryId": delivery_id,
                        "message": f"New delivery received: {delivery_id}",
                    },
                    key=f"RECEIVED_{delivery_id}",
                )
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("delivery_intake_failed", extra={"delivery_id": delivery_id})
            self.deliveries.fail(delivery_id, ProcessingStatus.FAILED, str(exc))
            self.errors.report(ErrorNotification(delivery_id, "delivery_failed", str(exc)))
            self.event_publisher.publish(
                StageFailed(correlation_id=delivery_id, payload_summary={"stage": "receive", "error": str(exc)})
            )
            return StageOutcome.terminal(delivery_id, str(exc))

        self.event_publisher.publish(
            DeliveryReceived(
                correlation_id=delivery_id,
                payload_summary={
                    "distributor_id": distributor_id,
                    "manifest_path": path,
                    "auto_process": distributor.auto_process,
                },
            )
        )
        return StageOutcome.completed(delivery_id, manifest_path=path, queued=distributor.auto_process)

    def reprocess(self, delivery_id: str) -> StageOutcome:
        """Send a delivery back through parsing from the start."""

        delivery = self.deliveries.reset_for_reprocess(delivery_id)
        self.queue.publish(
            ParseJob.topic,
            ParseJob(delivery_id, delivery.package.path, delivery.package.bucket).to_payload(),
        )
        LOGGER.info(
            "delivery_requeued",
            extra={"delivery_id": delivery_id, "reprocess_count": delivery.processing.reprocess_count},
        )
        return StageOutcome.completed(delivery_id, reprocessCount=delivery.processing.reprocess_count)
