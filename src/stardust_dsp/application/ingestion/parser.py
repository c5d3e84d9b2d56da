"""Parse stage: manifest bytes become a release graph and a validation job."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from stardust_dsp.application.deliveries import DeliveryRepository, ErrorReporter
from stardust_dsp.application.event_publisher import EventPublisher, NullEventPublisher
from stardust_dsp.application.outcome import StageOutcome
from stardust_dsp.application.ports import MessageQueue, ObjectStore
from stardust_dsp.domain.events import ErnParsed, StageFailed
from stardust_dsp.domain.jobs import ErrorNotification, ParseJob, ValidationJob
from stardust_dsp.domain.models import ProcessingStatus
from stardust_dsp.ern_xml import parse_ern
from stardust_dsp.errors import ErnParseError, ObjectStoreError

LOGGER = logging.getLogger(__name__)

_RUNNABLE = frozenset({ProcessingStatus.PENDING, ProcessingStatus.PARSING})


@dataclass
class ErnParser:
    deliveries: DeliveryRepository
    objects: ObjectStore
    queue: MessageQueue
    errors: ErrorReporter
    event_publisher: EventPublisher = NullEventPublisher()

    def handle(self, payload: dict[str, Any]) -> StageOutcome:
        job = ParseJob.from_payload(payload)
        delivery = self.deliveries.find(job.delivery_id)
        if delivery is None:
            return StageOutcome.terminal(job.delivery_id, "delivery record not found")
        if delivery.status not in _RUNNABLE:
            LOGGER.info("parse_skipped", extra={"delivery_id": job.delivery_id, "status": delivery.status.value})
            return StageOutcome.skipped(job.delivery_id, f"delivery already {delivery.status.value}")

        self.deliveries.transition(job.delivery_id, ProcessingStatus.PARSING)
        try:
            content = self.objects.download(job.manifest_path)
            parsed = parse_ern(content)
        except (ErnParseError, ObjectStoreError) as exc:
            return self._fail(job.delivery_id, str(exc))

        graph = parsed.graph
        self.deliveries.transition(
            job.delivery_id,
            ProcessingStatus.PARSED,
            {
                "ern.version": parsed.version,
                "ern.profile": parsed.profile,
                "ern.messageId": graph.header.message_id,
                "ern.sender": {
                    "partyId": graph.header.sender.party_id,
                    "partyName": graph.header.sender.name,
                },
                "ern.messageType": parsed.message_type,
                "ern.releaseCount": len(graph.releases),
            },
        )
        self.queue.publish(
            ValidationJob.topic,
            ValidationJob(
                delivery_id=job.delivery_id,
                ern_data=graph.model_dump(mode="json"),
                ern_version=parsed.version,
                manifest_path=job.manifest_path,
            ).to_payload(),
        )
        self.event_publisher.publish(
            ErnParsed(
                correlation_id=job.delivery_id,
                payload_summary={
                    "ern_version": parsed.version,
                    "profile": parsed.profile,
                    "message_type": parsed.message_type,
                    "release_count": len(graph.releases),
                },
            )
        )
        return StageOutcome.completed(job.delivery_id, ern_version=parsed.version, releases=len(graph.releases))

    def on_exhausted(self, payload: dict[str, Any], detail: str) -> None:
        self._fail(payload["deliveryId"], f"parse gave up after repeated failures: {detail}")

    def _fail(self, delivery_id: str, message: str) -> StageOutcome:
        LOGGER.error("parse_failed", extra={"delivery_id": delivery_id, "error": message})
        self.deliveries.fail(delivery_id, ProcessingStatus.PARSE_FAILED, message)
        self.errors.report(ErrorNotification(delivery_id, "parse_failed", message))
        self.event_publisher.publish(
            StageFailed(correlation_id=delivery_id, payload_summary={"stage": "parse", "error": message})
        )
        return StageOutcome.terminal(delivery_id, message)
