"""Validation stage: consult the validation service and route the delivery."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from stardust_dsp.application.deliveries import DeliveryRepository, ErrorReporter
from stardust_dsp.application.event_publisher import EventPublisher, NullEventPublisher
from stardust_dsp.application.outcome import StageOutcome
from stardust_dsp.application.ports import MessageQueue, ObjectStore, ValidationService
from stardust_dsp.domain.events import ErnRejected, ErnValidated, StageFailed
from stardust_dsp.domain.jobs import ErrorNotification, ProcessingJob, ValidationJob
from stardust_dsp.domain.models import ProcessingStatus
from stardust_dsp.ern_xml import ERN3_DEFAULT_PROFILE
from stardust_dsp.errors import ObjectStoreError, ValidationServiceError
from stardust_dsp.utils.timestamps import utc_now_iso

LOGGER = logging.getLogger(__name__)

_RUNNABLE = frozenset(
    {ProcessingStatus.PARSED, ProcessingStatus.VALIDATING, ProcessingStatus.VALIDATION_ERROR}
)


@dataclass
class ErnValidator:
    deliveries: DeliveryRepository
    objects: ObjectStore
    service: ValidationService
    queue: MessageQueue
    errors: ErrorReporter
    event_publisher: EventPublisher = NullEventPublisher()
    clock: Callable[[], str] = utc_now_iso

    def handle(self, payload: dict[str, Any]) -> StageOutcome:
        job = ValidationJob.from_payload(payload)
        delivery = self.deliveries.find(job.delivery_id)
        if delivery is None:
            return StageOutcome.terminal(job.delivery_id, "delivery record not found")
        if delivery.status not in _RUNNABLE:
            LOGGER.info("validation_skipped", extra={"delivery_id": job.delivery_id, "status": delivery.status.value})
            return StageOutcome.skipped(job.delivery_id, f"delivery already {delivery.status.value}")

        attempt = self.deliveries.record_attempt(job.delivery_id, "validation")
        self.deliveries.transition(job.delivery_id, ProcessingStatus.VALIDATING)
        profile = delivery.ern.profile or ERN3_DEFAULT_PROFILE

        try:
            content = self.objects.download(job.manifest_path).decode("utf-8-sig")
            report = self.service.validate(content, job.ern_data, job.ern_version, profile)
        except (ValidationServiceError, ObjectStoreError) as exc:
            LOGGER.warning(
                "validation_unavailable",
                extra={"delivery_id": job.delivery_id, "attempt": attempt, "error": str(exc)},
            )
            self.deliveries.fail(job.delivery_id, ProcessingStatus.VALIDATION_ERROR, str(exc))
            return StageOutcome.transient(job.delivery_id, str(exc), attempt=attempt)

        validation_fields = {
            "validation.valid": report.valid,
            "validation.errors": list(report.errors),
            "validation.warnings": list(report.warnings),
            "validation.validator": report.validator,
            "validation.profile": profile,
            "validation.validatedAt": self.clock(),
        }

        if not report.valid:
            message = f"ERN validation failed with {len(report.errors)} error(s)"
            validation_fields["processing.error"] = message
            self.deliveries.transition(job.delivery_id, ProcessingStatus.VALIDATION_FAILED, validation_fields)
            self.errors.report(
                ErrorNotification(
                    job.delivery_id,
                    "validation_failed",
                    message,
                    errors=list(report.errors),
                    warnings=list(report.warnings),
                )
            )
            self.event_publisher.publish(
                ErnRejected(
                    correlation_id=job.delivery_id,
                    payload_summary={"error_count": len(report.errors), "validator": report.validator},
                )
            )
            return StageOutcome.terminal(job.delivery_id, message, errors=list(report.errors))

        validation_fields["processing.error"] = None
        self.deliveries.transition(job.delivery_id, ProcessingStatus.VALIDATED, validation_fields)
        self.queue.publish(
            ProcessingJob.topic,
            ProcessingJob(
                delivery_id=job.delivery_id,
                release_data=job.ern_data,
                delivery_path=delivery.package.directory,
                ern_version=job.ern_version,
            ).to_payload(),
        )
        self.event_publisher.publish(
            ErnValidated(
                correlation_id=job.delivery_id,
                payload_summary={"validator": report.validator, "warning_count": len(report.warnings)},
            )
        )
        return StageOutcome.completed(job.delivery_id, warnings=list(report.warnings))

    def on_exhausted(self, payload: dict[str, Any], detail: str) -> None:
        """Leave the delivery in ``validation_error`` and tell the distributor."""

        delivery_id = payload["deliveryId"]
        message = f"Validation service unavailable: {detail}"
        self.deliveries.fail(delivery_id, ProcessingStatus.VALIDATION_ERROR, message)
        self.errors.report(ErrorNotification(delivery_id, "validation_error", message))
        self.event_publisher.publish(
            StageFailed(correlation_id=delivery_id, payload_summary={"stage": "validate", "error": detail})
        )
