"""Report delivery over the configured transports, with a scheduled retry sweep."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from stardust_dsp.application.deliveries import DISTRIBUTORS, DistributorRegistry
from stardust_dsp.application.event_publisher import EventPublisher, NullEventPublisher
from stardust_dsp.application.ports import DocumentStore, Filter, Increment, ObjectStore, ReportArtifact, ReportTransport
from stardust_dsp.application.reporting.reports import REPORTS
from stardust_dsp.domain.events import ReportDelivered, ReportDeliveryFailed
from stardust_dsp.domain.policies import DEFAULT_RETRY_POLICY, RetryPolicy
from stardust_dsp.errors import (
    DocumentNotFoundError,
    InvalidRequestError,
    ObjectStoreError,
    ReportDeliveryError,
)
from stardust_dsp.utils.timestamps import utc_now

LOGGER = logging.getLogger(__name__)

REPORT_DELIVERIES = "report_deliveries"

_DISPATCH_ERRORS = (ReportDeliveryError, InvalidRequestError, DocumentNotFoundError)


@dataclass
class ReportDispatcher:
    store: DocumentStore
    objects: ObjectStore
    distributors: DistributorRegistry
    transports: dict[str, ReportTransport]
    download_url_ttl_days: int = 7
    retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY
    pending_batch_limit: int = 50
    retry_batch_limit: int = 20
    event_publisher: EventPublisher = NullEventPublisher()
    clock: Callable[[], datetime] = utc_now
    sleep: Callable[[float], None] = time.sleep

    def send_report(
        self,
        report_id: str,
        distributor_id: str | None = None,
        method: str | None = None,
        delivered_by: str = "system",
    ) -> dict[str, Any]:
        """Deliver one stored report; transport failures are recorded and re-raised."""

        report = self.store.get(REPORTS, report_id)
        if report is None:
            raise DocumentNotFoundError(REPORTS, report_id)
        distributor_id = distributor_id or report.get("distributorId")
        if not distributor_id:
            raise InvalidRequestError("missing_distributor", f"Report {report_id} has no distributor")
        distributor = self.distributors.get(distributor_id)
        if distributor is None:
            raise DocumentNotFoundError(DISTRIBUTORS, distributor_id)
        method = method or distributor.preferred_delivery_method
        transport = self.transports.get(method or "")
        if transport is None:
            raise InvalidRequestError("unsupported_method", f"Unsupported delivery method: {method}")

        now = self.clock()
        try:
            artifact = self._artifact(report, now)
            receipt = transport.deliver(artifact, distributor.to_document())
        except ReportDeliveryError as exc:
            self._audit(report_id, distributor_id, method, "failed", {"success": False, "error": str(exc)}, delivered_by)
            self.store.update(
                REPORTS,
                report_id,
                {
                    "deliveryStatus": "failed",
                    "lastDeliveryAttempt": now.isoformat(),
                    "deliveryAttempts": Increment(1),
                    "lastDeliveryError": str(exc),
                },
            )
            LOGGER.warning(
                "report_delivery_failed",
                extra={"report_id": report_id, "distributor_id": distributor_id, "method": method, "error": str(exc)},
            )
            self.event_publisher.publish(
                ReportDeliveryFailed(
                    correlation_id=report_id,
                    payload_summary={"distributor_id": distributor_id, "method": method, "error": str(exc)},
                )
            )
            raise

        self._audit(report_id, distributor_id, method, "delivered", receipt, delivered_by)
        self.store.update(
            REPORTS,
            report_id,
            {
                "deliveryStatus": "delivered",
                "lastDeliveryAttempt": now.isoformat(),
                "deliveryAttempts": Increment(1),
                "lastDeliveryError": None,
            },
        )
        LOGGER.info(
            "report_delivered",
            extra={"report_id": report_id, "distributor_id": distributor_id, "method": method},
        )
        self.event_publisher.publish(
            ReportDelivered(correlation_id=report_id, payload_summary={"distributor_id": distributor_id, "method": method})
        )
        return receipt

    def dispatch_pending(self) -> list[dict[str, Any]]:
        """Deliver reports whose scheduled delivery time has passed."""

        due = self.store.query(
            REPORTS,
            [
                Filter("deliveryStatus", "==", "pending"),
                Filter("scheduledDelivery", "<=", self.clock().isoformat()),
            ],
            limit=self.pending_batch_limit,
        )
        results: list[dict[str, Any]] = []
        for item in due:
            distributor_id = item.data.get("distributorId")
            if not distributor_id:
                continue
            try:
                receipt = self.send_report(item.key, distributor_id)
            except _DISPATCH_ERRORS as exc:
                self._count_failure(item.key, exc)
                results.append({"reportId": item.key, "distributorId": distributor_id, "status": "failed", "error": str(exc)})
                continue
            results.append({"reportId": item.key, "distributorId": distributor_id, "status": "delivered", "result": receipt})
        LOGGER.info("scheduled_report_delivery_completed", extra={"processed": len(results)})
        return results

    def retry_failed(self) -> list[dict[str, Any]]:
        """Retry failed reports under the retry cap, backing off ``2**retries`` seconds first."""

        failed = self.store.query(REPORTS, [Filter("deliveryStatus", "==", "failed")])
        candidates = [
            item
            for item in failed
            if not self.retry_policy.exhausted(int(item.data.get("deliveryRetries") or 0))
        ][: self.retry_batch_limit]

        results: list[dict[str, Any]] = []
        for item in candidates:
            retries = int(item.data.get("deliveryRetries") or 0)
            self.sleep(self.retry_policy.backoff_seconds(retries))
            try:
                self.send_report(item.key, item.data.get("distributorId"))
            except _DISPATCH_ERRORS as exc:
                self._count_failure(item.key, exc)
                results.append({"reportId": item.key, "status": "failed", "attempt": retries + 1, "error": str(exc)})
                continue
            results.append({"reportId": item.key, "status": "delivered", "attempt": retries + 1})
        LOGGER.info("report_retry_completed", extra={"processed": len(results)})
        return results

    def _artifact(self, report: dict[str, Any], now: datetime) -> ReportArtifact:
        key = report["fileName"]
        ttl = timedelta(days=self.download_url_ttl_days)
        try:
            content = self.objects.download(key)
            download_url = self.objects.signed_url(key, int(ttl.total_seconds()))
        except ObjectStoreError as exc:
            raise ReportDeliveryError(f"report file unavailable: {exc}") from exc
        return ReportArtifact(
            report=report,
            content=content,
            download_url=download_url,
            expires_at=(now + ttl).isoformat(),
        )

    def _count_failure(self, report_id: str, error: Exception) -> None:
        self.store.update(
            REPORTS,
            report_id,
            {
                "deliveryStatus": "failed",
                "deliveryRetries": Increment(1),
                "lastDeliveryError": str(error),
            },
        )

    def _audit(
        self,
        report_id: str,
        distributor_id: str,
        method: str | None,
        status: str,
        result: dict[str, Any],
        delivered_by: str,
    ) -> None:
        self.store.add(
            REPORT_DELIVERIES,
            {
                "reportId": report_id,
                "distributorId": distributor_id,
                "deliveryMethod": method,
                "status": status,
                "deliveredAt": self.clock().isoformat(),
                "deliveredBy": delivered_by,
                "result": result,
            },
        )
