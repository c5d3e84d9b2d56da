"""DSR, CSV and JSON report rendering backed by aggregates and catalog data."""

from __future__ import annotations

import csv
import io
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable

from stardust_dsp.application.deliveries import DistributorRegistry
from stardust_dsp.application.event_publisher import EventPublisher, NullEventPublisher
from stardust_dsp.application.notifications import NotificationCenter
from stardust_dsp.application.ports import DocumentStore, Filter, ObjectStore, ReportArtifact
from stardust_dsp.application.reporting.royalties import StatementRepository
from stardust_dsp.application.reporting.usage import ANALYTICS_DAILY
from stardust_dsp.ddex_documents import DsrLine, PartyBlock, render_dsr
from stardust_dsp.domain.events import ReportGenerated
from stardust_dsp.domain.policies import DEFAULT_ROYALTY_POLICY, RoyaltyPolicy
from stardust_dsp.errors import InvalidRequestError
from stardust_dsp.periods import previous_month
from stardust_dsp.utils.timestamps import utc_now

LOGGER = logging.getLogger(__name__)

REPORTS = "reports"
TRACKS = "tracks"

DEFAULT_UNIT_PRICE = 0.003

REPORT_FORMATS: dict[str, tuple[str, str]] = {
    "DDEX": ("xml", "application/xml"),
    "CSV": ("csv", "text/csv"),
    "JSON": ("json", "application/json"),
}


def normalize_format(report_format: str | None) -> str:
    value = (report_format or "DDEX").upper()
    if value == "XML":
        value = "DDEX"
    if value not in REPORT_FORMATS:
        raise InvalidRequestError("unsupported_format", f"Unsupported format: {report_format}")
    return value


@dataclass(slots=True)
class _TrackUsage:
    plays: int = 0
    revenue: float = 0.0
    territories: dict[str, int] = field(default_factory=dict)


@dataclass
class ReportGenerator:
    store: DocumentStore
    objects: ObjectStore
    distributors: DistributorRegistry
    platform_party_id: str
    platform_party_name: str
    download_url_ttl_days: int = 7
    unit_price: float = DEFAULT_UNIT_PRICE
    policy: RoyaltyPolicy = DEFAULT_ROYALTY_POLICY
    notifications: NotificationCenter | None = None
    event_publisher: EventPublisher = NullEventPublisher()
    clock: Callable[[], datetime] = utc_now

    @property
    def payable_rate(self) -> float:
        return 1.0 - self.policy.platform_fee_rate

    def generate_dsr(
        self,
        start_date: str,
        end_date: str,
        report_format: str = "DDEX",
        territory: str | None = None,
        distributor_id: str | None = None,
        generated_by: str = "system",
        schedule_delivery: bool = False,
    ) -> ReportArtifact:
        """Render a sales report for ``start_date``..``end_date`` and store it."""

        if not start_date or not end_date:
            raise InvalidRequestError("invalid_period", "Start date and end date are required")
        if end_date < start_date:
            raise InvalidRequestError("invalid_period", f"End date {end_date} precedes start date {start_date}")
        report_format = normalize_format(report_format)
        territory = territory or "worldwide"
        report_id = f"DSR_{uuid.uuid4()}"
        now = self.clock()

        usage = self._usage(start_date, end_date, territory)
        catalog = self._catalog(usage)
        lines = [
            DsrLine(
                track_id=track_id,
                release_id=catalog.get(track_id, {}).get("releaseId"),
                isrc=catalog.get(track_id, {}).get("isrc"),
                title=catalog.get(track_id, {}).get("title"),
                artist=catalog.get(track_id, {}).get("artist"),
                quantity=item.plays,
                gross_amount=item.revenue,
                territories=dict(item.territories),
            )
            for track_id, item in usage.items()
        ]
        statistics = {
            "totalTracks": len(usage),
            "totalPlays": sum(item.plays for item in usage.values()),
            "totalRevenue": round(sum(item.revenue for item in usage.values()), 6),
        }

        if report_format == "DDEX":
            recipient = self._recipient(distributor_id)
            content = render_dsr(
                report_id=report_id,
                created_at=now.isoformat(),
                sender=PartyBlock(self.platform_party_id, self.platform_party_name),
                recipient=recipient,
                start_date=start_date,
                end_date=end_date,
                territory="Worldwide" if territory.lower() == "worldwide" else territory,
                lines=lines,
                currency=self.policy.currency,
                unit_price=self.unit_price,
                payable_rate=self.payable_rate,
            )
        elif report_format == "CSV":
            content = self._dsr_csv(lines)
        else:
            content = json.dumps(
                {
                    "reportId": report_id,
                    "generatedAt": now.isoformat(),
                    "period": {"startDate": start_date, "endDate": end_date},
                    "territory": territory,
                    "statistics": statistics,
                    "data": {
                        track_id: {"plays": item.plays, "revenue": item.revenue, "territories": item.territories}
                        for track_id, item in usage.items()
                    },
                    "catalog": catalog,
                },
                indent=2,
            )

        return self._store(
            report_id=report_id,
            report_type="DSR",
            report_format=report_format,
            folder="dsr",
            content=content,
            period={"startDate": start_date, "endDate": end_date},
            territory=territory,
            distributor_id=distributor_id,
            generated_by=generated_by,
            statistics=statistics,
            schedule_delivery=schedule_delivery,
        )

    def generate_statement_report(
        self,
        statement_id: str,
        report_format: str = "CSV",
        distributor_id: str | None = None,
        generated_by: str = "system",
    ) -> ReportArtifact:
        report_format = normalize_format(report_format)
        if report_format == "DDEX":
            raise InvalidRequestError("unsupported_format", "Royalty statements render as CSV or JSON")
        statement = StatementRepository(self.store).get(statement_id)

        if report_format == "CSV":
            buffer = io.StringIO()
            writer = csv.writer(buffer, lineterminator="\n")
            writer.writerow(
                ["Rights Holder ID", "Name", "Type", "Streams", "Share %", "Gross", "Net", "Held", "Status"]
            )
            for item in statement.distributions:
                writer.writerow(
                    [
                        item.rights_holder_id,
                        item.name or "",
                        item.holder_type,
                        item.streams,
                        f"{item.share_percentage:.2f}",
                        f"{item.gross_amount:.2f}",
                        f"{item.net_amount:.2f}",
                        f"{item.held_amount:.2f}",
                        item.status.value,
                    ]
                )
            content = buffer.getvalue()
        else:
            content = json.dumps(statement.to_document(), indent=2)

        return self._store(
            report_id=f"RPT_{statement_id}_{uuid.uuid4().hex[:8]}",
            report_type="ROYALTY_STATEMENT",
            report_format=report_format,
            folder="statements",
            content=content,
            period={"startDate": statement.start_date, "endDate": statement.end_date},
            territory=statement.territory,
            distributor_id=distributor_id,
            generated_by=generated_by,
            statistics={
                "netRevenue": statement.net_revenue,
                "totalDistributed": statement.total_distributed,
                "totalHeld": statement.total_held,
                "rightsHolderCount": len(statement.distributions),
            },
            schedule_delivery=distributor_id is not None,
            extra={"statementId": statement_id},
        )

    def generate_monthly_dsr(self, today: date | None = None) -> list[dict[str, Any]]:
        """Previous-month DSR for every active distributor that opted in."""

        period = previous_month(today or self.clock().date())
        results: list[dict[str, Any]] = []
        for distributor in self.distributors.active_with_auto_dsr():
            try:
                artifact = self.generate_dsr(
                    period.start_date,
                    period.end_date,
                    report_format=distributor.preferred_format,
                    territory=distributor.territory,
                    distributor_id=distributor.id,
                    schedule_delivery=True,
                )
            except Exception as error:  # noqa: BLE001
                LOGGER.error(
                    "monthly_dsr_failed",
                    extra={"distributor_id": distributor.id, "error": str(error)},
                )
                results.append({"distributorId": distributor.id, "status": "failed", "error": str(error)})
                continue
            report_id = artifact.report["reportId"]
            if self.notifications is not None:
                self.notifications.raise_notification(
                    "report_ready",
                    {
                        "distributorId": distributor.id,
                        "reportId": report_id,
                        "downloadUrl": artifact.download_url,
                        "message": f"DSR ready for {period.start_date} to {period.end_date}",
                    },
                    key=f"REPORT_{report_id}",
                )
            results.append({"distributorId": distributor.id, "reportId": report_id, "status": "success"})
        LOGGER.info("monthly_dsr_completed", extra={"period": period.label, "report_count": len(results)})
        return results

    def _usage(self, start_date: str, end_date: str, territory: str) -> dict[str, _TrackUsage]:
        usage: dict[str, _TrackUsage] = {}
        documents = self.store.query(
            ANALYTICS_DAILY,
            [Filter("date", ">=", start_date), Filter("date", "<=", end_date)],
        )
        for item in documents:
            record = item.data
            track_id = record.get("trackId")
            if not track_id:
                continue
            countries = record.get("countries") or {}
            if territory.lower() == "worldwide":
                plays = int(record.get("plays") or 0)
            else:
                plays = int(countries.get(territory) or 0)
                countries = {territory: plays} if plays else {}
            if plays <= 0:
                continue
            entry = usage.setdefault(track_id, _TrackUsage())
            entry.plays += plays
            entry.revenue += plays * self.unit_price
            for country, count in countries.items():
                entry.territories[country] = entry.territories.get(country, 0) + count
        return usage

    def _catalog(self, usage: dict[str, _TrackUsage]) -> dict[str, dict[str, Any]]:
        catalog: dict[str, dict[str, Any]] = {}
        for track_id in usage:
            track = self.store.get(TRACKS, track_id)
            if track is None:
                continue
            catalog[track_id] = {
                "title": track.get("title"),
                "artist": track.get("artist"),
                "isrc": track.get("isrc"),
                "releaseId": track.get("releaseId"),
                "duration": track.get("duration"),
            }
        return catalog

    def _dsr_csv(self, lines: list[DsrLine]) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(["Track ID", "ISRC", "Title", "Artist", "Release ID", "Plays", "Revenue", "Territory"])
        for line in lines:
            writer.writerow(
                [
                    line.track_id,
                    line.isrc or "",
                    line.title or "",
                    line.artist or "",
                    line.release_id or "",
                    line.quantity,
                    f"{line.gross_amount:.2f}",
                    ";".join(sorted(line.territories)),
                ]
            )
        return buffer.getvalue()

    def _recipient(self, distributor_id: str | None) -> PartyBlock:
        if not distributor_id:
            return PartyBlock("RECIPIENT", "Recipient")
        distributor = self.distributors.get(distributor_id)
        return PartyBlock(distributor_id, distributor.name if distributor else distributor_id)

    def _store(
        self,
        *,
        report_id: str,
        report_type: str,
        report_format: str,
        folder: str,
        content: str,
        period: dict[str, str],
        territory: str,
        distributor_id: str | None,
        generated_by: str,
        statistics: dict[str, Any],
        schedule_delivery: bool,
        extra: dict[str, Any] | None = None,
    ) -> ReportArtifact:
        extension, mime_type = REPORT_FORMATS[report_format]
        payload = content.encode("utf-8")
        key = f"reports/{folder}/{report_id}.{extension}"
        self.objects.upload(key, payload, content_type=mime_type)

        now = self.clock()
        ttl = timedelta(days=self.download_url_ttl_days)
        download_url = self.objects.signed_url(key, int(ttl.total_seconds()))
        expires_at = (now + ttl).isoformat()
        report = {
            "reportId": report_id,
            "type": report_type,
            "format": report_format,
            "period": period,
            "territory": territory,
            "distributorId": distributor_id,
            "fileName": key,
            "mimeType": mime_type,
            "fileUrl": download_url,
            "expiresAt": expires_at,
            "size": len(payload),
            "generatedBy": generated_by,
            "generatedAt": now.isoformat(),
            "status": "completed",
            "statistics": statistics,
            "deliveryStatus": "pending" if schedule_delivery and distributor_id else "not_scheduled",
            "scheduledDelivery": now.isoformat() if schedule_delivery else None,
            "deliveryAttempts": 0,
            "deliveryRetries": 0,
            **(extra or {}),
        }
        self.store.set(REPORTS, report_id, report)
        LOGGER.info(
            "report_generated",
            extra={"report_id": report_id, "report_type": report_type, "format": report_format, "size": len(payload)},
        )
        self.event_publisher.publish(
            ReportGenerated(
                correlation_id=report_id,
                payload_summary={"type": report_type, "format": report_format, "distributor_id": distributor_id},
            )
        )
        return ReportArtifact(report=report, content=payload, download_url=download_url, expires_at=expires_at)
