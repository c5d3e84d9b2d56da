"""CLI-facing handlers that delegate to application services."""

from __future__ import annotations

import time
from enum import Enum
from pathlib import Path
from typing import Any

from stardust_dsp.application.outcome import StageOutcome
from stardust_dsp.interfaces.runtime import Runtime
from stardust_dsp.utils.config import load_app_config


class ReportKind(str, Enum):
    DSR = "dsr"
    STATEMENT = "statement"


def load_runtime(config_path: Path | None = None) -> Runtime:
    return Runtime.from_config(load_app_config(config_path))


def outcome_to_dict(outcome: StageOutcome) -> dict[str, Any]:
    return {
        "outcome": outcome.kind.value,
        "deliveryId": outcome.delivery_id,
        "detail": outcome.detail,
        **outcome.data,
    }


def receive_manifest(
    runtime: Runtime,
    manifest: Path,
    distributor_id: str,
    timestamp_token: str | None = None,
    process: bool = True,
) -> dict[str, Any]:
    """Upload a local manifest into the delivery inbox and run intake on it."""

    if not manifest.is_file():
        raise ValueError(f"Manifest not found: {manifest}")
    token = timestamp_token or str(int(time.time() * 1000))
    key = f"deliveries/{distributor_id}/{token}/manifest.xml"
    payload = manifest.read_bytes()
    runtime.objects.upload(key, payload, content_type="application/xml")

    result = outcome_to_dict(
        runtime.receiver.handle_object(runtime.objects.bucket, key, size=len(payload), content_type="application/xml")
    )
    if process:
        result["stages"] = dict(runtime.worker.drain())
        delivery = runtime.deliveries.find(result["deliveryId"]) if result["deliveryId"] else None
        result["status"] = delivery.status.value if delivery else None
    return result


def reprocess_delivery(runtime: Runtime, delivery_id: str, process: bool = True) -> dict[str, Any]:
    result = outcome_to_dict(runtime.receiver.reprocess(delivery_id))
    if process:
        result["stages"] = dict(runtime.worker.drain())
        result["status"] = runtime.deliveries.get(delivery_id).status.value
    return result


def delivery_status(runtime: Runtime, delivery_id: str) -> dict[str, Any]:
    delivery = runtime.deliveries.get(delivery_id)
    document = delivery.to_document()
    return {
        "deliveryId": delivery.id,
        "status": delivery.status.value,
        "sender": delivery.sender,
        "messageType": document.get("ern", {}).get("messageType"),
        "error": delivery.processing.error,
        "reprocessCount": delivery.processing.reprocess_count,
        "acknowledgment": document.get("acknowledgment"),
    }


def generate_report(
    runtime: Runtime,
    kind: ReportKind,
    report_format: str,
    start_date: str | None = None,
    end_date: str | None = None,
    territory: str | None = None,
    distributor_id: str | None = None,
    statement_id: str | None = None,
    schedule_delivery: bool = False,
) -> dict[str, Any]:
    if kind == ReportKind.STATEMENT:
        if not statement_id:
            raise ValueError("--statement-id is required for statement reports.")
        artifact = runtime.reports.generate_statement_report(
            statement_id, report_format, distributor_id=distributor_id, generated_by="cli"
        )
    else:
        artifact = runtime.reports.generate_dsr(
            start_date or "",
            end_date or "",
            report_format,
            territory=territory,
            distributor_id=distributor_id,
            generated_by="cli",
            schedule_delivery=schedule_delivery,
        )
    report = artifact.report
    return {
        "reportId": report["reportId"],
        "format": report["format"],
        "fileName": report["fileName"],
        "downloadUrl": artifact.download_url,
        "expiresAt": artifact.expires_at,
        "deliveryStatus": report["deliveryStatus"],
    }
