"""FastAPI interface for Stardust DSP."""

from __future__ import annotations

from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field

from .application.reporting import get_usage_report
from .domain.models import RoyaltyMethod
from .errors import StardustError
from .interfaces.api_handlers import (
    acknowledgment_document,
    delivery_status,
    error_response,
    get_runtime,
    receive_object,
    request_reprocess,
)
from .interfaces.runtime import Runtime

app = FastAPI(title="Stardust DSP API", version="0.1.0")


class ObjectFinalized(BaseModel):
    bucket: str
    name: str
    size: int | None = None
    content_type: str | None = Field(None, alias="contentType")


class RoyaltyRequest(BaseModel):
    period: str
    territory: str | None = None
    method: RoyaltyMethod = RoyaltyMethod.PRO_RATA


class ReportRequest(BaseModel):
    type: str = "dsr"
    format: str = "DDEX"
    start_date: str | None = Field(None, alias="startDate")
    end_date: str | None = Field(None, alias="endDate")
    territory: str | None = None
    distributor_id: str | None = Field(None, alias="distributorId")
    statement_id: str | None = Field(None, alias="statementId")
    schedule_delivery: bool = Field(False, alias="scheduleDelivery")


class SendReportRequest(BaseModel):
    distributor_id: str | None = Field(None, alias="distributorId")
    method: str | None = None


class PlayRequest(BaseModel):
    track_id: str = Field(..., alias="trackId")
    release_id: str = Field(..., alias="releaseId")
    user_id: str = Field(..., alias="userId")
    country: str | None = None
    dsp: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)


class PlayProgressRequest(BaseModel):
    duration: float
    percentage: float
    completed: bool = False


def _raise_http(error: Exception) -> None:
    status, detail = error_response(error)
    raise HTTPException(status_code=status, detail=detail) from error


@app.get("/health")
def health() -> dict[str, str]:
    """Health check endpoint."""

    return {"status": "ok"}


@app.post("/deliveries/objects")
def object_finalized(body: ObjectFinalized, runtime: Runtime = Depends(get_runtime)) -> dict[str, Any]:
    """Object-finalize notification for the delivery inbox."""

    try:
        return receive_object(runtime, body.bucket, body.name, body.size, body.content_type)
    except (StardustError, ValueError) as error:
        _raise_http(error)


@app.get("/deliveries/{delivery_id}")
def get_delivery(delivery_id: str, runtime: Runtime = Depends(get_runtime)) -> dict[str, Any]:
    try:
        return delivery_status(runtime, delivery_id)
    except StardustError as error:
        _raise_http(error)


@app.post("/deliveries/{delivery_id}/reprocess")
def reprocess(delivery_id: str, runtime: Runtime = Depends(get_runtime)) -> dict[str, Any]:
    try:
        return request_reprocess(runtime, delivery_id)
    except StardustError as error:
        _raise_http(error)


@app.get("/deliveries/{delivery_id}/acknowledgment")
def get_acknowledgment(delivery_id: str, runtime: Runtime = Depends(get_runtime)) -> Response:
    try:
        content = acknowledgment_document(runtime, delivery_id)
    except StardustError as error:
        _raise_http(error)
    return Response(content=content, media_type="application/xml")


@app.get("/notifications")
def list_notifications(
    distributor_id: str = Query(..., alias="distributorId"),
    limit: int = Query(50, ge=1, le=200),
    runtime: Runtime = Depends(get_runtime),
) -> list[dict[str, Any]]:
    return runtime.notifications.list_for_distributor(distributor_id, limit=limit)


@app.post("/notifications/{notification_id}/read")
def mark_notification_read(notification_id: str, runtime: Runtime = Depends(get_runtime)) -> dict[str, Any]:
    try:
        runtime.notifications.mark_read(notification_id)
    except StardustError as error:
        _raise_http(error)
    return {"id": notification_id, "read": True}


@app.post("/royalties/calculate")
def calculate_royalties(body: RoyaltyRequest, runtime: Runtime = Depends(get_runtime)) -> dict[str, Any]:
    try:
        statement = runtime.royalties.calculate(body.period, body.territory, body.method, generated_by="api")
    except (StardustError, ValueError) as error:
        _raise_http(error)
    return statement.to_document()


@app.post("/royalties/statements/{statement_id}/approve")
def approve_statement(statement_id: str, runtime: Runtime = Depends(get_runtime)) -> dict[str, Any]:
    try:
        return runtime.statements.approve(statement_id).to_document()
    except StardustError as error:
        _raise_http(error)


@app.post("/reports")
def create_report(body: ReportRequest, runtime: Runtime = Depends(get_runtime)) -> dict[str, Any]:
    try:
        if body.type == "statement":
            if not body.statement_id:
                raise HTTPException(
                    status_code=400,
                    detail={"code": "invalid_payload", "message": "statementId is required for statement reports"},
                )
            artifact = runtime.reports.generate_statement_report(
                body.statement_id, body.format, distributor_id=body.distributor_id, generated_by="api"
            )
        else:
            artifact = runtime.reports.generate_dsr(
                body.start_date or "",
                body.end_date or "",
                body.format,
                territory=body.territory,
                distributor_id=body.distributor_id,
                generated_by="api",
                schedule_delivery=body.schedule_delivery,
            )
    except (StardustError, ValueError) as error:
        _raise_http(error)
    return {**artifact.report, "downloadUrl": artifact.download_url}


@app.post("/reports/{report_id}/send")
def send_report(
    report_id: str,
    body: SendReportRequest | None = None,
    runtime: Runtime = Depends(get_runtime),
) -> dict[str, Any]:
    body = body or SendReportRequest()
    try:
        receipt = runtime.dispatcher.send_report(report_id, body.distributor_id, body.method, delivered_by="api")
    except (StardustError, ValueError) as error:
        _raise_http(error)
    return {"reportId": report_id, "result": receipt}


@app.get("/usage")
def usage_report(
    start_date: str = Query(..., alias="startDate"),
    end_date: str = Query(..., alias="endDate"),
    territory: str | None = Query(None),
    runtime: Runtime = Depends(get_runtime),
) -> dict[str, Any]:
    try:
        return get_usage_report(runtime.store, start_date, end_date, territory)
    except (StardustError, ValueError) as error:
        _raise_http(error)


@app.post("/plays")
def record_play(body: PlayRequest, runtime: Runtime = Depends(get_runtime)) -> dict[str, Any]:
    """Record a play event and bump the catalog play counters."""

    try:
        play_id = runtime.plays.record_play(
            body.track_id,
            body.release_id,
            body.user_id,
            country=body.country,
            dsp=body.dsp,
            context=body.context,
        )
    except (StardustError, ValueError) as error:
        _raise_http(error)
    return {"success": True, "playId": play_id}


@app.post("/plays/{play_id}/progress")
def update_play_progress(
    play_id: str,
    body: PlayProgressRequest,
    runtime: Runtime = Depends(get_runtime),
) -> dict[str, Any]:
    try:
        return runtime.plays.update_play_progress(play_id, body.duration, body.percentage, body.completed)
    except (StardustError, ValueError) as error:
        _raise_http(error)
