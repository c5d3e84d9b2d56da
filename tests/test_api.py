from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import SINGLE_TRACK_ERN

from stardust_dsp.api import app
from stardust_dsp.application.reporting.royalties import STATEMENTS
from stardust_dsp.interfaces.api_handlers import get_runtime

DELIVERY_ID = "nebula_1700000000000"
MANIFEST_KEY = "deliveries/nebula/1700000000000/manifest.xml"


@pytest.fixture
def client(runtime):
    app.dependency_overrides[get_runtime] = lambda: runtime
    yield TestClient(app)
    app.dependency_overrides.clear()


def _ingest(runtime, client) -> dict:
    runtime.objects.upload(MANIFEST_KEY, SINGLE_TRACK_ERN.encode("utf-8"), content_type="application/xml")
    response = client.post(
        "/deliveries/objects",
        json={"bucket": runtime.objects.bucket, "name": MANIFEST_KEY, "contentType": "application/xml"},
    )
    runtime.worker.drain()
    return response.json()


def test_health(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_object_notification_starts_ingestion(runtime, client) -> None:
    body = _ingest(runtime, client)

    assert body["outcome"] == "completed"
    assert body["deliveryId"] == DELIVERY_ID

    status = client.get(f"/deliveries/{DELIVERY_ID}").json()
    assert status["status"] == "completed"
    assert status["messageType"] == "NewRelease"

    acknowledgment = client.get(f"/deliveries/{DELIVERY_ID}/acknowledgment")
    assert acknowledgment.status_code == 200
    assert acknowledgment.headers["content-type"].startswith("application/xml")
    assert "<Status>Acknowledged</Status>" in acknowledgment.text


def test_unknown_delivery_is_404(client) -> None:
    response = client.get("/deliveries/nebula_missing")

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "not_found"
    assert client.post("/deliveries/nebula_missing/reprocess").status_code == 404


def test_reprocess_endpoint_requeues_delivery(runtime, client) -> None:
    _ingest(runtime, client)

    response = client.post(f"/deliveries/{DELIVERY_ID}/reprocess")

    assert response.status_code == 200
    assert response.json()["reprocessCount"] == 1
    assert client.get(f"/deliveries/{DELIVERY_ID}").json()["status"] == "pending"


def test_notifications_listing_and_read_marker(runtime, client) -> None:
    _ingest(runtime, client)

    notifications = client.get("/notifications", params={"distributorId": "nebula"}).json()

    ids = {item["id"] for item in notifications}
    assert f"ACK_{DELIVERY_ID}" in ids
    response = client.post(f"/notifications/ACK_{DELIVERY_ID}/read")
    assert response.json() == {"id": f"ACK_{DELIVERY_ID}", "read": True}
    assert runtime.store.get("notifications", f"ACK_{DELIVERY_ID}")["read"] is True
    assert client.post("/notifications/missing/read").status_code == 404


def test_royalty_calculation_errors(client) -> None:
    bad_period = client.post("/royalties/calculate", json={"period": "March"})
    assert bad_period.status_code == 400
    assert bad_period.json()["detail"]["code"] == "invalid_period"

    bad_method = client.post("/royalties/calculate", json={"period": "2026-03", "method": "fair-share"})
    assert bad_method.status_code == 422


def test_statement_approval_and_lock(runtime, client) -> None:
    statement = client.post("/royalties/calculate", json={"period": "2026-03", "method": "hybrid"}).json()
    assert statement["status"] == "draft"
    assert statement["method"] == "hybrid"

    approved = client.post(f"/royalties/statements/{statement['statementId']}/approve")
    assert approved.json()["status"] == "approved"

    runtime.store.update(STATEMENTS, statement["statementId"], {"status": "paid"})
    locked = client.post(f"/royalties/statements/{statement['statementId']}/approve")
    assert locked.status_code == 409
    assert locked.json()["detail"]["code"] == "statement_locked"


def test_report_creation_and_validation(client) -> None:
    created = client.post("/reports", json={"startDate": "2026-03-01", "endDate": "2026-03-31", "format": "CSV"})
    assert created.status_code == 200
    assert created.json()["reportId"].startswith("DSR_")
    assert created.json()["downloadUrl"]

    missing_statement = client.post("/reports", json={"type": "statement", "format": "CSV"})
    assert missing_statement.status_code == 400
    assert missing_statement.json()["detail"]["code"] == "invalid_payload"

    bad_format = client.post("/reports", json={"startDate": "2026-03-01", "endDate": "2026-03-31", "format": "PDF"})
    assert bad_format.status_code == 400
    assert bad_format.json()["detail"]["code"] == "unsupported_format"


def test_send_report_maps_transport_failure_to_502(runtime, client, transports) -> None:
    runtime.store.set("distributors", "nebula", {"name": "Nebula", "active": True, "preferredDeliveryMethod": "webhook"})
    report_id = client.post(
        "/reports",
        json={"startDate": "2026-03-01", "endDate": "2026-03-31", "distributorId": "nebula"},
    ).json()["reportId"]

    delivered = client.post(f"/reports/{report_id}/send")
    assert delivered.json() == {"reportId": report_id, "result": {"success": True, "method": "webhook"}}

    transports["email"].fail = True
    failed = client.post(f"/reports/{report_id}/send", json={"method": "email"})
    assert failed.status_code == 502
    assert failed.json()["detail"]["code"] == "delivery_failed"

    unsupported = client.post(f"/reports/{report_id}/send", json={"method": "fax"})
    assert unsupported.json()["detail"]["code"] == "unsupported_method"


def test_usage_summary(runtime, client) -> None:
    runtime.store.set(
        "analytics_daily",
        "2026-03-10_T1",
        {"date": "2026-03-10", "trackId": "T1", "plays": 12, "uniqueListenersList": ["u1", "u2"], "completions": 6},
    )

    body = client.get("/usage", params={"startDate": "2026-03-01", "endDate": "2026-03-31"}).json()

    assert body["totalPlays"] == 12
    assert body["uniqueListeners"] == 2
    assert body["topTracks"][0] == {"id": "T1", "plays": 12}


def test_play_endpoints_record_progress_and_refuse_edits_after_completion(runtime, client) -> None:
    runtime.store.set("tracks", "T1", {"artistId": "luna-vale", "stats": {"playCount": 0}})

    created = client.post("/plays", json={"trackId": "T1", "releaseId": "R1", "userId": "u1", "country": "US"})

    assert created.status_code == 200
    play_id = created.json()["playId"]
    assert runtime.store.get("tracks", "T1")["stats"]["playCount"] == 1

    done = client.post(f"/plays/{play_id}/progress", json={"duration": 180.0, "percentage": 97.5})
    assert done.status_code == 200
    assert done.json()["completed"] is True

    again = client.post(f"/plays/{play_id}/progress", json={"duration": 10.0, "percentage": 5.0})
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "play_completed"

    assert client.post("/plays/missing/progress", json={"duration": 1.0, "percentage": 1.0}).status_code == 404
    invalid = client.post("/plays", json={"trackId": "T1", "releaseId": "", "userId": "u1"})
    assert invalid.status_code == 400
    assert invalid.json()["detail"]["code"] == "invalid_play"
