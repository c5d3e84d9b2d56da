from __future__ import annotations

import pytest

from conftest import COVERLESS_ERN, GRID, ISRC, SINGLE_TRACK_ERN, TAKEDOWN_ERN

from stardust_dsp.application.notifications import CRITICAL_ERRORS, NOTIFICATIONS
from stardust_dsp.application.ports import ValidationReport
from stardust_dsp.domain.jobs import ACKNOWLEDGE_TOPIC, PARSE_TOPIC, TRANSCODE_TOPIC
from stardust_dsp.domain.models import ProcessingStatus
from stardust_dsp.errors import DocumentNotFoundError
from stardust_dsp.utils.config import AppConfig, PipelineConfig

DELIVERY_ID = "nebula_1700000000000"


def test_manifest_runs_through_to_completed_with_catalog_and_acknowledgment(runtime, deliver, events) -> None:
    outcome = deliver(SINGLE_TRACK_ERN)

    assert outcome.delivery_id == DELIVERY_ID
    assert outcome.data["queued"] is True

    summary = runtime.worker.drain()

    assert summary == {"completed": 4}
    delivery = runtime.deliveries.get(DELIVERY_ID)
    assert delivery.status is ProcessingStatus.COMPLETED
    assert delivery.ern.version == "ERN-4.3"
    assert delivery.ern.profile == "CommonReleaseProfile"
    assert delivery.ern.message_id == "MSG-001"
    assert delivery.validation.valid is True
    assert delivery.processing.release_count == 1
    assert delivery.processing.track_count == 1
    assert {"received", "parsing", "parsed", "validating", "validated", "completed"} <= set(
        delivery.processing.timestamps
    )

    release = runtime.store.get("releases", GRID)
    assert release["status"] == "active"
    assert release["metadata"]["title"] == "Orbit & Ash"
    assert release["trackIds"] == [f"ISRC_{ISRC}"]
    assert release["assets"]["coverArt"]["placeholder"] is False
    assert release["assets"]["coverArt"]["url"].endswith("deliveries/nebula/1700000000000/resources/cover.jpg")
    assert release["ingestion"]["deliveryHistory"] == [DELIVERY_ID]

    track = runtime.store.get("tracks", f"ISRC_{ISRC}")
    assert track["status"] == "active"
    assert track["duration"] == 205
    assert track["audio"]["original"] == "deliveries/nebula/1700000000000/resources/orbit.flac"
    assert track["masterRights"] == [{"id": "nebula-records", "name": "Nebula Records", "type": "label", "share": 100}]
    assert [holder["id"] for holder in track["publishingRights"]] == ["ada-stone"]

    artist = runtime.store.get("artists", "luna-vale")
    assert artist["releases"] == [GRID]
    assert runtime.store.get("albums", GRID)["trackCount"] == 1
    assert runtime.store.get("deliveryHistory", DELIVERY_ID)["releaseIds"] == [GRID]
    assert runtime.queue.pending(TRANSCODE_TOPIC) == {TRANSCODE_TOPIC: 1}

    assert delivery.acknowledgment["documentId"] == f"ACK_{DELIVERY_ID}"
    acknowledgment = runtime.store.get(NOTIFICATIONS, f"ACK_{DELIVERY_ID}")
    assert acknowledgment["distributorId"] == "nebula"
    assert "<Status>Acknowledged</Status>" in acknowledgment["content"]
    assert GRID in acknowledgment["content"]

    assert events.names == [
        "DeliveryReceived",
        "ErnParsed",
        "ErnValidated",
        "ReleasesProcessed",
        "DeliveryAcknowledged",
    ]


def test_release_without_cover_gets_placeholder_artwork(runtime, deliver) -> None:
    deliver(COVERLESS_ERN)
    runtime.worker.drain()

    release = runtime.store.get("releases", "UPC_0987654321098")
    cover = release["assets"]["coverArt"]
    assert cover["placeholder"] is True
    assert cover["url"].endswith("images/placeholder.jpg")
    assert cover["sizes"]["small"].endswith("images/placeholder-small.jpg")

    track = runtime.store.get("tracks", "ISRC_GBAYE0601498")
    assert track["artist"] == "Kepler Choir"
    assert track["duration"] == 250


def test_repeated_finalize_notification_does_not_duplicate_delivery(runtime, deliver) -> None:
    deliver(SINGLE_TRACK_ERN)
    runtime.worker.drain()

    again = deliver(SINGLE_TRACK_ERN)

    assert again.kind.value == "skipped"
    assert runtime.queue.pending(PARSE_TOPIC) == {}


def test_redelivered_stage_jobs_are_skipped_once_delivery_moved_on(runtime, deliver) -> None:
    deliver(SINGLE_TRACK_ERN)
    runtime.worker.drain()
    acknowledgment = runtime.deliveries.get(DELIVERY_ID).acknowledgment

    runtime.queue.publish(PARSE_TOPIC, {"deliveryId": DELIVERY_ID, "manifestPath": "x", "bucket": "b"})
    runtime.queue.publish(ACKNOWLEDGE_TOPIC, {"deliveryId": DELIVERY_ID, "releases": []})

    assert runtime.worker.drain() == {"skipped": 2}
    delivery = runtime.deliveries.get(DELIVERY_ID)
    assert delivery.status is ProcessingStatus.COMPLETED
    assert delivery.acknowledgment == acknowledgment


def test_validation_errors_fail_delivery_and_notify_distributor(runtime, deliver, validator) -> None:
    validator.reports.append(
        ValidationReport(valid=False, errors=["Missing ISRC", "Invalid ReleaseDate"], validator="fake-validator")
    )
    deliver(SINGLE_TRACK_ERN)

    summary = runtime.worker.drain()

    assert summary == {"completed": 2, "terminal": 1}
    delivery = runtime.deliveries.get(DELIVERY_ID)
    assert delivery.status is ProcessingStatus.VALIDATION_FAILED
    assert delivery.validation.errors == ["Missing ISRC", "Invalid ReleaseDate"]
    assert delivery.processing.error == "ERN validation failed with 2 error(s)"
    assert runtime.store.get("releases", GRID) is None

    notification = runtime.store.get(NOTIFICATIONS, f"ERR_{DELIVERY_ID}_validation_failed_0")
    assert notification["errors"] == ["Missing ISRC", "Invalid ReleaseDate"]
    assert "<Status>ProcessingFailed</Status>" in notification["acknowledgment"]["content"]
    assert runtime.store.get(CRITICAL_ERRORS, f"ERR_{DELIVERY_ID}_validation_failed_0")["resolved"] is False


def test_transient_validation_failure_recovers_on_redelivery(runtime, deliver, validator, clock) -> None:
    validator.failures = 1
    deliver(SINGLE_TRACK_ERN)

    summary = runtime.worker.drain()

    assert summary == {"completed": 4, "retried": 1}
    assert clock.slept == [2.0]
    delivery = runtime.deliveries.get(DELIVERY_ID)
    assert delivery.status is ProcessingStatus.COMPLETED
    assert delivery.processing.attempts["validation"] == 2
    assert delivery.processing.error is None


def test_validation_service_outage_stops_after_retry_limit(runtime, deliver, validator, clock) -> None:
    validator.failures = 10
    deliver(SINGLE_TRACK_ERN)

    summary = runtime.worker.drain()

    assert summary == {"completed": 2, "retried": 2, "exhausted": 1}
    assert clock.slept == [2.0, 4.0]
    assert len(validator.calls) == 3
    delivery = runtime.deliveries.get(DELIVERY_ID)
    assert delivery.status is ProcessingStatus.VALIDATION_ERROR
    assert delivery.processing.attempts["validation"] == 3
    assert delivery.processing.error.startswith("Validation service unavailable")
    assert runtime.store.get(NOTIFICATIONS, f"ERR_{DELIVERY_ID}_validation_error_0") is not None


def test_malformed_manifest_fails_parsing(runtime, deliver) -> None:
    deliver("<NewReleaseMessage><MessageHeader>")

    runtime.worker.drain()

    delivery = runtime.deliveries.get(DELIVERY_ID)
    assert delivery.status is ProcessingStatus.PARSE_FAILED
    assert "Malformed ERN XML" in delivery.processing.error
    assert runtime.store.get(NOTIFICATIONS, f"ERR_{DELIVERY_ID}_parse_failed_0")["type"] == "parse_failed"


def test_manifest_with_invalid_encoding_fails_parsing_without_retry(runtime) -> None:
    key = "deliveries/nebula/1700000000000/manifest.xml"
    runtime.objects.upload(key, b"<a>\xff\xfe</a>", content_type="application/xml")
    runtime.receiver.handle_object(runtime.objects.bucket, key)

    summary = runtime.worker.run_once()

    assert "retried" not in summary
    delivery = runtime.deliveries.get(DELIVERY_ID)
    assert delivery.status is ProcessingStatus.PARSE_FAILED
    assert delivery.processing.error.startswith("Malformed ERN XML: not valid UTF-8")
    assert "exhausted" not in runtime.worker.drain()


def test_takedown_marks_release_and_tracks_taken_down(runtime, deliver) -> None:
    deliver(SINGLE_TRACK_ERN)
    runtime.worker.drain()

    deliver(TAKEDOWN_ERN, token="1700000009999")
    runtime.worker.drain()

    takedown = runtime.deliveries.get("nebula_1700000009999")
    assert takedown.status is ProcessingStatus.COMPLETED
    assert takedown.ern.message_type.value == "Takedown"
    assert runtime.store.get("releases", GRID)["status"] == "taken_down"
    assert runtime.store.get("tracks", f"ISRC_{ISRC}")["status"] == "taken_down"
    acknowledgment = runtime.store.get(NOTIFICATIONS, "ACK_nebula_1700000009999")
    assert "<ProcessingStatus>TakenDown</ProcessingStatus>" in acknowledgment["content"]


def test_takedown_of_unknown_release_fails_processing(runtime, deliver) -> None:
    deliver(TAKEDOWN_ERN)

    runtime.worker.drain()

    delivery = runtime.deliveries.get(DELIVERY_ID)
    assert delivery.status is ProcessingStatus.PROCESSING_FAILED
    assert delivery.processing.error == "No releases could be processed from this delivery"
    assert runtime.store.get(NOTIFICATIONS, f"ERR_{DELIVERY_ID}_processing_failed_0") is not None


def test_reprocess_sends_failed_delivery_back_through_the_pipeline(runtime, deliver, validator) -> None:
    validator.reports.append(ValidationReport(valid=False, errors=["Missing ISRC"], validator="fake-validator"))
    deliver(SINGLE_TRACK_ERN)
    runtime.worker.drain()

    outcome = runtime.receiver.reprocess(DELIVERY_ID)

    assert outcome.data == {"reprocessCount": 1}
    assert runtime.deliveries.get(DELIVERY_ID).status is ProcessingStatus.PENDING

    runtime.worker.drain()

    delivery = runtime.deliveries.get(DELIVERY_ID)
    assert delivery.status is ProcessingStatus.COMPLETED
    assert delivery.processing.reprocess_count == 1
    assert delivery.validation.errors == []


def test_reprocess_unknown_delivery_raises(runtime) -> None:
    with pytest.raises(DocumentNotFoundError):
        runtime.receiver.reprocess("nebula_missing")


def test_non_manifest_objects_are_ignored(runtime) -> None:
    outcome = runtime.receiver.handle_object("stardust-dsp", "deliveries/nebula/1700000000000/resources/cover.jpg")

    assert outcome.kind.value == "skipped"
    assert outcome.delivery_id is None


def test_unknown_distributor_rejected_when_auto_create_disabled(build_runtime) -> None:
    runtime = build_runtime(AppConfig(pipeline=PipelineConfig(auto_create_distributors=False)))
    key = "deliveries/stranger/1/manifest.xml"
    runtime.objects.upload(key, SINGLE_TRACK_ERN.encode("utf-8"))

    outcome = runtime.receiver.handle_object(runtime.objects.bucket, key)

    assert outcome.kind.value == "terminal"
    assert runtime.deliveries.find("stranger_1") is None


def test_inactive_distributor_is_rejected(runtime, deliver) -> None:
    runtime.store.set("distributors", "nebula", {"name": "Nebula", "active": False})

    outcome = deliver(SINGLE_TRACK_ERN)

    assert outcome.kind.value == "terminal"
    assert runtime.deliveries.find(DELIVERY_ID) is None


def test_manual_distributor_records_delivery_without_queueing(runtime, deliver) -> None:
    runtime.store.set(
        "distributors",
        "nebula",
        {"name": "Nebula", "active": True, "autoProcess": False, "sendAcknowledgments": False},
    )

    outcome = deliver(SINGLE_TRACK_ERN)

    assert outcome.data["queued"] is False
    assert runtime.deliveries.get(DELIVERY_ID).status is ProcessingStatus.PENDING
    assert runtime.queue.pending() == {}
    assert runtime.store.get(NOTIFICATIONS, f"RECEIVED_{DELIVERY_ID}") is None
