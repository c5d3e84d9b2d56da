"""Typed stage jobs exchanged over message topics."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

PARSE_TOPIC = "ern-parse"
VALIDATE_TOPIC = "ern-validate"
PROCESS_TOPIC = "release-process"
ACKNOWLEDGE_TOPIC = "ern-acknowledge"
TRANSCODE_TOPIC = "transcode"
ERROR_TOPIC = "error-notifications"


@dataclass(frozen=True, slots=True)
class ParseJob:
    delivery_id: str
    manifest_path: str
    bucket: str

    topic = PARSE_TOPIC

    def to_payload(self) -> dict[str, Any]:
        return {"deliveryId": self.delivery_id, "manifestPath": self.manifest_path, "bucket": self.bucket}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ParseJob":
        return cls(payload["deliveryId"], payload["manifestPath"], payload.get("bucket", ""))


@dataclass(frozen=True, slots=True)
class ValidationJob:
    """Carries the canonical graph as plain data plus the raw manifest path."""

    delivery_id: str
    ern_data: dict[str, Any]
    ern_version: str
    manifest_path: str

    topic = VALIDATE_TOPIC

    def to_payload(self) -> dict[str, Any]:
        return {
            "deliveryId": self.delivery_id,
            "ernData": self.ern_data,
            "ernVersion": self.ern_version,
            "manifestPath": self.manifest_path,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ValidationJob":
        return cls(payload["deliveryId"], payload["ernData"], payload["ernVersion"], payload["manifestPath"])


@dataclass(frozen=True, slots=True)
class ProcessingJob:
    delivery_id: str
    release_data: dict[str, Any]
    delivery_path: str
    ern_version: str

    topic = PROCESS_TOPIC

    def to_payload(self) -> dict[str, Any]:
        return {
            "deliveryId": self.delivery_id,
            "releaseData": self.release_data,
            "deliveryPath": self.delivery_path,
            "ernVersion": self.ern_version,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ProcessingJob":
        return cls(payload["deliveryId"], payload["releaseData"], payload["deliveryPath"], payload["ernVersion"])


@dataclass(frozen=True, slots=True)
class AcknowledgmentJob:
    delivery_id: str
    releases: list[dict[str, Any]] = field(default_factory=list)

    topic = ACKNOWLEDGE_TOPIC

    def to_payload(self) -> dict[str, Any]:
        return {"deliveryId": self.delivery_id, "releases": list(self.releases)}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AcknowledgmentJob":
        return cls(payload["deliveryId"], list(payload.get("releases") or []))


@dataclass(frozen=True, slots=True)
class TranscodeJob:
    track_id: str
    release_id: str
    source_path: str | None
    delivery_id: str
    formats: tuple[str, ...] = ("hls", "dash")

    topic = TRANSCODE_TOPIC

    def to_payload(self) -> dict[str, Any]:
        return {
            "trackId": self.track_id,
            "releaseId": self.release_id,
            "sourcePath": self.source_path,
            "deliveryId": self.delivery_id,
            "formats": list(self.formats),
        }


@dataclass(frozen=True, slots=True)
class ErrorNotification:
    """Distributor-visible failure raised by any ingestion stage."""

    delivery_id: str
    error_type: str
    message: str
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    topic = ERROR_TOPIC

    def to_payload(self) -> dict[str, Any]:
        return {
            "deliveryId": self.delivery_id,
            "type": self.error_type,
            "message": self.message,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }
