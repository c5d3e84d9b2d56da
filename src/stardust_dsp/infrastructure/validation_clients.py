"""ERN validation adapters: the DDEX Workbench API and an offline structural check."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

import requests

from stardust_dsp.application.ports import ValidationReport
from stardust_dsp.errors import ValidationServiceError

LOGGER = logging.getLogger(__name__)

WORKBENCH_VALIDATOR = "ddex-workbench-api-v1"
LOCAL_VALIDATOR = "local-validator"

_API_VERSIONS = {
    "ERN-4.3": "4.3",
    "ERN-4.2": "4.2",
    "ERN-4.1": "4.1",
    "ERN-4.0": "4.0",
    "ERN-3.8.2": "3.8.2",
    "ERN-3.8.1": "3.8.1",
    "ERN-3.7": "3.7",
    "ERN-3.6": "3.6",
}
_API_PROFILES = {
    "AudioAlbumMusicOnly": "AudioAlbum",
    "AudioSingleMusicOnly": "AudioSingle",
    "VideoAlbum": "VideoAlbum",
    "VideoSingle": "VideoSingle",
    "CommonReleaseProfile": "CommonRelease",
}
_TEST_CONTROL_TYPES = frozenset({"TestMessage", "Test", "LiveMessage"})


def api_version(ern_version: str) -> str:
    return _API_VERSIONS.get(ern_version, "4.3")


def api_profile(profile: str) -> str:
    if profile in _TEST_CONTROL_TYPES:
        return "AudioSingle"
    return _API_PROFILES.get(profile, "AudioAlbum")


def _describe(entry: Any, *keys: str) -> str:
    if isinstance(entry, str):
        return entry
    if isinstance(entry, Mapping):
        for key in keys:
            if entry.get(key):
                return str(entry[key])
    return json.dumps(entry, default=str)


class WorkbenchValidationClient:
    """POSTs the raw manifest to the Workbench validation endpoint."""

    def __init__(self, endpoint: str, timeout_seconds: float = 30, session: requests.Session | None = None) -> None:
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def validate(self, content: str, graph: Mapping[str, Any], ern_version: str, profile: str) -> ValidationReport:
        body = {
            "content": content,
            "type": "ERN",
            "version": api_version(ern_version),
            "profile": api_profile(profile),
        }
        try:
            response = self.session.post(
                self.endpoint,
                json=body,
                headers={"Accept": "application/json"},
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise ValidationServiceError(f"No response from validation service: {exc}") from exc

        LOGGER.info(
            "validation_response",
            extra={"status_code": response.status_code, "api_version": body["version"], "api_profile": body["profile"]},
        )
        if response.status_code == 400:
            try:
                data = response.json()
            except ValueError:
                data = {}
            message = data.get("message") or data.get("error") or "Invalid ERN content"
            return ValidationReport(valid=False, errors=[str(message)], validator=WORKBENCH_VALIDATOR)
        if response.status_code != 200:
            raise ValidationServiceError(f"Validation service returned {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise ValidationServiceError("Validation service returned a non-JSON body") from exc
        return ValidationReport(
            valid=data.get("valid") is True,
            errors=[_describe(item, "message", "error", "description", "text") for item in data.get("errors") or []],
            warnings=[
                _describe(item, "message", "warning", "description", "text") for item in data.get("warnings") or []
            ],
            validator=WORKBENCH_VALIDATOR,
        )


class LocalErnValidator:
    """Structural checks on the canonical graph for offline runs."""

    def validate(self, content: str, graph: Mapping[str, Any], ern_version: str, profile: str) -> ValidationReport:
        errors: list[str] = []
        header = graph.get("header") or {}
        if not header.get("message_id"):
            errors.append("MessageHeader missing required MessageId")
        if not header.get("created_at"):
            errors.append("MessageHeader missing required MessageCreatedDateTime")
        if not (header.get("sender") or {}).get("party_id"):
            errors.append("MessageHeader missing required MessageSender")

        releases = graph.get("releases") or []
        if not releases:
            errors.append("ReleaseList must contain at least one Release")
        resource_count = 0
        for index, release in enumerate(releases, 1):
            if not release.get("release_reference"):
                errors.append(f"Release {index}: Missing required ReleaseReference")
            if not (release.get("grid") or release.get("icpn")):
                errors.append(f"Release {index}: Missing required ReleaseId")
            if not release.get("title"):
                errors.append(f"Release {index}: Missing title information")
            resource_count += len(release.get("sound_recordings") or []) + len(release.get("images") or [])
        if releases and resource_count == 0:
            errors.append("ResourceList must contain at least one resource")

        LOGGER.info(
            "local_validation_completed",
            extra={"ern_version": ern_version, "profile": profile, "error_count": len(errors)},
        )
        return ValidationReport(valid=not errors, errors=errors, validator=LOCAL_VALIDATOR)
