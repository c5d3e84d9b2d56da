from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from stardust_dsp.application.ports import ReportArtifact, ValidationReport
from stardust_dsp.errors import ReportDeliveryError, ValidationServiceError
from stardust_dsp.infrastructure.document_stores import InMemoryDocumentStore
from stardust_dsp.infrastructure.object_stores import LocalObjectStore
from stardust_dsp.interfaces.runtime import Runtime
from stardust_dsp.utils.config import AppConfig

GRID = "A10302B0001234567X"
ISRC = "USRC17607839"

SINGLE_TRACK_ERN = """<?xml version="1.0" encoding="UTF-8"?>
<ern:NewReleaseMessage xmlns:ern="http://ddex.net/xml/ern/43" MessageSchemaVersionId="ern/43">
  <MessageHeader>
    <MessageId>MSG-001</MessageId>
    <MessageSender>
      <PartyId>PADPIDA2014021301F</PartyId>
      <PartyName><FullName>Nebula Records</FullName></PartyName>
    </MessageSender>
    <MessageCreatedDateTime>2026-03-01T10:00:00Z</MessageCreatedDateTime>
  </MessageHeader>
  <ResourceList>
    <SoundRecording>
      <ResourceReference>A1</ResourceReference>
      <SoundRecordingId><ISRC>USRC17607839</ISRC></SoundRecordingId>
      <ReferenceTitle><TitleText>Orbit</TitleText></ReferenceTitle>
      <DisplayArtistName>Luna Vale</DisplayArtistName>
      <Duration>PT3M25S</Duration>
      <ResourceContributor>
        <PartyName><FullName>Ada Stone</FullName></PartyName>
        <ResourceContributorRole>Composer</ResourceContributorRole>
      </ResourceContributor>
      <TechnicalDetails><File><FileName>resources/orbit.flac</FileName></File></TechnicalDetails>
    </SoundRecording>
    <Image>
      <ResourceReference>A2</ResourceReference>
      <ImageType>FrontCoverImage</ImageType>
      <TechnicalDetails><File><FileName>resources/cover.jpg</FileName></File></TechnicalDetails>
    </Image>
  </ResourceList>
  <ReleaseList>
    <Release>
      <ReleaseReference>R0</ReleaseReference>
      <ReleaseId><GRid>A10302B0001234567X</GRid><ICPN>0123456789012</ICPN></ReleaseId>
      <ReferenceTitle><TitleText>Orbit & Ash</TitleText></ReferenceTitle>
      <DisplayArtistName>Luna Vale</DisplayArtistName>
      <LabelName>Nebula Records</LabelName>
      <ReleaseType>Single</ReleaseType>
      <ReleaseResourceReferenceList>
        <ReleaseResourceReference>A1</ReleaseResourceReference>
        <ReleaseResourceReference>A2</ReleaseResourceReference>
      </ReleaseResourceReferenceList>
    </Release>
  </ReleaseList>
</ern:NewReleaseMessage>
"""

COVERLESS_ERN = """<?xml version="1.0" encoding="UTF-8"?>
<NewReleaseMessage MessageSchemaVersionId="ern/382">
  <MessageHeader>
    <MessageId>MSG-010</MessageId>
    <MessageSender><PartyId>PADPIDA2014021301F</PartyId></MessageSender>
    <MessageCreatedDateTime>2026-03-02T09:00:00Z</MessageCreatedDateTime>
  </MessageHeader>
  <ResourceList>
    <SoundRecording>
      <ResourceReference>A1</ResourceReference>
      <SoundRecordingId><ISRC>GBAYE0601498</ISRC></SoundRecordingId>
      <ReferenceTitle><TitleText>Tidal Lock</TitleText></ReferenceTitle>
      <Duration>04:10</Duration>
    </SoundRecording>
  </ResourceList>
  <ReleaseList>
    <Release>
      <ReleaseReference>R0</ReleaseReference>
      <ReleaseId><ICPN>0987654321098</ICPN></ReleaseId>
      <ReferenceTitle><TitleText>Tidal Lock</TitleText></ReferenceTitle>
      <DisplayArtistName>Kepler Choir</DisplayArtistName>
      <LabelName>Perihelion</LabelName>
    </Release>
  </ReleaseList>
</NewReleaseMessage>
"""

TAKEDOWN_ERN = """<?xml version="1.0" encoding="UTF-8"?>
<NewReleaseMessage xmlns="http://ddex.net/xml/ern/43">
  <MessageHeader>
    <MessageId>MSG-002</MessageId>
    <MessageSender><PartyId>PADPIDA2014021301F</PartyId></MessageSender>
    <MessageCreatedDateTime>2026-04-01T10:00:00Z</MessageCreatedDateTime>
  </MessageHeader>
  <ReleaseList>
    <Release>
      <ReleaseReference>R0</ReleaseReference>
      <ReleaseId><GRid>A10302B0001234567X</GRid></ReleaseId>
      <ReferenceTitle><TitleText>Orbit &amp; Ash</TitleText></ReferenceTitle>
    </Release>
  </ReleaseList>
  <DealList>
    <ReleaseDeal>
      <DealReleaseReference>R0</DealReleaseReference>
      <Deal><DealTerms><TakeDown>true</TakeDown></DealTerms></Deal>
    </ReleaseDeal>
  </DealList>
</NewReleaseMessage>
"""


class FakeValidationService:
    """Returns queued reports in order, after raising ``failures`` transport errors."""

    def __init__(self) -> None:
        self.reports: list[ValidationReport] = []
        self.failures = 0
        self.calls: list[tuple[str, str]] = []

    def validate(self, content, graph, ern_version, profile) -> ValidationReport:
        self.calls.append((ern_version, profile))
        if self.failures:
            self.failures -= 1
            raise ValidationServiceError("validation service unreachable")
        if self.reports:
            return self.reports.pop(0)
        return ValidationReport(valid=True, validator="fake-validator")


@dataclass
class RecordingTransport:
    method: str
    fail: bool = False
    sent: list[tuple[str, str]] = field(default_factory=list)

    def deliver(self, artifact: ReportArtifact, distributor) -> dict[str, Any]:
        self.sent.append((artifact.report["reportId"], distributor["id"]))
        if self.fail:
            raise ReportDeliveryError(f"{self.method} endpoint refused the report")
        return {"success": True, "method": self.method}


class ManualClock:
    """Clock whose sleep advances time instead of blocking."""

    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        self.slept: list[float] = []

    def __call__(self) -> datetime:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.slept.append(seconds)
        self.now += timedelta(seconds=seconds)


class RecordingPublisher:
    def __init__(self) -> None:
        self.events = []

    def publish(self, event) -> None:
        self.events.append(event)

    @property
    def names(self) -> list[str]:
        return [type(event).__name__ for event in self.events]


@pytest.fixture
def validator() -> FakeValidationService:
    return FakeValidationService()


@pytest.fixture
def transports() -> dict[str, RecordingTransport]:
    return {"webhook": RecordingTransport("webhook"), "email": RecordingTransport("email")}


@pytest.fixture
def events() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def build_runtime(tmp_path, validator, transports, events, clock) -> Callable[..., Runtime]:
    def _build(config: AppConfig | None = None) -> Runtime:
        return Runtime.from_config(
            config or AppConfig(),
            store=InMemoryDocumentStore(),
            objects=LocalObjectStore(tmp_path / "objects"),
            validation_service=validator,
            transports=transports,
            event_publisher=events,
            clock=clock,
            sleep=clock.sleep,
        )

    return _build


@pytest.fixture
def runtime(build_runtime) -> Runtime:
    return build_runtime()


@pytest.fixture
def deliver(runtime) -> Callable[..., Any]:
    """Land a manifest in the inbox and hand the finalize notification to the receiver."""

    def _deliver(xml: str, distributor: str = "nebula", token: str = "1700000000000"):
        key = f"deliveries/{distributor}/{token}/manifest.xml"
        runtime.objects.upload(key, xml.encode("utf-8"), content_type="application/xml")
        return runtime.receiver.handle_object(runtime.objects.bucket, key, content_type="application/xml")

    return _deliver
