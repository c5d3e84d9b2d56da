"""Domain event contracts for ingestion and reporting workflows."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True, slots=True)
class DomainEvent:
    """Base domain event emitted by application services."""

    correlation_id: str
    payload_summary: dict[str, Any]
    occurred_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))


@dataclass(frozen=True, slots=True)
class DeliveryReceived(DomainEvent):
    """A manifest landed and a Delivery record was created."""


@dataclass(frozen=True, slots=True)
class ErnParsed(DomainEvent):
    """The manifest was parsed into a release graph."""


@dataclass(frozen=True, slots=True)
class ErnValidated(DomainEvent):
    """The validation service accepted the message."""


@dataclass(frozen=True, slots=True)
class ErnRejected(DomainEvent):
    """The validation service reported content errors."""


@dataclass(frozen=True, slots=True)
class ReleasesProcessed(DomainEvent):
    """Catalog entities were written for every release in a message."""


@dataclass(frozen=True, slots=True)
class DeliveryAcknowledged(DomainEvent):
    """An acknowledgment document was stored for the distributor."""


@dataclass(frozen=True, slots=True)
class StageFailed(DomainEvent):
    """A stage moved its delivery to a terminal failure status."""


@dataclass(frozen=True, slots=True)
class PlayRecorded(DomainEvent):
    """A listener started a track and its play counters moved."""


@dataclass(frozen=True, slots=True)
class PlayCompleted(DomainEvent):
    """A play reached the completion threshold."""


@dataclass(frozen=True, slots=True)
class UsageAggregated(DomainEvent):
    """Play events for one window were folded into daily aggregates."""


@dataclass(frozen=True, slots=True)
class StatementGenerated(DomainEvent):
    """A draft royalty statement was persisted."""


@dataclass(frozen=True, slots=True)
class ReportGenerated(DomainEvent):
    """A report artifact was rendered and stored."""


@dataclass(frozen=True, slots=True)
class ReportDelivered(DomainEvent):
    """A report reached its configured transport."""


@dataclass(frozen=True, slots=True)
class ReportDeliveryFailed(DomainEvent):
    """A report transport raised a delivery failure."""
