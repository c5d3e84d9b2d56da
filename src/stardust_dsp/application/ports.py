"""Ports the application services depend on.

Adapters live in ``stardust_dsp.infrastructure``; services receive them
through their constructors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence

BATCH_WRITE_LIMIT = 500

FILTER_OPERATORS = frozenset({"==", "!=", "<", "<=", ">", ">=", "in"})


@dataclass(frozen=True, slots=True)
class Increment:
    """Field transform: add ``amount`` to the stored number (missing counts as 0)."""

    amount: float = 1


@dataclass(frozen=True, slots=True)
class ArrayUnion:
    """Field transform: append values not already present in the stored list."""

    values: tuple[Any, ...] = ()


@dataclass(frozen=True, slots=True)
class Filter:
    """Equality or range predicate on a dotted field path."""

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")


@dataclass(frozen=True, slots=True)
class StoredDocument:
    key: str
    data: dict[str, Any]


class WriteBatch(Protocol):
    """Group of writes applied together; at most ``BATCH_WRITE_LIMIT`` operations."""

    def set(self, collection: str, key: str, document: Mapping[str, Any], *, merge: bool = False) -> None:
        """Queue a set."""

    def update(self, collection: str, key: str, fields: Mapping[str, Any]) -> None:
        """Queue a field update."""

    def delete(self, collection: str, key: str) -> None:
        """Queue a delete."""

    def commit(self) -> int:
        """Apply queued writes and return how many were applied."""


class DocumentStore(Protocol):
    """Keyed documents grouped in collections, with field-level merge."""

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        """Return a copy of the document or ``None``."""

    def set(self, collection: str, key: str, document: Mapping[str, Any], *, merge: bool = False) -> None:
        """Write a document; ``merge`` deep-merges into an existing one."""

    def update(self, collection: str, key: str, fields: Mapping[str, Any]) -> None:
        """Apply dotted-path field writes; raises ``DocumentNotFoundError`` for a missing key."""

    def add(self, collection: str, document: Mapping[str, Any]) -> str:
        """Store a document under a generated key and return the key."""

    def delete(self, collection: str, key: str) -> None:
        """Remove a document if present."""

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[StoredDocument]:
        """Documents matching every filter."""

    def batch(self) -> WriteBatch:
        """Start a write batch."""


class ObjectStore(Protocol):
    """Blob storage for manifests, assets and report artifacts."""

    bucket: str

    def upload(self, key: str, payload: bytes, content_type: str = "application/octet-stream") -> str:
        """Store bytes and return the object key."""

    def download(self, key: str) -> bytes:
        """Fetch bytes; raises ``ObjectStoreError`` when missing."""

    def signed_url(self, key: str, expires_seconds: int) -> str:
        """Time-limited download URL."""

    def public_url(self, key: str) -> str:
        """Stable URL for a public asset key."""


@dataclass(frozen=True, slots=True)
class QueuedMessage:
    message_id: str
    topic: str
    payload: dict[str, Any]
    attempts: int = 1


class MessageQueue(Protocol):
    """At-least-once topic queue."""

    def publish(self, topic: str, payload: Mapping[str, Any]) -> str:
        """Enqueue a payload and return its message id."""

    def pull(self, topic: str, max_messages: int = 10) -> list[QueuedMessage]:
        """Lease up to ``max_messages`` ready messages."""

    def ack(self, message: QueuedMessage) -> None:
        """Mark a leased message done."""

    def nack(self, message: QueuedMessage, delay_seconds: float = 0.0) -> None:
        """Return a leased message for redelivery no sooner than ``delay_seconds`` from now."""

    def seconds_until_ready(self) -> float | None:
        """Seconds until the earliest deferred message is due, or None when nothing is deferred."""


@dataclass(frozen=True, slots=True)
class ValidationReport:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    validator: str = "unknown"


class ValidationService(Protocol):
    """External ERN validation; transport failures raise ``ValidationServiceError``."""

    def validate(self, content: str, graph: Mapping[str, Any], ern_version: str, profile: str) -> ValidationReport:
        """Validate one ERN message."""


@dataclass(frozen=True, slots=True)
class ReportArtifact:
    """A stored report plus the bytes handed to a transport."""

    report: dict[str, Any]
    content: bytes
    download_url: str
    expires_at: str


class ReportTransport(Protocol):
    """One delivery method; every failure raises ``ReportDeliveryError``."""

    method: str

    def deliver(self, artifact: ReportArtifact, distributor: Mapping[str, Any]) -> dict[str, Any]:
        """Send the report and return a delivery receipt."""
