"""Domain records persisted by the ingestion and reporting services."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from stardust_dsp.errors import StatusTransitionError


class ProcessingStatus(str, Enum):
    """Lifecycle states of a delivery moving through the ingestion chain."""

    PENDING = "pending"
    PARSING = "parsing"
    PARSED = "parsed"
    VALIDATING = "validating"
    VALIDATED = "validated"
    PROCESSING_RELEASES = "processing_releases"
    COMPLETED = "completed"
    FAILED = "failed"
    PARSE_FAILED = "parse_failed"
    VALIDATION_FAILED = "validation_failed"
    VALIDATION_ERROR = "validation_error"
    PROCESSING_FAILED = "processing_failed"

    @property
    def is_terminal_failure(self) -> bool:
        return self in _FAILURE_STATES

    @property
    def rank(self) -> int:
        if self in _FAILURE_STATES:
            return _FAILURE_RANK
        return _FORWARD_CHAIN.index(self)


_FORWARD_CHAIN: tuple[ProcessingStatus, ...] = (
    ProcessingStatus.PENDING,
    ProcessingStatus.PARSING,
    ProcessingStatus.PARSED,
    ProcessingStatus.VALIDATING,
    ProcessingStatus.VALIDATED,
    ProcessingStatus.PROCESSING_RELEASES,
    ProcessingStatus.COMPLETED,
)
_FAILURE_STATES = frozenset(
    {
        ProcessingStatus.FAILED,
        ProcessingStatus.PARSE_FAILED,
        ProcessingStatus.VALIDATION_FAILED,
        ProcessingStatus.VALIDATION_ERROR,
        ProcessingStatus.PROCESSING_FAILED,
    }
)
_FAILURE_RANK = len(_FORWARD_CHAIN)

# validation_error is the one failure the queue may redeliver out of.
_RETRY_TRANSITIONS: dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    ProcessingStatus.VALIDATION_ERROR: frozenset({ProcessingStatus.VALIDATING}),
}


def can_transition(current: ProcessingStatus, target: ProcessingStatus) -> bool:
    """Return True when ``current -> target`` never moves the delivery backwards."""

    if current == target:
        return True
    if target in _RETRY_TRANSITIONS.get(current, frozenset()):
        return True
    if current.is_terminal_failure or current is ProcessingStatus.COMPLETED:
        return False
    if target.is_terminal_failure:
        return True
    return target.rank > current.rank


def ensure_transition(current: ProcessingStatus, target: ProcessingStatus) -> None:
    if not can_transition(current, target):
        raise StatusTransitionError(f"delivery status cannot move from {current.value} to {target.value}")


class MessageType(str, Enum):
    NEW_RELEASE = "NewRelease"
    UPDATE = "Update"
    TAKEDOWN = "Takedown"


@dataclass(slots=True)
class PackageInfo:
    bucket: str
    path: str
    directory: str
    size: int | None = None
    content_type: str | None = None


@dataclass(slots=True)
class ProcessingState:
    status: ProcessingStatus = ProcessingStatus.PENDING
    timestamps: dict[str, str] = field(default_factory=dict)
    error: str | None = None
    error_detail: str | None = None
    attempts: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    release_count: int = 0
    track_count: int = 0
    reprocess_count: int = 0


@dataclass(slots=True)
class ErnInfo:
    version: str | None = None
    profile: str | None = None
    message_id: str | None = None
    sender: dict[str, str] = field(default_factory=dict)
    message_type: MessageType = MessageType.NEW_RELEASE
    release_count: int = 0


@dataclass(slots=True)
class ValidationSummary:
    valid: bool | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    validator: str | None = None
    profile: str | None = None
    validated_at: str | None = None


@dataclass(slots=True)
class Delivery:
    """Audit record for one landed ERN package."""

    id: str
    sender: str
    package: PackageInfo
    processing: ProcessingState = field(default_factory=ProcessingState)
    ern: ErnInfo = field(default_factory=ErnInfo)
    validation: ValidationSummary = field(default_factory=ValidationSummary)
    acknowledgment: dict[str, str] | None = None
    created_at: str | None = None

    @property
    def status(self) -> ProcessingStatus:
        return self.processing.status

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sender": self.sender,
            "package": {
                "bucket": self.package.bucket,
                "path": self.package.path,
                "directory": self.package.directory,
                "size": self.package.size,
                "contentType": self.package.content_type,
            },
            "processing": {
                "status": self.processing.status.value,
                "timestamps": dict(self.processing.timestamps),
                "error": self.processing.error,
                "errorDetail": self.processing.error_detail,
                "attempts": dict(self.processing.attempts),
                "warnings": list(self.processing.warnings),
                "releaseCount": self.processing.release_count,
                "trackCount": self.processing.track_count,
                "reprocessCount": self.processing.reprocess_count,
            },
            "ern": {
                "version": self.ern.version,
                "profile": self.ern.profile,
                "messageId": self.ern.message_id,
                "sender": dict(self.ern.sender),
                "messageType": self.ern.message_type.value,
                "releaseCount": self.ern.release_count,
            },
            "validation": {
                "valid": self.validation.valid,
                "errors": list(self.validation.errors),
                "warnings": list(self.validation.warnings),
                "validator": self.validation.validator,
                "profile": self.validation.profile,
                "validatedAt": self.validation.validated_at,
            },
            "acknowledgment": self.acknowledgment,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "Delivery":
        package = document.get("package") or {}
        processing = document.get("processing") or {}
        ern = document.get("ern") or {}
        validation = document.get("validation") or {}
        return cls(
            id=document["id"],
            sender=document.get("sender", ""),
            package=PackageInfo(
                bucket=package.get("bucket", ""),
                path=package.get("path", ""),
                directory=package.get("directory", ""),
                size=package.get("size"),
                content_type=package.get("contentType"),
            ),
            processing=ProcessingState(
                status=ProcessingStatus(processing.get("status", ProcessingStatus.PENDING.value)),
                timestamps=dict(processing.get("timestamps") or {}),
                error=processing.get("error"),
                error_detail=processing.get("errorDetail"),
                attempts=dict(processing.get("attempts") or {}),
                warnings=list(processing.get("warnings") or []),
                release_count=processing.get("releaseCount", 0),
                track_count=processing.get("trackCount", 0),
                reprocess_count=processing.get("reprocessCount", 0),
            ),
            ern=ErnInfo(
                version=ern.get("version"),
                profile=ern.get("profile"),
                message_id=ern.get("messageId"),
                sender=dict(ern.get("sender") or {}),
                message_type=MessageType(ern.get("messageType", MessageType.NEW_RELEASE.value)),
                release_count=ern.get("releaseCount", 0),
            ),
            validation=ValidationSummary(
                valid=validation.get("valid"),
                errors=list(validation.get("errors") or []),
                warnings=list(validation.get("warnings") or []),
                validator=validation.get("validator"),
                profile=validation.get("profile"),
                validated_at=validation.get("validatedAt"),
            ),
            acknowledgment=document.get("acknowledgment"),
            created_at=document.get("createdAt"),
        )


class DistributionStatus(str, Enum):
    PENDING = "pending"
    HELD = "held"
    PAID = "paid"


class StatementStatus(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    PAID = "paid"


class RoyaltyMethod(str, Enum):
    PRO_RATA = "pro-rata"
    USER_CENTRIC = "user-centric"
    HYBRID = "hybrid"


@dataclass(slots=True)
class Distribution:
    """Amount owed to one rights holder in a statement."""

    rights_holder_id: str
    name: str | None
    holder_type: str
    streams: float
    share_percentage: float
    gross_amount: float
    net_amount: float
    track_count: int
    status: DistributionStatus = DistributionStatus.PENDING
    held_amount: float = 0.0
    held_reason: str | None = None
    payment_id: str | None = None

    def to_document(self) -> dict[str, Any]:
        return {
            "rightsHolderId": self.rights_holder_id,
            "name": self.name,
            "type": self.holder_type,
            "streams": self.streams,
            "sharePercentage": self.share_percentage,
            "grossAmount": self.gross_amount,
            "netAmount": self.net_amount,
            "trackCount": self.track_count,
            "status": self.status.value,
            "heldAmount": self.held_amount,
            "heldReason": self.held_reason,
            "paymentId": self.payment_id,
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "Distribution":
        return cls(
            rights_holder_id=document["rightsHolderId"],
            name=document.get("name"),
            holder_type=document.get("type", "label"),
            streams=document.get("streams", 0),
            share_percentage=document.get("sharePercentage", 0.0),
            gross_amount=document.get("grossAmount", 0.0),
            net_amount=document.get("netAmount", 0.0),
            track_count=document.get("trackCount", 0),
            status=DistributionStatus(document.get("status", DistributionStatus.PENDING.value)),
            held_amount=document.get("heldAmount", 0.0),
            held_reason=document.get("heldReason"),
            payment_id=document.get("paymentId"),
        )


@dataclass(slots=True)
class RoyaltyStatement:
    statement_id: str
    period: str
    start_date: str
    end_date: str
    territory: str
    method: RoyaltyMethod
    total_revenue: float
    platform_fees: float
    net_revenue: float
    distributions: list[Distribution]
    status: StatementStatus = StatementStatus.DRAFT
    payment_status: str | None = None
    generated_by: str | None = None
    generated_at: str | None = None
    revenue_source: str = "recorded"

    @property
    def total_distributed(self) -> float:
        return sum(item.net_amount for item in self.distributions if item.status is not DistributionStatus.HELD)

    @property
    def total_held(self) -> float:
        return sum(item.held_amount for item in self.distributions)

    def to_document(self) -> dict[str, Any]:
        return {
            "statementId": self.statement_id,
            "period": self.period,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "territory": self.territory,
            "method": self.method.value,
            "totalRevenue": self.total_revenue,
            "platformFees": self.platform_fees,
            "netRevenue": self.net_revenue,
            "totalDistributed": self.total_distributed,
            "totalHeld": self.total_held,
            "distributions": [item.to_document() for item in self.distributions],
            "status": self.status.value,
            "paymentStatus": self.payment_status,
            "generatedBy": self.generated_by,
            "generatedAt": self.generated_at,
            "revenueSource": self.revenue_source,
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "RoyaltyStatement":
        return cls(
            statement_id=document["statementId"],
            period=document.get("period", ""),
            start_date=document.get("startDate", ""),
            end_date=document.get("endDate", ""),
            territory=document.get("territory", "worldwide"),
            method=RoyaltyMethod(document.get("method", RoyaltyMethod.PRO_RATA.value)),
            total_revenue=document.get("totalRevenue", 0.0),
            platform_fees=document.get("platformFees", 0.0),
            net_revenue=document.get("netRevenue", 0.0),
            distributions=[Distribution.from_document(item) for item in document.get("distributions", [])],
            status=StatementStatus(document.get("status", StatementStatus.DRAFT.value)),
            payment_status=document.get("paymentStatus"),
            generated_by=document.get("generatedBy"),
            generated_at=document.get("generatedAt"),
            revenue_source=document.get("revenueSource", "recorded"),
        )


@dataclass(frozen=True, slots=True)
class PlayEvent:
    """One playback record written by the player."""

    play_id: str
    track_id: str
    release_id: str | None
    user_id: str | None
    timestamp: str
    date: str
    hour: int | None = None
    country: str | None = None
    dsp: str | None = None
    artist_id: str | None = None
    duration: float = 0.0
    completed: bool = False

    @classmethod
    def from_document(cls, key: str, document: dict[str, Any]) -> "PlayEvent":
        return cls(
            play_id=key,
            track_id=document["trackId"],
            release_id=document.get("releaseId"),
            user_id=document.get("userId"),
            timestamp=document["timestamp"],
            date=document.get("date") or document["timestamp"][:10],
            hour=document.get("hour"),
            country=document.get("country"),
            dsp=document.get("dsp"),
            artist_id=document.get("artistId"),
            duration=float(document.get("duration") or 0.0),
            completed=bool(document.get("completed", False)),
        )


@dataclass(slots=True)
class Distributor:
    """Content distributor registered to deliver ERN packages and receive reports."""

    id: str
    name: str
    active: bool = True
    auto_process: bool = True
    send_acknowledgments: bool = True
    email: str | None = None
    cc_emails: list[str] = field(default_factory=list)
    ftp_config: dict[str, Any] | None = None
    s3_config: dict[str, Any] | None = None
    api_config: dict[str, Any] | None = None
    webhook_url: str | None = None
    webhook_secret: str | None = None
    preferred_delivery_method: str | None = None
    preferred_format: str = "DDEX"
    auto_generate_dsr: bool = False
    territory: str = "worldwide"

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "active": self.active,
            "autoProcess": self.auto_process,
            "sendAcknowledgments": self.send_acknowledgments,
            "email": self.email,
            "ccEmails": list(self.cc_emails),
            "ftpConfig": self.ftp_config,
            "s3Config": self.s3_config,
            "apiConfig": self.api_config,
            "webhookUrl": self.webhook_url,
            "webhookSecret": self.webhook_secret,
            "preferredDeliveryMethod": self.preferred_delivery_method,
            "preferredFormat": self.preferred_format,
            "autoGenerateDSR": self.auto_generate_dsr,
            "territory": self.territory,
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "Distributor":
        return cls(
            id=document["id"],
            name=document.get("name") or document["id"],
            active=bool(document.get("active", True)),
            auto_process=bool(document.get("autoProcess", True)),
            send_acknowledgments=bool(document.get("sendAcknowledgments", True)),
            email=document.get("email"),
            cc_emails=list(document.get("ccEmails") or []),
            ftp_config=document.get("ftpConfig"),
            s3_config=document.get("s3Config"),
            api_config=document.get("apiConfig"),
            webhook_url=document.get("webhookUrl"),
            webhook_secret=document.get("webhookSecret"),
            preferred_delivery_method=document.get("preferredDeliveryMethod"),
            preferred_format=document.get("preferredFormat") or "DDEX",
            auto_generate_dsr=bool(document.get("autoGenerateDSR", False)),
            territory=document.get("territory") or "worldwide",
        )
