"""DDD domain layer."""

from .catalog import ArtworkSet, ReleaseRecord, TrackRecord, artist_slug
from .events import (
    DeliveryAcknowledged,
    DeliveryReceived,
    DomainEvent,
    ErnParsed,
    ErnRejected,
    ErnValidated,
    ReleasesProcessed,
    ReportDelivered,
    ReportDeliveryFailed,
    ReportGenerated,
    StageFailed,
    StatementGenerated,
    UsageAggregated,
)
from .models import (
    Delivery,
    Distributor,
    Distribution,
    DistributionStatus,
    MessageType,
    PlayEvent,
    ProcessingStatus,
    RoyaltyMethod,
    RoyaltyStatement,
    StatementStatus,
    can_transition,
)
from .policies import (
    DEFAULT_ARTWORK_POLICY,
    DEFAULT_RETRY_POLICY,
    DEFAULT_ROYALTY_POLICY,
    ArtworkPolicy,
    RetryPolicy,
    RoyaltyPolicy,
)
from .release_graph import ReleaseGraph

__all__ = [
    "ArtworkSet",
    "ReleaseRecord",
    "TrackRecord",
    "artist_slug",
    "DomainEvent",
    "DeliveryReceived",
    "ErnParsed",
    "ErnValidated",
    "ErnRejected",
    "ReleasesProcessed",
    "DeliveryAcknowledged",
    "StageFailed",
    "UsageAggregated",
    "StatementGenerated",
    "ReportGenerated",
    "ReportDelivered",
    "ReportDeliveryFailed",
    "Delivery",
    "Distributor",
    "Distribution",
    "DistributionStatus",
    "MessageType",
    "PlayEvent",
    "ProcessingStatus",
    "RoyaltyMethod",
    "RoyaltyStatement",
    "StatementStatus",
    "can_transition",
    "ArtworkPolicy",
    "RetryPolicy",
    "RoyaltyPolicy",
    "DEFAULT_ARTWORK_POLICY",
    "DEFAULT_RETRY_POLICY",
    "DEFAULT_ROYALTY_POLICY",
    "ReleaseGraph",
]
