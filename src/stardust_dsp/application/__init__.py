"""DDD application layer."""

from .event_publisher import EventPublisher, NullEventPublisher
from .outcome import OutcomeKind, StageOutcome
from .pipeline import PipelineWorker

__all__ = ["EventPublisher", "NullEventPublisher", "OutcomeKind", "StageOutcome", "PipelineWorker"]
