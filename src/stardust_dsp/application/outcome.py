"""Tagged stage results that separate terminal failures from retryable ones."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class OutcomeKind(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    TERMINAL = "terminal"
    TRANSIENT = "transient"


@dataclass(frozen=True, slots=True)
class StageOutcome:
    """What a stage did with one job; the worker decides ack vs redelivery from ``kind``."""

    kind: OutcomeKind
    delivery_id: str | None = None
    detail: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def completed(cls, delivery_id: str | None, **data: Any) -> "StageOutcome":
        return cls(OutcomeKind.COMPLETED, delivery_id, None, data)

    @classmethod
    def skipped(cls, delivery_id: str | None, detail: str) -> "StageOutcome":
        return cls(OutcomeKind.SKIPPED, delivery_id, detail)

    @classmethod
    def terminal(cls, delivery_id: str | None, detail: str, **data: Any) -> "StageOutcome":
        return cls(OutcomeKind.TERMINAL, delivery_id, detail, data)

    @classmethod
    def transient(cls, delivery_id: str | None, detail: str, **data: Any) -> "StageOutcome":
        return cls(OutcomeKind.TRANSIENT, delivery_id, detail, data)

    @property
    def is_success(self) -> bool:
        return self.kind in {OutcomeKind.COMPLETED, OutcomeKind.SKIPPED}

    @property
    def should_retry(self) -> bool:
        return self.kind is OutcomeKind.TRANSIENT
