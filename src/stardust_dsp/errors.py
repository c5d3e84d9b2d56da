"""Exception types shared across the ingestion and reporting services."""

from __future__ import annotations

from dataclasses import dataclass


class StardustError(RuntimeError):
    """Base error for the Stardust DSP services."""


class DocumentNotFoundError(StardustError, KeyError):
    """Raised when a document lookup or field update targets a missing key."""

    def __init__(self, collection: str, key: str) -> None:
        super().__init__(f"{collection}/{key} not found")
        self.collection = collection
        self.key = key

    def __str__(self) -> str:
        return f"{self.collection}/{self.key} not found"


class ObjectStoreError(StardustError):
    """Raised when an object cannot be read from or written to blob storage."""


class ErnParseError(StardustError):
    """Raised when an ERN manifest cannot be turned into a release graph."""


class ValidationServiceError(StardustError):
    """Transport-level failure talking to the ERN validation service."""


class InvalidPeriodError(StardustError, ValueError):
    """Raised for royalty/report period strings that match no known format."""


class StatementLockedError(StardustError):
    """Raised when a paid royalty statement would be mutated."""


class PlayCompletedError(StardustError):
    """Raised when progress is reported for a play that has already completed."""


class StatusTransitionError(StardustError):
    """Raised when a delivery status would move backwards."""


class ReportDeliveryError(StardustError):
    """Generic delivery failure raised by every report transport."""


@dataclass(eq=False)
class InvalidRequestError(ValueError):
    """Input-validation failure surfaced to API and CLI callers."""

    code: str
    message: str

    def __str__(self) -> str:
        return self.message

    def as_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}
