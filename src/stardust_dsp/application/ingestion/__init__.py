"""Ingestion stages: receive, parse, validate, process, acknowledge."""

from .notifier import AcknowledgmentNotifier, ErrorNotificationHandler
from .parser import ErnParser
from .processor import ReleaseProcessor, release_id_for, track_id_for
from .receiver import DeliveryReceiver, delivery_id_for
from .validator import ErnValidator

__all__ = [
    "AcknowledgmentNotifier",
    "DeliveryReceiver",
    "ErnParser",
    "ErnValidator",
    "ErrorNotificationHandler",
    "ReleaseProcessor",
    "delivery_id_for",
    "release_id_for",
    "track_id_for",
]
