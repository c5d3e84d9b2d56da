"""Scheduled usage, royalty and report services."""

from .dispatch import REPORT_DELIVERIES, ReportDispatcher
from .reports import REPORTS, ReportGenerator
from .royalties import PaymentProcessor, RoyaltyEngine, StatementRepository
from .usage import PlayTracker, UsageAggregator, get_usage_report

__all__ = [
    "REPORTS",
    "REPORT_DELIVERIES",
    "PaymentProcessor",
    "PlayTracker",
    "ReportDispatcher",
    "ReportGenerator",
    "RoyaltyEngine",
    "StatementRepository",
    "UsageAggregator",
    "get_usage_report",
]
