"""Data models for duplicate detection"""

from .email import ParsedTransactionEmail, EmailIdentification
from .record import StoredEmailRecord, PortfolioTransaction
from .detection import DuplicateMatch, DuplicateDetectionResult, ValidationReport, IngestionOutcome
from .review import ReviewQueueItem, ReviewAction, ReviewQueueFilter, ReviewQueueStats
from .settings import DetectionSettings

__all__ = [
    "ParsedTransactionEmail",
    "EmailIdentification",
    "StoredEmailRecord",
    "PortfolioTransaction",
    "DuplicateMatch",
    "DuplicateDetectionResult",
    "ValidationReport",
    "IngestionOutcome",
    "ReviewQueueItem",
    "ReviewAction",
    "ReviewQueueFilter",
    "ReviewQueueStats",
    "DetectionSettings",
]
