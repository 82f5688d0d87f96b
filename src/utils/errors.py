"""Custom exceptions for duplicate detection"""


class DuplicateDetectionError(Exception):
    """Base exception for duplicate detection errors"""
    pass


class RecordStoreError(DuplicateDetectionError):
    """Stored-record lookup or persistence errors"""
    pass


class ConfigurationError(DuplicateDetectionError):
    """Configuration loading errors"""
    pass


class ReviewQueueError(DuplicateDetectionError):
    """Manual review queue errors"""
    pass


class CandidateComparisonError(DuplicateDetectionError):
    """A single stored record could not be compared"""
    pass
