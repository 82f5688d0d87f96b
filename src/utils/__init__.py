"""Utility modules"""

from .config_loader import load_config, save_config, load_settings
from .errors import (
    DuplicateDetectionError,
    RecordStoreError,
    ConfigurationError,
    ReviewQueueError,
    CandidateComparisonError
)

__all__ = [
    "load_config",
    "save_config",
    "load_settings",
    "DuplicateDetectionError",
    "RecordStoreError",
    "ConfigurationError",
    "ReviewQueueError",
    "CandidateComparisonError"
]
