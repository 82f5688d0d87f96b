"""Constants and enums for the duplicate detection system"""

from enum import Enum


class TransactionType(str, Enum):
    """Trade direction parsed from a confirmation email"""
    BUY = "buy"
    SELL = "sell"


class Recommendation(str, Enum):
    """Outcome of a detection call"""
    ACCEPT = "accept"
    REJECT = "reject"
    REVIEW = "review"


class RiskLevel(str, Enum):
    """Duplicate risk levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DetectionLevel(int, Enum):
    """Matcher levels, strongest first"""
    EMAIL_IDENTITY = 1
    ORDER_IDENTITY = 2
    TRANSACTION_FINGERPRINT = 3


class MatchSource(str, Enum):
    """What a duplicate match was found against"""
    EMAIL_RECORD = "email_record"
    TRANSACTION = "transaction"


class ReviewStatus(str, Enum):
    """Manual review queue item status"""
    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    DEFERRED = "deferred"


class ReviewPriority(str, Enum):
    """Manual review queue priority"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ReviewActionType(str, Enum):
    """Actions a reviewer can take on a queued item"""
    APPROVE = "approve"
    REJECT = "reject"
    ESCALATE = "escalate"
    DEFER = "defer"


LEVEL_NAMES = {
    DetectionLevel.EMAIL_IDENTITY: "email identity",
    DetectionLevel.ORDER_IDENTITY: "order identity",
    DetectionLevel.TRANSACTION_FINGERPRINT: "transaction fingerprint",
}

# Default detection thresholds
DEFAULT_LEVEL1_CONFIDENCE = 1.0
DEFAULT_LEVEL2_CONFIDENCE = 0.85
DEFAULT_LEVEL3_MIN_SIMILARITY = 0.30   # floor: below this no match is recorded
DEFAULT_REVIEW_THRESHOLD = 0.60        # best level-3 match at/above this goes to review
DEFAULT_LEVEL3_MAX_CONFIDENCE = 0.95   # only level 1 reaches 1.0

# Level-3 fingerprint weights (sum to 1.0)
DEFAULT_FINGERPRINT_WEIGHTS = {
    "symbol": 0.30,
    "transaction_type": 0.10,
    "quantity": 0.20,
    "price": 0.20,
    "date": 0.20,
}

# Numeric tolerances
DEFAULT_QUANTITY_REL_TOL = 1e-4
DEFAULT_QUANTITY_ABS_TOL = 1e-6
DEFAULT_PRICE_REL_TOL = 0.005
DEFAULT_DATE_WINDOW_DAYS = 2

# Store lookup retry
DEFAULT_STORE_MAX_RETRIES = 3
DEFAULT_STORE_BASE_DELAY = 0.5   # seconds
DEFAULT_STORE_MAX_DELAY = 8.0    # seconds

# Review queue
DEFAULT_MAX_QUEUE_SIZE = 1000
DEFAULT_ESCALATION_RISK_SCORE = 0.8
DEFAULT_AUTO_EXPIRY_HOURS = 168.0   # 7 days, applied only when auto expiry is enabled
DEFAULT_DEFER_HOURS = 24.0
DEFAULT_ESCALATION_HOURS = 24.0     # pending this long escalates one level
STALE_PENDING_HOURS = 24.0          # pending items older than this lower the health score
MAX_ESCALATION_LEVEL = 2
SYSTEM_REVIEWER = "system"

# Detection taking longer than this is flagged by validate_detection_result
SLOW_DETECTION_MS = 5000

SIGNATURE_LENGTH = 16
CONTENT_HASH_LENGTH = 12
TRANSACTION_HASH_LENGTH = 20
EXTRACTION_METHOD = "identification.v1"
