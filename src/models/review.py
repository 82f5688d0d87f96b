"""Manual review queue models"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Dict, Any
from src.constants import MatchSource, ReviewStatus, ReviewPriority, ReviewActionType
from src.models.email import ParsedTransactionEmail, EmailIdentification
from src.models.detection import DuplicateDetectionResult


class PotentialDuplicate(BaseModel):
    """Stored record or ledger transaction a queued email may duplicate"""

    record_id: str
    source: MatchSource = MatchSource.EMAIL_RECORD
    similarity: float = Field(..., ge=0, le=1)
    reason: str = ""


class ReviewQueueItem(BaseModel):
    """Email awaiting a human decision"""

    id: str = Field(..., description="Queue item ID")
    email_data: ParsedTransactionEmail
    email_identification: EmailIdentification
    detection_result: DuplicateDetectionResult
    portfolio_id: str
    queued_at: datetime = Field(default_factory=datetime.now)
    priority: ReviewPriority = ReviewPriority.MEDIUM
    status: ReviewStatus = ReviewStatus.PENDING
    escalation_level: int = Field(0, ge=0, description="0 normal, 1 escalated, 2 senior review")
    potential_duplicates: List[PotentialDuplicate] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0, le=1)
    risk_score: float = Field(0.0, ge=0, le=1)
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    claimed_by: Optional[str] = Field(None, description="Reviewer holding the item while in review")
    expires_at: Optional[datetime] = Field(None, description="Auto-approved by process_expired after this")
    review_notes: Optional[str] = None
    stored_record_id: Optional[str] = Field(None, description="Record persisted on approval")


class ReviewAction(BaseModel):
    """Reviewer decision on a queue item"""

    action: ReviewActionType
    reviewer_id: str = Field(..., min_length=1)
    reason: str = ""
    notes: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ReviewQueueFilter(BaseModel):
    """Criteria for listing queue items; unset fields match everything"""

    status: Optional[List[ReviewStatus]] = None
    priority: Optional[List[ReviewPriority]] = None
    portfolio_id: Optional[str] = None
    symbol: Optional[str] = None
    tags: Optional[List[str]] = None
    min_confidence: Optional[float] = None
    max_confidence: Optional[float] = None


class ReviewQueueStats(BaseModel):
    """Snapshot of queue health"""

    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_priority: Dict[str, int] = Field(default_factory=dict)
    by_escalation_level: Dict[int, int] = Field(default_factory=dict)
    average_review_seconds: float = 0.0
    oldest_pending_at: Optional[datetime] = None
    health_score: int = Field(100, ge=0, le=100, description="100 is an empty or fresh queue")
