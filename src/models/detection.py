"""Duplicate detection result models"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional
from src.constants import DetectionLevel, MatchSource, Recommendation, RiskLevel
from src.models.email import EmailIdentification


class DuplicateMatch(BaseModel):
    """One matcher hit against one stored record or ledger transaction"""

    level: DetectionLevel = Field(..., description="Matcher level that produced the match")
    confidence: float = Field(..., ge=0, le=1, description="Match confidence (0-1)")
    matched_record_id: str = Field(..., description="ID of the stored record or transaction compared against")
    source: MatchSource = Field(MatchSource.EMAIL_RECORD, description="Kind of candidate matched")
    matched_fields: List[str] = Field(default_factory=list, description="Fields that agreed")
    reasons: List[str] = Field(default_factory=list, description="Human-readable reasons")


class DuplicateDetectionResult(BaseModel):
    """Output of one detection call"""

    matches: List[DuplicateMatch] = Field(default_factory=list, description="Matches, level 1 first")
    overall_confidence: float = Field(..., ge=0, le=1, description="Aggregated duplicate confidence")
    risk_level: RiskLevel = Field(..., description="Duplicate risk")
    recommendation: Recommendation = Field(..., description="accept, reject or review")
    summary: str = Field(..., description="One-line justification")
    processing_time: float = Field(0.0, ge=0, description="Elapsed milliseconds")
    warnings: List[str] = Field(default_factory=list, description="Recovered per-candidate problems")
    email_identification: Optional[EmailIdentification] = Field(None, description="Identification of the new email")
    processed_at: datetime = Field(default_factory=datetime.now, description="Completion timestamp")

    @property
    def is_duplicate(self) -> bool:
        return self.recommendation != Recommendation.ACCEPT

    def best_match(self, level: Optional[DetectionLevel] = None) -> Optional[DuplicateMatch]:
        """Highest-confidence match, optionally restricted to one level"""
        candidates = [m for m in self.matches if level is None or m.level == level]
        if not candidates:
            return None
        return max(candidates, key=lambda m: m.confidence)


class ValidationReport(BaseModel):
    """Errors and warnings from validating an identification or result"""

    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


class IngestionOutcome(BaseModel):
    """What the ingestion pipeline did with one email"""

    recommendation: Recommendation
    detection_result: Optional[DuplicateDetectionResult] = None
    stored_record_id: Optional[str] = Field(None, description="Set when the email was accepted and persisted")
    queue_item_id: Optional[str] = Field(None, description="Set when the email was sent to manual review")
    detection_error: Optional[str] = Field(None, description="Set when detection failed and review was forced")
