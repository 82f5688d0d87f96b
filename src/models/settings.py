"""Detection settings model"""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Dict, Any
from src.constants import (
    DEFAULT_LEVEL2_CONFIDENCE,
    DEFAULT_LEVEL3_MIN_SIMILARITY,
    DEFAULT_REVIEW_THRESHOLD,
    DEFAULT_LEVEL3_MAX_CONFIDENCE,
    DEFAULT_FINGERPRINT_WEIGHTS,
    DEFAULT_QUANTITY_REL_TOL,
    DEFAULT_QUANTITY_ABS_TOL,
    DEFAULT_PRICE_REL_TOL,
    DEFAULT_DATE_WINDOW_DAYS,
    DEFAULT_STORE_MAX_RETRIES,
    DEFAULT_STORE_BASE_DELAY,
    DEFAULT_STORE_MAX_DELAY,
    DEFAULT_MAX_QUEUE_SIZE,
    DEFAULT_ESCALATION_RISK_SCORE,
    DEFAULT_AUTO_EXPIRY_HOURS,
    DEFAULT_DEFER_HOURS,
    DEFAULT_ESCALATION_HOURS,
)


class FingerprintSettings(BaseModel):
    """Level-3 similarity weights and tolerances"""

    model_config = ConfigDict(frozen=True)

    weights: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_FINGERPRINT_WEIGHTS),
        description="Weight per fingerprint field (symbol, transaction_type, quantity, price, date)"
    )
    quantity_rel_tol: float = Field(DEFAULT_QUANTITY_REL_TOL, ge=0)
    quantity_abs_tol: float = Field(DEFAULT_QUANTITY_ABS_TOL, ge=0)
    price_rel_tol: float = Field(DEFAULT_PRICE_REL_TOL, ge=0)
    date_window_days: int = Field(DEFAULT_DATE_WINDOW_DAYS, ge=0)

    @model_validator(mode="after")
    def _check_weights(self):
        unknown = set(self.weights) - set(DEFAULT_FINGERPRINT_WEIGHTS)
        if unknown:
            raise ValueError(f"Unknown fingerprint fields: {sorted(unknown)}")
        if any(w < 0 for w in self.weights.values()):
            raise ValueError("Fingerprint weights must be non-negative")
        if abs(sum(self.weights.values()) - 1.0) > 1e-6:
            raise ValueError("Fingerprint weights must sum to 1.0")
        return self


class StoreSettings(BaseModel):
    """Record store backend and lookup retry policy"""

    model_config = ConfigDict(frozen=True)

    backend: str = Field("memory", pattern="^(memory|redis)$")
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "email_records"
    max_retries: int = Field(DEFAULT_STORE_MAX_RETRIES, ge=1)
    base_delay_seconds: float = Field(DEFAULT_STORE_BASE_DELAY, ge=0)
    max_delay_seconds: float = Field(DEFAULT_STORE_MAX_DELAY, ge=0)


class ReviewQueueSettings(BaseModel):
    """Manual review queue limits, expiry and escalation windows"""

    model_config = ConfigDict(frozen=True)

    max_queue_size: int = Field(DEFAULT_MAX_QUEUE_SIZE, ge=1)
    escalation_risk_score: float = Field(DEFAULT_ESCALATION_RISK_SCORE, ge=0, le=1)
    auto_expiry_enabled: bool = Field(
        False,
        description="Auto-approve pending items once they outlive auto_expiry_hours"
    )
    auto_expiry_hours: float = Field(DEFAULT_AUTO_EXPIRY_HOURS, gt=0)
    defer_hours: float = Field(DEFAULT_DEFER_HOURS, gt=0, description="Deferred items expire after this long")
    escalation_hours: float = Field(
        DEFAULT_ESCALATION_HOURS, gt=0,
        description="Time pending without action before an automatic escalation"
    )


class DetectionSettings(BaseModel):
    """Thresholds driving the three matcher levels and the aggregator"""

    model_config = ConfigDict(frozen=True)

    level2_confidence: float = Field(DEFAULT_LEVEL2_CONFIDENCE, gt=0, lt=1)
    level3_min_similarity: float = Field(DEFAULT_LEVEL3_MIN_SIMILARITY, ge=0, le=1)
    review_threshold: float = Field(DEFAULT_REVIEW_THRESHOLD, ge=0, le=1)
    level3_max_confidence: float = Field(DEFAULT_LEVEL3_MAX_CONFIDENCE, gt=0, lt=1)
    run_all_levels: bool = Field(
        False,
        description="Keep scoring levels 2 and 3 after a level-1 hit (audit mode)"
    )
    fingerprint: FingerprintSettings = Field(default_factory=FingerprintSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    review_queue: ReviewQueueSettings = Field(default_factory=ReviewQueueSettings)

    @model_validator(mode="after")
    def _check_bands(self):
        if self.level3_min_similarity > self.review_threshold:
            raise ValueError("level3_min_similarity must not exceed review_threshold")
        return self

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "DetectionSettings":
        """Build settings from a loaded YAML configuration dictionary"""
        return cls(
            **(config.get('detection') or {}),
            fingerprint=config.get('fingerprint') or {},
            store=config.get('store') or {},
            review_queue=config.get('review_queue') or {},
        )
