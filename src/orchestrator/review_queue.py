"""Manual review queue for ambiguous duplicate cases"""

import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set
from src.constants import (
    DetectionLevel,
    ReviewStatus,
    ReviewPriority,
    ReviewActionType,
    MAX_ESCALATION_LEVEL,
    STALE_PENDING_HOURS,
    SYSTEM_REVIEWER,
)
from src.db.record_store import EmailRecordStore
from src.models.email import ParsedTransactionEmail
from src.models.detection import DuplicateDetectionResult
from src.models.record import StoredEmailRecord
from src.models.review import (
    PotentialDuplicate,
    ReviewAction,
    ReviewQueueFilter,
    ReviewQueueItem,
    ReviewQueueStats,
)
from src.models.settings import ReviewQueueSettings
from src.tools.identification import extract_identification
from src.utils.errors import ReviewQueueError
from src.utils.logging import get_logger
from src.utils.metrics import review_queue_size, review_decisions_total, records_stored_total

logger = get_logger(__name__)

PRIORITY_RANK = {
    ReviewPriority.URGENT: 0,
    ReviewPriority.HIGH: 1,
    ReviewPriority.MEDIUM: 2,
    ReviewPriority.LOW: 3,
}

OPEN_STATUSES = {ReviewStatus.PENDING, ReviewStatus.IN_REVIEW, ReviewStatus.DEFERRED}
DECIDED_STATUSES = {ReviewStatus.APPROVED, ReviewStatus.REJECTED}


def calculate_risk_score(result: DuplicateDetectionResult) -> float:
    """Detection confidence, raised for order-id hits and multiple candidates"""
    score = result.overall_confidence
    if any(m.level == DetectionLevel.ORDER_IDENTITY for m in result.matches):
        score += 0.1
    distinct_records = {(m.source, m.matched_record_id) for m in result.matches}
    if len(distinct_records) > 1:
        score += 0.05 * (len(distinct_records) - 1)
    return round(min(score, 1.0), 4)


def calculate_priority(risk_score: float, escalation_risk_score: float) -> ReviewPriority:
    if risk_score >= 0.9:
        return ReviewPriority.URGENT
    if risk_score >= escalation_risk_score:
        return ReviewPriority.HIGH
    if risk_score >= 0.6:
        return ReviewPriority.MEDIUM
    return ReviewPriority.LOW


def calculate_health_score(items: List[ReviewQueueItem], max_queue_size: int, now: datetime) -> int:
    """
    Queue health from 0 to 100

    Up to 50 points are lost for fill level, 30 for pending items older than
    a day and 20 for the share of escalated items.
    """
    if not items:
        return 100

    score = 100.0
    score -= min(50.0, len(items) / max_queue_size * 50)

    pending = [i for i in items if i.status == ReviewStatus.PENDING]
    if pending:
        stale_after = timedelta(hours=STALE_PENDING_HOURS)
        stale = [i for i in pending if now - i.queued_at > stale_after]
        score -= min(30.0, len(stale) / len(pending) * 30)

    escalated = [i for i in items if i.escalation_level > 0]
    score -= min(20.0, len(escalated) / len(items) * 20)

    return max(0, round(score))


def _tags(email: ParsedTransactionEmail, result: DuplicateDetectionResult) -> List[str]:
    tags = [email.symbol.upper(), email.account_type.upper(), email.transaction_type.value]
    levels = {m.level for m in result.matches}
    if DetectionLevel.ORDER_IDENTITY in levels:
        tags.append("order-id-match")
    if DetectionLevel.TRANSACTION_FINGERPRINT in levels:
        tags.append("fingerprint-match")
    if not result.matches:
        tags.append("detection-failed")
    if result.warnings:
        tags.append("skipped-records")
    return tags


class ManualReviewQueue:
    """
    In-process queue of emails that need a human decision.
    Approving an item persists it to the record store, the only way besides
    automatic acceptance that a stored record gets created. Pending emails
    leave the queue only through a decision or an explicit remove().
    """

    def __init__(self, store: EmailRecordStore, settings: Optional[ReviewQueueSettings] = None):
        self.store = store
        self.settings = settings or ReviewQueueSettings()
        self._items: Dict[str, ReviewQueueItem] = {}
        self._in_flight: Set[str] = set()

    def __len__(self) -> int:
        return len(self._items)

    async def enqueue(
        self,
        email: ParsedTransactionEmail,
        result: DuplicateDetectionResult,
        portfolio_id: str
    ) -> ReviewQueueItem:
        """
        Queue an email for manual review

        Args:
            email: Parsed email under review
            result: Detection result that sent it here
            portfolio_id: Portfolio the email belongs to

        Returns:
            The new queue item

        Raises:
            ReviewQueueError: If the queue is full and nothing can be made room for
            RecordStoreError: If auto-approving a low-priority item to make room fails
        """
        if len(self._items) >= self.settings.max_queue_size:
            await self._make_room()

        identification = result.email_identification or extract_identification(
            email.subject, email.from_email, email.raw_content
        )
        risk_score = calculate_risk_score(result)
        escalation = 1 if risk_score >= self.settings.escalation_risk_score else 0
        queued_at = datetime.now()
        expires_at = None
        if self.settings.auto_expiry_enabled:
            expires_at = queued_at + timedelta(hours=self.settings.auto_expiry_hours)

        item = ReviewQueueItem(
            id=str(uuid.uuid4()),
            email_data=email,
            email_identification=identification,
            detection_result=result,
            portfolio_id=portfolio_id,
            queued_at=queued_at,
            priority=calculate_priority(risk_score, self.settings.escalation_risk_score),
            escalation_level=escalation,
            potential_duplicates=[
                PotentialDuplicate(
                    record_id=m.matched_record_id,
                    source=m.source,
                    similarity=m.confidence,
                    reason="; ".join(m.reasons)
                )
                for m in result.matches
            ],
            tags=_tags(email, result),
            confidence=result.overall_confidence,
            risk_score=risk_score,
            expires_at=expires_at
        )
        self._items[item.id] = item
        self._update_gauge()

        logger.info("Queued email for manual review", item_id=item.id, priority=item.priority.value,
                    risk_score=risk_score, portfolio_id=portfolio_id)
        return item

    def get(self, item_id: str) -> ReviewQueueItem:
        try:
            return self._items[item_id]
        except KeyError:
            raise ReviewQueueError(f"Review item not found: {item_id}") from None

    def list_items(self, criteria: Optional[ReviewQueueFilter] = None) -> List[ReviewQueueItem]:
        """Items matching the filter, most urgent first, then oldest first"""
        items = [item for item in self._items.values() if _matches(item, criteria)]
        return sorted(items, key=lambda i: (PRIORITY_RANK[i.priority], -i.escalation_level, i.queued_at))

    def claim(self, item_id: str, reviewer_id: str) -> ReviewQueueItem:
        """
        Move a pending item to in-review for one reviewer

        Raises:
            ReviewQueueError: If the item is unknown or not pending
        """
        item = self.get(item_id)
        if item.status != ReviewStatus.PENDING:
            raise ReviewQueueError(f"Review item {item_id} is {item.status.value}, only pending items can be claimed")

        item = self._replace(item, status=ReviewStatus.IN_REVIEW, claimed_by=reviewer_id)
        logger.info("Review item claimed", item_id=item_id, reviewer=reviewer_id)
        return item

    def release(self, item_id: str) -> ReviewQueueItem:
        """Return an in-review item to pending"""
        item = self.get(item_id)
        if item.status != ReviewStatus.IN_REVIEW:
            raise ReviewQueueError(f"Review item {item_id} is {item.status.value}, not in review")

        item = self._replace(item, status=ReviewStatus.PENDING, claimed_by=None)
        logger.info("Review item released", item_id=item_id)
        return item

    def remove(self, item_id: str, reason: str) -> ReviewQueueItem:
        """Delete an item from the queue without a decision"""
        item = self.get(item_id)
        if item_id in self._in_flight:
            raise ReviewQueueError(f"Review item {item_id} is being processed")

        del self._items[item_id]
        self._update_gauge()
        logger.warning("Removed review item", item_id=item_id, status=item.status.value, reason=reason)
        return item

    async def apply_action(self, item_id: str, action: ReviewAction) -> ReviewQueueItem:
        """
        Apply a reviewer decision

        Raises:
            ReviewQueueError: If the item is unknown, already decided, claimed by
                another reviewer or already being processed
            RecordStoreError: If persisting an approved email fails
        """
        item = self.get(item_id)
        if item.status not in OPEN_STATUSES:
            raise ReviewQueueError(f"Review item {item_id} already {item.status.value}")
        if item_id in self._in_flight:
            raise ReviewQueueError(f"Review item {item_id} is being processed")
        if item.claimed_by and item.claimed_by != action.reviewer_id:
            raise ReviewQueueError(f"Review item {item_id} is claimed by {item.claimed_by}")

        self._in_flight.add(item_id)
        try:
            update = await self._resolve(item, action)
        finally:
            self._in_flight.discard(item_id)

        item = self._replace(self.get(item_id), **update)
        review_decisions_total.labels(action=action.action.value).inc()

        logger.info(f"Review action {action.action.value}", item_id=item_id,
                    reviewer=action.reviewer_id, status=item.status.value)
        return item

    async def process_expired(self, now: Optional[datetime] = None) -> int:
        """
        Auto-approve pending or deferred items whose expiry has passed

        Returns:
            Number of items approved
        """
        now = now or datetime.now()
        expired = [
            item for item in self._items.values()
            if item.expires_at and item.expires_at <= now
            and item.status in (ReviewStatus.PENDING, ReviewStatus.DEFERRED)
        ]

        for item in expired:
            await self.apply_action(item.id, ReviewAction(
                action=ReviewActionType.APPROVE,
                reviewer_id=SYSTEM_REVIEWER,
                reason="Automatic approval due to expiry",
                notes="Item expired without manual review"
            ))

        if expired:
            logger.info("Processed expired review items", count=len(expired))
        return len(expired)

    async def escalate_stale(self, now: Optional[datetime] = None) -> int:
        """
        Escalate pending items left without action for escalation_hours.
        The window restarts after every escalation.

        Returns:
            Number of items escalated
        """
        now = now or datetime.now()
        window = timedelta(hours=self.settings.escalation_hours)
        stale = [
            item for item in self._items.values()
            if item.status == ReviewStatus.PENDING
            and item.escalation_level < MAX_ESCALATION_LEVEL
            and now - (item.reviewed_at or item.queued_at) >= window
        ]

        for item in stale:
            await self.apply_action(item.id, ReviewAction(
                action=ReviewActionType.ESCALATE,
                reviewer_id=SYSTEM_REVIEWER,
                reason="Automatic escalation due to time in queue"
            ))
        return len(stale)

    def stats(self, now: Optional[datetime] = None) -> ReviewQueueStats:
        now = now or datetime.now()
        items = list(self._items.values())
        by_status = {status.value: 0 for status in ReviewStatus}
        by_priority = {priority.value: 0 for priority in ReviewPriority}
        by_escalation: Dict[int, int] = {}
        review_seconds = []

        for item in items:
            by_status[item.status.value] += 1
            by_priority[item.priority.value] += 1
            by_escalation[item.escalation_level] = by_escalation.get(item.escalation_level, 0) + 1
            if item.reviewed_at and item.status in DECIDED_STATUSES:
                review_seconds.append((item.reviewed_at - item.queued_at).total_seconds())

        pending = [i.queued_at for i in items if i.status == ReviewStatus.PENDING]

        return ReviewQueueStats(
            total=len(items),
            by_status=by_status,
            by_priority=by_priority,
            by_escalation_level=by_escalation,
            average_review_seconds=round(sum(review_seconds) / len(review_seconds), 3) if review_seconds else 0.0,
            oldest_pending_at=min(pending) if pending else None,
            health_score=calculate_health_score(items, self.settings.max_queue_size, now)
        )

    async def _resolve(self, item: ReviewQueueItem, action: ReviewAction) -> dict:
        now = datetime.now()
        update = {
            "reviewed_by": action.reviewer_id,
            "reviewed_at": now,
            "review_notes": action.notes or action.reason or None,
            "claimed_by": None,
        }

        if action.action == ReviewActionType.APPROVE:
            record = StoredEmailRecord(
                id=str(uuid.uuid4()),
                identification=item.email_identification,
                email_data=item.email_data,
                portfolio_id=item.portfolio_id,
                transaction_id=action.metadata.get("transaction_id")
            )
            await self.store.save_record(record)
            records_stored_total.inc()
            update.update(status=ReviewStatus.APPROVED, stored_record_id=record.id)
        elif action.action == ReviewActionType.REJECT:
            update["status"] = ReviewStatus.REJECTED
        elif action.action == ReviewActionType.ESCALATE:
            level = min(item.escalation_level + 1, MAX_ESCALATION_LEVEL)
            update.update(
                status=ReviewStatus.PENDING,
                escalation_level=level,
                priority=ReviewPriority.URGENT if level >= MAX_ESCALATION_LEVEL else ReviewPriority.HIGH,
                tags=item.tags + [f"escalated-level-{level}"]
            )
        elif action.action == ReviewActionType.DEFER:
            update.update(
                status=ReviewStatus.DEFERRED,
                expires_at=now + timedelta(hours=self.settings.defer_hours)
            )
        return update

    async def _make_room(self) -> None:
        """
        Drop the oldest decided item, or else auto-approve the oldest pending
        low-priority item so its email is stored rather than lost.
        """
        decided = [i for i in self._items.values() if i.status in DECIDED_STATUSES]
        if decided:
            oldest = min(decided, key=lambda i: i.queued_at)
            del self._items[oldest.id]
            logger.info("Review queue full, dropped decided item", item_id=oldest.id,
                        status=oldest.status.value)
            return

        low = [
            i for i in self._items.values()
            if i.priority == ReviewPriority.LOW and i.status == ReviewStatus.PENDING
            and i.id not in self._in_flight
        ]
        if not low:
            raise ReviewQueueError(
                f"Review queue full ({self.settings.max_queue_size}) with no decided or low-priority items"
            )

        oldest = min(low, key=lambda i: i.queued_at)
        await self.apply_action(oldest.id, ReviewAction(
            action=ReviewActionType.APPROVE,
            reviewer_id=SYSTEM_REVIEWER,
            reason="Auto-approved to make room in queue"
        ))
        del self._items[oldest.id]
        logger.warning("Review queue full, auto-approved oldest low-priority item", item_id=oldest.id)

    def _replace(self, item: ReviewQueueItem, **update) -> ReviewQueueItem:
        item = item.model_copy(update=update)
        self._items[item.id] = item
        self._update_gauge()
        return item

    def _update_gauge(self) -> None:
        for priority in ReviewPriority:
            count = sum(1 for i in self._items.values()
                        if i.priority == priority and i.status in OPEN_STATUSES)
            review_queue_size.labels(priority=priority.value).set(count)


def _matches(item: ReviewQueueItem, criteria: Optional[ReviewQueueFilter]) -> bool:
    if criteria is None:
        return True
    if criteria.status and item.status not in criteria.status:
        return False
    if criteria.priority and item.priority not in criteria.priority:
        return False
    if criteria.portfolio_id and item.portfolio_id != criteria.portfolio_id:
        return False
    if criteria.symbol and item.email_data.symbol.upper() != criteria.symbol.upper():
        return False
    if criteria.tags and not set(criteria.tags) & set(item.tags):
        return False
    if criteria.min_confidence is not None and item.confidence < criteria.min_confidence:
        return False
    if criteria.max_confidence is not None and item.confidence > criteria.max_confidence:
        return False
    return True
