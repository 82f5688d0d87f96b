"""Tests for the manual review queue"""

import asyncio
from datetime import timedelta
import pytest
from src.constants import (
    DetectionLevel,
    Recommendation,
    RiskLevel,
    ReviewActionType,
    ReviewPriority,
    ReviewStatus,
)
from src.db.record_store import InMemoryEmailRecordStore
from src.models.detection import DuplicateMatch, DuplicateDetectionResult
from src.models.review import ReviewAction, ReviewQueueFilter
from src.models.settings import ReviewQueueSettings
from src.orchestrator.review_queue import ManualReviewQueue, calculate_risk_score, calculate_priority
from src.utils.errors import ReviewQueueError


class SlowStore(InMemoryEmailRecordStore):
    """Yields to the event loop before every save"""

    async def save_record(self, record):
        await asyncio.sleep(0.01)
        await super().save_record(record)


def _review_result(confidence=0.85, level=DetectionLevel.ORDER_IDENTITY, record_ids=("rec-1",)):
    return DuplicateDetectionResult(
        matches=[DuplicateMatch(level=level, confidence=confidence, matched_record_id=r,
                                reasons=["Shared order ID"]) for r in record_ids],
        overall_confidence=confidence,
        risk_level=RiskLevel.MEDIUM,
        recommendation=Recommendation.REVIEW,
        summary="review"
    )


def _low_result():
    return _review_result(0.35, DetectionLevel.TRANSACTION_FINGERPRINT)


def _medium_result():
    return _review_result(0.62, DetectionLevel.TRANSACTION_FINGERPRINT)


def _enqueue(queue, email, result=None, portfolio_id="portfolio-1"):
    return asyncio.run(queue.enqueue(email, result or _review_result(), portfolio_id))


def _act(queue, item_id, action, reviewer="alex", **kwargs):
    return asyncio.run(queue.apply_action(item_id, ReviewAction(action=action, reviewer_id=reviewer, **kwargs)))


def test_risk_score_and_priority():
    """Order-id hits and extra candidates raise the risk score"""
    assert calculate_risk_score(_review_result(0.85)) == pytest.approx(0.95)
    assert calculate_risk_score(
        _review_result(0.65, DetectionLevel.TRANSACTION_FINGERPRINT, ("a", "b", "c"))
    ) == pytest.approx(0.75)

    assert calculate_priority(0.95, 0.8) == ReviewPriority.URGENT
    assert calculate_priority(0.85, 0.8) == ReviewPriority.HIGH
    assert calculate_priority(0.65, 0.8) == ReviewPriority.MEDIUM
    assert calculate_priority(0.2, 0.8) == ReviewPriority.LOW


def test_enqueue_builds_item(sample_emails):
    """Enqueue derives priority, escalation, tags and identification"""
    queue = ManualReviewQueue(InMemoryEmailRecordStore())
    item = _enqueue(queue, sample_emails["stock_buy"])

    assert item.status == ReviewStatus.PENDING
    assert item.priority == ReviewPriority.URGENT
    assert item.escalation_level == 1
    assert item.potential_duplicates[0].record_id == "rec-1"
    assert "order-id-match" in item.tags
    assert "AAPL" in item.tags
    assert item.email_identification.order_id == "WS123456789"
    assert item.expires_at is None
    assert len(queue) == 1


def test_approve_persists_record(sample_emails):
    """Approval writes a stored record carrying the transaction id"""
    store = InMemoryEmailRecordStore()
    queue = ManualReviewQueue(store)
    item = _enqueue(queue, sample_emails["stock_buy"])

    approved = _act(queue, item.id, ReviewActionType.APPROVE, metadata={"transaction_id": "txn-9"})

    assert approved.status == ReviewStatus.APPROVED
    assert approved.reviewed_by == "alex"
    rows = asyncio.run(store.fetch_records("portfolio-1"))
    assert len(rows) == 1
    assert rows[0]["id"] == approved.stored_record_id
    assert rows[0]["transaction_id"] == "txn-9"


def test_reject_does_not_persist(sample_emails):
    """Rejected emails never reach the store"""
    store = InMemoryEmailRecordStore()
    queue = ManualReviewQueue(store)
    item = _enqueue(queue, sample_emails["stock_buy"])

    rejected = _act(queue, item.id, ReviewActionType.REJECT, reason="duplicate")

    assert rejected.status == ReviewStatus.REJECTED
    assert rejected.review_notes == "duplicate"
    assert asyncio.run(store.fetch_records("portfolio-1")) == []


def test_decided_items_cannot_be_changed(sample_emails):
    """A second decision on a decided item is refused"""
    queue = ManualReviewQueue(InMemoryEmailRecordStore())
    item = _enqueue(queue, sample_emails["stock_buy"])

    _act(queue, item.id, ReviewActionType.REJECT)
    with pytest.raises(ReviewQueueError):
        _act(queue, item.id, ReviewActionType.REJECT)


def test_concurrent_approvals_store_once(sample_emails):
    """Overlapping approvals of one item persist a single record"""
    store = SlowStore()
    queue = ManualReviewQueue(store)
    item = _enqueue(queue, sample_emails["stock_buy"])

    async def approve_twice():
        return await asyncio.gather(
            queue.apply_action(item.id, ReviewAction(action=ReviewActionType.APPROVE, reviewer_id="alex")),
            queue.apply_action(item.id, ReviewAction(action=ReviewActionType.APPROVE, reviewer_id="sam")),
            return_exceptions=True
        )

    first, second = asyncio.run(approve_twice())

    assert first.status == ReviewStatus.APPROVED
    assert isinstance(second, ReviewQueueError)
    assert len(asyncio.run(store.fetch_records("portfolio-1"))) == 1
    assert queue.get(item.id).status == ReviewStatus.APPROVED


def test_unknown_item_raises():
    """Unknown ids raise ReviewQueueError for every lookup path"""
    queue = ManualReviewQueue(InMemoryEmailRecordStore())
    with pytest.raises(ReviewQueueError):
        queue.get("missing")
    with pytest.raises(ReviewQueueError):
        queue.claim("missing", "alex")
    with pytest.raises(ReviewQueueError):
        queue.remove("missing", "cleanup")


def test_escalate_and_defer(sample_emails):
    """Escalation raises level and priority up to senior review; defer sets an expiry"""
    queue = ManualReviewQueue(InMemoryEmailRecordStore())
    item = _enqueue(queue, sample_emails["stock_sell"], _medium_result())
    assert item.priority == ReviewPriority.MEDIUM
    assert item.escalation_level == 0

    escalated = _act(queue, item.id, ReviewActionType.ESCALATE)
    assert escalated.escalation_level == 1
    assert escalated.priority == ReviewPriority.HIGH
    assert escalated.status == ReviewStatus.PENDING
    assert "escalated-level-1" in escalated.tags

    escalated = _act(queue, item.id, ReviewActionType.ESCALATE, reviewer="sam")
    assert escalated.escalation_level == 2
    assert escalated.priority == ReviewPriority.URGENT

    deferred = _act(queue, item.id, ReviewActionType.DEFER, reviewer="sam")
    assert deferred.status == ReviewStatus.DEFERRED
    assert deferred.expires_at - deferred.reviewed_at == timedelta(hours=24)


def test_claim_and_release(sample_emails):
    """A claimed item is reserved for its reviewer until released"""
    queue = ManualReviewQueue(InMemoryEmailRecordStore())
    item = _enqueue(queue, sample_emails["stock_buy"])

    claimed = queue.claim(item.id, "alex")
    assert claimed.status == ReviewStatus.IN_REVIEW
    assert claimed.claimed_by == "alex"

    with pytest.raises(ReviewQueueError):
        queue.claim(item.id, "sam")
    with pytest.raises(ReviewQueueError):
        _act(queue, item.id, ReviewActionType.REJECT, reviewer="sam")

    released = queue.release(item.id)
    assert released.status == ReviewStatus.PENDING
    assert released.claimed_by is None
    with pytest.raises(ReviewQueueError):
        queue.release(item.id)

    queue.claim(item.id, "sam")
    rejected = _act(queue, item.id, ReviewActionType.REJECT, reviewer="sam")
    assert rejected.status == ReviewStatus.REJECTED
    assert rejected.claimed_by is None


def test_remove(sample_emails):
    """remove() deletes the item and returns it"""
    queue = ManualReviewQueue(InMemoryEmailRecordStore())
    item = _enqueue(queue, sample_emails["stock_buy"])

    removed = queue.remove(item.id, "duplicate ticket")

    assert removed.id == item.id
    assert len(queue) == 0
    with pytest.raises(ReviewQueueError):
        queue.get(item.id)


def test_process_expired_auto_approves(sample_emails):
    """Expired pending and deferred items are approved and stored"""
    store = InMemoryEmailRecordStore()
    queue = ManualReviewQueue(store, ReviewQueueSettings(auto_expiry_enabled=True, auto_expiry_hours=1))
    pending = _enqueue(queue, sample_emails["stock_buy"])
    deferred = _enqueue(queue, sample_emails["stock_sell"], _medium_result())
    _act(queue, deferred.id, ReviewActionType.DEFER)
    assert pending.expires_at - pending.queued_at == timedelta(hours=1)

    assert asyncio.run(queue.process_expired(pending.queued_at)) == 0
    assert asyncio.run(queue.process_expired(pending.queued_at + timedelta(hours=2))) == 1
    assert queue.get(pending.id).status == ReviewStatus.APPROVED
    assert queue.get(pending.id).reviewed_by == "system"
    assert queue.get(deferred.id).status == ReviewStatus.DEFERRED

    assert asyncio.run(queue.process_expired(pending.queued_at + timedelta(hours=30))) == 1
    assert queue.get(deferred.id).status == ReviewStatus.APPROVED
    assert len(asyncio.run(store.fetch_records("portfolio-1"))) == 2


def test_no_expiry_by_default(sample_emails):
    """Without auto expiry, old pending items stay pending"""
    queue = ManualReviewQueue(InMemoryEmailRecordStore())
    item = _enqueue(queue, sample_emails["stock_buy"])

    assert asyncio.run(queue.process_expired(item.queued_at + timedelta(days=30))) == 0
    assert queue.get(item.id).status == ReviewStatus.PENDING


def test_escalate_stale_items(sample_emails):
    """Pending items escalate after the configured window, up to level 2"""
    queue = ManualReviewQueue(InMemoryEmailRecordStore(), ReviewQueueSettings(escalation_hours=24))
    item = _enqueue(queue, sample_emails["stock_sell"], _medium_result())
    later = item.queued_at + timedelta(hours=25)

    assert asyncio.run(queue.escalate_stale(item.queued_at + timedelta(hours=1))) == 0
    assert asyncio.run(queue.escalate_stale(later)) == 1
    escalated = queue.get(item.id)
    assert escalated.escalation_level == 1
    assert escalated.priority == ReviewPriority.HIGH
    assert escalated.reviewed_by == "system"

    assert asyncio.run(queue.escalate_stale(later + timedelta(hours=25))) == 1
    assert queue.get(item.id).escalation_level == 2
    assert asyncio.run(queue.escalate_stale(later + timedelta(hours=50))) == 0


def test_claimed_items_are_not_escalated(sample_emails):
    """Only unclaimed pending items escalate with time"""
    queue = ManualReviewQueue(InMemoryEmailRecordStore())
    item = _enqueue(queue, sample_emails["stock_sell"], _medium_result())
    queue.claim(item.id, "alex")

    assert asyncio.run(queue.escalate_stale(item.queued_at + timedelta(days=3))) == 0


def test_list_items_filters_and_orders(sample_emails):
    """Most urgent first; each filter field narrows the listing"""
    queue = ManualReviewQueue(InMemoryEmailRecordStore())
    low = _enqueue(queue, sample_emails["stock_sell"], _low_result(), "portfolio-1")
    urgent = _enqueue(queue, sample_emails["stock_buy"], _review_result(), "portfolio-2")

    assert [i.id for i in queue.list_items()] == [urgent.id, low.id]
    assert [i.id for i in queue.list_items(ReviewQueueFilter(portfolio_id="portfolio-1"))] == [low.id]
    assert [i.id for i in queue.list_items(ReviewQueueFilter(symbol="aapl"))] == [urgent.id]
    assert [i.id for i in queue.list_items(ReviewQueueFilter(tags=["fingerprint-match"]))] == [low.id]
    assert queue.list_items(ReviewQueueFilter(min_confidence=0.9)) == []
    assert len(queue.list_items(ReviewQueueFilter(status=[ReviewStatus.PENDING]))) == 2


def test_stats(sample_emails):
    """Stats count by status, priority and escalation level"""
    queue = ManualReviewQueue(InMemoryEmailRecordStore())
    first = _enqueue(queue, sample_emails["stock_buy"])
    _enqueue(queue, sample_emails["stock_sell"], _medium_result())
    _act(queue, first.id, ReviewActionType.REJECT)

    stats = queue.stats()

    assert stats.total == 2
    assert stats.by_status["rejected"] == 1
    assert stats.by_status["pending"] == 1
    assert stats.by_priority["urgent"] == 1
    assert stats.by_escalation_level == {1: 1, 0: 1}
    assert stats.average_review_seconds >= 0
    assert stats.oldest_pending_at is not None


def test_health_score(sample_emails):
    """Fill level, stale pending items and escalations lower the health score"""
    queue = ManualReviewQueue(InMemoryEmailRecordStore(), ReviewQueueSettings(max_queue_size=10))
    assert queue.stats().health_score == 100

    item = _enqueue(queue, sample_emails["stock_buy"])

    # 1/10 full costs 5, one escalated item out of one costs 20
    assert queue.stats(item.queued_at).health_score == 75
    # the only pending item is over a day old: another 30
    assert queue.stats(item.queued_at + timedelta(days=2)).health_score == 45


def test_full_queue_drops_decided_items_first(sample_emails):
    """A decided item makes room before any pending email is touched"""
    store = InMemoryEmailRecordStore()
    queue = ManualReviewQueue(store, ReviewQueueSettings(max_queue_size=2))
    low = _enqueue(queue, sample_emails["stock_sell"], _low_result(), "p1")
    decided = _enqueue(queue, sample_emails["stock_buy"], _review_result(), "p1")
    _act(queue, decided.id, ReviewActionType.REJECT)

    _enqueue(queue, sample_emails["fractional_buy"], _review_result(), "p1")

    assert len(queue) == 2
    assert queue.get(low.id).status == ReviewStatus.PENDING
    with pytest.raises(ReviewQueueError):
        queue.get(decided.id)
    assert asyncio.run(store.fetch_records("p1")) == []


def test_full_queue_auto_approves_oldest_low_priority(sample_emails):
    """A pending low-priority email pushed out of a full queue is stored, not lost"""
    store = InMemoryEmailRecordStore()
    queue = ManualReviewQueue(store, ReviewQueueSettings(max_queue_size=1))
    first = _enqueue(queue, sample_emails["stock_sell"], _low_result(), "p1")

    second = _enqueue(queue, sample_emails["fractional_buy"], _low_result(), "p1")

    assert [i.id for i in queue.list_items()] == [second.id]
    rows = asyncio.run(store.fetch_records("p1"))
    assert len(rows) == 1
    assert rows[0]["email_data"]["symbol"] == first.email_data.symbol


def test_full_queue_without_room_raises(sample_emails):
    """Pending items above low priority are never pushed out"""
    queue = ManualReviewQueue(InMemoryEmailRecordStore(), ReviewQueueSettings(max_queue_size=1))
    _enqueue(queue, sample_emails["stock_buy"], _review_result(), "p1")

    with pytest.raises(ReviewQueueError):
        _enqueue(queue, sample_emails["fractional_buy"], _review_result(), "p1")
    assert len(queue) == 1
