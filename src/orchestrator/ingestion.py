"""Email ingestion: detect duplicates, then persist, queue or drop"""

import uuid
from typing import Optional
from src.constants import Recommendation, RiskLevel
from src.db.record_store import EmailRecordStore, create_record_store
from src.db.transaction_lookup import TransactionLookup
from src.models.email import ParsedTransactionEmail
from src.models.detection import DuplicateDetectionResult, IngestionOutcome
from src.models.record import StoredEmailRecord
from src.models.settings import DetectionSettings
from src.orchestrator.duplicate_detector import DuplicateDetector
from src.orchestrator.review_queue import ManualReviewQueue
from src.tools.identification import extract_identification
from src.utils.config_loader import load_settings
from src.utils.errors import RecordStoreError
from src.utils.logging import get_logger
from src.utils.metrics import records_stored_total

logger = get_logger(__name__)


class EmailIngestionService:
    """Acts on each detection verdict for one portfolio's incoming emails"""

    def __init__(self, detector: DuplicateDetector, store: EmailRecordStore, review_queue: ManualReviewQueue):
        self.detector = detector
        self.store = store
        self.review_queue = review_queue

    async def ingest(
        self,
        email: ParsedTransactionEmail,
        portfolio_id: str,
        raw_headers: Optional[str] = None,
        transaction_id: Optional[str] = None
    ) -> IngestionOutcome:
        """
        Run detection for one email and act on the recommendation:
        accept persists a stored record, review queues the email, reject drops it.
        A failed lookup forces review rather than a silent import.

        Args:
            email: Parsed confirmation email
            portfolio_id: Owning portfolio
            raw_headers: Raw headers for Message-ID extraction
            transaction_id: Transaction created from this email, if already known

        Returns:
            IngestionOutcome
        """
        try:
            result = await self.detector.detect(email, portfolio_id, raw_headers)
        except RecordStoreError as e:
            logger.error("Detection failed, routing email to manual review",
                         portfolio_id=portfolio_id, symbol=email.symbol, error=str(e))
            failed = DuplicateDetectionResult(
                overall_confidence=0.0,
                risk_level=RiskLevel.MEDIUM,
                recommendation=Recommendation.REVIEW,
                summary=f"Duplicate detection failed: {e}. Manual review required.",
                email_identification=extract_identification(
                    email.subject, email.from_email, email.raw_content, raw_headers
                )
            )
            item = await self.review_queue.enqueue(email, failed, portfolio_id)
            return IngestionOutcome(
                recommendation=Recommendation.REVIEW,
                detection_result=failed,
                queue_item_id=item.id,
                detection_error=str(e)
            )

        if result.recommendation == Recommendation.ACCEPT:
            record = StoredEmailRecord(
                id=str(uuid.uuid4()),
                identification=result.email_identification,
                email_data=email,
                portfolio_id=portfolio_id,
                transaction_id=transaction_id
            )
            await self.store.save_record(record)
            records_stored_total.inc()
            return IngestionOutcome(
                recommendation=result.recommendation,
                detection_result=result,
                stored_record_id=record.id
            )

        if result.recommendation == Recommendation.REVIEW:
            item = await self.review_queue.enqueue(email, result, portfolio_id)
            return IngestionOutcome(
                recommendation=result.recommendation,
                detection_result=result,
                queue_item_id=item.id
            )

        logger.info("Dropped duplicate email", portfolio_id=portfolio_id, symbol=email.symbol,
                    summary=result.summary)
        return IngestionOutcome(recommendation=result.recommendation, detection_result=result)


def create_ingestion_service(
    settings: Optional[DetectionSettings] = None,
    store: Optional[EmailRecordStore] = None,
    transactions: Optional[TransactionLookup] = None
) -> EmailIngestionService:
    """Wire store, detector and review queue from configuration"""
    settings = settings or load_settings()
    store = store or create_record_store(settings.store)
    detector = DuplicateDetector(store, settings, transactions)
    queue = ManualReviewQueue(store, settings.review_queue)
    return EmailIngestionService(detector, store, queue)
