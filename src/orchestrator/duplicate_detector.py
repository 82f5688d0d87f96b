"""Multi-level duplicate detection for incoming confirmation emails"""

import time
from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence, Set, Tuple
from src.constants import (
    DetectionLevel,
    Recommendation,
    RiskLevel,
    LEVEL_NAMES,
    SLOW_DETECTION_MS,
)
from src.db.record_store import EmailRecordStore
from src.db.transaction_lookup import TransactionLookup
from src.models.email import ParsedTransactionEmail, EmailIdentification
from src.models.record import StoredEmailRecord, PortfolioTransaction
from src.models.detection import DuplicateMatch, DuplicateDetectionResult, ValidationReport
from src.models.settings import DetectionSettings
from src.orchestrator.retry_handler import retry_with_exponential_backoff
from src.tools.identification import extract_identification
from src.tools.matchers import (
    match_email_identity,
    match_order_identity,
    match_transaction_fingerprint,
    match_existing_transaction,
)
from src.utils.errors import RecordStoreError
from src.utils.logging import get_logger
from src.utils.metrics import (
    detections_total,
    duplicate_matches_total,
    detection_latency,
    candidate_errors_total,
    record_store_failures_total,
)

logger = get_logger(__name__)


class DuplicateDetector:
    """
    Runs the three matcher levels against a portfolio's stored records and
    turns their matches into an accept / review / reject recommendation.

    Level 1 short-circuits levels 2 and 3 unless settings.run_all_levels is
    set. The store is only read; persisting the new email is the caller's job.
    When a transaction lookup is given, level 3 also compares against the
    portfolio's booked transactions.
    """

    def __init__(
        self,
        store: EmailRecordStore,
        settings: Optional[DetectionSettings] = None,
        transactions: Optional[TransactionLookup] = None
    ):
        self.store = store
        self.settings = settings or DetectionSettings()
        self.transactions = transactions

    async def detect(
        self,
        email: ParsedTransactionEmail,
        portfolio_id: str,
        raw_headers: Optional[str] = None
    ) -> DuplicateDetectionResult:
        """
        Detect whether an email duplicates one already accepted for the portfolio

        Args:
            email: Parsed confirmation email
            portfolio_id: Partition to compare within
            raw_headers: Raw headers, used for Message-ID extraction

        Returns:
            DuplicateDetectionResult

        Raises:
            RecordStoreError: If stored records cannot be loaded. Detection never
                defaults to accept without candidate data.
        """
        started = time.perf_counter()

        identification = extract_identification(
            email.subject, email.from_email, email.raw_content, raw_headers
        )
        records, warnings = await self._load_candidates(portfolio_id)
        transactions = await self._load_transactions(portfolio_id, warnings)
        candidate_count = len(records) + len(transactions)

        matches = self.run_levels(email, identification, records, warnings, transactions)
        result = self.aggregate(matches, warnings, identification, candidate_count)

        elapsed = time.perf_counter() - started
        result = result.model_copy(update={
            "processing_time": round(elapsed * 1000, 3),
            "processed_at": datetime.now(),
        })

        detection_latency.observe(elapsed)
        detections_total.labels(recommendation=result.recommendation.value).inc()
        for match in result.matches:
            duplicate_matches_total.labels(level=str(match.level.value)).inc()

        logger.info(
            f"Duplicate detection: {result.recommendation.value}",
            portfolio_id=portfolio_id,
            symbol=email.symbol,
            overall_confidence=result.overall_confidence,
            candidates=candidate_count,
            matches=len(result.matches),
            skipped=len(warnings),
            processing_time_ms=result.processing_time
        )
        return result

    async def _load_candidates(self, portfolio_id: str) -> Tuple[List[StoredEmailRecord], List[str]]:
        """Fetch rows for the portfolio and validate them one by one"""
        store_settings = self.settings.store
        try:
            rows = await retry_with_exponential_backoff(
                self.store.fetch_records,
                portfolio_id,
                max_retries=store_settings.max_retries,
                base_delay=store_settings.base_delay_seconds,
                max_delay=store_settings.max_delay_seconds
            )
        except RecordStoreError:
            record_store_failures_total.inc()
            logger.error("Stored-record lookup failed, detection aborted", portfolio_id=portfolio_id)
            raise

        records: List[StoredEmailRecord] = []
        warnings: List[str] = []

        for row in rows:
            try:
                record = row if isinstance(row, StoredEmailRecord) else StoredEmailRecord.model_validate(row)
            except Exception as e:
                warnings.append(f"Skipped stored record {_row_id(row)}: {_first_line(e)}")
                candidate_errors_total.inc()
                continue

            if record.portfolio_id != portfolio_id:
                logger.debug("Ignoring record from another portfolio", record_id=record.id)
                continue
            records.append(record)

        return records, warnings

    async def _load_transactions(self, portfolio_id: str, warnings: List[str]) -> List[PortfolioTransaction]:
        """Fetch booked ledger transactions, validating rows the same way as stored records"""
        if self.transactions is None:
            return []

        store_settings = self.settings.store
        try:
            rows = await retry_with_exponential_backoff(
                self.transactions.fetch_transactions,
                portfolio_id,
                max_retries=store_settings.max_retries,
                base_delay=store_settings.base_delay_seconds,
                max_delay=store_settings.max_delay_seconds
            )
        except RecordStoreError:
            record_store_failures_total.inc()
            logger.error("Transaction lookup failed, detection aborted", portfolio_id=portfolio_id)
            raise

        transactions: List[PortfolioTransaction] = []
        for row in rows:
            try:
                transaction = row if isinstance(row, PortfolioTransaction) \
                    else PortfolioTransaction.model_validate(row)
            except Exception as e:
                warnings.append(f"Skipped transaction {_row_id(row)}: {_first_line(e)}")
                candidate_errors_total.inc()
                continue

            if transaction.portfolio_id == portfolio_id:
                transactions.append(transaction)

        return transactions

    def run_levels(
        self,
        email: ParsedTransactionEmail,
        identification: EmailIdentification,
        records: List[StoredEmailRecord],
        warnings: List[str],
        transactions: Sequence[PortfolioTransaction] = ()
    ) -> List[DuplicateMatch]:
        """Run level 1, then levels 2 and 3 unless level 1 short-circuits"""
        skipped: Set[str] = set()

        matches = self._scan(
            DetectionLevel.EMAIL_IDENTITY, records, skipped, warnings,
            lambda record: match_email_identity(identification, record),
            first_only=True
        )
        if matches and not self.settings.run_all_levels:
            return matches

        matches += self._scan(
            DetectionLevel.ORDER_IDENTITY, records, skipped, warnings,
            lambda record: match_order_identity(identification, record, self.settings)
        )
        level3 = self._scan(
            DetectionLevel.TRANSACTION_FINGERPRINT, records, skipped, warnings,
            lambda record: match_transaction_fingerprint(email, record, self.settings)
        )
        level3 += self._scan(
            DetectionLevel.TRANSACTION_FINGERPRINT, transactions, set(), warnings,
            lambda transaction: match_existing_transaction(email, transaction, self.settings),
            label="transaction"
        )
        matches += sorted(level3, key=lambda m: m.confidence, reverse=True)
        return matches

    def _scan(
        self,
        level: DetectionLevel,
        records: Sequence[Any],
        skipped: Set[str],
        warnings: List[str],
        matcher: Callable[[Any], Optional[DuplicateMatch]],
        first_only: bool = False,
        label: str = "stored record"
    ) -> List[DuplicateMatch]:
        matches = []
        for record in records:
            if record.id in skipped:
                continue
            try:
                match = matcher(record)
            except Exception as e:
                skipped.add(record.id)
                warnings.append(f"Skipped {label} {record.id} at level {level.value}: {_first_line(e)}")
                candidate_errors_total.inc()
                logger.warning("Candidate comparison failed", record_id=record.id, level=level.value, error=str(e))
                continue

            if match:
                matches.append(match)
                if first_only:
                    break
        return matches

    def aggregate(
        self,
        matches: List[DuplicateMatch],
        warnings: List[str],
        identification: Optional[EmailIdentification] = None,
        candidate_count: int = 0
    ) -> DuplicateDetectionResult:
        """
        Combine matches into one result:

        1. any level-1 match: confidence 1.0, high risk, reject
        2. any level-2 match: review at medium risk; confidence is the higher
           of the level-2 and best level-3 confidences
        3. best level-3 match at or above review_threshold: review, medium risk;
           between the floor and review_threshold: accept with a warning
        4. nothing: accept, low risk, confidence 0
        """
        level1 = [m for m in matches if m.level == DetectionLevel.EMAIL_IDENTITY]
        level2 = [m for m in matches if m.level == DetectionLevel.ORDER_IDENTITY]
        level3 = [m for m in matches if m.level == DetectionLevel.TRANSACTION_FINGERPRINT]
        best3 = max((m.confidence for m in level3), default=0.0)
        note = ""

        if level1:
            confidence = 1.0
            risk, recommendation = RiskLevel.HIGH, Recommendation.REJECT
        elif level2:
            confidence = max(max(m.confidence for m in level2), best3)
            risk, recommendation = RiskLevel.MEDIUM, Recommendation.REVIEW
        elif level3 and best3 >= self.settings.review_threshold:
            confidence = best3
            risk, recommendation = RiskLevel.MEDIUM, Recommendation.REVIEW
        elif level3:
            confidence = best3
            risk, recommendation = RiskLevel.LOW, Recommendation.ACCEPT
            note = (f" Warning: similar transaction found below the "
                    f"{self.settings.review_threshold:.0%} review threshold.")
        else:
            confidence = 0.0
            risk, recommendation = RiskLevel.LOW, Recommendation.ACCEPT

        summary = _summarize(matches, recommendation, candidate_count) + note
        if warnings:
            summary += f" {len(warnings)} candidate(s) skipped."

        return DuplicateDetectionResult(
            matches=matches,
            overall_confidence=round(confidence, 4),
            risk_level=risk,
            recommendation=recommendation,
            summary=summary,
            warnings=list(warnings),
            email_identification=identification
        )


def _summarize(matches: List[DuplicateMatch], recommendation: Recommendation, candidate_count: int) -> str:
    if not matches:
        return (f"No duplicate indicators found across {candidate_count} candidate(s). "
                f"Recommendation: {recommendation.value.upper()}.")

    parts = []
    for level in DetectionLevel:
        hits = [m for m in matches if m.level == level]
        if hits:
            best = max(m.confidence for m in hits)
            parts.append(f"level {level.value} ({LEVEL_NAMES[level]}): "
                         f"{len(hits)} match(es), best {best:.1%}")
    return "; ".join(parts).capitalize() + f". Recommendation: {recommendation.value.upper()}."


def _row_id(row: Any) -> str:
    if isinstance(row, dict):
        return str(row.get("id") or "<no id>")
    return "<undecodable>"


def _first_line(error: Exception) -> str:
    return str(error).splitlines()[0] if str(error) else type(error).__name__


def validate_detection_result(result: DuplicateDetectionResult) -> ValidationReport:
    """Sanity-check a result for inconsistencies between confidence and verdict"""
    report = ValidationReport()

    if not 0 <= result.overall_confidence <= 1:
        report.errors.append("Overall confidence must be between 0 and 1")
    if not result.summary:
        report.errors.append("Summary is required")

    has_level1 = any(m.level == DetectionLevel.EMAIL_IDENTITY for m in result.matches)
    if has_level1 and result.recommendation != Recommendation.REJECT:
        report.errors.append("Level-1 match must be rejected")
    if result.recommendation == Recommendation.REJECT and not has_level1:
        report.warnings.append("Rejected without an email identity match")
    if not result.matches and result.overall_confidence > 0:
        report.warnings.append("Non-zero confidence but no matches found")
    if result.processing_time > SLOW_DETECTION_MS:
        report.warnings.append(f"Detection took longer than {SLOW_DETECTION_MS / 1000:.0f} seconds")

    return report
