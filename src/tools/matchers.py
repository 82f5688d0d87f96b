"""Matchers comparing a new email against one stored record or ledger transaction"""

import math
from typing import Any, List, Optional, Tuple, Union
from src.constants import DetectionLevel, MatchSource, DEFAULT_LEVEL1_CONFIDENCE
from src.models.email import EmailIdentification, ParsedTransactionEmail
from src.models.record import StoredEmailRecord, PortfolioTransaction
from src.models.detection import DuplicateMatch
from src.models.settings import DetectionSettings, FingerprintSettings
from src.tools.identification import normalize_signature, normalize_order_id


def _key(value: Any) -> str:
    return str(value or "").strip().upper()


def match_email_identity(
    identification: EmailIdentification,
    record: StoredEmailRecord
) -> Optional[DuplicateMatch]:
    """
    Level 1: exact signature equality, or identical Message-ID.
    Strict by design of the level: any signature difference falls through.
    """
    stored = record.identification
    matched_fields = []
    reasons = []

    if identification.message_id and stored.message_id and \
            identification.message_id.strip() == stored.message_id.strip():
        matched_fields.append("message_id")
        reasons.append("Identical Message-ID - exact same email")

    new_signature = normalize_signature(identification.signature)
    if new_signature and new_signature == normalize_signature(stored.signature):
        matched_fields.append("signature")
        reasons.append("Identical email signature")

    if not matched_fields:
        return None

    return DuplicateMatch(
        level=DetectionLevel.EMAIL_IDENTITY,
        confidence=DEFAULT_LEVEL1_CONFIDENCE,
        matched_record_id=record.id,
        matched_fields=matched_fields,
        reasons=reasons
    )


def match_order_identity(
    identification: EmailIdentification,
    record: StoredEmailRecord,
    settings: DetectionSettings
) -> Optional[DuplicateMatch]:
    """
    Level 2: both sides carry an order id and share an order id or a
    confirmation number. Content differs (otherwise level 1 would have
    fired), so confidence stays below certainty.

    Equal transaction or content hashes are reported as supporting fields
    but never produce a match on their own.
    """
    stored = record.identification
    new_order_id = normalize_order_id(identification.order_id)
    stored_order_id = normalize_order_id(stored.order_id)

    if not new_order_id or not stored_order_id:
        return None

    matched_fields = []
    reasons = []

    primary_equal = new_order_id == stored_order_id
    if primary_equal:
        matched_fields.append("order_id")
        reasons.append(f"Shared order ID {new_order_id} with different email content")

    shared_ids = _overlap(identification.order_ids, stored.order_ids,
                          exclude=new_order_id if primary_equal else "")
    if shared_ids:
        matched_fields.append("order_ids")
        reasons.append(f"Shared order IDs: {', '.join(shared_ids)}")

    shared_confirmations = _overlap(identification.confirmation_numbers, stored.confirmation_numbers)
    if shared_confirmations:
        matched_fields.append("confirmation_numbers")
        reasons.append(f"Shared confirmation numbers: {', '.join(shared_confirmations)}")

    if not matched_fields:
        return None

    if identification.transaction_hash and identification.transaction_hash == stored.transaction_hash:
        matched_fields.append("transaction_hash")
        reasons.append("Identical transaction fingerprint")

    if identification.content_hash and identification.content_hash == stored.content_hash:
        matched_fields.append("content_hash")
        reasons.append("Identical subject and body from a different sender")

    return DuplicateMatch(
        level=DetectionLevel.ORDER_IDENTITY,
        confidence=settings.level2_confidence,
        matched_record_id=record.id,
        matched_fields=matched_fields,
        reasons=reasons
    )


def _overlap(left: List[str], right: List[str], exclude: str = "") -> List[str]:
    """Normalized ids present on both sides, in the order of the left list"""
    right_ids = {normalize_order_id(value) for value in right}
    shared = [normalize_order_id(value) for value in left]
    return list(dict.fromkeys(v for v in shared if v and v in right_ids and v != exclude))


def fingerprint_similarity(
    email: ParsedTransactionEmail,
    other: Union[ParsedTransactionEmail, PortfolioTransaction],
    settings: FingerprintSettings
) -> Tuple[float, List[str], List[str]]:
    """
    Weighted similarity of two trades' fingerprints

    Quantity and price use numeric tolerances because repeated processing
    introduces rounding on fractional shares and large notionals. Dates score
    full weight on the same day, half within the configured window.

    Args:
        email: New parsed email
        other: Stored parsed email or booked ledger transaction
        settings: Weights and tolerances

    Returns:
        (score 0-1, matched fields, reasons)
    """
    weights = settings.weights
    score = 0.0
    matched_fields: List[str] = []
    reasons: List[str] = []

    if _key(email.symbol) == _key(other.symbol):
        score += weights.get("symbol", 0.0)
        matched_fields.append("symbol")
        reasons.append(f"Same symbol: {_key(email.symbol)}")

    if email.transaction_type == other.transaction_type:
        score += weights.get("transaction_type", 0.0)
        matched_fields.append("transaction_type")
        reasons.append(f"Same transaction type: {email.transaction_type.value}")

    if math.isclose(email.quantity, other.quantity,
                    rel_tol=settings.quantity_rel_tol, abs_tol=settings.quantity_abs_tol):
        score += weights.get("quantity", 0.0)
        matched_fields.append("quantity")
        reasons.append(f"Same quantity: {email.quantity:g}")

    if math.isclose(email.price, other.price, rel_tol=settings.price_rel_tol):
        score += weights.get("price", 0.0)
        matched_fields.append("price")
        reasons.append(f"Same price: ${email.price:,.2f}")

    days_apart = abs((email.transaction_date - other.transaction_date).days)
    if days_apart == 0:
        score += weights.get("date", 0.0)
        matched_fields.append("transaction_date")
        reasons.append("Same trade date")
    elif days_apart <= settings.date_window_days:
        score += weights.get("date", 0.0) / 2
        matched_fields.append("transaction_date")
        reasons.append(f"Trade dates {days_apart} day(s) apart")

    return round(min(score, 1.0), 4), matched_fields, reasons


def match_transaction_fingerprint(
    email: ParsedTransactionEmail,
    record: StoredEmailRecord,
    settings: DetectionSettings
) -> Optional[DuplicateMatch]:
    """
    Level 3: fingerprint similarity within the same account type.
    Records in other accounts are never compared.
    """
    if _key(email.account_type) != _key(record.email_data.account_type):
        return None

    score, matched_fields, reasons = fingerprint_similarity(
        email, record.email_data, settings.fingerprint
    )
    if score < settings.level3_min_similarity:
        return None

    return DuplicateMatch(
        level=DetectionLevel.TRANSACTION_FINGERPRINT,
        confidence=min(score, settings.level3_max_confidence),
        matched_record_id=record.id,
        matched_fields=["account_type"] + matched_fields,
        reasons=[f"Same account: {_key(email.account_type)}"] + reasons
    )


def match_existing_transaction(
    email: ParsedTransactionEmail,
    transaction: PortfolioTransaction,
    settings: DetectionSettings
) -> Optional[DuplicateMatch]:
    """
    Level 3 against the ledger: the trade may already be booked from another
    source (manual entry, CSV import) without any stored email behind it.
    Ledger rows without an account type are compared regardless of account.
    """
    if transaction.account_type and _key(email.account_type) != _key(transaction.account_type):
        return None

    score, matched_fields, reasons = fingerprint_similarity(email, transaction, settings.fingerprint)
    if score < settings.level3_min_similarity:
        return None

    return DuplicateMatch(
        level=DetectionLevel.TRANSACTION_FINGERPRINT,
        confidence=min(score, settings.level3_max_confidence),
        matched_record_id=transaction.id,
        source=MatchSource.TRANSACTION,
        matched_fields=matched_fields,
        reasons=[f"Existing portfolio transaction {transaction.id}"] + reasons
    )
