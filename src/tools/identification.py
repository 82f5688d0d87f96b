"""Identification extraction for incoming confirmation emails"""

import hashlib
import re
from datetime import datetime
from typing import List, Optional, Tuple
from src.constants import (
    RiskLevel,
    SIGNATURE_LENGTH,
    CONTENT_HASH_LENGTH,
    TRANSACTION_HASH_LENGTH,
    EXTRACTION_METHOD,
)
from src.models.email import EmailIdentification
from src.models.detection import ValidationReport
from src.utils.logging import get_logger

logger = get_logger(__name__)

# Label separators are a single character class so runs of blanks, colons
# and hashes are scanned in linear time.
LABEL_SEPARATOR = r'[\s:#]*'

# Labeled ids ("Order #WS123456789", "Order ID: ...", "Reference: ...") take precedence
LABELED_ORDER_ID_PATTERN = re.compile(
    r'\b(?:order|confirmation|reference)(?:' + LABEL_SEPARATOR + r'(?:id|number|no\.?))?'
    + LABEL_SEPARATOR + r'([A-Z]{2,3}\d{6,12}|\d{10,15})\b',
    re.IGNORECASE
)

BARE_ORDER_ID_PATTERNS = [
    re.compile(r'\bWS\d{6,12}\b', re.IGNORECASE),
    re.compile(r'\b[A-Z]{2}\d{8,10}\b'),
]

CONFIRMATION_PATTERNS = [
    re.compile(
        r'\b(?:confirmation|conf|ref)(?:' + LABEL_SEPARATOR + r'(?:number|no\.?))?'
        + LABEL_SEPARATOR + r'([A-Z0-9]{6,20})\b',
        re.IGNORECASE
    ),
    re.compile(
        r'\b(?:transaction|txn)(?:' + LABEL_SEPARATOR + r'(?:id|number|no\.?))?'
        + LABEL_SEPARATOR + r'([A-Z0-9]{6,20})\b',
        re.IGNORECASE
    ),
]

MESSAGE_ID_PATTERNS = [
    re.compile(r'message-id:\s*<([^>]+)>', re.IGNORECASE),
    re.compile(r'^<([^>@\s]+@[^>\s]+)>$', re.MULTILINE),
]

SYMBOL_PATTERN = re.compile(r'\b[A-Z]{1,5}(?:\.[A-Z]{2})?\b')
QUANTITY_PATTERN = re.compile(r'(?<![\d,.])(\d[\d,]*(?:\.\d{1,8})?)\s*(?:shares?|units?|contracts?)\b', re.IGNORECASE)
PRICE_PATTERN = re.compile(r'[$€£]\s?(\d[\d,]*(?:\.\d{2,4})?)')
DATE_PATTERNS = [
    re.compile(r'\d{4}-\d{2}-\d{2}'),
    re.compile(r'\d{2}/\d{2}/\d{4}'),
    re.compile(
        r'(?:January|February|March|April|May|June|July|August|September|October|November|December)'
        r'\s+\d{1,2},?\s+\d{4}',
        re.IGNORECASE
    ),
]

VALID_ORDER_ID = re.compile(r'^(?:[A-Z]{2,3}\d{6,12}|\d{10,15})$')
VALID_CONFIRMATION = re.compile(r'^(?=.*\d)[A-Z0-9]{6,20}$')


def normalize_text(text: Optional[str]) -> str:
    """Strip HTML tags and punctuation, collapse whitespace, lower-case"""
    if not text:
        return ""
    text = re.sub(r'<[^>]*>', ' ', text)
    text = re.sub(r'[^\w\s.@-]', '', text)
    text = re.sub(r'\s+', ' ', text)
    return text.lower().strip()


def normalize_signature(signature: Optional[str]) -> str:
    """Case- and whitespace-insensitive form used for level-1 comparison"""
    return "".join((signature or "").split()).lower()


def normalize_order_id(order_id: Optional[str]) -> str:
    return (order_id or "").strip().upper()


def _digest(value: str, length: int) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:length]


def _unique(values: List[str]) -> List[str]:
    return list(dict.fromkeys(values))


def extract_message_id(raw_headers: Optional[str], content: Optional[str] = None) -> Optional[str]:
    """Find a Message-ID in raw headers, falling back to the body"""
    for source in (raw_headers, content):
        if not source:
            continue
        for pattern in MESSAGE_ID_PATTERNS:
            match = pattern.search(source)
            if match:
                return match.group(1).strip()
    return None


def extract_order_ids(content: str) -> List[str]:
    """
    Extract order ids, labeled ids first

    Args:
        content: Subject and body text

    Returns:
        Upper-cased unique ids in discovery order
    """
    found = [m.group(1) for m in LABELED_ORDER_ID_PATTERN.finditer(content)]
    for pattern in BARE_ORDER_ID_PATTERNS:
        found.extend(m.group(0) for m in pattern.finditer(content))

    ids = [normalize_order_id(candidate) for candidate in found]
    return _unique([order_id for order_id in ids if VALID_ORDER_ID.match(order_id)])


def extract_confirmation_numbers(content: str) -> List[str]:
    numbers = []
    for pattern in CONFIRMATION_PATTERNS:
        numbers.extend(normalize_order_id(m.group(1)) for m in pattern.finditer(content))
    return _unique([n for n in numbers if VALID_CONFIRMATION.match(n)])


def _transaction_tokens(content: str) -> List[str]:
    symbols = SYMBOL_PATTERN.findall(content)
    quantities = [q.replace(',', '') for q in QUANTITY_PATTERN.findall(content)]
    prices = []
    for raw in PRICE_PATTERN.findall(content):
        value = float(raw.replace(',', ''))
        if 0 < value < 1_000_000:
            prices.append(f"{value:.2f}")
    dates = [m.group(0) for pattern in DATE_PATTERNS for m in pattern.finditer(content)]
    return sorted(set(symbols)) + sorted(set(quantities)) + sorted(set(prices)) + sorted(set(dates))


def extract_identification(
    subject: str,
    from_email: str,
    raw_content: str,
    raw_headers: Optional[str] = None
) -> EmailIdentification:
    """
    Derive identity fields from an email. Never raises: unusable input
    yields no order id and a signature hashed from whatever is present.

    Args:
        subject: Email subject
        from_email: Sender address
        raw_content: HTML or text body
        raw_headers: Raw RFC 5322 headers, when the caller has them

    Returns:
        EmailIdentification with signature always populated
    """
    subject = subject if isinstance(subject, str) else ""
    from_email = from_email if isinstance(from_email, str) else ""
    raw_content = raw_content if isinstance(raw_content, str) else ""
    raw_headers = raw_headers if isinstance(raw_headers, str) else None

    combined = " ".join(f"{subject} {raw_content}".split())
    norm_subject = normalize_text(subject)
    norm_from = from_email.lower().strip()
    norm_content = normalize_text(raw_content)

    signature = _digest(f"{norm_subject}|{norm_from}|{norm_content}", SIGNATURE_LENGTH)
    if not (norm_subject or norm_content):
        logger.warning("Email has no subject or body text, signature is coarse", from_email=norm_from)

    order_ids = extract_order_ids(combined)
    confirmation_numbers = extract_confirmation_numbers(combined)

    fingerprint = "|".join(
        [norm_from] + sorted(order_ids) + sorted(confirmation_numbers) + _transaction_tokens(combined)
    )

    return EmailIdentification(
        signature=signature,
        order_id=order_ids[0] if order_ids else None,
        order_ids=order_ids,
        confirmation_numbers=confirmation_numbers,
        message_id=extract_message_id(raw_headers, raw_content),
        content_hash=_digest(normalize_text(combined), CONTENT_HASH_LENGTH),
        transaction_hash=_digest(fingerprint, TRANSACTION_HASH_LENGTH),
        from_email=from_email,
        subject=subject,
        extracted_at=datetime.now(),
        extraction_method=EXTRACTION_METHOD
    )


def identification_quality(identification: EmailIdentification) -> Tuple[float, RiskLevel]:
    """
    Score how reliable an identification is for duplicate detection.

    Returns:
        (confidence 0-1, duplicate risk). Risk is high when neither an order id
        nor a Message-ID is available, medium when only one of them is.
    """
    confidence = 0.3
    if identification.message_id:
        confidence += 0.3
    if identification.order_ids:
        confidence += 0.3
    if identification.confirmation_numbers:
        confidence += 0.1

    if not identification.order_ids and not identification.message_id:
        risk = RiskLevel.HIGH
    elif not identification.order_ids or not identification.message_id:
        risk = RiskLevel.MEDIUM
    else:
        risk = RiskLevel.LOW

    return min(round(confidence, 3), 1.0), risk


def validate_identification(identification: EmailIdentification) -> ValidationReport:
    """Check an identification for missing required and optional fields"""
    report = ValidationReport()

    if not identification.signature:
        report.errors.append("Signature is required")
    if not identification.from_email:
        report.errors.append("Sender address is required")
    if not identification.subject:
        report.errors.append("Subject is required")

    if not identification.message_id:
        report.warnings.append("Message-ID not found - duplicate detection may be less reliable")
    if not identification.order_id:
        report.warnings.append("No order ID found - duplicate detection may be less reliable")
    if not identification.confirmation_numbers:
        report.warnings.append("No confirmation numbers found")

    return report
