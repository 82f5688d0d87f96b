"""Parsed email and email identification models"""

from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime
from typing import Optional, List
from src.constants import TransactionType


class ParsedTransactionEmail(BaseModel):
    """Trade confirmation parsed out of a broker email"""

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "symbol": "AAPL",
                "transaction_type": "buy",
                "quantity": 100,
                "price": 150.25,
                "total_amount": 15025.00,
                "account_type": "TFSA",
                "transaction_date": "2025-01-15",
                "subject": "Trade Confirmation - AAPL Purchase",
                "from_email": "notifications@wealthsimple.com",
                "raw_content": "Order #WS123456789 ...",
                "confidence": 0.95,
                "parse_method": "wealthsimple.regex"
            }
        }
    )

    symbol: str = Field(..., min_length=1, description="Ticker or option symbol")
    transaction_type: TransactionType = Field(..., description="buy or sell")
    quantity: float = Field(..., gt=0, description="Shares or contracts, may be fractional")
    price: float = Field(..., gt=0, description="Execution price per unit")
    total_amount: float = Field(..., gt=0, description="Gross trade value")
    account_type: str = Field(..., description="Account partition (TFSA, RRSP, Margin, ...)")
    transaction_date: date = Field(..., description="Trade date in the account's locale")
    subject: str = Field("", description="Email subject")
    from_email: str = Field("", description="Sender address")
    raw_content: str = Field("", description="Raw email body (HTML or text)")
    confidence: float = Field(1.0, ge=0, le=1, description="Parser confidence, not duplicate confidence")
    parse_method: str = Field("unknown", description="Parser that produced this record")


class EmailIdentification(BaseModel):
    """Stable identity fields derived from an email"""

    model_config = ConfigDict(frozen=True)

    signature: str = Field(..., min_length=1, description="Normalized sender+subject+content hash")
    order_id: Optional[str] = Field(None, description="Primary order/confirmation id, if any")
    order_ids: List[str] = Field(default_factory=list, description="All order ids found")
    confirmation_numbers: List[str] = Field(default_factory=list, description="Confirmation/transaction numbers found")
    message_id: Optional[str] = Field(None, description="RFC 5322 Message-ID, if headers were available")
    content_hash: str = Field("", description="Hash of normalized subject and body")
    transaction_hash: str = Field("", description="Hash of identifiers and trade tokens found in the text")
    from_email: str = Field("", description="Sender address")
    subject: str = Field("", description="Email subject")
    extracted_at: datetime = Field(default_factory=datetime.now, description="Extraction timestamp")
    extraction_method: str = Field("", description="Extractor version")
