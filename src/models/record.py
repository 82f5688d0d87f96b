"""Stored email record and ledger transaction models"""

from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime
from typing import Optional
from src.constants import TransactionType
from src.models.email import EmailIdentification, ParsedTransactionEmail


class StoredEmailRecord(BaseModel):
    """Previously accepted email, scoped to one portfolio. Never mutated."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Unique record ID")
    identification: EmailIdentification = Field(..., description="Identification captured at acceptance")
    email_data: ParsedTransactionEmail = Field(..., description="Original parsed email")
    portfolio_id: str = Field(..., min_length=1, description="Partition key")
    created_at: datetime = Field(default_factory=datetime.now, description="Creation timestamp")
    transaction_id: Optional[str] = Field(None, description="Transaction created from this email")


class PortfolioTransaction(BaseModel):
    """Transaction already booked in the portfolio ledger"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Ledger transaction ID")
    portfolio_id: str = Field(..., min_length=1)
    symbol: str = Field(..., min_length=1)
    transaction_type: TransactionType
    quantity: float = Field(..., gt=0)
    price: float = Field(..., gt=0)
    transaction_date: date
    account_type: Optional[str] = Field(None, description="Unset when the ledger does not track accounts")
