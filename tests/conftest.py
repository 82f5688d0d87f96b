"""Shared fixtures for duplicate detection tests"""

import json
from pathlib import Path
import pytest
from src.models.email import ParsedTransactionEmail
from src.models.record import StoredEmailRecord
from src.models.settings import DetectionSettings, StoreSettings
from src.tools.identification import extract_identification

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def sample_emails():
    """Parsed emails keyed by fixture name"""
    with open(FIXTURES / "sample_emails.json") as f:
        data = json.load(f)
    return {name: ParsedTransactionEmail(**payload) for name, payload in data.items()}


@pytest.fixture
def settings():
    """Default thresholds, no retry delay"""
    return DetectionSettings(store=StoreSettings(max_retries=2, base_delay_seconds=0))


@pytest.fixture
def make_record():
    """Build a StoredEmailRecord the way acceptance would"""
    def _make(email: ParsedTransactionEmail, portfolio_id: str = "portfolio-1", record_id: str = "rec-1"):
        return StoredEmailRecord(
            id=record_id,
            identification=extract_identification(email.subject, email.from_email, email.raw_content),
            email_data=email,
            portfolio_id=portfolio_id
        )
    return _make
