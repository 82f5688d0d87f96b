"""Read access to transactions already booked in a portfolio"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List
from src.utils.logging import get_logger

logger = get_logger(__name__)


class TransactionLookup(ABC):
    """
    Source of existing ledger transactions for level-3 comparison.

    Like EmailRecordStore.fetch_records, rows come back raw and are
    validated by the detector one at a time.
    """

    @abstractmethod
    async def fetch_transactions(self, portfolio_id: str) -> List[Any]:
        """Return every booked transaction row for the portfolio"""


class InMemoryTransactionLookup(TransactionLookup):
    """Process-local ledger for tests and imports replayed from files"""

    def __init__(self):
        self._rows: Dict[str, List[Any]] = {}

    async def fetch_transactions(self, portfolio_id: str) -> List[Any]:
        return list(self._rows.get(portfolio_id, []))

    def seed(self, portfolio_id: str, rows: List[Any]) -> None:
        self._rows.setdefault(portfolio_id, []).extend(rows)
        logger.debug("Seeded ledger transactions", portfolio_id=portfolio_id, count=len(rows))
