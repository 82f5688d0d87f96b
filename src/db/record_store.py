"""Stored email record backends (append-only, read-many)"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List
import redis.asyncio as redis
from redis.exceptions import RedisError
from src.models.record import StoredEmailRecord
from src.models.settings import StoreSettings
from src.utils.errors import RecordStoreError
from src.utils.logging import get_logger

logger = get_logger(__name__)


class EmailRecordStore(ABC):
    """
    Persistence of accepted emails, partitioned by portfolio.

    fetch_records returns raw rows as the backend holds them. Rows are
    validated by the detector one at a time so a single malformed row
    cannot fail the whole lookup.
    """

    @abstractmethod
    async def fetch_records(self, portfolio_id: str) -> List[Any]:
        """Return every stored row for the portfolio"""

    @abstractmethod
    async def save_record(self, record: StoredEmailRecord) -> None:
        """Append an accepted record"""

    async def health_check(self) -> bool:
        return True


class InMemoryEmailRecordStore(EmailRecordStore):
    """Process-local store for tests and single-process deployments"""

    def __init__(self):
        self._rows: Dict[str, List[Any]] = {}

    async def fetch_records(self, portfolio_id: str) -> List[Any]:
        return list(self._rows.get(portfolio_id, []))

    async def save_record(self, record: StoredEmailRecord) -> None:
        self._rows.setdefault(record.portfolio_id, []).append(record.model_dump(mode="json"))
        logger.info("Stored email record (in-memory)", record_id=record.id, portfolio_id=record.portfolio_id)

    def seed(self, portfolio_id: str, rows: List[Any]) -> None:
        """Load raw rows as-is, e.g. fixtures exported from the database"""
        self._rows.setdefault(portfolio_id, []).extend(rows)


class RedisEmailRecordStore(EmailRecordStore):
    """One Redis list of JSON rows per portfolio"""

    def __init__(self, client: redis.Redis, key_prefix: str = "email_records"):
        self.client = client
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "email_records") -> "RedisEmailRecordStore":
        client = redis.from_url(url, decode_responses=True, socket_connect_timeout=5)
        return cls(client, key_prefix)

    def _key(self, portfolio_id: str) -> str:
        return f"{self.key_prefix}:{portfolio_id}"

    async def fetch_records(self, portfolio_id: str) -> List[Any]:
        try:
            values = await self.client.lrange(self._key(portfolio_id), 0, -1)
        except RedisError as e:
            raise RecordStoreError(f"Failed to fetch email records for {portfolio_id}: {e}") from e

        rows = []
        for value in values:
            try:
                rows.append(json.loads(value))
            except (TypeError, ValueError):
                logger.warning("Undecodable email record row", portfolio_id=portfolio_id)
                rows.append(value)
        return rows

    async def save_record(self, record: StoredEmailRecord) -> None:
        try:
            await self.client.rpush(self._key(record.portfolio_id), record.model_dump_json())
            logger.info("Stored email record", record_id=record.id, portfolio_id=record.portfolio_id)
        except RedisError as e:
            raise RecordStoreError(f"Failed to store email record {record.id}: {e}") from e

    async def health_check(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError:
            return False


def create_record_store(settings: StoreSettings) -> EmailRecordStore:
    """Build the configured store backend"""
    if settings.backend == "redis":
        logger.info("Using Redis email record store", url=settings.redis_url)
        return RedisEmailRecordStore.from_url(settings.redis_url, settings.key_prefix)

    logger.info("Using in-memory email record store")
    return InMemoryEmailRecordStore()
