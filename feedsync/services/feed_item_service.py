# feedsync/services/feed_item_service.py
"""SQLAlchemy implementation of the local feed item store."""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from feedsync.core.exceptions import StoreError
from feedsync.integrations.base import FeedItemStore
from feedsync.models.feed_item import FeedItemRecord
from feedsync.schemas.feed_item import FEED_ATTRIBUTES, CanonicalItem

logger = logging.getLogger(__name__)

BOOKKEEPING_ATTRIBUTES = ("status", "remote_id", "published_at", "last_error")


class FeedItemRepository(FeedItemStore):
    """Stores canonical items in the ``feed_items`` table.

    Every write commits on its own so that one item's failure never rolls
    back another's.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_all(self) -> List[CanonicalItem]:
        try:
            result = await self.db.execute(select(FeedItemRecord).order_by(FeedItemRecord.id))
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load feed items: {e}") from e
        return [self._to_item(record) for record in result.scalars().all()]

    async def find_by_sku(self, sku: str) -> Optional[CanonicalItem]:
        record = await self._get_record(sku)
        return self._to_item(record) if record else None

    async def upsert(self, item: CanonicalItem) -> CanonicalItem:
        try:
            record = await self._get_record(item.sku)
            if record is None:
                record = FeedItemRecord(sku=item.sku)
                self.db.add(record)
            elif self._to_item(record) == item:
                return item

            self._apply(record, item)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StoreError(f"Failed to save {item.sku}: {e}") from e

        logger.debug("Saved %s (%s)", item.sku, item.status.value)
        return item

    async def delete(self, sku: str) -> bool:
        try:
            record = await self._get_record(sku)
            if record is None:
                return False
            await self.db.delete(record)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StoreError(f"Failed to delete {sku}: {e}") from e
        return True

    async def _get_record(self, sku: str) -> Optional[FeedItemRecord]:
        try:
            result = await self.db.execute(select(FeedItemRecord).where(FeedItemRecord.sku == sku))
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to look up {sku}: {e}") from e
        return result.scalar_one_or_none()

    @staticmethod
    def _to_item(record: FeedItemRecord) -> CanonicalItem:
        return CanonicalItem.model_validate(record)

    @staticmethod
    def _apply(record: FeedItemRecord, item: CanonicalItem) -> None:
        for attr in FEED_ATTRIBUTES:
            if attr == "sku":
                continue
            value = getattr(item, attr)
            setattr(record, attr, list(value) if attr == "image_paths" else value)

        record.status = item.status.value
        record.remote_id = item.remote_id
        record.published_at = _naive(item.published_at)
        record.last_error = item.last_error


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.replace(tzinfo=None)
    return value
