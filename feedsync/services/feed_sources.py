# feedsync/services/feed_sources.py
"""Feed readers producing canonical items."""

import asyncio
import logging
from pathlib import Path
from typing import List

import pandas as pd

from feedsync.core.exceptions import FeedUnavailableError
from feedsync.integrations.base import FeedSource
from feedsync.schemas.feed_item import CanonicalItem, ItemField

logger = logging.getLogger(__name__)


class CsvFeedSource(FeedSource):
    """Reads a feed export whose header uses the feed column names."""

    def __init__(self, file_path: str):
        self.file_path = Path(file_path)

    async def load_snapshot(self) -> List[CanonicalItem]:
        df = await asyncio.to_thread(self._read)

        sku_column = ItemField.SKU.column
        if sku_column not in df.columns:
            raise FeedUnavailableError(f"Feed {self.file_path} has no '{sku_column}' column")

        items: List[CanonicalItem] = []
        skipped = 0
        for row in df.to_dict(orient="records"):
            if not row.get(sku_column):
                skipped += 1
                continue
            items.append(CanonicalItem.from_feed_row(row))

        if skipped:
            logger.warning("Skipped %d feed rows without a sku", skipped)
        if not items:
            raise FeedUnavailableError(f"Feed {self.file_path} contains no items")

        logger.info("Loaded %d items from %s", len(items), self.file_path)
        return items

    def _read(self) -> pd.DataFrame:
        try:
            df = pd.read_csv(self.file_path, dtype=str, keep_default_na=False)
        except FileNotFoundError as e:
            raise FeedUnavailableError(f"Feed file not found: {self.file_path}") from e
        except pd.errors.EmptyDataError as e:
            raise FeedUnavailableError(f"Feed file is empty: {self.file_path}") from e
        df.columns = [str(c).strip() for c in df.columns]
        return df
