# feedsync/routes/feed_items.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from feedsync.dependencies import get_store
from feedsync.integrations.base import FeedItemStore
from feedsync.schemas.feed_item import FeedItemRead

router = APIRouter(prefix="/api/feed-items", tags=["feed-items"])


@router.get("", response_model=List[FeedItemRead])
async def list_feed_items(store: FeedItemStore = Depends(get_store)):
    """Every item in the local store."""
    return [FeedItemRead.from_item(item) for item in await store.find_all()]


@router.get("/{sku}", response_model=FeedItemRead)
async def get_feed_item(sku: str, store: FeedItemStore = Depends(get_store)):
    item = await store.find_by_sku(sku)
    if item is None:
        raise HTTPException(status_code=404, detail=f"No feed item with sku {sku}")
    return FeedItemRead.from_item(item)
