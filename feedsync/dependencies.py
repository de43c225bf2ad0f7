from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from feedsync.core.config import Settings, get_settings
from feedsync.database import get_sessionmaker
from feedsync.integrations.base import FeedSource, Notifier, RemotePlatformClient
from feedsync.services.feed_item_service import FeedItemRepository
from feedsync.services.feed_sources import CsvFeedSource
from feedsync.services.notification_service import EmailNotificationService
from feedsync.services.reconciliation_service import ReconciliationService
from feedsync.services.shopify.client import ShopifyGraphQLClient
from feedsync.services.sync_context import SyncContext
from feedsync.services.sync_service import SyncService


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with get_sessionmaker()() as session:
        try:
            yield session
        finally:
            await session.close()


def get_store(db: AsyncSession = Depends(get_db)) -> FeedItemRepository:
    return FeedItemRepository(db)


async def get_remote_client(
    settings: Settings = Depends(get_settings),
) -> AsyncGenerator[RemotePlatformClient, None]:
    client = ShopifyGraphQLClient.from_settings(settings)
    try:
        yield client
    finally:
        await client.aclose()


def get_feed_source(settings: Settings = Depends(get_settings)) -> FeedSource:
    return CsvFeedSource(settings.FEED_FILE_PATH)


def get_notifier(settings: Settings = Depends(get_settings)) -> Notifier:
    return EmailNotificationService(settings)


def get_sync_service(
    settings: Settings = Depends(get_settings),
    store: FeedItemRepository = Depends(get_store),
    client: RemotePlatformClient = Depends(get_remote_client),
    feed_source: FeedSource = Depends(get_feed_source),
    notifier: Notifier = Depends(get_notifier),
) -> SyncService:
    """A fresh context (and so fresh caches) per request."""
    context = SyncContext.from_settings(settings, client=client, store=store, notifier=notifier)
    return SyncService(context, feed_source)


def get_reconciliation_service(
    sync_service: SyncService = Depends(get_sync_service),
) -> ReconciliationService:
    return ReconciliationService(sync_service, feed_source=sync_service.feed_source)
