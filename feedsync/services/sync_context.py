# feedsync/services/sync_context.py
"""
Per-run state for the synchronizer.

A ``SyncContext`` is built once per sync or reconciliation run and handed to
every component. The location list and the collection mapping are fetched
lazily on first use and live as long as the context does.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from feedsync.core.config import Settings
from feedsync.integrations.base import FeedItemStore, ImageDownloader, Notifier, RemotePlatformClient
from feedsync.schemas.remote import RemoteLocation
from feedsync.services.collections import ensure_collections
from feedsync.services.product_factory import ProductFactory
from feedsync.services.profiles import CatalogProfile, get_profile

logger = logging.getLogger(__name__)


@dataclass
class SyncOptions:
    max_to_delete_count: int = 50
    force_update: bool = False
    skip_image_download: bool = False
    feed_read_cap: Optional[int] = None
    image_base_url: str = ""

    @classmethod
    def from_settings(cls, settings: Settings) -> "SyncOptions":
        return cls(
            max_to_delete_count=settings.MAX_TO_DELETE_COUNT,
            force_update=settings.FORCE_UPDATE,
            skip_image_download=settings.SKIP_IMAGE_DOWNLOAD,
            feed_read_cap=settings.feed_read_cap,
            image_base_url=settings.IMAGE_HOSTING_URL_BASE,
        )


class SyncContext:
    def __init__(
        self,
        client: RemotePlatformClient,
        store: FeedItemStore,
        profile: CatalogProfile,
        options: Optional[SyncOptions] = None,
        notifier: Optional[Notifier] = None,
        image_downloader: Optional[ImageDownloader] = None,
    ):
        self.client = client
        self.store = store
        self.profile = profile
        self.options = options or SyncOptions()
        self.notifier = notifier
        self.image_downloader = image_downloader
        self.product_factory = ProductFactory(profile, self.options.image_base_url)

        self._locations: Optional[List[RemoteLocation]] = None
        self._collection_mapping: Optional[Dict[str, str]] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: RemotePlatformClient,
        store: FeedItemStore,
        notifier: Optional[Notifier] = None,
        image_downloader: Optional[ImageDownloader] = None,
    ) -> "SyncContext":
        return cls(
            client=client,
            store=store,
            profile=get_profile(settings.CATALOG_PROFILE),
            options=SyncOptions.from_settings(settings),
            notifier=notifier,
            image_downloader=image_downloader,
        )

    async def get_locations(self) -> List[RemoteLocation]:
        if self._locations is None:
            self._locations = await self.client.get_locations()
            logger.info("Loaded %d inventory locations", len(self._locations))
        return self._locations

    async def get_collection_mapping(self) -> Dict[str, str]:
        if self._collection_mapping is None:
            self._collection_mapping = await ensure_collections(self.client, self.profile.collection_rules)
        return self._collection_mapping

    def invalidate_caches(self) -> None:
        self._locations = None
        self._collection_mapping = None
        logger.info("Sync context caches invalidated")
