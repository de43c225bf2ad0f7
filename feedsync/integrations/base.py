# feedsync/integrations/base.py
"""
Abstract collaborators of the synchronization engine.

The engine only talks to these interfaces; concrete implementations live in
``feedsync.services`` (SQLAlchemy store, CSV feed, SMTP notifier, Shopify client)
and in-memory fakes live in the test suite.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from feedsync.schemas.feed_item import CanonicalItem
from feedsync.schemas.remote import (
    Collect,
    RemoteCollection,
    RemoteImage,
    RemoteInventoryLevel,
    RemoteLocation,
    RemoteOption,
    RemoteProduct,
)


class FeedSource(ABC):
    """Authoritative product feed."""

    @abstractmethod
    async def load_snapshot(self) -> List[CanonicalItem]:
        """Return every feed item.

        Raises:
            FeedUnavailableError: when the feed is empty or unreachable.
        """
        pass


class FeedItemStore(ABC):
    """Durable record of what was last synchronized. Each write commits on its own."""

    @abstractmethod
    async def find_all(self) -> List[CanonicalItem]:
        pass

    @abstractmethod
    async def find_by_sku(self, sku: str) -> Optional[CanonicalItem]:
        pass

    @abstractmethod
    async def upsert(self, item: CanonicalItem) -> CanonicalItem:
        pass

    @abstractmethod
    async def delete(self, sku: str) -> bool:
        """Remove the record, returning False if nothing was stored under ``sku``."""
        pass


class RemotePlatformClient(ABC):
    """Storefront admin API.

    Implementations raise ``RemoteTransportError`` for network/HTTP failures and
    ``RemoteUserError`` (carrying the user-error list) when the platform rejects
    a request.
    """

    # Products
    @abstractmethod
    async def create_product(self, proposal: RemoteProduct) -> RemoteProduct:
        pass

    @abstractmethod
    async def get_product(self, product_id: str) -> Optional[RemoteProduct]:
        pass

    @abstractmethod
    async def get_all_products(self) -> List[RemoteProduct]:
        pass

    @abstractmethod
    async def update_product(self, proposal: RemoteProduct) -> RemoteProduct:
        pass

    @abstractmethod
    async def delete_product(self, product_id: str) -> None:
        pass

    # Sub-resources
    @abstractmethod
    async def add_options(self, product_id: str, options: List[RemoteOption]) -> List[RemoteOption]:
        pass

    @abstractmethod
    async def add_images(self, product_id: str, images: List[RemoteImage]) -> List[RemoteImage]:
        pass

    @abstractmethod
    async def delete_all_images(self, product_id: str) -> None:
        pass

    @abstractmethod
    async def get_inventory_levels(self, inventory_item_id: str) -> List[RemoteInventoryLevel]:
        pass

    @abstractmethod
    async def update_inventory_levels(self, levels: List[RemoteInventoryLevel]) -> None:
        pass

    @abstractmethod
    async def get_locations(self) -> List[RemoteLocation]:
        pass

    # Collections
    @abstractmethod
    async def get_all_collections(self) -> List[RemoteCollection]:
        pass

    @abstractmethod
    async def create_collection(self, title: str) -> RemoteCollection:
        pass

    @abstractmethod
    async def add_collects(self, collects: List[Collect]) -> None:
        pass

    @abstractmethod
    async def delete_all_collects(self, product_id: str) -> None:
        pass

    # Channels
    @abstractmethod
    async def publish_to_all_channels(self, product_id: str) -> None:
        pass

    @abstractmethod
    async def publish_collection(self, collection_id: str) -> None:
        """Make a collection visible on every sales channel."""
        pass

    async def aclose(self) -> None:
        """Release transport resources. No-op by default."""
        return None


class Notifier(ABC):
    @abstractmethod
    async def email_alert(self, subject: str, body: str, cause: Optional[BaseException] = None) -> bool:
        pass

    async def send_publish_alert(self, item: CanonicalItem, action: str) -> bool:
        """Optional per-item alert for published/removed items."""
        return False


class ImageDownloader(ABC):
    """Fetches and stages an item's images before they are referenced remotely."""

    @abstractmethod
    async def download_images(self, item: CanonicalItem) -> None:
        pass
