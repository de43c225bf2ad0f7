# feedsync/schemas/remote.py
"""
Storefront-side representation of a product and its sub-resources.

A ``None`` list means "not fetched / unknown", which is different from an
empty list ("the product has none").
"""

from typing import List, Optional

from pydantic import Field

from feedsync.schemas.base import BaseSchema


class UserError(BaseSchema):
    field: Optional[List[str]] = None
    message: str
    code: Optional[str] = None


class RemoteInventoryLevel(BaseSchema):
    inventory_item_id: Optional[str] = None
    location_id: Optional[str] = None
    available: Optional[int] = None

    @property
    def is_complete(self) -> bool:
        return (
            self.inventory_item_id is not None
            and self.location_id is not None
            and self.available is not None
        )


class RemoteVariant(BaseSchema):
    id: Optional[str] = None
    sku: Optional[str] = None
    price: Optional[str] = None
    inventory_item_id: Optional[str] = None
    option_values: List[str] = Field(default_factory=list)
    inventory_levels: Optional[List[RemoteInventoryLevel]] = None


class RemoteOption(BaseSchema):
    id: Optional[str] = None
    name: str
    position: Optional[int] = None
    values: List[str] = Field(default_factory=list)


class RemoteImage(BaseSchema):
    id: Optional[str] = None
    product_id: Optional[str] = None
    src: str
    position: Optional[int] = None
    alt: Optional[str] = None


class RemoteMetafield(BaseSchema):
    id: Optional[str] = None
    namespace: str
    key: str
    value: Optional[str] = None
    type: str = "single_line_text_field"

    @property
    def qualified_key(self) -> str:
        return f"{self.namespace}.{self.key}"


class RemoteProduct(BaseSchema):
    id: Optional[str] = None
    title: Optional[str] = None
    body_html: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    handle: Optional[str] = None
    status: str = "ACTIVE"
    variants: Optional[List[RemoteVariant]] = None
    options: Optional[List[RemoteOption]] = None
    images: Optional[List[RemoteImage]] = None
    metafields: Optional[List[RemoteMetafield]] = None
    collection_ids: Optional[List[str]] = None

    @property
    def first_variant(self) -> Optional[RemoteVariant]:
        return self.variants[0] if self.variants else None

    @property
    def sku(self) -> Optional[str]:
        variant = self.first_variant
        return variant.sku if variant and variant.sku else None

    @property
    def image_count(self) -> int:
        return len(self.images or [])


class RemoteCollection(BaseSchema):
    id: str
    title: str


class RemoteLocation(BaseSchema):
    id: str
    name: Optional[str] = None


class Collect(BaseSchema):
    product_id: str
    collection_id: str
