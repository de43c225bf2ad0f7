# feedsync/schemas/feed_item.py
"""
Canonical item model shared by the feed, the local store and the differ.

Feed columns are mapped onto attributes through the ``ItemField`` table rather
than by looking attributes up by name at runtime. Each descriptor also says
whether the field is pushed to the storefront, which defines business equality.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Tuple

from pydantic import Field, field_validator

from feedsync.core.enums import ItemStatus
from feedsync.schemas.base import BaseSchema

MAX_IMAGE_SLOTS = 9


class FieldDescriptor(NamedTuple):
    attr: str
    column: str
    business: bool = True


class ItemField(Enum):
    SKU = FieldDescriptor("sku", "web_tag_number")
    WEB_STATUS = FieldDescriptor("web_status", "web_status")
    PRICE_RETAIL = FieldDescriptor("price_retail", "web_price_retail")
    PRICE_SALE = FieldDescriptor("price_sale", "web_price_sale")
    PRICE_EBAY = FieldDescriptor("price_ebay", "web_price_ebay")
    PRICE_KEYSTONE = FieldDescriptor("price_keystone", "web_price_keystone")
    PRICE_CHRONOS = FieldDescriptor("price_chronos", "web_price_chronos")
    PRICE_WHOLESALE = FieldDescriptor("price_wholesale", "web_price_wholesale")
    COST_INVOICED = FieldDescriptor("cost_invoiced", "cost_invoiced", business=False)
    TITLE = FieldDescriptor("title", "web_description_short")
    STYLE = FieldDescriptor("style", "web_style")
    BRAND = FieldDescriptor("brand", "web_designer")
    MODEL = FieldDescriptor("model", "web_watch_model")
    YEAR = FieldDescriptor("year", "web_watch_year")
    MATERIAL = FieldDescriptor("material", "web_metal_type")
    REFERENCE_NUMBER = FieldDescriptor("reference_number", "web_watch_manufacturer_reference_number")
    MOVEMENT = FieldDescriptor("movement", "web_watch_movement")
    CASE = FieldDescriptor("case", "web_watch_case")
    DIAL = FieldDescriptor("dial", "web_watch_dial")
    STRAP = FieldDescriptor("strap", "web_watch_strap")
    CONDITION = FieldDescriptor("condition", "web_watch_condition")
    DIAMETER = FieldDescriptor("diameter", "web_watch_diameter")
    BOX_PAPERS = FieldDescriptor("box_papers", "web_watch_box_papers")
    CATEGORY = FieldDescriptor("category", "web_category")
    SERIAL_NUMBER = FieldDescriptor("serial_number", "web_serial_number")
    NOTES = FieldDescriptor("notes", "web_notes")
    INTERNAL_NOTES = FieldDescriptor("internal_notes", "internal_notes", business=False)

    @property
    def attr(self) -> str:
        return self.value.attr

    @property
    def column(self) -> str:
        return self.value.column

    @property
    def business(self) -> bool:
        return self.value.business

    @classmethod
    def business_fields(cls) -> Tuple["ItemField", ...]:
        return tuple(f for f in cls if f.business)

    @classmethod
    def by_column(cls) -> Dict[str, "ItemField"]:
        return {f.column: f for f in cls}


IMAGE_COLUMNS: Tuple[str, ...] = tuple(f"web_image_path_{n}" for n in range(1, MAX_IMAGE_SLOTS + 1))

# Every attribute that comes from the feed (as opposed to sync bookkeeping)
FEED_ATTRIBUTES: Tuple[str, ...] = tuple(f.attr for f in ItemField) + ("image_paths",)


def _clean_cell(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if value.is_integer():
            value = int(value)
    text = str(value).strip()
    return text or None


class CanonicalItem(BaseSchema):
    """One catalog entry, keyed by sku."""

    sku: str = Field(frozen=True, min_length=1)

    # Sync bookkeeping
    status: ItemStatus = ItemStatus.AVAILABLE
    remote_id: Optional[str] = None
    published_at: Optional[datetime] = None
    last_error: Optional[str] = None

    web_status: Optional[str] = None

    price_retail: Optional[str] = None
    price_sale: Optional[str] = None
    price_ebay: Optional[str] = None
    price_keystone: Optional[str] = None
    price_chronos: Optional[str] = None
    price_wholesale: Optional[str] = None
    cost_invoiced: Optional[str] = None

    title: Optional[str] = None
    style: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    year: Optional[str] = None
    material: Optional[str] = None
    reference_number: Optional[str] = None
    movement: Optional[str] = None
    case: Optional[str] = None
    dial: Optional[str] = None
    strap: Optional[str] = None
    condition: Optional[str] = None
    diameter: Optional[str] = None
    box_papers: Optional[str] = None
    category: Optional[str] = None
    serial_number: Optional[str] = None
    notes: Optional[str] = None
    internal_notes: Optional[str] = None

    image_paths: List[Optional[str]] = Field(default_factory=list)

    @field_validator("image_paths", mode="before")
    @classmethod
    def _normalize_image_slots(cls, value):
        if value is None:
            return []
        slots = [_clean_cell(v) for v in value]
        if len(slots) > MAX_IMAGE_SLOTS:
            raise ValueError(f"at most {MAX_IMAGE_SLOTS} image slots are supported, got {len(slots)}")
        # Trailing empty slots carry no information
        while slots and slots[-1] is None:
            slots.pop()
        return slots

    @classmethod
    def from_feed_row(cls, row: Mapping[str, Any]) -> "CanonicalItem":
        """Build an item from a feed row keyed by feed column names."""
        values: Dict[str, Any] = {}
        for column, field in ItemField.by_column().items():
            if column in row:
                values[field.attr] = _clean_cell(row[column])
        values["image_paths"] = [row.get(column) for column in IMAGE_COLUMNS]
        item = cls(**values)
        item.status = ItemStatus.SOLD if item.is_sold else ItemStatus.AVAILABLE
        return item

    @property
    def is_sold(self) -> bool:
        return (self.web_status or "").strip().lower() == "sold"

    @property
    def image_count(self) -> int:
        return sum(1 for path in self.image_paths if path)

    def image_slots(self) -> List[Tuple[int, str]]:
        """(1-based slot, path) for every populated image slot."""
        return [(idx, path) for idx, path in enumerate(self.image_paths, start=1) if path]

    def business_key(self) -> Tuple[Any, ...]:
        return tuple(getattr(self, f.attr) for f in ItemField.business_fields()) + (tuple(self.image_paths),)

    def business_equals(self, other: "CanonicalItem") -> bool:
        """Equality restricted to what is pushed to the storefront."""
        if other is None:
            return False
        return self.business_key() == other.business_key()

    def copy_feed_fields(self, source: "CanonicalItem") -> "CanonicalItem":
        """Return this item updated with ``source``'s feed values, keeping sync bookkeeping."""
        if source.sku != self.sku:
            raise ValueError(f"Cannot copy feed fields from {source.sku} onto {self.sku}")
        return self.model_copy(update={attr: getattr(source, attr) for attr in FEED_ATTRIBUTES if attr != "sku"}, deep=True)

    # ------------------------------------------------------------------
    # Lifecycle transitions
    # ------------------------------------------------------------------

    def mark_published(self, remote_id: str, when: datetime) -> None:
        self.status = ItemStatus.PUBLISHED
        self.remote_id = remote_id
        self.published_at = when
        self.last_error = None

    def mark_publish_failed(self, message: str) -> None:
        self.status = ItemStatus.PUBLISH_FAILED
        self.remote_id = None
        self.last_error = message

    def mark_updated(self) -> None:
        self.status = ItemStatus.UPDATED
        self.last_error = None

    def mark_update_failed(self, message: str) -> None:
        # Without a remote id the next run has to go through the create path again
        if not self.remote_id:
            self.mark_publish_failed(message)
            return
        self.status = ItemStatus.UPDATE_FAILED
        self.last_error = message


class FeedItemRead(BaseSchema):
    """API view of a stored item."""
    sku: str
    status: ItemStatus
    remote_id: Optional[str] = None
    published_at: Optional[datetime] = None
    last_error: Optional[str] = None
    web_status: Optional[str] = None
    title: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    price_retail: Optional[str] = None
    image_count: int = 0

    @classmethod
    def from_item(cls, item: CanonicalItem) -> "FeedItemRead":
        return cls(**item.model_dump(include=set(cls.model_fields) - {"image_count"}), image_count=item.image_count)
