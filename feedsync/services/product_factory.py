# feedsync/services/product_factory.py
"""
Builds storefront product proposals from canonical items.

Proposals never carry remote identifiers; those are added by the merge step
on update or assigned by the storefront on create.
"""

from html import escape
from typing import List, Sequence

from feedsync.schemas.feed_item import CanonicalItem
from feedsync.schemas.remote import (
    RemoteImage,
    RemoteInventoryLevel,
    RemoteLocation,
    RemoteMetafield,
    RemoteOption,
    RemoteProduct,
    RemoteVariant,
)
from feedsync.services.profiles import CatalogProfile

METAFIELD_NAMESPACE = "custom"

# (option name, item attribute)
OPTION_ATTRIBUTES = (
    ("Color", "dial"),
    ("Size", "diameter"),
    ("Material", "material"),
)

# (metafield key, item attribute)
METAFIELD_ATTRIBUTES = (
    ("reference_number", "reference_number"),
    ("year", "year"),
    ("movement", "movement"),
    ("condition", "condition"),
    ("box_papers", "box_papers"),
)

# Label shown in the description for each attribute
DESCRIPTION_ATTRIBUTES = (
    ("Brand", "brand"),
    ("Model", "model"),
    ("Reference", "reference_number"),
    ("Year", "year"),
    ("Case", "case"),
    ("Dial", "dial"),
    ("Strap", "strap"),
    ("Movement", "movement"),
    ("Diameter", "diameter"),
    ("Condition", "condition"),
    ("Box & Papers", "box_papers"),
)


def image_url(base_url: str, sku: str, slot: int) -> str:
    return f"{base_url.rstrip('/')}/images/watches/{sku}-{slot}.jpg"


class ProductFactory:
    def __init__(self, profile: CatalogProfile, image_base_url: str):
        self.profile = profile
        self.image_base_url = image_base_url

    def build(self, item: CanonicalItem, locations: Sequence[RemoteLocation]) -> RemoteProduct:
        options = self.build_options(item)
        return RemoteProduct(
            title=item.title or item.sku,
            body_html=self.build_description(item),
            vendor=self.profile.vendor_for(item),
            product_type=item.category,
            status="ACTIVE",
            variants=[self.build_variant(item, options, locations)],
            options=options,
            images=self.build_images(item),
            metafields=self.build_metafields(item),
        )

    def build_variant(
        self,
        item: CanonicalItem,
        options: List[RemoteOption],
        locations: Sequence[RemoteLocation],
    ) -> RemoteVariant:
        quantity = 0 if item.is_sold else 1
        return RemoteVariant(
            sku=item.sku,
            price=self.profile.price_for(item),
            option_values=[option.values[0] for option in options],
            inventory_levels=[
                RemoteInventoryLevel(location_id=location.id, available=quantity)
                for location in locations
            ],
        )

    def build_options(self, item: CanonicalItem) -> List[RemoteOption]:
        options: List[RemoteOption] = []
        for name, attr in OPTION_ATTRIBUTES:
            value = getattr(item, attr)
            if value:
                options.append(RemoteOption(name=name, position=len(options) + 1, values=[value]))
        return options

    def build_images(self, item: CanonicalItem) -> List[RemoteImage]:
        alt = item.title or item.sku
        return [
            RemoteImage(src=image_url(self.image_base_url, item.sku, slot), position=position, alt=alt)
            for position, (slot, _path) in enumerate(item.image_slots(), start=1)
        ]

    def build_metafields(self, item: CanonicalItem) -> List[RemoteMetafield]:
        return [
            RemoteMetafield(namespace=METAFIELD_NAMESPACE, key=key, value=getattr(item, attr))
            for key, attr in METAFIELD_ATTRIBUTES
            if getattr(item, attr)
        ]

    def build_description(self, item: CanonicalItem) -> str:
        lines: List[str] = []
        if item.title:
            lines.append(f"<p>{escape(item.title)}</p>")
        rows = [
            f"<li><strong>{label}:</strong> {escape(value)}</li>"
            for label, value in ((label, getattr(item, attr)) for label, attr in DESCRIPTION_ATTRIBUTES)
            if value
        ]
        if rows:
            lines.append("<ul>" + "".join(rows) + "</ul>")
        if item.notes:
            lines.append(f"<p>{escape(item.notes)}</p>")
        return "\n".join(lines)

