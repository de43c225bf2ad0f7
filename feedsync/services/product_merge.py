# feedsync/services/product_merge.py
"""
Merges a freshly built product proposal with the product last fetched from
the storefront.

The proposal carries the new field values but no remote identifiers. The merge
copies identifiers forward wherever a natural key matches so the storefront
recognizes the sub-resource as the same one:

- variants by sku (variant id, inventory item id, then inventory levels)
- inventory levels by location id (inventory item id; quantity stays as proposed)
- options by name (case sensitive)
- images by src (exact match)
- metafields by namespace.key

A sub-resource list that is ``None`` on either side means it was not fetched;
that merge step is skipped with a warning and nothing is scheduled for
deletion because of it. The merge is a pure data transform and never raises
for missing matches.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from feedsync.schemas.remote import (
    RemoteImage,
    RemoteInventoryLevel,
    RemoteMetafield,
    RemoteOption,
    RemoteProduct,
    RemoteVariant,
)

logger = logging.getLogger(__name__)


@dataclass
class MergeResult:
    product: RemoteProduct
    images_to_add: List[RemoteImage] = field(default_factory=list)
    images_to_delete: List[RemoteImage] = field(default_factory=list)
    images_kept: List[RemoteImage] = field(default_factory=list)
    variants_matched: int = 0
    inventory_levels_matched: int = 0
    options_matched: int = 0
    option_value_changes: int = 0
    metafields_matched: int = 0
    skipped: List[str] = field(default_factory=list)

    def summary(self) -> str:
        return (
            f"variants={self.variants_matched} levels={self.inventory_levels_matched} "
            f"options={self.options_matched} (value changes {self.option_value_changes}) "
            f"images +{len(self.images_to_add)}/-{len(self.images_to_delete)}/={len(self.images_kept)} "
            f"metafields={self.metafields_matched}"
            + (f" skipped={','.join(self.skipped)}" if self.skipped else "")
        )


class ProductMergeService:
    """Carries remote identifiers from an existing product onto a new proposal."""

    def merge_products(self, proposal: RemoteProduct, existing: RemoteProduct) -> MergeResult:
        merged = proposal.model_copy(deep=True)
        merged.id = existing.id
        result = MergeResult(product=merged)
        context = existing.id or proposal.title or "<unknown>"

        self._merge_variants(merged, existing, result, context)
        self._merge_options(merged, existing, result, context)
        self._merge_images(merged, existing, result, context)
        self._merge_metafields(merged, existing, result)

        logger.debug("Merged product %s: %s", context, result.summary())
        return result

    # ------------------------------------------------------------------
    # Variants & inventory
    # ------------------------------------------------------------------

    def _merge_variants(self, merged: RemoteProduct, existing: RemoteProduct, result: MergeResult, context: str) -> None:
        if merged.variants is None or existing.variants is None:
            logger.warning("Skipping variant merge for %s: variant list missing on one side", context)
            result.skipped.append("variants")
            return

        existing_by_sku: Dict[str, RemoteVariant] = {}
        for variant in existing.variants:
            if variant.sku:
                existing_by_sku.setdefault(variant.sku, variant)

        for variant in merged.variants:
            match = existing_by_sku.get(variant.sku) if variant.sku else None
            if match is None:
                continue
            variant.id = match.id
            variant.inventory_item_id = match.inventory_item_id
            result.variants_matched += 1
            result.inventory_levels_matched += self.merge_inventory_levels(
                variant.inventory_levels, match.inventory_levels, context=variant.sku
            )

    def merge_inventory_levels(
        self,
        proposed: Optional[List[RemoteInventoryLevel]],
        existing: Optional[List[RemoteInventoryLevel]],
        context: Optional[str] = None,
    ) -> int:
        """Copy inventory item ids onto ``proposed`` in place. Returns the number of matched levels."""
        if proposed is None or existing is None:
            logger.warning("Skipping inventory level merge for %s: level list missing on one side", context)
            return 0

        existing_by_location = {level.location_id: level for level in existing if level.location_id}
        matched = 0
        for level in proposed:
            match = existing_by_location.get(level.location_id)
            if match is None:
                continue
            level.inventory_item_id = match.inventory_item_id
            matched += 1
        return matched

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    def _merge_options(self, merged: RemoteProduct, existing: RemoteProduct, result: MergeResult, context: str) -> None:
        if merged.options is None or existing.options is None:
            logger.warning("Skipping option merge for %s: option list missing on one side", context)
            result.skipped.append("options")
            return

        existing_by_name: Dict[str, RemoteOption] = {option.name: option for option in existing.options}
        for option in merged.options:
            match = existing_by_name.get(option.name)
            if match is None:
                continue
            option.id = match.id
            result.options_matched += 1
            if [v.strip() for v in option.values] != [v.strip() for v in match.values]:
                result.option_value_changes += 1
                logger.info(
                    "Option '%s' values changed for %s: %s -> %s",
                    option.name, context, match.values, option.values,
                )

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def _merge_images(self, merged: RemoteProduct, existing: RemoteProduct, result: MergeResult, context: str) -> None:
        if merged.images is None:
            logger.warning("Skipping image merge for %s: no proposed image list", context)
            result.skipped.append("images")
            return
        if existing.images is None:
            logger.warning("Skipping image merge for %s: existing images were not fetched", context)
            result.skipped.append("images")
            result.images_to_add = list(merged.images)
            return

        existing_by_src: Dict[str, RemoteImage] = {}
        for image in existing.images:
            existing_by_src.setdefault(image.src, image)

        proposed_srcs = set()
        for image in merged.images:
            proposed_srcs.add(image.src)
            match = existing_by_src.get(image.src)
            if match is None:
                result.images_to_add.append(image)
                continue
            image.id = match.id
            image.product_id = match.product_id
            result.images_kept.append(image)

        result.images_to_delete = [image for image in existing.images if image.src not in proposed_srcs]

    # ------------------------------------------------------------------
    # Metafields
    # ------------------------------------------------------------------

    def _merge_metafields(self, merged: RemoteProduct, existing: RemoteProduct, result: MergeResult) -> None:
        if existing.metafields is None:
            return
        if not merged.metafields:
            merged.metafields = [m.model_copy() for m in existing.metafields]
            return

        existing_by_key: Dict[str, RemoteMetafield] = {m.qualified_key: m for m in existing.metafields}
        proposed_keys = set()
        for metafield in merged.metafields:
            proposed_keys.add(metafield.qualified_key)
            match = existing_by_key.get(metafield.qualified_key)
            if match is not None:
                metafield.id = match.id
                result.metafields_matched += 1

        # Keep metafields written by other tools
        merged.metafields.extend(
            m.model_copy() for m in existing.metafields if m.qualified_key not in proposed_keys
        )
