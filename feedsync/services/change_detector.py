# feedsync/services/change_detector.py
"""
Diffs a feed snapshot against the local store snapshot.

Every feed sku ends up in exactly one of new / changed / unchanged and every
stored sku that is missing from the feed ends up in deleted. Duplicate skus in
the feed are dropped (first occurrence wins) before the diff and reported
separately.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

from feedsync.core.enums import ItemStatus
from feedsync.schemas.feed_item import CanonicalItem

logger = logging.getLogger(__name__)


@dataclass
class ItemChange:
    """A stored item whose feed version differs from it."""
    stored: CanonicalItem
    feed: CanonicalItem

    @property
    def sku(self) -> str:
        return self.feed.sku


@dataclass
class DuplicateEntry:
    sku: str
    position: int        # index of the dropped row in the raw feed
    kept_position: int   # index of the row that was kept


@dataclass
class ChangeSet:
    new_items: List[CanonicalItem] = field(default_factory=list)
    changed_items: List[ItemChange] = field(default_factory=list)
    deleted_items: List[CanonicalItem] = field(default_factory=list)
    unchanged_skus: List[str] = field(default_factory=list)
    duplicates: List[DuplicateEntry] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.new_items or self.changed_items or self.deleted_items)

    @property
    def counts(self) -> Dict[str, int]:
        return {
            "new": len(self.new_items),
            "changed": len(self.changed_items),
            "deleted": len(self.deleted_items),
            "unchanged": len(self.unchanged_skus),
            "duplicates": len(self.duplicates),
        }

    def summary(self) -> str:
        c = self.counts
        return (
            f"new={c['new']} changed={c['changed']} deleted={c['deleted']} "
            f"unchanged={c['unchanged']} duplicates={c['duplicates']}"
        )


def dedupe_feed(feed: Sequence[CanonicalItem]) -> Tuple[List[CanonicalItem], List[DuplicateEntry]]:
    """Drop repeated skus, keeping the first occurrence."""
    seen: Dict[str, int] = {}
    unique: List[CanonicalItem] = []
    duplicates: List[DuplicateEntry] = []

    for position, item in enumerate(feed):
        if item.sku in seen:
            duplicates.append(DuplicateEntry(sku=item.sku, position=position, kept_position=seen[item.sku]))
            continue
        seen[item.sku] = position
        unique.append(item)

    if duplicates:
        logger.error(
            "Feed contains %d duplicate sku row(s): %s",
            len(duplicates),
            ", ".join(sorted({d.sku for d in duplicates})),
        )
    return unique, duplicates


class ChangeDetector:
    """Classifies feed and stored items into a ChangeSet."""

    def __init__(self, force_update: bool = False):
        self.force_update = force_update

    def detect(self, feed: Sequence[CanonicalItem], stored: Sequence[CanonicalItem]) -> ChangeSet:
        unique_feed, duplicates = dedupe_feed(feed)
        change_set = ChangeSet(duplicates=duplicates)

        feed_by_sku: Dict[str, CanonicalItem] = {item.sku: item for item in unique_feed}
        stored_by_sku: Dict[str, CanonicalItem] = {}
        for item in stored:
            stored_by_sku.setdefault(item.sku, item)

        for sku, stored_item in stored_by_sku.items():
            if sku not in feed_by_sku:
                change_set.deleted_items.append(stored_item)

        for feed_item in unique_feed:
            stored_item = stored_by_sku.get(feed_item.sku)
            if stored_item is None:
                change_set.new_items.append(feed_item)
            elif stored_item.status == ItemStatus.PUBLISH_FAILED and not stored_item.remote_id:
                # Never made it to the storefront, go through the create path again
                change_set.new_items.append(feed_item)
            elif (
                self.force_update
                or stored_item.status == ItemStatus.UPDATE_FAILED
                or not stored_item.business_equals(feed_item)
            ):
                change_set.changed_items.append(ItemChange(stored=stored_item, feed=feed_item))
            else:
                change_set.unchanged_skus.append(feed_item.sku)

        logger.info("Change detection complete: %s", change_set.summary())
        return change_set
