# feedsync/services/collections.py
"""
Collection membership for catalog items.

Each collection is a ``CollectionRule`` (title + predicate). Titles are mapped
to storefront collection ids once per run by ``ensure_collections``; membership
is then resolved per item and applied as "delete all collects, add desired".
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Sequence

from feedsync.core.exceptions import RemotePlatformError
from feedsync.integrations.base import RemotePlatformClient
from feedsync.schemas.feed_item import CanonicalItem
from feedsync.schemas.remote import Collect

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CollectionRule:
    title: str
    predicate: Callable[[CanonicalItem], bool]
    is_brand: bool = False

    def accepts(self, item: CanonicalItem) -> bool:
        try:
            return bool(self.predicate(item))
        except (TypeError, ValueError) as e:
            logger.warning("Collection rule '%s' could not evaluate %s: %s", self.title, item.sku, e)
            return False


@dataclass
class MembershipDiff:
    to_add: List[str] = field(default_factory=list)
    to_remove: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_add or self.to_remove)


async def ensure_collections(client: RemotePlatformClient, rules: Sequence[CollectionRule]) -> Dict[str, str]:
    """Map every rule title to a remote collection id, creating missing collections.

    Every mapped collection is also published to all sales channels. A failed
    publish is logged and the collection stays mapped.
    """
    existing = {collection.title: collection.id for collection in await client.get_all_collections()}
    mapping: Dict[str, str] = {}

    for rule in rules:
        collection_id = existing.get(rule.title)
        if collection_id is None:
            logger.info("Creating missing collection '%s'", rule.title)
            created = await client.create_collection(rule.title)
            collection_id = created.id
        mapping[rule.title] = collection_id

        try:
            await client.publish_collection(collection_id)
        except RemotePlatformError as e:
            logger.warning("Could not publish collection '%s' (%s): %s", rule.title, collection_id, e)

    logger.info("Resolved %d collections", len(mapping))
    return mapping


def resolve_memberships(item: CanonicalItem, rules: Sequence[CollectionRule], mapping: Dict[str, str]) -> List[str]:
    """Remote collection ids the item belongs to, in rule order."""
    collection_ids: List[str] = []
    for rule in rules:
        if not rule.accepts(item):
            continue
        collection_id = mapping.get(rule.title)
        if collection_id is None:
            logger.warning("No remote collection for '%s', skipping membership of %s", rule.title, item.sku)
            continue
        if collection_id not in collection_ids:
            collection_ids.append(collection_id)
    return collection_ids


def build_collects(
    product_id: str,
    item: CanonicalItem,
    rules: Sequence[CollectionRule],
    mapping: Dict[str, str],
) -> List[Collect]:
    return [
        Collect(product_id=product_id, collection_id=collection_id)
        for collection_id in resolve_memberships(item, rules, mapping)
    ]


def diff_memberships(current: Iterable[str], desired: Iterable[str]) -> MembershipDiff:
    current_list = list(dict.fromkeys(current))
    desired_list = list(dict.fromkeys(desired))
    return MembershipDiff(
        to_add=[c for c in desired_list if c not in current_list],
        to_remove=[c for c in current_list if c not in desired_list],
    )
