# feedsync/services/sync_service.py
"""
Applies feed changes to the storefront.

Run flow: load feed -> dedupe/diff against the store -> safety guard ->
deleted, new, changed buckets one item at a time. Each create/update is a
pipeline of steps; every step returns a ``StepResult`` and ``STEP_POLICY``
decides whether a failed step stops the item. A failing item is persisted with
its failure status and message and the batch moves on.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from feedsync.core.enums import PipelineStep, StepOutcome
from feedsync.core.exceptions import (
    FeedUnavailableError,
    PartialCreateError,
    RemotePlatformError,
    RemoteTransportError,
    StoreError,
)
from feedsync.integrations.base import FeedSource
from feedsync.schemas.feed_item import CanonicalItem
from feedsync.schemas.remote import RemoteInventoryLevel, RemoteProduct
from feedsync.services.change_detector import ChangeDetector, ChangeSet, DuplicateEntry, ItemChange
from feedsync.services.collections import build_collects, diff_memberships
from feedsync.services.notification_service import report_error
from feedsync.services.product_merge import ProductMergeService
from feedsync.services.safety_guard import SafetyGuard
from feedsync.services.sync_context import SyncContext

logger = logging.getLogger(__name__)


# True: a failure of this step fails the whole item. False: logged, item carries on.
STEP_POLICY: Dict[PipelineStep, bool] = {
    PipelineStep.DOWNLOAD_IMAGES: False,
    PipelineStep.BUILD_PROPOSAL: True,
    # Create path
    PipelineStep.CREATE_PRODUCT: True,
    PipelineStep.ADD_OPTIONS: True,
    PipelineStep.ADD_IMAGES: False,
    PipelineStep.PUSH_INVENTORY: False,
    PipelineStep.ASSIGN_COLLECTIONS: False,
    PipelineStep.PUBLISH_CHANNELS: False,
    # Update path
    PipelineStep.REQUIRE_REMOTE_ID: True,
    PipelineStep.FETCH_REMOTE: True,
    PipelineStep.SUBMIT_UPDATE: True,
    PipelineStep.REPLACE_IMAGES: False,
    PipelineStep.REFRESH_INVENTORY: True,
    PipelineStep.REPLACE_COLLECTIONS: True,
}


class StepFailed(Exception):
    """A step could not complete for a reason other than a remote error."""
    pass


class StepSkipped(Exception):
    """Nothing to do for this step."""
    pass


@dataclass
class StepResult:
    step: PipelineStep
    outcome: StepOutcome
    message: str = ""
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def is_fatal(self) -> bool:
        return self.outcome.failed and STEP_POLICY[self.step]


@dataclass
class ItemSyncResult:
    sku: str
    action: str
    success: bool = True
    message: str = ""
    steps: List[StepResult] = field(default_factory=list)

    @property
    def warnings(self) -> List[StepResult]:
        return [s for s in self.steps if s.outcome.failed and not s.is_fatal]

    def fail(self, message: str) -> "ItemSyncResult":
        self.success = False
        self.message = message
        return self


@dataclass
class SyncRunReport:
    """Summary of one synchronization run."""
    started_at: datetime
    dry_run: bool = False
    feed_count: int = 0
    store_count: int = 0
    change_counts: Dict[str, int] = field(default_factory=dict)
    duplicates: List[DuplicateEntry] = field(default_factory=list)
    results: List[ItemSyncResult] = field(default_factory=list)
    aborted: bool = False
    message: str = ""
    processing_time_seconds: float = 0.0

    @property
    def failures(self) -> List[ItemSyncResult]:
        return [r for r in self.results if not r.success]

    def count(self, action: str, success: bool = True) -> int:
        return sum(1 for r in self.results if r.action == action and r.success == success)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "dry_run": self.dry_run,
            "aborted": self.aborted,
            "message": self.message,
            "feed_count": self.feed_count,
            "store_count": self.store_count,
            "changes": self.change_counts,
            "duplicates": [d.sku for d in self.duplicates],
            "created": self.count("create"),
            "updated": self.count("update"),
            "deleted": self.count("delete"),
            "failures": [{"sku": r.sku, "action": r.action, "message": r.message} for r in self.failures],
            "processing_time_seconds": round(self.processing_time_seconds, 2),
        }

    def print_summary(self):
        """Prints a formatted report to the console."""
        print("\n" + "=" * 50)
        print("SYNC REPORT")
        print("=" * 50)
        print(f"Started      : {self.started_at.isoformat()}")
        print(f"Mode         : {'Dry Run' if self.dry_run else 'Live Run'}")
        if self.aborted:
            print(f"ABORTED      : {self.message}")

        print("\n## Summary ##")
        print(f"- Feed items       : {self.feed_count}")
        print(f"- Stored items     : {self.store_count}")
        for name, value in self.change_counts.items():
            print(f"- {name.capitalize():<16} : {value}")
        print(f"- Created          : {self.count('create')}")
        print(f"- Updated          : {self.count('update')}")
        print(f"- Deleted          : {self.count('delete')}")
        print(f"- Failures         : {len(self.failures)}")

        if self.failures:
            print("\n## Failures ##")
            for failure in self.failures:
                print(f"- [{failure.action}] {failure.sku}: {failure.message}")

        print("\n--- End of Report ---")


class SyncService:
    """Synchronizes the storefront with the feed through the local store."""

    def __init__(self, context: SyncContext, feed_source: FeedSource):
        self.context = context
        self.feed_source = feed_source
        self.client = context.client
        self.store = context.store
        self.notifier = context.notifier
        self.merger = ProductMergeService()

    # ------------------------------------------------------------------
    # Run orchestration
    # ------------------------------------------------------------------

    async def run_sync(self, dry_run: bool = False) -> SyncRunReport:
        start = time.monotonic()
        report = SyncRunReport(started_at=datetime.now(timezone.utc), dry_run=dry_run)
        try:
            await self._run(report)
        finally:
            report.processing_time_seconds = time.monotonic() - start
        logger.info(
            "Sync finished in %.1fs: created=%d updated=%d deleted=%d failures=%d%s",
            report.processing_time_seconds,
            report.count("create"),
            report.count("update"),
            report.count("delete"),
            len(report.failures),
            " (aborted)" if report.aborted else "",
        )
        return report

    async def _run(self, report: SyncRunReport) -> None:
        options = self.context.options

        try:
            feed = await self.feed_source.load_snapshot()
            if not feed:
                raise FeedUnavailableError("Feed returned no items")
        except FeedUnavailableError as e:
            report.aborted = True
            report.message = f"Feed is temporarily offline: {e}"
            await report_error(self.notifier, logger, "Feed unavailable", report.message, e)
            return

        if options.feed_read_cap is not None and len(feed) > options.feed_read_cap:
            logger.info("Dev mode: capping feed from %d to %d items", len(feed), options.feed_read_cap)
            feed = feed[:options.feed_read_cap]
        report.feed_count = len(feed)

        stored = await self.store.find_all()
        report.store_count = len(stored)

        change_set = ChangeDetector(force_update=options.force_update).detect(feed, stored)
        report.change_counts = {k: v for k, v in change_set.counts.items() if k != "duplicates"}
        report.duplicates = change_set.duplicates

        decision = SafetyGuard(options.max_to_delete_count).check_change_set(change_set)
        if not decision.proceed:
            report.aborted = True
            report.message = decision.message
            await report_error(self.notifier, logger, "Sync aborted by safety threshold", decision.message)
            return

        if report.dry_run:
            report.message = f"Dry run: {change_set.summary()}"
            return

        if change_set.is_empty:
            report.message = "No changes detected"
            return

        try:
            await self.context.get_collection_mapping()
        except RemotePlatformError as e:
            report.aborted = True
            report.message = f"Could not resolve collections: {e}"
            await report_error(self.notifier, logger, "Sync aborted", report.message, e)
            return

        await self.apply_change_set(change_set, report)

        if report.failures:
            lines = [f"[{r.action}] {r.sku}: {r.message}" for r in report.failures]
            await report_error(
                self.notifier,
                logger,
                f"Sync completed with {len(report.failures)} failure(s)",
                "\n".join(lines),
            )
        report.message = f"Applied {change_set.summary()}"

    async def apply_change_set(self, change_set: ChangeSet, report: SyncRunReport) -> None:
        """Process the buckets in order: deleted, new, changed."""
        for item in change_set.deleted_items:
            report.results.append(await self._guarded("delete", item.sku, self.delete_item, item))
        for item in change_set.new_items:
            report.results.append(await self._guarded("create", item.sku, self.publish_item, item))
        for change in change_set.changed_items:
            report.results.append(await self._guarded("update", change.sku, self.update_item, change))

    async def _guarded(self, action: str, sku: str, handler: Callable[..., Awaitable[ItemSyncResult]], arg) -> ItemSyncResult:
        """Run one item so that its failure never stops the batch."""
        try:
            return await handler(arg)
        except Exception as e:
            logger.exception("Unexpected error during %s of %s", action, sku)
            return ItemSyncResult(sku=sku, action=action).fail(f"Unexpected error: {e}")

    # ------------------------------------------------------------------
    # Step execution
    # ------------------------------------------------------------------

    async def _run_step(self, result: ItemSyncResult, step: PipelineStep, func: Callable[..., Awaitable[Any]], *args) -> StepResult:
        try:
            value = await func(*args)
            step_result = StepResult(step, StepOutcome.SUCCESS, value=value)
        except StepSkipped as e:
            step_result = StepResult(step, StepOutcome.SKIPPED, message=str(e))
        except RemoteTransportError as e:
            step_result = StepResult(step, StepOutcome.RETRYABLE_FAILURE, message=str(e), error=e)
        except (RemotePlatformError, StepFailed) as e:
            step_result = StepResult(step, StepOutcome.FATAL_FAILURE, message=str(e), error=e)

        result.steps.append(step_result)
        if step_result.is_fatal:
            logger.error("%s: step %s failed: %s", result.sku, step.value, step_result.message)
        elif step_result.outcome.failed:
            logger.warning("%s: step %s failed (continuing): %s", result.sku, step.value, step_result.message)
        return step_result

    async def _maybe_download_images(self, item: CanonicalItem, result: ItemSyncResult) -> None:
        if self.context.options.skip_image_download or self.context.image_downloader is None:
            return
        await self._run_step(result, PipelineStep.DOWNLOAD_IMAGES, self.context.image_downloader.download_images, item)

    # ------------------------------------------------------------------
    # Create path
    # ------------------------------------------------------------------

    async def publish_item(self, item: CanonicalItem) -> ItemSyncResult:
        result = ItemSyncResult(sku=item.sku, action="create")
        await self._maybe_download_images(item, result)

        built = await self._run_step(result, PipelineStep.BUILD_PROPOSAL, self._build_proposal, item)
        if built.is_fatal:
            return await self._fail_publish(item, result, None, built.message)
        proposal: RemoteProduct = built.value

        created = await self._run_step(result, PipelineStep.CREATE_PRODUCT, self._create_product, proposal)
        if created.is_fatal:
            partial_id = created.error.product_id if isinstance(created.error, PartialCreateError) else None
            return await self._fail_publish(item, result, partial_id, created.message)
        product: RemoteProduct = created.value
        product_id = product.id

        for step, func, args in (
            (PipelineStep.ADD_OPTIONS, self._add_options, (product_id, proposal)),
            (PipelineStep.ADD_IMAGES, self._add_images, (product_id, proposal)),
            (PipelineStep.PUSH_INVENTORY, self._push_created_inventory, (product, proposal)),
            (PipelineStep.ASSIGN_COLLECTIONS, self._assign_collections, (product_id, item)),
            (PipelineStep.PUBLISH_CHANNELS, self.client.publish_to_all_channels, (product_id,)),
        ):
            step_result = await self._run_step(result, step, func, *args)
            if step_result.is_fatal:
                return await self._fail_publish(item, result, product_id, step_result.message)

        item.mark_published(product_id, self._now())
        try:
            await self.store.upsert(item)
        except StoreError as e:
            message = f"Created remote product {product_id} but could not save it: {e}"
            await report_error(self.notifier, logger, f"Failed to record {item.sku}", message, e)
            return result.fail(message)
        logger.info("Published %s as %s", item.sku, product_id)
        await self._send_publish_alert(item, "Published")
        return result

    async def _fail_publish(self, item: CanonicalItem, result: ItemSyncResult, product_id: Optional[str], message: str) -> ItemSyncResult:
        if product_id:
            # The product exists remotely; the next run repairs it through the update path
            item.remote_id = product_id
            item.mark_update_failed(message)
        else:
            item.mark_publish_failed(message)
        await self.store.upsert(item)
        await report_error(self.notifier, logger, f"Failed to publish {item.sku}", message)
        return result.fail(message)

    async def _build_proposal(self, item: CanonicalItem) -> RemoteProduct:
        locations = await self.context.get_locations()
        return self.context.product_factory.build(item, locations)

    async def _send_publish_alert(self, item: CanonicalItem, action: str) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.send_publish_alert(item, action)
        except Exception as e:
            logger.warning("%s alert for %s could not be sent: %s", action, item.sku, e)

    async def _create_product(self, proposal: RemoteProduct) -> RemoteProduct:
        product = await self.client.create_product(proposal)
        if product is None or not product.id:
            raise StepFailed("Storefront did not return a product id")
        return product

    async def _add_options(self, product_id: str, proposal: RemoteProduct):
        if not proposal.options:
            raise StepSkipped("no options")
        return await self.client.add_options(product_id, proposal.options)

    async def _add_images(self, product_id: str, proposal: RemoteProduct):
        if not proposal.images:
            raise StepSkipped("no images")
        return await self.client.add_images(product_id, proposal.images)

    async def _push_created_inventory(self, product: RemoteProduct, proposal: RemoteProduct) -> int:
        variant = product.first_variant
        if variant is None or not variant.inventory_item_id:
            raise StepFailed("Created product has no inventory item id")
        levels = self._proposed_levels(proposal)
        remote_levels = await self.client.get_inventory_levels(variant.inventory_item_id)
        self.merger.merge_inventory_levels(levels, remote_levels, context=variant.sku)
        for level in levels:
            if level.inventory_item_id is None:
                level.inventory_item_id = variant.inventory_item_id
        return await self._submit_levels(levels, variant.sku)

    async def _assign_collections(self, product_id: str, item: CanonicalItem) -> int:
        mapping = await self.context.get_collection_mapping()
        collects = build_collects(product_id, item, self.context.profile.collection_rules, mapping)
        if not collects:
            raise StepSkipped("item matches no collection")
        await self.client.add_collects(collects)
        return len(collects)

    # ------------------------------------------------------------------
    # Update path
    # ------------------------------------------------------------------

    async def update_item(self, change: ItemChange) -> ItemSyncResult:
        item = change.stored.copy_feed_fields(change.feed)
        result = ItemSyncResult(sku=item.sku, action="update")
        await self._maybe_download_images(item, result)

        step = await self._run_step(result, PipelineStep.REQUIRE_REMOTE_ID, self._require_remote_id, item)
        if step.is_fatal:
            return await self._fail_update(item, result, step.message)
        product_id = item.remote_id

        step = await self._run_step(result, PipelineStep.FETCH_REMOTE, self._fetch_existing, product_id)
        if step.is_fatal:
            return await self._fail_update(item, result, step.message)
        existing: RemoteProduct = step.value

        step = await self._run_step(result, PipelineStep.BUILD_PROPOSAL, self._build_proposal, item)
        if step.is_fatal:
            return await self._fail_update(item, result, step.message)
        merge = self.merger.merge_products(step.value, existing)
        merged = merge.product
        logger.debug("%s merge: %s", item.sku, merge.summary())

        for step_name, func, args in (
            (PipelineStep.SUBMIT_UPDATE, self.client.update_product, (merged,)),
            (PipelineStep.REPLACE_IMAGES, self._replace_images, (product_id, merged)),
            (PipelineStep.REFRESH_INVENTORY, self._refresh_inventory, (product_id, merged)),
            (PipelineStep.REPLACE_COLLECTIONS, self._replace_collections, (product_id, item, existing)),
        ):
            step = await self._run_step(result, step_name, func, *args)
            if step.is_fatal:
                return await self._fail_update(item, result, step.message)

        item.mark_updated()
        await self.store.upsert(item)
        logger.info("Updated %s (%s)", item.sku, product_id)
        return result

    async def _fail_update(self, item: CanonicalItem, result: ItemSyncResult, message: str) -> ItemSyncResult:
        item.mark_update_failed(message)
        await self.store.upsert(item)
        await report_error(self.notifier, logger, f"Failed to update {item.sku}", message)
        return result.fail(message)

    async def _require_remote_id(self, item: CanonicalItem) -> str:
        if not item.remote_id:
            raise StepFailed(f"{item.sku} has no remote product id")
        return item.remote_id

    async def _fetch_existing(self, product_id: str) -> RemoteProduct:
        product = await self.client.get_product(product_id)
        if product is None:
            raise StepFailed(f"Product {product_id} not found on storefront")
        return product

    async def _replace_images(self, product_id: str, merged: RemoteProduct) -> int:
        await self.client.delete_all_images(product_id)
        if not merged.images:
            return 0
        fresh = [image.model_copy(update={"id": None, "product_id": None}) for image in merged.images]
        await self.client.add_images(product_id, fresh)
        return len(fresh)

    async def _refresh_inventory(self, product_id: str, merged: RemoteProduct) -> int:
        refreshed = await self.client.get_product(product_id)
        if refreshed is None or not refreshed.variants:
            raise StepFailed(f"Product {product_id} has no variants after update")
        inventory_item_id = refreshed.first_variant.inventory_item_id
        if not inventory_item_id:
            raise StepFailed(f"Product {product_id} has no inventory item id after update")

        levels = self._proposed_levels(merged)
        for level in levels:
            level.inventory_item_id = inventory_item_id
        return await self._submit_levels(levels, refreshed.first_variant.sku)

    async def _replace_collections(self, product_id: str, item: CanonicalItem, existing: RemoteProduct) -> int:
        mapping = await self.context.get_collection_mapping()
        collects = build_collects(product_id, item, self.context.profile.collection_rules, mapping)
        if existing.collection_ids is not None:
            diff = diff_memberships(existing.collection_ids, [c.collection_id for c in collects])
            if not diff.is_empty:
                logger.info("%s collections: +%s -%s", item.sku, diff.to_add, diff.to_remove)

        await self.client.delete_all_collects(product_id)
        if collects:
            await self.client.add_collects(collects)
        return len(collects)

    # ------------------------------------------------------------------
    # Inventory helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _proposed_levels(proposal: RemoteProduct) -> List[RemoteInventoryLevel]:
        variant = proposal.first_variant
        if variant is None or not variant.inventory_levels:
            return []
        return [level.model_copy() for level in variant.inventory_levels]

    async def _submit_levels(self, levels: List[RemoteInventoryLevel], sku: Optional[str]) -> int:
        valid = []
        for level in levels:
            if level.is_complete:
                valid.append(level)
            else:
                logger.error(
                    "%s: skipping incomplete inventory level (item=%s, location=%s, available=%s)",
                    sku, level.inventory_item_id, level.location_id, level.available,
                )
        if not valid:
            raise StepSkipped("no valid inventory levels")
        await self.client.update_inventory_levels(valid)
        return len(valid)

    # ------------------------------------------------------------------
    # Delete path and repair primitives
    # ------------------------------------------------------------------

    async def delete_item(self, item: CanonicalItem) -> ItemSyncResult:
        result = ItemSyncResult(sku=item.sku, action="delete")
        if item.remote_id:
            try:
                await self.delete_remote_product(item.remote_id)
            except RemotePlatformError as e:
                message = f"Remote delete of {item.remote_id} failed: {e}"
                await report_error(self.notifier, logger, f"Failed to delete {item.sku}", message, e)
                # Stays in the store so the next run retries
                return result.fail(message)

        await self.remove_local_record(item.sku)
        await self._send_publish_alert(item, "Removed")
        return result

    async def delete_remote_product(self, product_id: str) -> None:
        await self.client.delete_product(product_id)
        logger.info("Deleted remote product %s", product_id)

    async def remove_local_record(self, sku: str) -> bool:
        removed = await self.store.delete(sku)
        logger.info("Removed %s from the local store", sku)
        return removed

    async def correct_remote_id(self, item: CanonicalItem, remote_id: str) -> CanonicalItem:
        """Point a stored item at the remote product that actually carries its sku."""
        previous = item.remote_id
        item.remote_id = remote_id
        if not item.status.has_remote_id:
            item.mark_published(remote_id, item.published_at or self._now())
        await self.store.upsert(item)
        logger.info("Corrected remote id of %s: %s -> %s", item.sku, previous, remote_id)
        return item

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)
