# feedsync/services/reconciliation_service.py
"""
Three-way drift audit between the storefront, the local store and the feed.

``analyze`` never mutates anything. ``repair`` re-uses the sync service's
delete and store primitives, guarded by the same safety threshold as a sync
run. Missing remote products are not recreated here; the next sync run does
that through the ordinary create path.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from feedsync.core.enums import DiscrepancyKind
from feedsync.core.exceptions import FeedUnavailableError, RemotePlatformError, StoreError
from feedsync.integrations.base import FeedSource
from feedsync.schemas.feed_item import CanonicalItem
from feedsync.schemas.remote import RemoteProduct
from feedsync.services.safety_guard import GuardDecision, SafetyGuard
from feedsync.services.sync_service import SyncService

logger = logging.getLogger(__name__)

MAX_LOGGED_PER_KIND = 10


@dataclass
class ReconciliationDiscrepancy:
    sku: Optional[str]
    remote_id: Optional[str]
    stored_remote_id: Optional[str]
    kind: DiscrepancyKind
    description: str
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return (
            f"[{self.kind.value}] SKU: {self.sku}, Remote ID: {self.remote_id}, "
            f"Stored ID: {self.stored_remote_id} - {self.description}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sku": self.sku,
            "remote_id": self.remote_id,
            "stored_remote_id": self.stored_remote_id,
            "kind": self.kind.value,
            "description": self.description,
            "details": self.details,
        }


@dataclass
class ReconciliationAnalysis:
    analyzed_at: datetime
    remote_count: int = 0
    store_count: int = 0
    feed_count: Optional[int] = None
    discrepancies: List[ReconciliationDiscrepancy] = field(default_factory=list)
    guard: Optional[GuardDecision] = None
    # Remote products keyed by sku after duplicates were set aside
    remote_by_sku: Dict[str, RemoteProduct] = field(default_factory=dict, repr=False)
    store_by_sku: Dict[str, CanonicalItem] = field(default_factory=dict, repr=False)

    def of_kind(self, kind: DiscrepancyKind) -> List[ReconciliationDiscrepancy]:
        return [d for d in self.discrepancies if d.kind == kind]

    @property
    def counts(self) -> Dict[str, int]:
        return {kind.value: len(self.of_kind(kind)) for kind in DiscrepancyKind}

    @property
    def exceeds_threshold(self) -> bool:
        return self.guard is not None and not self.guard.proceed

    @property
    def is_clean(self) -> bool:
        return not self.discrepancies

    def summary(self) -> str:
        counts = self.counts
        return (
            f"remote={self.remote_count} store={self.store_count} feed={self.feed_count if self.feed_count is not None else '-'} | "
            f"extra_in_remote={counts[DiscrepancyKind.EXTRA_IN_REMOTE.value]} "
            f"extra_in_store={counts[DiscrepancyKind.EXTRA_IN_STORE.value]} "
            f"id_mismatch={counts[DiscrepancyKind.IDENTIFIER_MISMATCH.value]} "
            f"image_mismatch={counts[DiscrepancyKind.DERIVED_ATTRIBUTE_MISMATCH.value]}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "analyzed_at": self.analyzed_at.isoformat(),
            "remote_count": self.remote_count,
            "store_count": self.store_count,
            "feed_count": self.feed_count,
            "counts": self.counts,
            "exceeds_threshold": self.exceeds_threshold,
            "guard_message": self.guard.message if self.guard else None,
            "discrepancies": [d.to_dict() for d in self.discrepancies],
        }


@dataclass
class ReconciliationResult:
    success: bool
    message: str
    analysis: ReconciliationAnalysis
    deleted_remote: List[str] = field(default_factory=list)
    corrected_ids: List[str] = field(default_factory=list)
    removed_local: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "deleted_remote": self.deleted_remote,
            "corrected_ids": self.corrected_ids,
            "removed_local": self.removed_local,
            "errors": self.errors,
            "analysis": self.analysis.to_dict(),
        }


class ReconciliationService:
    def __init__(self, sync_service: SyncService, feed_source: Optional[FeedSource] = None):
        self.sync_service = sync_service
        self.context = sync_service.context
        self.client = self.context.client
        self.store = self.context.store
        self.feed_source = feed_source

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def analyze(self) -> ReconciliationAnalysis:
        """Audit storefront, store and (optionally) feed. Read only."""
        analysis = ReconciliationAnalysis(analyzed_at=datetime.now(timezone.utc))

        remote_products = await self.client.get_all_products()
        analysis.remote_count = len(remote_products)
        self._index_remote(remote_products, analysis)

        stored = await self.store.find_all()
        analysis.store_count = len(stored)
        analysis.store_by_sku = {item.sku: item for item in stored}

        if self.feed_source is not None:
            try:
                analysis.feed_count = len(await self.feed_source.load_snapshot())
            except FeedUnavailableError as e:
                logger.warning("Feed unavailable during reconciliation: %s", e)

        self._find_extra_in_remote(analysis)
        self._find_store_drift(analysis)

        analysis.guard = SafetyGuard(self.context.options.max_to_delete_count).check_discrepancies(
            extra_in_remote=len(analysis.of_kind(DiscrepancyKind.EXTRA_IN_REMOTE)),
            extra_in_store=len(analysis.of_kind(DiscrepancyKind.EXTRA_IN_STORE)),
        )

        self._log_analysis(analysis)
        return analysis

    def _index_remote(self, products: List[RemoteProduct], analysis: ReconciliationAnalysis) -> None:
        for product in products:
            sku = product.sku
            if sku is None:
                analysis.discrepancies.append(ReconciliationDiscrepancy(
                    sku=None,
                    remote_id=product.id,
                    stored_remote_id=None,
                    kind=DiscrepancyKind.EXTRA_IN_REMOTE,
                    description="Remote product has no variant sku",
                    details={"reason": "missing_sku", "title": product.title},
                ))
                continue

            kept = analysis.remote_by_sku.get(sku)
            if kept is not None:
                analysis.discrepancies.append(ReconciliationDiscrepancy(
                    sku=sku,
                    remote_id=product.id,
                    stored_remote_id=None,
                    kind=DiscrepancyKind.EXTRA_IN_REMOTE,
                    description=f"Duplicate remote product for sku (kept {kept.id})",
                    details={"reason": "duplicate_sku", "kept_remote_id": kept.id, "title": product.title},
                ))
                continue
            analysis.remote_by_sku[sku] = product

    def _find_extra_in_remote(self, analysis: ReconciliationAnalysis) -> None:
        for sku, product in analysis.remote_by_sku.items():
            if sku not in analysis.store_by_sku:
                analysis.discrepancies.append(ReconciliationDiscrepancy(
                    sku=sku,
                    remote_id=product.id,
                    stored_remote_id=None,
                    kind=DiscrepancyKind.EXTRA_IN_REMOTE,
                    description="Remote product has no stored item",
                    details={"reason": "not_in_store", "title": product.title},
                ))

    def _find_store_drift(self, analysis: ReconciliationAnalysis) -> None:
        for sku, item in analysis.store_by_sku.items():
            product = analysis.remote_by_sku.get(sku)
            if product is None:
                analysis.discrepancies.append(ReconciliationDiscrepancy(
                    sku=sku,
                    remote_id=None,
                    stored_remote_id=item.remote_id,
                    kind=DiscrepancyKind.EXTRA_IN_STORE,
                    description="Stored item has no remote product",
                    details={"title": item.title, "status": item.status.value},
                ))
                continue

            if item.remote_id != product.id:
                analysis.discrepancies.append(ReconciliationDiscrepancy(
                    sku=sku,
                    remote_id=product.id,
                    stored_remote_id=item.remote_id,
                    kind=DiscrepancyKind.IDENTIFIER_MISMATCH,
                    description="Stored remote id does not match the remote product",
                ))

            # Only meaningful when the storefront returned its image list
            if product.images is not None and product.image_count != item.image_count:
                analysis.discrepancies.append(ReconciliationDiscrepancy(
                    sku=sku,
                    remote_id=product.id,
                    stored_remote_id=item.remote_id,
                    kind=DiscrepancyKind.DERIVED_ATTRIBUTE_MISMATCH,
                    description=f"Remote has {product.image_count} images but store expects {item.image_count}",
                    details={"attribute": "image_count", "remote": product.image_count, "expected": item.image_count},
                ))

    def _log_analysis(self, analysis: ReconciliationAnalysis) -> None:
        logger.info("Reconciliation analysis: %s", analysis.summary())
        for kind in DiscrepancyKind:
            found = analysis.of_kind(kind)
            for discrepancy in found[:MAX_LOGGED_PER_KIND]:
                logger.info("  %s", discrepancy)
            if len(found) > MAX_LOGGED_PER_KIND:
                logger.info("  ... and %d more %s", len(found) - MAX_LOGGED_PER_KIND, kind.value)
        if analysis.exceeds_threshold:
            logger.warning(analysis.guard.message)

    # ------------------------------------------------------------------
    # Repair
    # ------------------------------------------------------------------

    async def repair(self, force: bool = False, analysis: Optional[ReconciliationAnalysis] = None) -> ReconciliationResult:
        """Delete orphans on both sides and correct stored remote ids.

        Args:
            force: Bypass the safety threshold.
            analysis: A previous ``analyze`` result to act on; a fresh one is taken otherwise.
        """
        if analysis is None:
            analysis = await self.analyze()

        if analysis.exceeds_threshold and not force:
            message = f"Reconciliation aborted: {analysis.guard.message} Use force to override."
            logger.error(message)
            return ReconciliationResult(success=False, message=message, analysis=analysis)

        result = ReconciliationResult(success=True, message="", analysis=analysis)

        for discrepancy in analysis.of_kind(DiscrepancyKind.EXTRA_IN_REMOTE):
            try:
                await self.sync_service.delete_remote_product(discrepancy.remote_id)
                result.deleted_remote.append(discrepancy.remote_id)
            except RemotePlatformError as e:
                result.errors.append(f"Delete remote {discrepancy.remote_id} ({discrepancy.sku}): {e}")

        for discrepancy in analysis.of_kind(DiscrepancyKind.IDENTIFIER_MISMATCH):
            item = analysis.store_by_sku[discrepancy.sku]
            try:
                await self.sync_service.correct_remote_id(item, discrepancy.remote_id)
                result.corrected_ids.append(discrepancy.sku)
            except StoreError as e:
                result.errors.append(f"Correct id of {discrepancy.sku}: {e}")

        for discrepancy in analysis.of_kind(DiscrepancyKind.EXTRA_IN_STORE):
            try:
                await self.sync_service.remove_local_record(discrepancy.sku)
                result.removed_local.append(discrepancy.sku)
            except StoreError as e:
                result.errors.append(f"Remove {discrepancy.sku} from store: {e}")

        result.success = not result.errors
        result.message = (
            f"Deleted {len(result.deleted_remote)} remote, corrected {len(result.corrected_ids)} ids, "
            f"removed {len(result.removed_local)} stored items"
            + (f", {len(result.errors)} error(s)" if result.errors else "")
        )
        logger.info("Reconciliation repair: %s", result.message)
        for error in result.errors:
            logger.error("  %s", error)
        return result
