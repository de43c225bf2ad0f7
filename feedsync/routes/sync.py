# feedsync/routes/sync.py
import logging

from fastapi import APIRouter, Depends, HTTPException

from feedsync.core.exceptions import RemotePlatformError, StoreError
from feedsync.core.security import get_current_username
from feedsync.dependencies import get_reconciliation_service, get_sync_service
from feedsync.services.reconciliation_service import ReconciliationService
from feedsync.services.sync_service import SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["sync"])


@router.post("/sync/run", dependencies=[Depends(get_current_username)])
async def run_sync(
    dry_run: bool = False,
    force_update: bool = False,
    sync_service: SyncService = Depends(get_sync_service),
):
    """Run one synchronization pass and return its report."""
    if force_update:
        sync_service.context.options.force_update = True
    try:
        report = await sync_service.run_sync(dry_run=dry_run)
    except (RemotePlatformError, StoreError) as e:
        logger.error(f"Sync run failed: {e}", exc_info=True)
        raise HTTPException(status_code=502, detail=str(e))
    return report.to_dict()


@router.get("/reconciliation")
async def analyze_reconciliation(service: ReconciliationService = Depends(get_reconciliation_service)):
    """Read-only drift report."""
    try:
        analysis = await service.analyze()
    except (RemotePlatformError, StoreError) as e:
        logger.error(f"Reconciliation analysis failed: {e}", exc_info=True)
        raise HTTPException(status_code=502, detail=str(e))
    return analysis.to_dict()


@router.post("/reconciliation/repair", dependencies=[Depends(get_current_username)])
async def repair_reconciliation(
    force: bool = False,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    try:
        result = await service.repair(force=force)
    except (RemotePlatformError, StoreError) as e:
        logger.error(f"Reconciliation repair failed: {e}", exc_info=True)
        raise HTTPException(status_code=502, detail=str(e))
    if not result.success and result.analysis.exceeds_threshold and not force:
        raise HTTPException(status_code=409, detail=result.message)
    return result.to_dict()
