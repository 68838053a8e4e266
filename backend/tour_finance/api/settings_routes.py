"""Settings API routes — administrative maintenance actions."""
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from tour_finance.api.deps import Principal, require_admin
from tour_finance.api.responses import ok
from tour_finance.db import get_db
from tour_finance.models.schemas import StatusSyncOut
from tour_finance.services.status_resolver import sync_all_booking_statuses

router = APIRouter(prefix="/settings", tags=["Settings"])
logger = logging.getLogger("tour-finance-api.settings")


@router.post("/sync-booking-status")
async def sync_booking_status_sweep(
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Re-derive every booking's status now instead of waiting for the hourly sweep."""
    result = await sync_all_booking_statuses(db)
    await db.commit()
    logger.info(f"Manual status sweep by {principal.user_id}: {result}")
    return ok(StatusSyncOut(**result))
