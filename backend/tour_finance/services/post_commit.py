"""
Post-commit recompute pipeline.

After a ledger mutation commits, the affected bookings go through an ordered
tuple of idempotent hooks:

    settlement_sync_hook  ->  booking_status_hook

Each hook commits its own writes. A failing hook is rolled back and logged;
the primary mutation stays committed and the periodic sweep re-drives it.
"""
import logging
import time
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from tour_finance.services.settlement_sync import unique_booking_ids, sync_booking_settlement_status
from tour_finance.services.status_resolver import sync_booking_status

logger = logging.getLogger("tour-finance-pipeline")

Hook = Callable[[AsyncSession, list[int], Optional[datetime]], Awaitable[None]]


async def settlement_sync_hook(session: AsyncSession, booking_ids: list[int], paid_at: Optional[datetime]) -> None:
    await sync_booking_settlement_status(session, booking_ids, paid_at)


async def booking_status_hook(session: AsyncSession, booking_ids: list[int], paid_at: Optional[datetime]) -> None:
    for booking_id in booking_ids:
        await sync_booking_status(session, booking_id)


POST_COMMIT_HOOKS: tuple[Hook, ...] = (settlement_sync_hook, booking_status_hook)


async def run_post_commit_hooks(
    session: AsyncSession,
    booking_ids: Iterable[Optional[int]],
    paid_at: Optional[datetime] = None,
    hooks: tuple[Hook, ...] = POST_COMMIT_HOOKS,
) -> list[str]:
    """Run ``hooks`` in order. Returns the names of hooks that failed."""
    ids = unique_booking_ids(booking_ids)
    failed: list[str] = []
    if not ids:
        return failed

    for hook in hooks:
        t0 = time.perf_counter()
        try:
            await hook(session, ids, paid_at)
            await session.commit()
        except Exception as e:
            await session.rollback()
            failed.append(hook.__name__)
            logger.error(
                f"Post-commit hook {hook.__name__} failed for bookings {ids}: {e}",
                exc_info=True,
                extra={"item_count": len(ids)},
            )
            continue
        logger.debug(
            f"{hook.__name__} ok for {len(ids)} booking(s)",
            extra={"duration_ms": round((time.perf_counter() - t0) * 1000, 2)},
        )
    return failed
