"""
Celery Tasks — periodic and on-demand recompute of booking settlement flags
and statuses.

Both tasks are idempotent: they only write rows whose derived value differs,
so a retry or an overlapping beat tick converges to the same state.
"""
import logging
import asyncio
from tour_finance.workers.celery_app import celery_app

logger = logging.getLogger("tour-finance-celery")


def _run_async(coro):
    """Run an async coroutine in a sync Celery task context (new event loop)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def resync_all(session) -> dict:
    """Settlement flags for every financed booking, then the full status sweep."""
    from tour_finance.services.settlement_sync import finance_booking_ids, sync_booking_settlement_status
    from tour_finance.services.status_resolver import sync_all_booking_statuses

    settled = await sync_booking_settlement_status(session, await finance_booking_ids(session))
    await session.commit()
    result = await sync_all_booking_statuses(session)
    await session.commit()
    return {**result, "settled": settled}


@celery_app.task(name="tasks.resync_booking_statuses")
def resync_booking_statuses():
    """Hourly Celery Beat task — full settlement + status resync."""
    async def _resync():
        from tour_finance.db import AsyncSessionLocal
        async with AsyncSessionLocal() as session:
            return await resync_all(session)

    try:
        result = _run_async(_resync())
    except Exception as e:
        logger.error(f"Booking status resync failed: {e}", exc_info=True)
        raise
    logger.info(f"Booking status resync: {result}")
    return result

