"""
SettlementSync — propagates "every ledger item paid" up to the booking's
is_paid / paid_at flags.

Forward-only: a booking is never un-paid here, and an existing paid_at is
kept. Terminal bookings (CANCELLED, NO_SHOW) are left alone; a DONE booking
that is still unpaid gets flagged, which is how a resync repairs a run where
the status hook succeeded after the settlement hook failed.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tour_finance.models.enums import BookingStatus
from tour_finance.models.orm_models import Booking, BookingFinance
from tour_finance.services.clock import utcnow

logger = logging.getLogger("tour-finance-settlement")


def needs_settlement_flag(booking: Booking) -> bool:
    finance = booking.finance
    if finance is None or not finance.all_items_paid():
        return False
    if BookingStatus(booking.status or BookingStatus.NEW).is_terminal:
        return False
    return not booking.is_paid or booking.paid_at is None


def apply_settlement_flag(booking: Booking, paid_at: datetime) -> None:
    booking.is_paid = True
    if booking.paid_at is None:
        booking.paid_at = paid_at


def unique_booking_ids(booking_ids: Iterable[Optional[int]]) -> List[int]:
    seen: dict[int, None] = {}
    for booking_id in booking_ids:
        if booking_id:
            seen.setdefault(int(booking_id), None)
    return list(seen)


async def sync_booking_settlement_status(
    session: AsyncSession,
    booking_ids: Iterable[Optional[int]],
    paid_at: Optional[datetime] = None,
) -> int:
    """Flag fully-settled bookings as paid. Returns how many changed. Caller commits."""
    ids = unique_booking_ids(booking_ids)
    if not ids:
        return 0

    result = await session.execute(
        select(Booking)
        .where(Booking.id.in_(ids))
        .options(selectinload(Booking.finance).selectinload(BookingFinance.items))
        .execution_options(populate_existing=True)
    )
    stamp = paid_at or utcnow()
    changed = 0
    for booking in result.scalars().all():
        if needs_settlement_flag(booking):
            apply_settlement_flag(booking, stamp)
            changed += 1
            logger.info(f"Booking {booking.id} fully settled", extra={"booking_id": booking.id})
    return changed


async def finance_booking_ids(session: AsyncSession) -> List[int]:
    """Every booking that owns a finance; used by the periodic resync."""
    result = await session.execute(select(BookingFinance.booking_id).order_by(BookingFinance.booking_id))
    return list(result.scalars().all())
