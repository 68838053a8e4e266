"""
BookingStatusResolver — derives a booking's single lifecycle status.

Rules, first match wins:
  1. CANCELLED stays CANCELLED          (terminal, external actor only)
  2. NO_SHOW stays NO_SHOW              (terminal, external actor only)
  3. >=1 finance item and all paid      -> DONE
  4. finance validated                  -> COMPLETED
  5. tour day is today or past (UTC+8)  -> ATTENTION
  6. UPDATED stays UPDATED              (change event awaits manual review)
  7. driver assigned and pattern set    -> READY
  8. otherwise                          -> NEW

``resolve_booking_status`` is pure. The async helpers apply it to stored
bookings and write only rows whose derived status differs, so they are safe
to run redundantly and converge to a fixed point.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tour_finance.models.enums import BookingEventType, BookingStatus
from tour_finance.models.orm_models import Booking, BookingFinance
from tour_finance.services.clock import is_tour_day_or_past, utcnow
from tour_finance.services.errors import NotFoundError

logger = logging.getLogger("tour-finance-status")


@dataclass(frozen=True)
class FinanceFacts:
    pattern_id: Optional[int]
    validated_at: Optional[datetime]
    items_paid: tuple[bool, ...]

    @property
    def all_items_paid(self) -> bool:
        return len(self.items_paid) > 0 and all(self.items_paid)

    @classmethod
    def of(cls, finance: Any) -> Optional["FinanceFacts"]:
        if finance is None or isinstance(finance, FinanceFacts):
            return finance
        return cls(
            pattern_id=finance.pattern_id,
            validated_at=finance.validated_at,
            items_paid=tuple(bool(item.paid) for item in finance.items),
        )


def resolve_booking_status(
    status: Union[BookingStatus, str, None],
    finance: Any,
    assigned_driver_id: Optional[int],
    tour_date: Union[date, datetime],
    now: Optional[datetime] = None,
) -> BookingStatus:
    current = BookingStatus(status) if status else BookingStatus.NEW
    facts = FinanceFacts.of(finance)

    if current is BookingStatus.CANCELLED:
        return BookingStatus.CANCELLED
    if current is BookingStatus.NO_SHOW:
        return BookingStatus.NO_SHOW
    if facts is not None and facts.all_items_paid:
        return BookingStatus.DONE
    if facts is not None and facts.validated_at is not None:
        return BookingStatus.COMPLETED
    if is_tour_day_or_past(tour_date, now):
        return BookingStatus.ATTENTION
    if current is BookingStatus.UPDATED:
        return BookingStatus.UPDATED
    if assigned_driver_id and facts is not None and facts.pattern_id:
        return BookingStatus.READY
    return BookingStatus.NEW


def resolve_for_booking(booking: Booking, now: Optional[datetime] = None) -> BookingStatus:
    return resolve_booking_status(
        booking.status, booking.finance, booking.assigned_driver_id, booking.tour_date, now
    )


def status_after_event(current: Optional[BookingStatus], event_type: BookingEventType) -> BookingStatus:
    """
    Status an ingestion event leaves behind, before the resolver runs.
    Change events never reopen a terminal booking.
    """
    event_type = BookingEventType(event_type)
    if event_type is BookingEventType.CANCELLED:
        return BookingStatus.CANCELLED
    if current is not None and BookingStatus(current).is_terminal:
        return BookingStatus(current)
    if event_type is BookingEventType.UPDATED:
        return BookingStatus.UPDATED
    return BookingStatus(current) if current else BookingStatus.NEW


# ── Persistence side ──────────────────────────────────────────────────────────

def _booking_with_ledger():
    return (
        select(Booking)
        .options(selectinload(Booking.finance).selectinload(BookingFinance.items))
        .execution_options(populate_existing=True)
    )


async def sync_booking_status(
    session: AsyncSession, booking_id: int, now: Optional[datetime] = None
) -> Optional[BookingStatus]:
    """Recompute one booking's status; writes only on change. Caller commits."""
    result = await session.execute(_booking_with_ledger().where(Booking.id == booking_id))
    booking = result.scalar_one_or_none()
    if booking is None:
        return None

    next_status = resolve_for_booking(booking, now)
    if next_status != booking.status:
        logger.info(
            f"Booking {booking_id} status {booking.status.value} → {next_status.value}",
            extra={"booking_id": booking_id},
        )
        booking.status = next_status
    return next_status


async def sync_all_booking_statuses(session: AsyncSession, now: Optional[datetime] = None) -> dict:
    """Full sweep over every booking. Returns {"total", "updated"}. Caller commits."""
    now = now or utcnow()
    result = await session.execute(_booking_with_ledger().order_by(Booking.id))
    bookings = result.scalars().all()

    updated = 0
    for booking in bookings:
        next_status = resolve_for_booking(booking, now)
        if next_status != booking.status:
            booking.status = next_status
            updated += 1

    logger.info(f"Status sweep: {updated}/{len(bookings)} bookings updated")
    return {"total": len(bookings), "updated": updated}


async def apply_booking_event(
    session: AsyncSession,
    booking_id: int,
    event_type: BookingEventType,
    now: Optional[datetime] = None,
) -> BookingStatus:
    """
    React to an ingestion event (CREATED / UPDATED / CANCELLED) already
    applied to the booking's facts, then re-resolve. Caller commits.
    """
    booking = await session.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError(f"Booking {booking_id} not found")

    booking.status = status_after_event(booking.status, event_type)
    await session.flush()
    return await sync_booking_status(session, booking_id, now)
