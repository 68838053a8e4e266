"""
Settlement ledger service — every write against a booking's finance.

Each mutation:
  1. locks the booking row (SELECT ... FOR UPDATE) before reading the finance,
     serialising reassignment and item edits on the same booking
  2. refuses to touch a locked finance (bulk settlement excepted)
  3. commits, or rolls back entirely on any error
  4. runs the post-commit pipeline for the affected bookings

Amounts are always derived here from quantity x price; the client never
supplies them.
"""
import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tour_finance.config import UNCATEGORIZED_NAME
from tour_finance.models.enums import Direction, PayeeMode, RelationType, UnitType
from tour_finance.models.orm_models import (
    Booking, BookingFinance, BookingFinanceItem, CategorySnapshot, ServiceItem, TourItemCategory,
)
from tour_finance.services import cost_catalog
from tour_finance.services.clock import is_tour_day_or_past, utcnow
from tour_finance.services.commission_splitter import CommissionSplit, CommissionSplitter
from tour_finance.services.errors import NotFoundError, ValidationError
from tour_finance.services.money import money, quantity
from tour_finance.services.pattern_engine import BookingFacts, PatternInstantiationEngine
from tour_finance.services.post_commit import run_post_commit_hooks

logger = logging.getLogger("tour-finance-ledger")

_ENGINE = PatternInstantiationEngine()
_SPLITTER = CommissionSplitter()

VALIDATION_FILTERS = ("unvalidated", "validated", "all")


# ── Loading ───────────────────────────────────────────────────────────────────

async def _lock_booking(session: AsyncSession, booking_id: int) -> Booking:
    result = await session.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .with_for_update()
        .options(selectinload(Booking.finance).selectinload(BookingFinance.items))
        .execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if booking is None:
        raise NotFoundError(f"Booking {booking_id} not found")
    return booking


async def _load_item(session: AsyncSession, item_id: int) -> BookingFinanceItem:
    result = await session.execute(
        select(BookingFinanceItem)
        .where(BookingFinanceItem.id == item_id)
        .options(selectinload(BookingFinanceItem.finance))
        .execution_options(populate_existing=True)
    )
    item = result.scalar_one_or_none()
    if item is None:
        raise NotFoundError(f"Finance item {item_id} not found")
    return item


async def _locked_finance_for_item(session: AsyncSession, item_id: int):
    """Lock the owning booking, then return (booking, finance, item) from the fresh load."""
    item = await _load_item(session, item_id)
    booking = await _lock_booking(session, item.finance.booking_id)
    finance = booking.finance
    item = next(i for i in finance.items if i.id == item_id)
    return booking, finance, item


async def get_finance(session: AsyncSession, booking_id: int) -> BookingFinance:
    result = await session.execute(
        select(BookingFinance)
        .where(BookingFinance.booking_id == booking_id)
        .options(selectinload(BookingFinance.items), selectinload(BookingFinance.booking))
        .execution_options(populate_existing=True)
    )
    finance = result.scalar_one_or_none()
    if finance is None:
        raise NotFoundError(f"Finance not found for booking {booking_id}")
    return finance


def _clean(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    return str(text).strip() or None


# ── assign_pattern ────────────────────────────────────────────────────────────

async def assign_pattern(
    session: AsyncSession,
    booking_id: int,
    pattern_id: int,
    now: Optional[datetime] = None,
) -> BookingFinance:
    """Replace the booking's ledger with fresh items instantiated from ``pattern_id``."""
    if not booking_id or not pattern_id:
        raise ValidationError("bookingId and patternId are required")
    now = now or utcnow()

    try:
        booking = await _lock_booking(session, booking_id)
        pattern = await cost_catalog.get_pattern(session, pattern_id)
        if not pattern.is_active:
            raise ValidationError(f"Pattern {pattern_id} is inactive")

        finance = booking.finance
        if finance is not None:
            finance.ensure_unlocked()
        items = _ENGINE.instantiate(BookingFacts.of(booking), pattern)

        if finance is None:
            finance = BookingFinance(booking=booking, is_locked=False, items=[])
            session.add(finance)
        finance.replace_items(items)
        finance.pattern_id = pattern.id
        finance.assigned_at = now
        finance.validated_at = None
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        f"Pattern {pattern_id} assigned to booking {booking_id}",
        extra={"booking_id": booking_id, "finance_id": finance.id, "item_count": len(items)},
    )
    await run_post_commit_hooks(session, [booking_id])
    return await get_finance(session, booking_id)


# ── Commission split ──────────────────────────────────────────────────────────

async def split_commission(
    session: AsyncSession,
    item_id: int,
    total_commission: Any,
    driver_commission: Any = 0,
    driver_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> tuple[CommissionSplit, List[BookingFinanceItem]]:
    """Add the driver-cut and company-remainder items for a commission source item."""
    try:
        booking, finance, source = await _locked_finance_for_item(session, item_id)
        finance.ensure_unlocked()

        if not source.is_commission:
            raise ValidationError(f"Item {item_id} is not a commission item")
        if any(_splits(item, source) for item in finance.items):
            raise ValidationError(f"Commission item {item_id} has already been split")

        split = _SPLITTER.split(total_commission, driver_commission)
        payee = driver_id or source.driver_id or booking.assigned_driver_id

        category = await cost_catalog.get_commission_category(session)
        created = _SPLITTER.build_items(source, split, category, payee, _clean(notes))
        finance.add_items(created)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        f"Commission split on item {item_id}: driver {split.driver_portion}, remainder {split.remainder}",
        extra={"booking_id": booking.id, "finance_id": finance.id, "item_count": len(created)},
    )
    await run_post_commit_hooks(session, [booking.id])
    return split, [await _load_item(session, item.id) for item in created]


def _splits(item: BookingFinanceItem, source: BookingFinanceItem) -> bool:
    return (
        item.related_item_id == source.id
        and item.relation_type == RelationType.COMMISSION_FOR
        and item.is_commission
    )


# ── patch_item ────────────────────────────────────────────────────────────────

async def patch_item(
    session: AsyncSession,
    item_id: int,
    fields: dict[str, Any],
    now: Optional[datetime] = None,
) -> BookingFinanceItem:
    """
    Apply the fields present in ``fields`` to one item.

    Payee type and amount are re-derived from the item's resulting payees and
    pricing whichever subset was sent. A new category also applies its payee
    mode, clearing a driver or partner it does not allow.
    """
    now = now or utcnow()
    try:
        booking, finance, item = await _locked_finance_for_item(session, item_id)
        finance.ensure_unlocked()

        if "name" in fields:
            name = _clean(fields["name"])
            if not name:
                raise ValidationError("name must not be empty")
            item.name_snapshot = name
        if "direction" in fields:
            if fields["direction"] is None:
                raise ValidationError("direction must not be empty")
            item.direction = Direction(fields["direction"])
        if "unit_type" in fields:
            if fields["unit_type"] is None:
                raise ValidationError("unitType must not be empty")
            item.unit_type = UnitType(fields["unit_type"])
        payee_mode = None
        if "category_id" in fields:
            category = None
            if fields["category_id"] is not None:
                category = await session.get(TourItemCategory, fields["category_id"])
                if category is None:
                    raise NotFoundError(f"Category {fields['category_id']} not found")
            item.category_snapshot = CategorySnapshot.of(category, UNCATEGORIZED_NAME)
            payee_mode = _payee_mode(category)

        unit_qty = quantity(fields["unit_qty"]) if fields.get("unit_qty") is not None else item.unit_qty
        unit_price = money(fields["unit_price"], "unitPrice") if fields.get("unit_price") is not None else item.unit_price
        item.set_pricing(unit_qty, unit_price)

        driver_id = fields["driver_id"] if "driver_id" in fields else item.driver_id
        partner_id = fields["partner_id"] if "partner_id" in fields else item.partner_id
        if payee_mode is not None:
            driver_id = driver_id if payee_mode.allows_driver() else None
            partner_id = partner_id if payee_mode.allows_partner() else None
        item.set_payees(driver_id, partner_id)

        if "related_item_id" in fields:
            _set_related(item, fields["related_item_id"], {i.id for i in finance.items})

        if "notes" in fields:
            item.notes = _clean(fields["notes"])
        if "paid_by" in fields:
            item.paid_by = _clean(fields["paid_by"])
        if "paid_note" in fields:
            item.paid_note = _clean(fields["paid_note"])
        if "paid_at" in fields:
            item.paid_at = fields["paid_at"]
        if "paid" in fields:
            if fields["paid"]:
                item.paid = True
                item.paid_at = item.paid_at or now
            else:
                item.paid = False
                item.paid_at = None
                item.paid_by = None
                item.paid_note = None

        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Item {item_id} updated", extra={"booking_id": booking.id, "finance_id": finance.id})
    await run_post_commit_hooks(session, [booking.id], item.paid_at if item.paid else None)
    return await _load_item(session, item_id)


def _payee_mode(category: Optional[TourItemCategory]) -> PayeeMode:
    """Uncategorized lines pay a partner."""
    if category is None or not category.payee_mode:
        return PayeeMode.PARTNER_ONLY
    return PayeeMode(category.payee_mode)


def _set_related(item: BookingFinanceItem, related_id: Optional[int], finance_item_ids: set) -> None:
    if related_id is None:
        item.related_item_id = None
        item.relation_type = None
        return
    if not item.category_snapshot.allow_related_item:
        raise ValidationError("This item's category does not allow a related item")
    if related_id == item.id:
        raise ValidationError("An item cannot relate to itself")
    if related_id not in finance_item_ids:
        raise ValidationError(f"Related item {related_id} is not part of this booking's finance")
    item.related_item_id = related_id
    item.relation_type = RelationType.COMMISSION_FOR


# ── save_items ────────────────────────────────────────────────────────────────

async def save_items(
    session: AsyncSession,
    booking_id: int,
    items: List[dict[str, Any]],
    mark_validated: bool = False,
    now: Optional[datetime] = None,
) -> BookingFinance:
    """
    Replace the ledger with the edited item list.

    Items whose id belongs to this finance are updated in place and keep their
    paid state; others are created; ids missing from the list are deleted.
    ``mark_validated`` stamps validated_at and locks the finance.
    """
    now = now or utcnow()
    try:
        booking = await _lock_booking(session, booking_id)
        finance = booking.finance
        if finance is None:
            raise NotFoundError(f"Finance not found for booking {booking_id}")
        finance.ensure_unlocked()
        if mark_validated and not is_tour_day_or_past(booking.tour_date, now):
            raise ValidationError("Cannot validate before tour date")

        service_items, categories = await _load_references(session, items)
        existing = {i.id: i for i in finance.items}
        kept_ids = {data["id"] for data in items if data.get("id") in existing}

        lines = [
            _apply_item_input(booking, existing.get(data.get("id")), data, service_items, categories, kept_ids)
            for data in items
        ]
        finance.replace_items(lines)

        if mark_validated:
            finance.validated_at = now
            finance.is_locked = True
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        f"Saved {len(items)} item(s) for booking {booking_id}"
        + (" (validated)" if mark_validated else ""),
        extra={"booking_id": booking_id, "finance_id": finance.id, "item_count": len(items)},
    )
    await run_post_commit_hooks(session, [booking_id])
    return await get_finance(session, booking_id)


async def _load_references(session: AsyncSession, items: Iterable[dict[str, Any]]):
    service_ids = {d["service_item_id"] for d in items if d.get("service_item_id")}
    category_ids = {d["category_id"] for d in items if d.get("category_id")}
    service_items: dict[int, ServiceItem] = {}
    categories: dict[int, TourItemCategory] = {}
    if service_ids:
        result = await session.execute(
            select(ServiceItem).where(ServiceItem.id.in_(service_ids)).options(selectinload(ServiceItem.category))
        )
        service_items = {s.id: s for s in result.scalars().all()}
        missing = service_ids - service_items.keys()
        if missing:
            raise ValidationError(f"Unknown service item(s): {sorted(missing)}")
    if category_ids:
        result = await session.execute(select(TourItemCategory).where(TourItemCategory.id.in_(category_ids)))
        categories = {c.id: c for c in result.scalars().all()}
    return service_items, categories


def _apply_item_input(
    booking: Booking,
    line: Optional[BookingFinanceItem],
    data: dict[str, Any],
    service_items: dict[int, ServiceItem],
    categories: dict[int, TourItemCategory],
    kept_ids: set,
) -> BookingFinanceItem:
    service_item = service_items.get(data.get("service_item_id"))
    category = service_item.category if service_item is not None else categories.get(data.get("category_id"))

    if line is None:
        line = BookingFinanceItem(
            paid=False,
            category_snapshot=CategorySnapshot.of(category, UNCATEGORIZED_NAME),
        )
    elif category is not None and line.category_snapshot.category_id != category.id:
        line.category_snapshot = CategorySnapshot.of(category, UNCATEGORIZED_NAME)

    name = _clean(data.get("name")) or (service_item.name if service_item is not None else None) or line.name_snapshot
    if not name:
        raise ValidationError("Every item needs a name")

    line.service_item_id = service_item.id if service_item is not None else None
    line.name_snapshot = name
    line.is_manual = bool(data.get("is_manual", True))
    line.unit_type = UnitType(data.get("unit_type") or UnitType.PER_BOOKING)
    line.direction = Direction(
        data.get("direction")
        or (category.default_direction if category is not None else None)
        or Direction.EXPENSE
    )
    line.set_pricing(
        quantity(data.get("unit_qty", 1)),
        money(data.get("unit_price", 0), "unitPrice"),
    )
    line.notes = _clean(data.get("notes"))

    mode = _payee_mode(category)
    requested_driver = data.get("driver_id")
    driver_id = None
    if mode.allows_driver():
        driver_id = requested_driver or (
            booking.assigned_driver_id if category is not None and category.auto_driver_from_booking else None
        )
    partner_id = data.get("partner_id") if mode.allows_partner() else None
    if mode.allows_driver() and not partner_id and line.amount > 0:
        driver_id = requested_driver or booking.assigned_driver_id
        if not driver_id:
            raise ValidationError(f"Driver must be assigned when '{name}' has no partner and amount > 0")
    line.set_payees(driver_id, partner_id)

    related_id = data.get("related_item_id")
    if (
        related_id
        and line.category_snapshot.allow_related_item
        and related_id in kept_ids
        and related_id != line.id
    ):
        line.related_item_id = related_id
        line.relation_type = RelationType.COMMISSION_FOR
    else:
        line.related_item_id = None
        line.relation_type = None
    return line


# ── Settlement ────────────────────────────────────────────────────────────────

async def bulk_settle(
    session: AsyncSession,
    item_ids: Iterable[Any],
    paid_by: Optional[str] = None,
    paid_note: Optional[str] = None,
    paid_at: Optional[datetime] = None,
) -> dict:
    """
    Mark unpaid items on validated, locked ledgers as paid.

    Returns {"count", "skipped_ids"}: ids not found, already paid or on an
    unreviewed ledger are skipped, never errors.
    """
    ids: List[int] = []
    for raw in item_ids or []:
        try:
            value = int(raw)
        except (TypeError, ValueError):
            continue
        if value > 0 and value not in ids:
            ids.append(value)
    if not ids:
        raise ValidationError("No valid item IDs provided")

    stamp = paid_at or utcnow()
    settled_bookings: List[int] = []
    skipped: List[int] = []
    try:
        result = await session.execute(
            select(BookingFinanceItem)
            .where(BookingFinanceItem.id.in_(ids))
            .with_for_update()
            .options(selectinload(BookingFinanceItem.finance))
            .execution_options(populate_existing=True)
        )
        found = {item.id: item for item in result.scalars().all()}
        count = 0
        for item_id in ids:
            item = found.get(item_id)
            if item is None or item.paid or not item.finance.is_settleable:
                skipped.append(item_id)
                continue
            item.paid = True
            item.paid_at = stamp
            item.paid_by = _clean(paid_by)
            item.paid_note = _clean(paid_note)
            settled_bookings.append(item.finance.booking_id)
            count += 1
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        f"Settled {count} item(s), skipped {len(skipped)}",
        extra={"item_count": count},
    )
    await run_post_commit_hooks(session, settled_bookings, stamp)
    return {"count": count, "skipped_ids": skipped}


async def settlement_queue(session: AsyncSession) -> List[BookingFinanceItem]:
    """Unpaid items with a payee on validated, locked ledgers, newest first."""
    result = await session.execute(
        select(BookingFinanceItem)
        .join(BookingFinance, BookingFinanceItem.finance_id == BookingFinance.id)
        .where(
            BookingFinanceItem.paid.is_(False),
            (BookingFinanceItem.driver_id.is_not(None)) | (BookingFinanceItem.partner_id.is_not(None)),
            BookingFinance.validated_at.is_not(None),
            BookingFinance.is_locked.is_(True),
        )
        .options(selectinload(BookingFinanceItem.finance).selectinload(BookingFinance.booking))
        .order_by(BookingFinanceItem.created_at.desc(), BookingFinanceItem.id.desc())
    )
    return list(result.scalars().all())


# ── Lock & review ─────────────────────────────────────────────────────────────

async def set_lock(session: AsyncSession, booking_id: int, is_locked: bool) -> BookingFinance:
    try:
        booking = await _lock_booking(session, booking_id)
        if booking.finance is None:
            raise NotFoundError(f"Finance not found for booking {booking_id}")
        booking.finance.is_locked = bool(is_locked)
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info(
        f"Finance for booking {booking_id} {'locked' if is_locked else 'unlocked'}",
        extra={"booking_id": booking_id},
    )
    return await get_finance(session, booking_id)


async def list_validation(session: AsyncSession, status: str = "unvalidated") -> List[BookingFinance]:
    """Finances for the review queue, newest tour date first."""
    status = (status or "unvalidated").lower()
    if status not in VALIDATION_FILTERS:
        raise ValidationError(f"status must be one of {', '.join(VALIDATION_FILTERS)}")

    stmt = (
        select(BookingFinance)
        .join(Booking, BookingFinance.booking_id == Booking.id)
        .options(selectinload(BookingFinance.items), selectinload(BookingFinance.booking))
        .order_by(Booking.tour_date.desc(), Booking.id.desc())
    )
    if status == "unvalidated":
        stmt = stmt.where(BookingFinance.validated_at.is_(None))
    elif status == "validated":
        stmt = stmt.where(BookingFinance.validated_at.is_not(None))
    return list((await session.execute(stmt)).scalars().all())
