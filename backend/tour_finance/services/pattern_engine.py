"""
PatternInstantiationEngine — turns a cost pattern into priced ledger items.

Covers:
  - Quantity derivation from booking headcount by unit type
  - Amount derivation (qty x price, on 2-dp normalised factors)
  - Payee resolution from the category's payee mode
  - Category snapshotting onto every produced item

The engine is pure: it reads a booking's facts and a loaded pattern and
returns transient BookingFinanceItem rows. Persistence and the replace of the
booking's existing items belong to the ledger service.
"""
from dataclasses import dataclass
from typing import List, Optional

from tour_finance.models.enums import Direction, PayeeMode, UnitType
from tour_finance.models.orm_models import (
    Booking, BookingFinanceItem, CategorySnapshot, TourCostPattern, TourCostPatternItem,
)
from tour_finance.services.errors import ValidationError
from tour_finance.services.money import money, quantity


@dataclass(frozen=True)
class BookingFacts:
    """The booking fields instantiation depends on."""
    booking_id: int
    adult: int
    child: int
    assigned_driver_id: Optional[int]

    @classmethod
    def of(cls, booking: Booking) -> "BookingFacts":
        return cls(
            booking_id=booking.id,
            adult=booking.number_of_adult or 0,
            child=booking.number_of_child or 0,
            assigned_driver_id=booking.assigned_driver_id,
        )


class PatternInstantiationEngine:
    """Stateless; one instance can serve every request."""

    def base_quantity(self, unit_type: UnitType, adult: int, child: int) -> int:
        return UnitType(unit_type).base_quantity(adult, child)

    def instantiate(self, booking: BookingFacts, pattern: TourCostPattern) -> List[BookingFinanceItem]:
        """
        Produce one ledger item per pattern item, in pattern position order.

        Raises ValidationError if any service item has no category, since payee
        policy and direction cannot be derived without one.
        """
        ordered = sorted(pattern.items, key=lambda i: (i.position or 0, i.id or 0))
        return [self.instantiate_line(booking, item) for item in ordered]

    def instantiate_line(self, booking: BookingFacts, item: TourCostPatternItem) -> BookingFinanceItem:
        service_item = item.service_item
        category = service_item.category if service_item is not None else None
        # Rejected, not defaulted to an uncategorized partner-paid line; save_items owns that fallback
        if category is None:
            name = service_item.name if service_item is not None else f"pattern item {item.id}"
            raise ValidationError(
                f"Service item '{name}' has no cost category",
                details={"serviceItemId": item.service_item_id},
            )

        unit_type = UnitType(item.default_unit_type or UnitType.PER_BOOKING)
        base_qty = self.base_quantity(unit_type, booking.adult, booking.child)
        default_qty = item.default_qty if item.default_qty is not None else 1
        unit_qty = quantity(base_qty * quantity(default_qty, "defaultQty"))
        unit_price = money(item.default_price if item.default_price is not None else 0, "defaultPrice")

        payee_mode = PayeeMode(category.payee_mode or PayeeMode.PARTNER_ONLY)
        driver_id = (
            booking.assigned_driver_id
            if payee_mode.allows_driver() and category.auto_driver_from_booking
            else None
        )
        partner_id = (
            item.default_partner_id or service_item.default_partner_id
            if payee_mode.allows_partner()
            else None
        )

        line = BookingFinanceItem(
            service_item_id=service_item.id,
            name_snapshot=service_item.name,
            category_snapshot=CategorySnapshot.of(category),
            direction=category.default_direction or (
                Direction.INCOME if category.is_commission else Direction.EXPENSE
            ),
            is_manual=False,
            unit_type=unit_type,
            paid=False,
            related_item_id=None,
            relation_type=None,
        )
        line.set_pricing(unit_qty, unit_price)
        line.set_payees(driver_id, partner_id)
        return line

