"""
CommissionSplitter — records a gross commission as linked, separately payable
driver-cut and company-remainder ledger items.

    driver_portion = min(max(driver_commission, 0), total_commission)
    remainder      = total_commission - driver_portion

Both produced items are EXPENSE, flagged as commission through their category
snapshot, and point back at the source item with relation COMMISSION_FOR so
each payee's share can be settled and audited on its own.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Optional

from tour_finance.config import (
    COMMISSION_DRIVER_ITEM_NAME, COMMISSION_REMAINDER_ITEM_NAME,
)
from tour_finance.models.enums import Direction, RelationType, UnitType
from tour_finance.models.orm_models import BookingFinanceItem, CategorySnapshot, TourItemCategory
from tour_finance.services.errors import ValidationError
from tour_finance.services.money import money, to_decimal

DRIVER_MISSING_NOTE = "driver missing"


@dataclass(frozen=True)
class CommissionSplit:
    total: Decimal
    driver_portion: Decimal
    remainder: Decimal


class CommissionSplitter:

    def split(self, total_commission: Any, driver_commission: Any) -> CommissionSplit:
        total = money(total_commission, "totalCommission")
        driver_raw = to_decimal(driver_commission if driver_commission is not None else 0, "driverCommission")
        driver_portion = min(money(max(driver_raw, Decimal("0")), "driverCommission"), total)
        return CommissionSplit(total=total, driver_portion=driver_portion, remainder=total - driver_portion)

    def commission_snapshot(self, category: Optional[TourItemCategory]) -> CategorySnapshot:
        """Snapshot of the commission category; commission flags hold even without one."""
        if category is None:
            return CategorySnapshot(None, COMMISSION_REMAINDER_ITEM_NAME, True, True)
        return CategorySnapshot(category.id, category.name, True, bool(category.allow_related_item))

    def build_items(
        self,
        source: BookingFinanceItem,
        split: CommissionSplit,
        category: Optional[TourItemCategory] = None,
        driver_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> List[BookingFinanceItem]:
        """
        One item per non-zero portion; the remainder stays with the company (no
        payee). A driver cut with no known driver is still recorded, unassigned,
        with a note saying so.
        """
        if source.id is None:
            raise ValidationError("Commission source item must be persisted before splitting")

        snapshot = self.commission_snapshot(category)
        items: List[BookingFinanceItem] = []
        if split.driver_portion > 0:
            driver_notes = notes if driver_id else _driver_missing(notes)
            items.append(self._item(source, snapshot, COMMISSION_DRIVER_ITEM_NAME,
                                    split.driver_portion, driver_id, driver_notes))
        if split.remainder > 0:
            items.append(self._item(source, snapshot, COMMISSION_REMAINDER_ITEM_NAME,
                                    split.remainder, None, notes))
        return items

    def _item(self, source, snapshot, name, portion, driver_id, notes) -> BookingFinanceItem:
        item = BookingFinanceItem(
            service_item_id=None,
            name_snapshot=name,
            category_snapshot=snapshot,
            direction=Direction.EXPENSE,
            is_manual=True,
            unit_type=UnitType.PER_BOOKING,
            related_item_id=source.id,
            relation_type=RelationType.COMMISSION_FOR,
            paid=False,
            notes=notes,
        )
        item.set_pricing(Decimal("1.00"), portion)
        item.set_payees(driver_id, None)
        return item


def _driver_missing(notes: Optional[str]) -> str:
    return f"{notes} ({DRIVER_MISSING_NOTE})" if notes else DRIVER_MISSING_NOTE.capitalize()
