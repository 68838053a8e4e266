"""
Pydantic request/response models for the finance API.

Wire format is camelCase; Decimal fields serialise as strings in JSON mode so
amounts never pass through a float.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tour_finance.models.enums import (
    BookingStatus, Direction, PayeeMode, PayeeType, RelationType, UnitType,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ── Requests ──────────────────────────────────────────────────────────────────

class AssignPatternRequest(CamelModel):
    booking_id: int = Field(gt=0)
    pattern_id: int = Field(gt=0)


class ItemPatchRequest(CamelModel):
    """Every field optional; only the ones sent are applied."""
    paid: Optional[bool] = None
    paid_at: Optional[datetime] = None
    paid_by: Optional[str] = None
    paid_note: Optional[str] = None
    driver_id: Optional[int] = None
    partner_id: Optional[int] = None
    unit_qty: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    direction: Optional[Direction] = None
    unit_type: Optional[UnitType] = None
    category_id: Optional[int] = None
    name: Optional[str] = None
    related_item_id: Optional[int] = None
    notes: Optional[str] = None


class FinanceItemInput(CamelModel):
    id: Optional[int] = None
    service_item_id: Optional[int] = None
    category_id: Optional[int] = None
    name: Optional[str] = None
    direction: Optional[Direction] = None
    unit_type: UnitType = UnitType.PER_BOOKING
    unit_qty: Decimal = Decimal("1")
    unit_price: Decimal = Decimal("0")
    driver_id: Optional[int] = None
    partner_id: Optional[int] = None
    related_item_id: Optional[int] = None
    is_manual: bool = True
    notes: Optional[str] = None


class SaveItemsRequest(CamelModel):
    items: List[FinanceItemInput] = Field(default_factory=list)
    mark_validated: bool = False


class SettleRequest(CamelModel):
    item_ids: List[int] = Field(default_factory=list)
    paid_by: Optional[str] = None
    paid_note: Optional[str] = None
    paid_at: Optional[datetime] = None


class LockRequest(CamelModel):
    is_locked: bool


class CommissionSplitRequest(CamelModel):
    total_commission: Decimal
    driver_commission: Decimal = Decimal("0")
    driver_id: Optional[int] = None
    notes: Optional[str] = None


class CategoryCreateRequest(CamelModel):
    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=100)
    default_direction: Direction = Direction.EXPENSE
    payee_mode: PayeeMode = PayeeMode.PARTNER_ONLY
    auto_driver_from_booking: bool = False
    is_commission: bool = False
    allow_related_item: bool = False
    require_partner: bool = False
    sort_order: Optional[int] = None
    is_active: bool = True


class PatternItemInput(CamelModel):
    service_item_id: int
    default_partner_id: Optional[int] = None
    default_unit_type: UnitType = UnitType.PER_BOOKING
    default_qty: Decimal = Decimal("1")
    default_price: Decimal = Decimal("0")
    position: Optional[int] = None


class PatternCreateRequest(CamelModel):
    name: str
    package_id: int = Field(gt=0)
    is_active: bool = True
    items: List[PatternItemInput] = Field(default_factory=list)


# ── Responses ─────────────────────────────────────────────────────────────────

class FinanceItemOut(CamelModel):
    id: int
    finance_id: int
    service_item_id: Optional[int] = None
    name_snapshot: str
    category_id_snapshot: Optional[int] = None
    category_name_snapshot: str
    is_commission_snapshot: bool
    allow_related_item_snapshot: bool
    direction: Direction
    is_manual: bool
    unit_type: UnitType
    unit_qty: Decimal
    unit_price: Decimal
    amount: Decimal
    driver_id: Optional[int] = None
    partner_id: Optional[int] = None
    payee_type: PayeeType
    related_item_id: Optional[int] = None
    relation_type: Optional[RelationType] = None
    paid: bool
    paid_at: Optional[datetime] = None
    paid_by: Optional[str] = None
    paid_note: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def of(cls, item) -> "FinanceItemOut":
        snapshot = item.category_snapshot
        return cls(
            id=item.id,
            finance_id=item.finance_id,
            service_item_id=item.service_item_id,
            name_snapshot=item.name_snapshot,
            category_id_snapshot=snapshot.category_id,
            category_name_snapshot=snapshot.category_name,
            is_commission_snapshot=snapshot.is_commission,
            allow_related_item_snapshot=snapshot.allow_related_item,
            direction=item.direction,
            is_manual=bool(item.is_manual),
            unit_type=item.unit_type,
            unit_qty=item.unit_qty,
            unit_price=item.unit_price,
            amount=item.amount,
            driver_id=item.driver_id,
            partner_id=item.partner_id,
            payee_type=item.payee_type,
            related_item_id=item.related_item_id,
            relation_type=item.relation_type,
            paid=bool(item.paid),
            paid_at=item.paid_at,
            paid_by=item.paid_by,
            paid_note=item.paid_note,
            notes=item.notes,
        )


class FinanceSummaryOut(CamelModel):
    expense: Decimal
    income: Decimal
    commission_in: Decimal
    commission_out: Decimal
    net: Decimal


class BookingOut(CamelModel):
    id: int
    booking_ref: Optional[str] = None
    tour_date: date
    status: BookingStatus
    number_of_adult: int = 0
    number_of_child: Optional[int] = 0
    assigned_driver_id: Optional[int] = None
    main_contact_name: Optional[str] = None
    is_paid: bool = False
    paid_at: Optional[datetime] = None


class FinanceOut(CamelModel):
    id: int
    booking_id: int
    pattern_id: Optional[int] = None
    assigned_at: Optional[datetime] = None
    validated_at: Optional[datetime] = None
    is_locked: bool
    booking: Optional[BookingOut] = None
    items: List[FinanceItemOut] = Field(default_factory=list)
    summary: Optional[FinanceSummaryOut] = None


class ValidationRowOut(CamelModel):
    booking: BookingOut
    finance_id: int
    validated_at: Optional[datetime] = None
    is_locked: bool
    finance_summary: FinanceSummaryOut


class SettlementQueueItemOut(FinanceItemOut):
    booking_id: int
    booking_ref: Optional[str] = None
    tour_date: date


class SettleResultOut(CamelModel):
    count: int
    skipped_ids: List[int] = Field(default_factory=list)


class CommissionSplitOut(CamelModel):
    total: Decimal
    driver_portion: Decimal
    remainder: Decimal
    items: List[FinanceItemOut]


class CategoryOut(CamelModel):
    id: int
    code: str
    name: str
    default_direction: Direction
    payee_mode: PayeeMode
    auto_driver_from_booking: bool
    is_commission: bool
    allow_related_item: bool
    require_partner: bool
    sort_order: Optional[int] = None
    is_active: bool


class PatternItemOut(CamelModel):
    id: int
    service_item_id: int
    service_item_name: Optional[str] = None
    default_partner_id: Optional[int] = None
    default_unit_type: UnitType
    default_qty: Decimal
    default_price: Decimal
    position: int


class PatternOut(CamelModel):
    id: int
    name: str
    package_id: int
    is_active: bool
    items: List[PatternItemOut] = Field(default_factory=list)


class StatusSyncOut(CamelModel):
    total: int
    updated: int


# ── Finance report ────────────────────────────────────────────────────────────

class PeriodValueOut(CamelModel):
    monthly: Decimal
    yearly: Decimal
    total: Decimal


class PeriodCountOut(CamelModel):
    monthly: int
    yearly: int
    total: int


class ReportPeriodOut(CamelModel):
    key: str
    label: str
    options: List[str]


class CompanyReportOut(CamelModel):
    booking_count: PeriodCountOut
    income: PeriodValueOut
    expense: PeriodValueOut
    commission_in: PeriodValueOut
    commission_out: PeriodValueOut
    revenue: PeriodValueOut


class PayeeLineOut(CamelModel):
    booking_id: int
    booking_ref: Optional[str] = None
    tour_date: date
    amount: Decimal
    paid: Decimal
    owed: Decimal


class PayeeStatementOut(CamelModel):
    payee_type: PayeeType
    id: int
    name: str
    phone: Optional[str] = None
    totals: PeriodValueOut
    paid: PeriodValueOut
    owed: PeriodValueOut
    booking_counts: PeriodCountOut
    lines: dict[str, List[PayeeLineOut]]


class FinanceReportOut(CamelModel):
    generated_at: datetime
    monthly: ReportPeriodOut
    yearly: ReportPeriodOut
    company: CompanyReportOut
    partners: List[PayeeStatementOut] = Field(default_factory=list)
    drivers: List[PayeeStatementOut] = Field(default_factory=list)
