"""
Finance report — company totals and payee statements over the ledger,
bucketed on the business calendar (UTC+8).

Every figure comes three ways: the selected month, the selected year and all
time. A month or year that was not requested, or that has no bookings,
falls back to the latest period that does.

  Company      DONE bookings only: income (booking price in the report
               currency + non-commission income items), expense, commission
               in/out, revenue = income + commission_in - expense - commission_out
  Payees       EXPENSE items with a driver or partner on every validated
               ledger of a non-terminal booking, per booking, split into
               paid and still owed
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tour_finance.config import REPORT_CURRENCY
from tour_finance.models.enums import BookingStatus, Direction, PayeeType
from tour_finance.models.orm_models import Booking, BookingFinance, BookingFinanceItem, Driver, Partner
from tour_finance.services.clock import business_date, utcnow
from tour_finance.services.errors import ValidationError
from tour_finance.services.finance_summary import ZERO, summarize_items

logger = logging.getLogger("tour-finance-report")

PERIOD_MODES: Tuple[str, ...] = ("monthly", "yearly", "total")

_MONTH_KEY = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
_YEAR_KEY = re.compile(r"^\d{4}$")


# ── Result types ──────────────────────────────────────────────────────────────

@dataclass
class PeriodValue:
    monthly: Decimal = ZERO
    yearly: Decimal = ZERO
    total: Decimal = ZERO

    def add(self, modes: Iterable[str], amount) -> None:
        for mode in modes:
            setattr(self, mode, getattr(self, mode) + amount)


def _counter() -> PeriodValue:
    return PeriodValue(0, 0, 0)


@dataclass
class CompanyTotals:
    booking_count: PeriodValue = field(default_factory=_counter)
    income: PeriodValue = field(default_factory=PeriodValue)
    expense: PeriodValue = field(default_factory=PeriodValue)
    commission_in: PeriodValue = field(default_factory=PeriodValue)
    commission_out: PeriodValue = field(default_factory=PeriodValue)
    revenue: PeriodValue = field(default_factory=PeriodValue)


@dataclass
class PayeeLine:
    """One booking's share of a payee's items."""
    booking_id: int
    booking_ref: Optional[str]
    tour_date: date
    amount: Decimal = ZERO
    paid: Decimal = ZERO

    @property
    def owed(self) -> Decimal:
        return self.amount - self.paid


@dataclass
class PayeeStatement:
    payee_type: PayeeType
    id: int
    name: str
    phone: Optional[str] = None
    lines: Dict[str, List[PayeeLine]] = field(default_factory=lambda: {mode: [] for mode in PERIOD_MODES})
    totals: PeriodValue = field(default_factory=PeriodValue)
    paid: PeriodValue = field(default_factory=PeriodValue)
    owed: PeriodValue = field(default_factory=PeriodValue)
    booking_counts: PeriodValue = field(default_factory=_counter)


@dataclass(frozen=True)
class ReportPeriod:
    key: str
    label: str
    options: List[str]


@dataclass
class FinanceReport:
    generated_at: datetime
    monthly: ReportPeriod
    yearly: ReportPeriod
    company: CompanyTotals
    partners: List[PayeeStatement]
    drivers: List[PayeeStatement]


# ── Period keys ───────────────────────────────────────────────────────────────

def month_key(tour_date) -> str:
    return business_date(tour_date).strftime("%Y-%m")


def month_label(key: str) -> str:
    return datetime.strptime(key, "%Y-%m").strftime("%B %Y")


def pick_key(keys: List[str], requested: Optional[str], fallback: str) -> str:
    if requested and requested in keys:
        return requested
    return keys[0] if keys else fallback


def period_modes(tour_date, month: str, year: str) -> List[str]:
    """The buckets a booking on ``tour_date`` falls into."""
    key = month_key(tour_date)
    modes = ["total"]
    if key[:4] == year:
        modes.append("yearly")
    if key == month:
        modes.append("monthly")
    return modes


def _check_key(value: Optional[str], pattern: re.Pattern, label: str, shape: str) -> Optional[str]:
    value = (value or "").strip()
    if not value or value == "all":
        return None
    if not pattern.match(value):
        raise ValidationError(f"{label} must look like {shape}")
    return value


# ── Company totals ────────────────────────────────────────────────────────────

def booking_gross(booking: Booking) -> Decimal:
    """Booking price when it is already in the report currency; no FX here."""
    if booking.total_price is None or (booking.currency or "").upper() != REPORT_CURRENCY:
        return ZERO
    return Decimal(booking.total_price)


def build_company_totals(bookings: Iterable[Booking], month: str, year: str) -> CompanyTotals:
    company = CompanyTotals()
    for booking in bookings:
        summary = summarize_items(booking.finance.items if booking.finance else [])
        income = booking_gross(booking) + summary.income
        revenue = income + summary.commission_in - summary.expense - summary.commission_out
        modes = period_modes(booking.tour_date, month, year)

        company.booking_count.add(modes, 1)
        company.income.add(modes, income)
        company.expense.add(modes, summary.expense)
        company.commission_in.add(modes, summary.commission_in)
        company.commission_out.add(modes, summary.commission_out)
        company.revenue.add(modes, revenue)
    return company


# ── Payee statements ──────────────────────────────────────────────────────────

def _is_payable(item: BookingFinanceItem) -> bool:
    return (
        Direction(item.direction) is Direction.EXPENSE
        and Decimal(item.amount or 0) > 0
        and bool(item.driver_id or item.partner_id)
    )


def _add_to_line(statement: PayeeStatement, mode: str, booking: Booking, item: BookingFinanceItem) -> None:
    lines = statement.lines[mode]
    line = next((existing for existing in lines if existing.booking_id == booking.id), None)
    if line is None:
        line = PayeeLine(booking.id, booking.booking_ref, business_date(booking.tour_date))
        lines.append(line)
    amount = Decimal(item.amount)
    line.amount += amount
    if item.paid:
        line.paid += amount


def _finalize(statement: PayeeStatement) -> PayeeStatement:
    for mode in PERIOD_MODES:
        lines = sorted(statement.lines[mode], key=lambda line: (line.tour_date, line.booking_id))
        statement.lines[mode] = lines
        statement.totals.add([mode], sum((line.amount for line in lines), ZERO))
        statement.paid.add([mode], sum((line.paid for line in lines), ZERO))
        statement.owed.add([mode], sum((line.owed for line in lines), ZERO))
        statement.booking_counts.add([mode], len(lines))
    return statement


def build_payee_statements(
    bookings: Iterable[Booking],
    month: str,
    year: str,
    drivers: Dict[int, Driver],
    partners: Dict[int, Partner],
) -> Tuple[List[PayeeStatement], List[PayeeStatement]]:
    """(partner statements, driver statements), each sorted by payee name."""
    by_partner: Dict[int, PayeeStatement] = {}
    by_driver: Dict[int, PayeeStatement] = {}

    for booking in bookings:
        modes = period_modes(booking.tour_date, month, year)
        for item in booking.finance.items:
            if not _is_payable(item):
                continue
            if item.partner_id:
                partner = partners.get(item.partner_id)
                statement = by_partner.setdefault(item.partner_id, PayeeStatement(
                    PayeeType.PARTNER, item.partner_id,
                    partner.name if partner else f"Partner #{item.partner_id}",
                    partner.phone if partner else None,
                ))
                for mode in modes:
                    _add_to_line(statement, mode, booking, item)
            if item.driver_id:
                driver = drivers.get(item.driver_id)
                statement = by_driver.setdefault(item.driver_id, PayeeStatement(
                    PayeeType.DRIVER, item.driver_id,
                    driver.name if driver else f"Driver #{item.driver_id}",
                    driver.phone if driver else None,
                ))
                for mode in modes:
                    _add_to_line(statement, mode, booking, item)

    def ordered(statements: Dict[int, PayeeStatement]) -> List[PayeeStatement]:
        return sorted((_finalize(s) for s in statements.values()), key=lambda s: (s.name.lower(), s.id))

    return ordered(by_partner), ordered(by_driver)


# ── Loading ───────────────────────────────────────────────────────────────────

async def _reportable_bookings(session: AsyncSession) -> List[Booking]:
    terminal = [status for status in BookingStatus if status.is_terminal]
    result = await session.execute(
        select(Booking)
        .join(BookingFinance, BookingFinance.booking_id == Booking.id)
        .where(Booking.status.not_in(terminal))
        .options(selectinload(Booking.finance).selectinload(BookingFinance.items))
        .order_by(Booking.tour_date.desc(), Booking.id.desc())
    )
    return list(result.scalars().all())


async def _payees_by_id(session: AsyncSession, model, ids: set) -> dict:
    if not ids:
        return {}
    result = await session.execute(select(model).where(model.id.in_(ids)))
    return {row.id: row for row in result.scalars().all()}


async def get_finance_report(
    session: AsyncSession,
    month: Optional[str] = None,
    year: Optional[str] = None,
    now: Optional[datetime] = None,
) -> FinanceReport:
    requested_month = _check_key(month, _MONTH_KEY, "month", "YYYY-MM")
    requested_year = _check_key(year, _YEAR_KEY, "year", "YYYY")
    now = now or utcnow()

    bookings = await _reportable_bookings(session)
    done = [b for b in bookings if BookingStatus(b.status) is BookingStatus.DONE]
    validated = [b for b in bookings if b.finance.validated_at is not None]

    # Latest DONE booking anchors the default period so it is never empty
    anchor = month_key(done[0].tour_date) if done else month_key(now)
    month_keys = sorted({month_key(b.tour_date) for b in done}, reverse=True)
    year_keys = sorted({key[:4] for key in month_keys}, reverse=True)
    selected_month = pick_key(month_keys, requested_month, anchor)
    selected_year = pick_key(year_keys, requested_year, anchor[:4])

    items = [item for b in validated for item in b.finance.items]
    drivers = await _payees_by_id(session, Driver, {i.driver_id for i in items if i.driver_id})
    partners = await _payees_by_id(session, Partner, {i.partner_id for i in items if i.partner_id})
    partner_statements, driver_statements = build_payee_statements(
        validated, selected_month, selected_year, drivers, partners,
    )

    logger.info(
        f"Finance report {selected_month} / {selected_year}: "
        f"{len(done)} done bookings, {len(partner_statements)} partners, {len(driver_statements)} drivers",
        extra={"item_count": len(done)},
    )
    return FinanceReport(
        generated_at=now,
        monthly=ReportPeriod(selected_month, month_label(selected_month), month_keys or [selected_month]),
        yearly=ReportPeriod(selected_year, selected_year, year_keys or [selected_year]),
        company=build_company_totals(done, selected_month, selected_year),
        partners=partner_statements,
        drivers=driver_statements,
    )
