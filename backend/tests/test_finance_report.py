"""
test_finance_report.py — Company totals and payee statements.

Tests cover:
  - month / year keys on the business (UTC+8) calendar and period fallback
  - company income, expense, commission and revenue over DONE bookings
  - partner and driver statements: per-booking lines, paid vs owed
  - what stays out: unvalidated ledgers, terminal bookings, foreign prices
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from tour_finance.models.enums import Direction, PayeeType, UnitType
from tour_finance.models.orm_models import BookingFinance, BookingFinanceItem, CategorySnapshot
from tour_finance.services.errors import ValidationError
from tour_finance.services.finance_report import (
    get_finance_report, month_key, month_label, period_modes, pick_key,
)

VALIDATED_AT = datetime(2026, 3, 20, tzinfo=timezone.utc)
NOW = datetime(2026, 4, 2, 3, 0, tzinfo=timezone.utc)


def _item(amount, direction="EXPENSE", commission=False, driver=None, partner=None, paid=True):
    item = BookingFinanceItem(
        name_snapshot="Commission" if commission else "Line",
        category_snapshot=CategorySnapshot(None, "Commission" if commission else "Other", commission, commission),
        direction=Direction(direction),
        is_manual=True,
        unit_type=UnitType.PER_BOOKING,
        paid=paid,
        paid_at=VALIDATED_AT if paid else None,
    )
    item.set_pricing(Decimal("1"), Decimal(amount))
    item.set_payees(driver.id if driver else None, partner.id if partner else None)
    return item


async def _ledger(session, booking, items, validated=True):
    session.add(BookingFinance(
        booking_id=booking.id,
        validated_at=VALIDATED_AT if validated else None,
        is_locked=validated,
        items=items,
    ))
    await session.commit()


@pytest.fixture
async def season(session, factory):
    """
    Four bookings across three months plus two that must not count:

      March 2026  DONE       IDR 1,000,000  partner 300,000; commission in 100,000,
                                            driver cut 40,000
      March 2026  COMPLETED                 partner 50,000 unpaid
      Feb 2026    DONE       USD 120        driver 200,000
      Dec 2025    DONE       IDR 500,000    partner 100,000
      March 2026  CANCELLED                 partner 999
      March 2026  COMPLETED  unvalidated    partner 7,000
    """
    partner = await factory.partner("Tegenungan Waterfall")
    driver = await factory.driver("Made Driver")

    march = await factory.booking(date(2026, 3, 10), status="DONE", ref="BK-MAR",
                                  currency="IDR", total_price="1000000")
    await _ledger(session, march, [
        _item("300000", partner=partner),
        _item("100000", direction="INCOME", commission=True),
        _item("40000", commission=True, driver=driver),
    ])
    pending = await factory.booking(date(2026, 3, 12), status="COMPLETED", ref="BK-PENDING")
    await _ledger(session, pending, [_item("50000", partner=partner, paid=False)])
    february = await factory.booking(date(2026, 2, 20), status="DONE", ref="BK-FEB")
    await _ledger(session, february, [_item("200000", driver=driver)])
    december = await factory.booking(date(2025, 12, 5), status="DONE", ref="BK-DEC",
                                     currency="IDR", total_price="500000")
    await _ledger(session, december, [_item("100000", partner=partner)])

    cancelled = await factory.booking(date(2026, 3, 14), status="CANCELLED")
    await _ledger(session, cancelled, [_item("999", partner=partner)])
    draft = await factory.booking(date(2026, 3, 15), status="COMPLETED")
    await _ledger(session, draft, [_item("7000", partner=partner, paid=False)], validated=False)

    return {
        "partner": partner, "driver": driver,
        "march": march, "pending": pending, "february": february, "december": december,
    }


class TestPeriods:

    def test_month_key_uses_business_calendar(self):
        # 20:00 UTC on Jan 31 is already Feb 1 in Bali
        assert month_key(datetime(2026, 1, 31, 20, 0, tzinfo=timezone.utc)) == "2026-02"
        assert month_key(date(2026, 1, 31)) == "2026-01"

    def test_month_label(self):
        assert month_label("2026-03") == "March 2026"

    def test_pick_key_falls_back_to_latest(self):
        keys = ["2026-03", "2026-02"]
        assert pick_key(keys, "2026-02", "2026-04") == "2026-02"
        assert pick_key(keys, "2024-01", "2026-04") == "2026-03"
        assert pick_key([], None, "2026-04") == "2026-04"

    def test_period_modes(self):
        assert period_modes(date(2026, 3, 10), "2026-03", "2026") == ["total", "yearly", "monthly"]
        assert period_modes(date(2026, 2, 20), "2026-03", "2026") == ["total", "yearly"]
        assert period_modes(date(2025, 12, 5), "2026-03", "2026") == ["total"]


class TestCompanyTotals:

    async def test_monthly_yearly_and_total(self, session, season):
        report = await get_finance_report(session, month="2026-03", year="2026", now=NOW)
        company = report.company

        assert (company.booking_count.monthly, company.booking_count.yearly, company.booking_count.total) == (1, 2, 3)
        assert company.income.monthly == Decimal("1000000")
        assert company.income.total == Decimal("1500000")
        assert company.expense.yearly == Decimal("500000")
        assert company.commission_in.monthly == Decimal("100000")
        assert company.commission_out.monthly == Decimal("40000")
        assert company.revenue.monthly == Decimal("760000")
        assert company.revenue.yearly == Decimal("560000")
        assert company.revenue.total == Decimal("960000")

    async def test_foreign_price_is_not_income(self, session, season):
        report = await get_finance_report(session, month="2026-02", year="2026", now=NOW)
        assert report.company.income.monthly == 0
        assert report.company.expense.monthly == Decimal("200000")

    async def test_default_period_is_latest_done_month(self, session, season):
        report = await get_finance_report(session, now=NOW)

        assert (report.monthly.key, report.monthly.label) == ("2026-03", "March 2026")
        assert report.monthly.options == ["2026-03", "2026-02", "2025-12"]
        assert report.yearly.key == "2026"
        assert report.yearly.options == ["2026", "2025"]

    async def test_unknown_period_falls_back(self, session, season):
        report = await get_finance_report(session, month="2024-01", year="2025", now=NOW)

        assert report.monthly.key == "2026-03"
        assert report.yearly.key == "2025"
        assert report.company.booking_count.yearly == 1

    @pytest.mark.parametrize("month,year", [("March", None), ("2026-13", None), (None, "26")])
    async def test_malformed_period_rejected(self, session, month, year):
        with pytest.raises(ValidationError):
            await get_finance_report(session, month=month, year=year, now=NOW)

    async def test_empty_ledger_uses_current_month(self, session):
        report = await get_finance_report(session, now=NOW)

        assert report.monthly.key == "2026-04"
        assert report.monthly.options == ["2026-04"]
        assert report.company.booking_count.total == 0
        assert report.partners == [] and report.drivers == []


class TestPayeeStatements:

    async def test_partner_paid_and_owed(self, session, season):
        report = await get_finance_report(session, month="2026-03", year="2026", now=NOW)
        [partner] = report.partners

        assert (partner.payee_type, partner.id, partner.name) == (
            PayeeType.PARTNER, season["partner"].id, "Tegenungan Waterfall",
        )
        assert [line.booking_ref for line in partner.lines["total"]] == ["BK-DEC", "BK-MAR", "BK-PENDING"]
        assert partner.totals.total == Decimal("450000")
        assert partner.paid.total == Decimal("400000")
        assert partner.owed.total == Decimal("50000")
        assert partner.totals.monthly == Decimal("350000")
        assert partner.owed.monthly == Decimal("50000")
        assert (partner.booking_counts.monthly, partner.booking_counts.total) == (2, 3)

    async def test_driver_statement_includes_commission_cut(self, session, season):
        report = await get_finance_report(session, month="2026-03", year="2026", now=NOW)
        [driver] = report.drivers

        assert driver.id == season["driver"].id
        assert driver.totals.monthly == Decimal("40000")
        assert driver.totals.yearly == Decimal("240000")
        assert driver.owed.total == 0
        assert [line.booking_id for line in driver.lines["yearly"]] == [
            season["february"].id, season["march"].id,
        ]

    async def test_income_items_are_not_payable(self, session, season):
        report = await get_finance_report(session, now=NOW)
        march_lines = [
            line for statement in report.partners + report.drivers
            for line in statement.lines["monthly"] if line.booking_id == season["march"].id
        ]
        assert sum(line.amount for line in march_lines) == Decimal("340000")
