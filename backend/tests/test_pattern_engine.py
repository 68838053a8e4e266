"""
test_pattern_engine.py — Unit tests for PatternInstantiationEngine.

Tests cover:
  - Quantity derivation for every unit type (adult / child / pax / booking)
  - Amount = unit_qty x unit_price on normalised factors
  - Payee resolution per payee mode (driver-only, partner-only, either, none)
  - Direction fallback and category snapshotting
  - Position ordering and the missing-category rejection

All tests are pure unit tests; no database or external services required.
"""

from decimal import Decimal

import pytest

from tour_finance.models.enums import Direction, PayeeMode, PayeeType, UnitType
from tour_finance.services.errors import ValidationError
from tour_finance.services.pattern_engine import BookingFacts, PatternInstantiationEngine


@pytest.fixture
def engine():
    return PatternInstantiationEngine()


def _facts(adult=2, child=1, driver=7):
    return BookingFacts(booking_id=1, adult=adult, child=child, assigned_driver_id=driver)


# ===========================================================================
# Class 1: Quantities and amounts
# ===========================================================================

class TestQuantities:

    def test_per_pax_line_for_two_adults_one_child(self, engine, catalog):
        """2 adults + 1 child, PER_PAX x 1 at 10 -> qty 3, amount 30."""
        category = catalog.category("DESTINATION")
        service = catalog.service_item("Waterfall entrance", category)
        pattern = catalog.pattern([catalog.pattern_item(service, "PER_PAX", qty="1", price="10")])

        [item] = engine.instantiate(_facts(), pattern)

        assert item.unit_qty == Decimal("3")
        assert item.unit_price == Decimal("10")
        assert item.amount == Decimal("30")

    @pytest.mark.parametrize("unit_type,expected", [
        ("PER_ADULT", Decimal("4")),
        ("PER_CHILD", Decimal("3")),
        ("PER_PAX", Decimal("7")),
        ("PER_BOOKING", Decimal("1")),
    ])
    def test_base_quantity_by_unit_type(self, engine, catalog, unit_type, expected):
        category = catalog.category("MEAL")
        service = catalog.service_item("Lunch", category)
        pattern = catalog.pattern([catalog.pattern_item(service, unit_type, qty="1", price="25000")])

        [item] = engine.instantiate(_facts(adult=4, child=3), pattern)

        assert item.unit_type == UnitType(unit_type)
        assert item.unit_qty == expected
        assert item.amount == expected * Decimal("25000")

    def test_default_qty_multiplies_base_quantity(self, engine, catalog):
        category = catalog.category("TICKET")
        service = catalog.service_item("Temple sarong", category)
        pattern = catalog.pattern([catalog.pattern_item(service, "PER_ADULT", qty="2.5", price="4")])

        [item] = engine.instantiate(_facts(adult=2, child=0), pattern)

        assert item.unit_qty == Decimal("5.00")
        assert item.amount == Decimal("20.00")

    def test_zero_child_booking_gives_zero_quantity(self, engine, catalog):
        category = catalog.category("TICKET")
        service = catalog.service_item("Kids ticket", category)
        pattern = catalog.pattern([catalog.pattern_item(service, "PER_CHILD", qty="1", price="50000")])

        [item] = engine.instantiate(_facts(adult=2, child=0), pattern)

        assert item.unit_qty == 0
        assert item.amount == 0

    def test_amount_is_product_of_stored_factors(self, engine, catalog):
        category = catalog.category("MEAL")
        service = catalog.service_item("Coffee", category)
        pattern = catalog.pattern([catalog.pattern_item(service, "PER_PAX", qty="1.333", price="9.999")])

        [item] = engine.instantiate(_facts(adult=1, child=0), pattern)

        assert item.unit_qty == Decimal("1.33")
        assert item.unit_price == Decimal("10.00")
        assert item.amount == item.unit_qty * item.unit_price


# ===========================================================================
# Class 2: Payee resolution
# ===========================================================================

class TestPayees:

    def test_driver_only_category_takes_booking_driver(self, engine, catalog):
        category = catalog.category(
            "TRANSPORT", payee_mode=PayeeMode.DRIVER_ONLY, auto_driver_from_booking=True,
        )
        service = catalog.service_item("Private car", category, default_partner_id=55)
        pattern = catalog.pattern([catalog.pattern_item(service, "PER_BOOKING", price="500000")])

        [item] = engine.instantiate(_facts(driver=7), pattern)

        assert item.driver_id == 7
        assert item.partner_id is None
        assert item.payee_type == PayeeType.DRIVER

    def test_driver_only_without_auto_flag_has_no_payee(self, engine, catalog):
        category = catalog.category("TRANSPORT", payee_mode=PayeeMode.DRIVER_ONLY)
        service = catalog.service_item("Private car", category)
        pattern = catalog.pattern([catalog.pattern_item(service)])

        [item] = engine.instantiate(_facts(driver=7), pattern)

        assert item.driver_id is None
        assert item.payee_type == PayeeType.NONE

    def test_partner_only_ignores_booking_driver(self, engine, catalog):
        category = catalog.category(
            "DESTINATION", payee_mode=PayeeMode.PARTNER_ONLY, auto_driver_from_booking=True,
        )
        service = catalog.service_item("Rice terrace", category, default_partner_id=12)
        pattern = catalog.pattern([catalog.pattern_item(service, price="15000")])

        [item] = engine.instantiate(_facts(driver=7), pattern)

        assert item.driver_id is None
        assert item.partner_id == 12
        assert item.payee_type == PayeeType.PARTNER

    def test_pattern_partner_overrides_service_default(self, engine, catalog):
        category = catalog.category("MEAL")
        service = catalog.service_item("Lunch", category, default_partner_id=12)
        pattern = catalog.pattern([catalog.pattern_item(service, default_partner_id=34)])

        [item] = engine.instantiate(_facts(), pattern)

        assert item.partner_id == 34

    def test_either_mode_prefers_driver_for_payee_type(self, engine, catalog):
        category = catalog.category(
            "COMMISSION", payee_mode=PayeeMode.EITHER, auto_driver_from_booking=True, is_commission=True,
        )
        service = catalog.service_item("Shop commission", category, default_partner_id=12)
        pattern = catalog.pattern([catalog.pattern_item(service)])

        [item] = engine.instantiate(_facts(driver=7), pattern)

        assert item.driver_id == 7
        assert item.partner_id == 12
        assert item.payee_type == PayeeType.DRIVER

    def test_none_mode_has_no_payees(self, engine, catalog):
        category = catalog.category("OTHER", payee_mode=PayeeMode.NONE, auto_driver_from_booking=True)
        service = catalog.service_item("Parking", category, default_partner_id=12)
        pattern = catalog.pattern([catalog.pattern_item(service)])

        [item] = engine.instantiate(_facts(driver=7), pattern)

        assert (item.driver_id, item.partner_id, item.payee_type) == (None, None, PayeeType.NONE)

    def test_unset_payee_mode_defaults_to_partner_only(self, engine, catalog):
        category = catalog.category("OTHER", payee_mode=None, auto_driver_from_booking=True)
        service = catalog.service_item("Misc", category, default_partner_id=12)
        pattern = catalog.pattern([catalog.pattern_item(service)])

        [item] = engine.instantiate(_facts(driver=7), pattern)

        assert item.driver_id is None
        assert item.partner_id == 12


# ===========================================================================
# Class 3: Direction, snapshots, ordering, rejection
# ===========================================================================

class TestSnapshotsAndOrdering:

    def test_direction_comes_from_category(self, engine, catalog):
        category = catalog.category("COMMISSION", default_direction=Direction.INCOME, is_commission=True)
        service = catalog.service_item("Shop commission", category)
        [item] = engine.instantiate(_facts(), catalog.pattern([catalog.pattern_item(service)]))
        assert item.direction == Direction.INCOME

    def test_direction_falls_back_on_commission_flag(self, engine, catalog):
        commission = catalog.category("COMMISSION", default_direction=None, is_commission=True)
        other = catalog.category("OTHER", default_direction=None)
        pattern = catalog.pattern([
            catalog.pattern_item(catalog.service_item("Shop", commission), position=0),
            catalog.pattern_item(catalog.service_item("Parking", other), position=1),
        ])

        first, second = engine.instantiate(_facts(), pattern)

        assert first.direction == Direction.INCOME
        assert second.direction == Direction.EXPENSE

    def test_snapshot_copies_category_fields(self, engine, catalog):
        category = catalog.category("COMMISSION", is_commission=True, allow_related_item=True)
        service = catalog.service_item("Shop commission", category)

        [item] = engine.instantiate(_facts(), catalog.pattern([catalog.pattern_item(service)]))

        snapshot = item.category_snapshot
        assert snapshot.category_id == category.id
        assert snapshot.category_name == "Commission"
        assert snapshot.is_commission is True
        assert snapshot.allow_related_item is True
        assert item.name_snapshot == "Shop commission"
        assert item.is_manual is False
        assert item.paid is False

    def test_later_category_edits_do_not_reach_the_snapshot(self, engine, catalog):
        category = catalog.category("MEAL")
        service = catalog.service_item("Lunch", category)
        [item] = engine.instantiate(_facts(), catalog.pattern([catalog.pattern_item(service)]))

        category.name = "Renamed meal"
        category.is_commission = True

        assert item.category_snapshot.category_name == "Meal"
        assert item.category_snapshot.is_commission is False

    def test_items_follow_position_order(self, engine, catalog):
        category = catalog.category("OTHER")
        pattern = catalog.pattern([
            catalog.pattern_item(catalog.service_item("Third", category), position=3),
            catalog.pattern_item(catalog.service_item("First", category), position=1),
            catalog.pattern_item(catalog.service_item("Second", category), position=2),
        ])

        names = [i.name_snapshot for i in engine.instantiate(_facts(), pattern)]

        assert names == ["First", "Second", "Third"]

    def test_missing_category_is_rejected(self, engine, catalog):
        service = catalog.service_item("Orphan item", None)
        pattern = catalog.pattern([catalog.pattern_item(service)])

        with pytest.raises(ValidationError) as exc:
            engine.instantiate(_facts(), pattern)

        assert exc.value.code == "VALIDATION"
        assert "no cost category" in exc.value.message

    def test_empty_pattern_gives_empty_ledger(self, engine, catalog):
        assert engine.instantiate(_facts(), catalog.pattern([])) == []
