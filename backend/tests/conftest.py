"""
conftest.py — Shared pytest fixtures for the tour finance backend test suite.

Two kinds of fixtures live here:
  - transient builders (``catalog``) for pure unit tests of the engine,
    splitter, resolver and summary; nothing touches a database
  - an in-memory SQLite database (aiosqlite, one per test), a ``factory`` that
    persists rows into it, and an httpx ``client`` wired to the FastAPI app
    with ``get_db`` overridden onto that database

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``tour_finance.*`` imports resolve correctly regardless of where pytest is
    invoked.
"""

import sys
import os
from datetime import date, timedelta
from decimal import Decimal

import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any package imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


# ---------------------------------------------------------------------------
# Dates on the business (UTC+8) calendar
# ---------------------------------------------------------------------------

def business_today() -> date:
    from tour_finance.services.clock import business_date, utcnow
    return business_date(utcnow())


@pytest.fixture
def today() -> date:
    return business_today()


@pytest.fixture
def yesterday() -> date:
    return business_today() - timedelta(days=1)


@pytest.fixture
def next_week() -> date:
    return business_today() + timedelta(days=7)


# ---------------------------------------------------------------------------
# Transient builders (no database)
# ---------------------------------------------------------------------------

class CatalogBuilder:
    """Builds unsaved ORM objects with every field set explicitly."""

    def __init__(self):
        self._next_id = 100

    def _id(self) -> int:
        self._next_id += 1
        return self._next_id

    def category(self, code="TRANSPORT", **overrides):
        from tour_finance.models.enums import Direction, PayeeMode
        from tour_finance.models.orm_models import TourItemCategory
        fields = dict(
            id=self._id(),
            code=code,
            name=code.title(),
            default_direction=Direction.EXPENSE,
            payee_mode=PayeeMode.PARTNER_ONLY,
            auto_driver_from_booking=False,
            is_commission=False,
            allow_related_item=False,
            require_partner=False,
            sort_order=1,
            is_active=True,
        )
        fields.update(overrides)
        return TourItemCategory(**fields)

    def service_item(self, name, category, default_partner_id=None):
        from tour_finance.models.orm_models import ServiceItem
        return ServiceItem(
            id=self._id(),
            name=name,
            category=category,
            category_id=category.id if category is not None else None,
            default_partner_id=default_partner_id,
            is_active=True,
        )

    def pattern_item(self, service_item, unit_type="PER_BOOKING", qty="1", price="0",
                     position=0, default_partner_id=None):
        from tour_finance.models.enums import UnitType
        from tour_finance.models.orm_models import TourCostPatternItem
        return TourCostPatternItem(
            id=self._id(),
            service_item=service_item,
            service_item_id=service_item.id if service_item is not None else None,
            default_partner_id=default_partner_id,
            default_unit_type=UnitType(unit_type),
            default_qty=Decimal(qty),
            default_price=Decimal(price),
            position=position,
        )

    def pattern(self, items, name="Standard day tour", is_active=True):
        from tour_finance.models.orm_models import TourCostPattern
        return TourCostPattern(id=self._id(), name=name, package_id=1, is_active=is_active, items=list(items))

    def ledger_item(self, amount="0", direction="EXPENSE", is_commission=False, paid=False,
                    driver_id=None, partner_id=None, item_id=None, name="Line"):
        from tour_finance.models.enums import Direction, UnitType
        from tour_finance.models.orm_models import BookingFinanceItem, CategorySnapshot
        item = BookingFinanceItem(
            id=item_id if item_id is not None else self._id(),
            name_snapshot=name,
            category_snapshot=CategorySnapshot(None, "Test", is_commission, is_commission),
            direction=Direction(direction),
            is_manual=True,
            unit_type=UnitType.PER_BOOKING,
            paid=paid,
            related_item_id=None,
            relation_type=None,
        )
        item.set_pricing(Decimal("1.00"), Decimal(amount))
        item.set_payees(driver_id, partner_id)
        return item

    def finance(self, items=(), pattern_id=None, validated_at=None, is_locked=False):
        from tour_finance.models.orm_models import BookingFinance
        return BookingFinance(
            id=self._id(),
            booking_id=1,
            pattern_id=pattern_id,
            validated_at=validated_at,
            is_locked=is_locked,
            items=list(items),
        )


@pytest.fixture
def catalog():
    return CatalogBuilder()


# ---------------------------------------------------------------------------
# Database fixtures (in-memory SQLite via aiosqlite)
# ---------------------------------------------------------------------------

@pytest.fixture
async def db_engine():
    from sqlalchemy.ext.asyncio import create_async_engine
    from sqlalchemy.pool import StaticPool
    from tour_finance.db import Base
    from tour_finance.models import orm_models  # noqa: F401

    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


class Factory:
    """Persists rows and returns them; every write is committed."""

    def __init__(self, session):
        self.session = session

    async def _save(self, obj):
        self.session.add(obj)
        await self.session.commit()
        return obj

    async def driver(self, name="Made Driver"):
        from tour_finance.models.orm_models import Driver
        return await self._save(Driver(name=name, phone="+62 811", is_active=True))

    async def partner(self, name="Tegenungan Waterfall"):
        from tour_finance.models.orm_models import Partner
        return await self._save(Partner(name=name, phone="+62 812", is_active=True))

    async def category(self, code="TRANSPORT", **overrides):
        from tour_finance.models.enums import Direction, PayeeMode
        from tour_finance.models.orm_models import TourItemCategory
        fields = dict(
            code=code,
            name=code.title(),
            default_direction=Direction.EXPENSE,
            payee_mode=PayeeMode.PARTNER_ONLY,
            auto_driver_from_booking=False,
            is_commission=False,
            allow_related_item=False,
            require_partner=False,
            sort_order=1,
            is_active=True,
        )
        fields.update(overrides)
        return await self._save(TourItemCategory(**fields))

    async def service_item(self, name, category, default_partner_id=None, partners=(), is_active=True):
        from tour_finance.models.orm_models import ServiceItem
        return await self._save(ServiceItem(
            name=name,
            category_id=category.id if category is not None else None,
            default_partner_id=default_partner_id,
            is_active=is_active,
            partners=list(partners),
            drivers=[],
        ))

    async def pattern(self, lines, name="Ubud day tour", package_id=1, is_active=True):
        """``lines``: (service_item, unit_type, qty, price) tuples in position order."""
        from tour_finance.models.enums import UnitType
        from tour_finance.models.orm_models import TourCostPattern, TourCostPatternItem
        items = [
            TourCostPatternItem(
                service_item_id=service_item.id,
                default_partner_id=None,
                default_unit_type=UnitType(unit_type),
                default_qty=Decimal(qty),
                default_price=Decimal(price),
                position=position,
            )
            for position, (service_item, unit_type, qty, price) in enumerate(lines)
        ]
        return await self._save(TourCostPattern(
            name=name, package_id=package_id, is_active=is_active, items=items,
        ))

    async def booking(self, tour_date, adult=2, child=0, driver=None, status="NEW", ref=None,
                      currency="USD", total_price="120.00"):
        from tour_finance.models.enums import BookingStatus
        from tour_finance.models.orm_models import Booking
        return await self._save(Booking(
            booking_ref=ref,
            tour_date=tour_date,
            number_of_adult=adult,
            number_of_child=child,
            assigned_driver_id=driver.id if driver is not None else None,
            package_id=1,
            main_contact_name="Jane Traveller",
            currency=currency,
            total_price=Decimal(total_price),
            status=BookingStatus(status),
            is_paid=False,
            paid_at=None,
        ))


@pytest.fixture
def factory(session):
    return Factory(session)


@pytest.fixture
async def priced_booking(factory, yesterday):
    """
    A past booking (2 adults, 1 child) with a driver and a three-line pattern:
      Transport     DRIVER_ONLY + auto driver   PER_BOOKING  1 x 500000
      Entrance      PARTNER_ONLY (default)      PER_PAX      1 x 10
      Commission    EITHER, commission, INCOME  PER_BOOKING  1 x 100000
    """
    partner = await factory.partner()
    driver = await factory.driver()
    transport = await factory.category(
        "TRANSPORT", payee_mode="DRIVER_ONLY", auto_driver_from_booking=True, sort_order=1,
    )
    destination = await factory.category("DESTINATION", sort_order=2)
    commission = await factory.category(
        "COMMISSION", payee_mode="EITHER", is_commission=True, allow_related_item=True,
        default_direction="INCOME", sort_order=5,
    )
    car = await factory.service_item("Private car", transport)
    entrance = await factory.service_item("Waterfall entrance", destination, default_partner_id=partner.id)
    shop = await factory.service_item("Silver shop commission", commission, default_partner_id=partner.id)
    pattern = await factory.pattern([
        (car, "PER_BOOKING", "1", "500000"),
        (entrance, "PER_PAX", "1", "10"),
        (shop, "PER_BOOKING", "1", "100000"),
    ])
    booking = await factory.booking(yesterday, adult=2, child=1, driver=driver)
    return {
        "booking": booking, "pattern": pattern, "driver": driver, "partner": partner,
        "categories": {"transport": transport, "destination": destination, "commission": commission},
        "service_items": {"car": car, "entrance": entrance, "shop": shop},
    }


# ---------------------------------------------------------------------------
# HTTP client + auth
# ---------------------------------------------------------------------------

def auth_headers(role: str, sub: str = "user-1", name: str = "Komang") -> dict:
    from jose import jwt
    from tour_finance.config import JWT_ALGORITHM, JWT_SECRET_KEY
    token = jwt.encode({"sub": sub, "role": role, "name": name}, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def staff_headers():
    return auth_headers("STAFF")


@pytest.fixture
def admin_headers():
    return auth_headers("ADMIN", sub="admin-1")


@pytest.fixture
def customer_headers():
    return auth_headers("CUSTOMER", sub="guest-1")


@pytest.fixture
async def client(session_factory):
    from httpx import ASGITransport, AsyncClient
    from tour_finance.db import get_db
    from tour_finance.main import app

    async def _get_test_db():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
