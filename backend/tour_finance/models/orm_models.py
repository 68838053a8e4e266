"""ORM Models for the tour finance core — SQLAlchemy 2.0"""
from dataclasses import dataclass
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, Iterable
from sqlalchemy import (
    String, Text, Boolean, Integer, Numeric, DateTime, Date,
    ForeignKey, Table, Column, Index, Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, composite
from sqlalchemy.sql import func
from tour_finance.db import Base
from tour_finance.models.enums import (
    BookingStatus, Direction, PayeeMode, PayeeType, RelationType, UnitType,
)
from tour_finance.services.errors import LockedError


def _enum(enum_cls, length: int = 20):
    # VARCHAR storage so new enum members never need a type migration
    return SAEnum(enum_cls, native_enum=False, length=length, validate_strings=True)


# ── CATEGORY SNAPSHOT ─────────────────────────────────────────────────────────
@dataclass(frozen=True)
class CategorySnapshot:
    """
    Category fields frozen onto a ledger item when it is created.
    Later edits to TourItemCategory never reach rows that carry a snapshot.
    """
    category_id: Optional[int]
    category_name: str
    is_commission: bool
    allow_related_item: bool

    @classmethod
    def of(cls, category: Optional["TourItemCategory"], fallback_name: str = "Uncategorized") -> "CategorySnapshot":
        if category is None:
            return cls(None, fallback_name, False, False)
        return cls(
            category.id,
            category.name,
            bool(category.is_commission),
            bool(category.allow_related_item),
        )


# ── MASTER DIRECTORIES (read-only here) ───────────────────────────────────────
class Driver(Base):
    __tablename__ = "drivers"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class Partner(Base):
    __tablename__ = "partners"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


service_item_partners = Table(
    "service_item_partners",
    Base.metadata,
    Column("service_item_id", ForeignKey("service_items.id", ondelete="CASCADE"), primary_key=True),
    Column("partner_id", ForeignKey("partners.id", ondelete="CASCADE"), primary_key=True),
)

service_item_drivers = Table(
    "service_item_drivers",
    Base.metadata,
    Column("service_item_id", ForeignKey("service_items.id", ondelete="CASCADE"), primary_key=True),
    Column("driver_id", ForeignKey("drivers.id", ondelete="CASCADE"), primary_key=True),
)


# ── COST CATALOG ──────────────────────────────────────────────────────────────
class TourItemCategory(Base):
    """Payment policy for a family of service items. Behaviour is read from these fields."""
    __tablename__ = "tour_item_categories"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    default_direction: Mapped[Direction] = mapped_column(_enum(Direction), default=Direction.EXPENSE)
    payee_mode: Mapped[PayeeMode] = mapped_column(_enum(PayeeMode), default=PayeeMode.PARTNER_ONLY)
    auto_driver_from_booking: Mapped[bool] = mapped_column(Boolean, default=False)
    is_commission: Mapped[bool] = mapped_column(Boolean, default=False)
    allow_related_item: Mapped[bool] = mapped_column(Boolean, default=False)
    require_partner: Mapped[bool] = mapped_column(Boolean, default=False)
    sort_order: Mapped[Optional[int]] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    service_items: Mapped[list["ServiceItem"]] = relationship("ServiceItem", back_populates="category")


class ServiceItem(Base):
    __tablename__ = "service_items"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("tour_item_categories.id"))
    default_partner_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("partners.id"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    category: Mapped[Optional["TourItemCategory"]] = relationship("TourItemCategory", back_populates="service_items")
    partners: Mapped[list["Partner"]] = relationship("Partner", secondary=service_item_partners)
    drivers: Mapped[list["Driver"]] = relationship("Driver", secondary=service_item_drivers)

    def is_partner_eligible(self, partner_id: Optional[int]) -> bool:
        """An empty eligibility set means any partner may be used."""
        if not partner_id or not self.partners:
            return True
        return any(p.id == partner_id for p in self.partners)


class TourCostPattern(Base):
    __tablename__ = "tour_cost_patterns"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    package_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    items: Mapped[list["TourCostPatternItem"]] = relationship(
        "TourCostPatternItem",
        back_populates="pattern",
        cascade="all, delete-orphan",
        order_by="TourCostPatternItem.position",
    )


class TourCostPatternItem(Base):
    __tablename__ = "tour_cost_pattern_items"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pattern_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tour_cost_patterns.id", ondelete="CASCADE"), nullable=False
    )
    service_item_id: Mapped[int] = mapped_column(Integer, ForeignKey("service_items.id"), nullable=False)
    default_partner_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("partners.id"))
    default_unit_type: Mapped[UnitType] = mapped_column(_enum(UnitType), default=UnitType.PER_BOOKING)
    default_qty: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("1"))
    default_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    position: Mapped[int] = mapped_column(Integer, default=0)
    pattern: Mapped["TourCostPattern"] = relationship("TourCostPattern", back_populates="items")
    service_item: Mapped["ServiceItem"] = relationship("ServiceItem")


# ── BOOKINGS (owned by the ingestion subsystem) ──────────────────────────────
class Booking(Base):
    __tablename__ = "bookings"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_ref: Mapped[Optional[str]] = mapped_column(String(100), unique=True)
    tour_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    number_of_adult: Mapped[int] = mapped_column(Integer, default=0)
    number_of_child: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    assigned_driver_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("drivers.id"))
    package_id: Mapped[Optional[int]] = mapped_column(Integer)
    main_contact_name: Mapped[Optional[str]] = mapped_column(String(255))
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    total_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2))
    # Written by the status resolver; CANCELLED / NO_SHOW only by external actors
    status: Mapped[BookingStatus] = mapped_column(_enum(BookingStatus), default=BookingStatus.NEW, index=True)
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    driver: Mapped[Optional["Driver"]] = relationship("Driver")
    finance: Mapped[Optional["BookingFinance"]] = relationship(
        "BookingFinance", back_populates="booking", uselist=False
    )


# ── SETTLEMENT LEDGER ─────────────────────────────────────────────────────────
class BookingFinance(Base):
    """
    Aggregate root of a booking's ledger. Owns its items exclusively: they are
    only added or replaced through this object, and delete-orphan removes any
    item dropped from the collection.
    """
    __tablename__ = "booking_finances"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[int] = mapped_column(Integer, ForeignKey("bookings.id"), unique=True, nullable=False)
    pattern_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("tour_cost_patterns.id"))
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    validated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    booking: Mapped["Booking"] = relationship("Booking", back_populates="finance")
    pattern: Mapped[Optional["TourCostPattern"]] = relationship("TourCostPattern")
    items: Mapped[list["BookingFinanceItem"]] = relationship(
        "BookingFinanceItem",
        back_populates="finance",
        cascade="all, delete-orphan",
        order_by="BookingFinanceItem.id",
    )

    def ensure_unlocked(self) -> None:
        if self.is_locked:
            raise LockedError(f"Finance is locked for booking {self.booking_id}")

    def replace_items(self, items: Iterable["BookingFinanceItem"]) -> None:
        """Swap the whole owned collection in one step."""
        self.ensure_unlocked()
        self.items = list(items)

    def add_items(self, items: Iterable["BookingFinanceItem"]) -> None:
        self.ensure_unlocked()
        self.items.extend(items)

    def all_items_paid(self) -> bool:
        return bool(self.items) and all(item.paid for item in self.items)

    @property
    def is_settleable(self) -> bool:
        """Reviewed ledgers only: validated and locked."""
        return self.validated_at is not None and bool(self.is_locked)


class BookingFinanceItem(Base):
    __tablename__ = "booking_finance_items"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    finance_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("booking_finances.id", ondelete="CASCADE"), nullable=False, index=True
    )
    service_item_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("service_items.id"))
    name_snapshot: Mapped[str] = mapped_column(String(255), nullable=False)
    category_snapshot: Mapped[CategorySnapshot] = composite(
        CategorySnapshot,
        mapped_column("category_id_snapshot", Integer, nullable=True),
        mapped_column("category_name_snapshot", String(100), nullable=False),
        mapped_column("is_commission_snapshot", Boolean, nullable=False, default=False),
        mapped_column("allow_related_item_snapshot", Boolean, nullable=False, default=False),
    )
    direction: Mapped[Direction] = mapped_column(_enum(Direction), nullable=False)
    is_manual: Mapped[bool] = mapped_column(Boolean, default=False)
    unit_type: Mapped[UnitType] = mapped_column(_enum(UnitType), default=UnitType.PER_BOOKING)
    unit_qty: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    # Always unit_qty * unit_price; never accepted from a client
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    driver_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("drivers.id"))
    partner_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("partners.id"))
    payee_type: Mapped[PayeeType] = mapped_column(_enum(PayeeType), default=PayeeType.NONE)
    related_item_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("booking_finance_items.id", ondelete="SET NULL")
    )
    relation_type: Mapped[Optional[RelationType]] = mapped_column(_enum(RelationType, 30))
    paid: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    paid_by: Mapped[Optional[str]] = mapped_column(String(255))
    paid_note: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    finance: Mapped["BookingFinance"] = relationship("BookingFinance", back_populates="items")
    __table_args__ = (Index("ix_finance_items_related", "related_item_id"),)

    def set_payees(self, driver_id: Optional[int], partner_id: Optional[int]) -> None:
        self.driver_id = driver_id
        self.partner_id = partner_id
        self.payee_type = PayeeType.derive(driver_id, partner_id)

    def set_pricing(self, unit_qty: Decimal, unit_price: Decimal) -> None:
        self.unit_qty = unit_qty
        self.unit_price = unit_price
        self.amount = unit_qty * unit_price

    @property
    def is_commission(self) -> bool:
        return bool(self.category_snapshot and self.category_snapshot.is_commission)
