"""
Policy value types for the finance core.

Category behaviour is data: call sites ask a PayeeMode or UnitType what it
allows instead of comparing strings.
"""
from __future__ import annotations

import enum
from typing import Optional


class Direction(str, enum.Enum):
    EXPENSE = "EXPENSE"
    INCOME = "INCOME"


class PayeeMode(str, enum.Enum):
    DRIVER_ONLY = "DRIVER_ONLY"
    PARTNER_ONLY = "PARTNER_ONLY"
    EITHER = "EITHER"
    NONE = "NONE"

    def allows_driver(self) -> bool:
        return self in (PayeeMode.DRIVER_ONLY, PayeeMode.EITHER)

    def allows_partner(self) -> bool:
        return self in (PayeeMode.PARTNER_ONLY, PayeeMode.EITHER)


class UnitType(str, enum.Enum):
    PER_ADULT = "PER_ADULT"
    PER_CHILD = "PER_CHILD"
    PER_PAX = "PER_PAX"
    PER_BOOKING = "PER_BOOKING"

    def base_quantity(self, adult: int, child: int) -> int:
        """Booking headcount this unit type multiplies against."""
        if self is UnitType.PER_ADULT:
            return adult
        if self is UnitType.PER_CHILD:
            return child
        if self is UnitType.PER_PAX:
            return adult + child
        return 1


class PayeeType(str, enum.Enum):
    DRIVER = "DRIVER"
    PARTNER = "PARTNER"
    NONE = "NONE"

    @classmethod
    def derive(cls, driver_id: Optional[int], partner_id: Optional[int]) -> "PayeeType":
        """Driver wins over partner; no payee at all is NONE."""
        if driver_id:
            return cls.DRIVER
        if partner_id:
            return cls.PARTNER
        return cls.NONE


class RelationType(str, enum.Enum):
    COMMISSION_FOR = "COMMISSION_FOR"


class BookingStatus(str, enum.Enum):
    NEW = "NEW"
    READY = "READY"
    ATTENTION = "ATTENTION"
    UPDATED = "UPDATED"
    COMPLETED = "COMPLETED"
    DONE = "DONE"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"

    @property
    def is_terminal(self) -> bool:
        """Only an external actor may set or clear these."""
        return self in (BookingStatus.CANCELLED, BookingStatus.NO_SHOW)


class BookingEventType(str, enum.Enum):
    """Event types emitted by the external ingestion subsystem."""
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    CANCELLED = "CANCELLED"
