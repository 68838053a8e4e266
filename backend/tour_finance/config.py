"""
Finance core configuration — single source of truth for business-calendar
offsets, status groupings, role gates and environment-driven settings.

Import from here in services and routes rather than hardcoding values.
"""
from __future__ import annotations

import os
from decimal import Decimal

# ── Business calendar ─────────────────────────────────────────────────────────
# Operations run on Bali time (WITA, UTC+8) regardless of server timezone.
BUSINESS_UTC_OFFSET_HOURS: int = 8


# ── Money ─────────────────────────────────────────────────────────────────────
# Quantities and unit prices are normalised to this quantum before the amount
# is derived, so stored amount == stored qty * stored price.
MONEY_QUANT: Decimal = Decimal("0.01")
QTY_QUANT: Decimal = Decimal("0.01")


# ── Roles (tokens issued by the external auth service) ───────────────────────
ROLE_ADMIN: str = "ADMIN"
ROLE_STAFF: str = "STAFF"
ROLE_CUSTOMER: str = "CUSTOMER"

MUTATION_ROLES: tuple[str, ...] = (ROLE_ADMIN, ROLE_STAFF)

JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "changethis_use_a_real_secret_in_production_64chars")
JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")


# ── Catalog ───────────────────────────────────────────────────────────────────
COMMISSION_CATEGORY_CODE: str = os.getenv("COMMISSION_CATEGORY_CODE", "COMMISSION")
UNCATEGORIZED_NAME: str = "Uncategorized"

COMMISSION_DRIVER_ITEM_NAME: str = "Commission - Driver"
COMMISSION_REMAINDER_ITEM_NAME: str = "Commission"

# Default categories seeded by init_db(); policy values are data, never code.
DEFAULT_CATEGORIES: list[dict] = [
    {
        "code": "TRANSPORT", "name": "Transport", "sort_order": 1,
        "default_direction": "EXPENSE", "payee_mode": "DRIVER_ONLY",
        "auto_driver_from_booking": True, "is_commission": False,
        "allow_related_item": False, "require_partner": False,
    },
    {
        "code": "DESTINATION", "name": "Destination", "sort_order": 2,
        "default_direction": "EXPENSE", "payee_mode": "PARTNER_ONLY",
        "auto_driver_from_booking": False, "is_commission": False,
        "allow_related_item": False, "require_partner": True,
    },
    {
        "code": "TICKET", "name": "Ticket", "sort_order": 3,
        "default_direction": "EXPENSE", "payee_mode": "PARTNER_ONLY",
        "auto_driver_from_booking": False, "is_commission": False,
        "allow_related_item": False, "require_partner": True,
    },
    {
        "code": "MEAL", "name": "Meal", "sort_order": 4,
        "default_direction": "EXPENSE", "payee_mode": "PARTNER_ONLY",
        "auto_driver_from_booking": False, "is_commission": False,
        "allow_related_item": False, "require_partner": True,
    },
    {
        "code": "COMMISSION", "name": "Commission", "sort_order": 5,
        "default_direction": "INCOME", "payee_mode": "EITHER",
        "auto_driver_from_booking": False, "is_commission": True,
        "allow_related_item": True, "require_partner": True,
    },
    {
        "code": "OTHER", "name": "Other", "sort_order": 6,
        "default_direction": "EXPENSE", "payee_mode": "PARTNER_ONLY",
        "auto_driver_from_booking": False, "is_commission": False,
        "allow_related_item": False, "require_partner": True,
    },
]


# ── Periodic resync (Celery beat) ─────────────────────────────────────────────
# Full booking-status sweep runs hourly at this minute past the hour.
STATUS_RESYNC_MINUTE: int = int(os.getenv("STATUS_RESYNC_MINUTE", "5"))


# ── Reports ───────────────────────────────────────────────────────────────────
# Booking prices count as report income only when already in this currency.
REPORT_CURRENCY: str = os.getenv("REPORT_CURRENCY", "IDR").upper()
