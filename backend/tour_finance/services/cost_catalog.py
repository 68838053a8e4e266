"""
Cost catalog — categories, cost patterns and the default category seed.

Category and pattern rows are the policy data the instantiation engine reads;
nothing here branches on a particular category code except the commission
lookup, whose code is configurable.
"""
import logging
import re
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tour_finance.config import COMMISSION_CATEGORY_CODE, DEFAULT_CATEGORIES
from tour_finance.models.enums import Direction, PayeeMode, UnitType
from tour_finance.models.orm_models import (
    ServiceItem, TourCostPattern, TourCostPatternItem, TourItemCategory,
)
from tour_finance.models.schemas import CategoryCreateRequest, PatternCreateRequest, PatternItemInput
from tour_finance.services.errors import NotFoundError, ValidationError
from tour_finance.services.money import money, quantity

logger = logging.getLogger("tour-finance-catalog")

_CODE_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")


# ── Categories ────────────────────────────────────────────────────────────────

def normalize_category_code(code: str) -> str:
    normalized = (code or "").strip().upper().replace(" ", "_").replace("-", "_")
    if not _CODE_RE.match(normalized):
        raise ValidationError(f"Invalid category code '{code}'")
    return normalized


async def list_categories(session: AsyncSession, include_inactive: bool = False) -> List[TourItemCategory]:
    stmt = select(TourItemCategory)
    if not include_inactive:
        stmt = stmt.where(TourItemCategory.is_active.is_(True))
    stmt = stmt.order_by(TourItemCategory.sort_order.asc().nulls_last(), TourItemCategory.name.asc())
    return list((await session.execute(stmt)).scalars().all())


async def get_category_by_code(session: AsyncSession, code: str) -> Optional[TourItemCategory]:
    result = await session.execute(select(TourItemCategory).where(TourItemCategory.code == code))
    return result.scalar_one_or_none()


async def get_commission_category(session: AsyncSession) -> Optional[TourItemCategory]:
    category = await get_category_by_code(session, COMMISSION_CATEGORY_CODE)
    if category is None or not category.is_active:
        return None
    return category


async def create_category(session: AsyncSession, payload: CategoryCreateRequest) -> TourItemCategory:
    code = normalize_category_code(payload.code)
    name = payload.name.strip()
    if not name:
        raise ValidationError("Category name is required")
    if await get_category_by_code(session, code) is not None:
        raise ValidationError(f"Category code '{code}' already exists")

    category = TourItemCategory(
        code=code,
        name=name,
        default_direction=Direction(payload.default_direction),
        payee_mode=PayeeMode(payload.payee_mode),
        auto_driver_from_booking=payload.auto_driver_from_booking,
        is_commission=payload.is_commission,
        allow_related_item=payload.allow_related_item,
        require_partner=payload.require_partner,
        sort_order=payload.sort_order,
        is_active=payload.is_active,
    )
    session.add(category)
    await session.commit()
    await session.refresh(category)
    logger.info(f"Category {code} created", extra={"category_code": code})
    return category


async def seed_default_categories(session: AsyncSession) -> int:
    """Insert any missing default category. Existing rows are never overwritten. Caller commits."""
    existing = set((await session.execute(select(TourItemCategory.code))).scalars().all())
    created = 0
    for defaults in DEFAULT_CATEGORIES:
        if defaults["code"] in existing:
            continue
        session.add(TourItemCategory(
            code=defaults["code"],
            name=defaults["name"],
            sort_order=defaults["sort_order"],
            default_direction=Direction(defaults["default_direction"]),
            payee_mode=PayeeMode(defaults["payee_mode"]),
            auto_driver_from_booking=defaults["auto_driver_from_booking"],
            is_commission=defaults["is_commission"],
            allow_related_item=defaults["allow_related_item"],
            require_partner=defaults["require_partner"],
            is_active=True,
        ))
        created += 1
    if created:
        await session.flush()
    return created


# ── Patterns ──────────────────────────────────────────────────────────────────

def _pattern_query():
    return (
        select(TourCostPattern)
        .options(
            selectinload(TourCostPattern.items)
            .selectinload(TourCostPatternItem.service_item)
            .selectinload(ServiceItem.category)
        )
        .execution_options(populate_existing=True)
    )


async def get_pattern(session: AsyncSession, pattern_id: int) -> TourCostPattern:
    result = await session.execute(_pattern_query().where(TourCostPattern.id == pattern_id))
    pattern = result.scalar_one_or_none()
    if pattern is None:
        raise NotFoundError(f"Pattern {pattern_id} not found")
    return pattern


async def list_patterns(session: AsyncSession, package_id: Optional[int] = None) -> List[TourCostPattern]:
    stmt = _pattern_query()
    if package_id:
        stmt = stmt.where(TourCostPattern.package_id == package_id)
    stmt = stmt.order_by(TourCostPattern.created_at.desc(), TourCostPattern.id.desc())
    return list((await session.execute(stmt)).scalars().all())


def build_pattern_items(
    items: Iterable[PatternItemInput],
    service_items: dict[int, ServiceItem],
) -> List[TourCostPatternItem]:
    """
    Validate pattern lines against the loaded service items and build them.

    Each service item must exist and be active. A default partner must be one
    of the service item's eligible partners when it restricts them.
    Positions default to list order.
    """
    built: List[TourCostPatternItem] = []
    for index, line in enumerate(items):
        service_item = service_items.get(line.service_item_id)
        if service_item is None:
            raise ValidationError(
                f"Service item {line.service_item_id} not found",
                details={"serviceItemId": line.service_item_id},
            )
        if not service_item.is_active:
            raise ValidationError(f"Service item '{service_item.name}' is inactive")
        if not service_item.is_partner_eligible(line.default_partner_id):
            raise ValidationError(
                f"Partner {line.default_partner_id} is not eligible for '{service_item.name}'",
                details={"serviceItemId": service_item.id, "partnerId": line.default_partner_id},
            )
        built.append(TourCostPatternItem(
            service_item_id=service_item.id,
            default_partner_id=line.default_partner_id,
            default_unit_type=UnitType(line.default_unit_type),
            default_qty=quantity(line.default_qty, "defaultQty"),
            default_price=money(line.default_price, "defaultPrice"),
            position=line.position if line.position is not None else index,
        ))
    return built


async def create_pattern(session: AsyncSession, payload: PatternCreateRequest) -> TourCostPattern:
    name = (payload.name or "").strip()
    if not name:
        raise ValidationError("Name and package are required")
    if not payload.items:
        raise ValidationError("Items are required")

    service_ids = {line.service_item_id for line in payload.items}
    result = await session.execute(
        select(ServiceItem)
        .where(ServiceItem.id.in_(service_ids))
        .options(selectinload(ServiceItem.partners))
    )
    service_items = {s.id: s for s in result.scalars().all()}

    pattern = TourCostPattern(
        name=name,
        package_id=payload.package_id,
        is_active=payload.is_active,
        items=build_pattern_items(payload.items, service_items),
    )
    session.add(pattern)
    await session.commit()
    logger.info(
        f"Pattern '{name}' created for package {payload.package_id}",
        extra={"item_count": len(payload.items)},
    )
    return await get_pattern(session, pattern.id)
