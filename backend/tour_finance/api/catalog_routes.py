"""Catalog API routes — cost categories and cost patterns."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from tour_finance.api.deps import Principal, require_reader, require_staff
from tour_finance.api.responses import ok
from tour_finance.db import get_db
from tour_finance.models.orm_models import TourCostPattern
from tour_finance.models.schemas import (
    CategoryCreateRequest, CategoryOut, PatternCreateRequest, PatternItemOut, PatternOut,
)
from tour_finance.services import cost_catalog

router = APIRouter(prefix="/finance", tags=["Catalog"])
logger = logging.getLogger("tour-finance-api.catalog")


def _pattern_out(pattern: TourCostPattern) -> PatternOut:
    return PatternOut(
        id=pattern.id,
        name=pattern.name,
        package_id=pattern.package_id,
        is_active=bool(pattern.is_active),
        items=[
            PatternItemOut(
                id=item.id,
                service_item_id=item.service_item_id,
                service_item_name=item.service_item.name if item.service_item else None,
                default_partner_id=item.default_partner_id,
                default_unit_type=item.default_unit_type,
                default_qty=item.default_qty,
                default_price=item.default_price,
                position=item.position or 0,
            )
            for item in sorted(pattern.items, key=lambda i: (i.position or 0, i.id))
        ],
    )


@router.get("/tour-item-categories")
async def list_tour_item_categories(
    include_inactive: bool = Query(False, alias="includeInactive"),
    principal: Principal = Depends(require_reader),
    db: AsyncSession = Depends(get_db),
):
    categories = await cost_catalog.list_categories(db, include_inactive=include_inactive)
    return ok([CategoryOut.model_validate(c) for c in categories])


@router.post("/tour-item-categories")
async def create_tour_item_category(
    body: CategoryCreateRequest,
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    category = await cost_catalog.create_category(db, body)
    return ok(CategoryOut.model_validate(category))


@router.get("/patterns")
async def list_cost_patterns(
    package_id: Optional[int] = Query(None, alias="packageId"),
    principal: Principal = Depends(require_reader),
    db: AsyncSession = Depends(get_db),
):
    patterns = await cost_catalog.list_patterns(db, package_id)
    return ok([_pattern_out(p) for p in patterns])


@router.get("/patterns/{pattern_id}")
async def get_cost_pattern(
    pattern_id: int,
    principal: Principal = Depends(require_reader),
    db: AsyncSession = Depends(get_db),
):
    pattern = await cost_catalog.get_pattern(db, pattern_id)
    return ok(_pattern_out(pattern))


@router.post("/patterns")
async def create_cost_pattern(
    body: PatternCreateRequest,
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    pattern = await cost_catalog.create_pattern(db, body)
    return ok(_pattern_out(pattern))
