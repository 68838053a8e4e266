"""
Report routes — company totals and payee statements.

GET /finance/report?month=YYYY-MM&year=YYYY  — monthly / yearly / all-time figures
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from tour_finance.api.deps import Principal, require_reader
from tour_finance.api.responses import ok
from tour_finance.db import get_db
from tour_finance.models.schemas import FinanceReportOut
from tour_finance.services.finance_report import get_finance_report

router = APIRouter(prefix="/finance", tags=["Reports"])
logger = logging.getLogger("tour-finance-api.report")


@router.get("/report")
async def finance_report(
    month: Optional[str] = Query(None, description="Business-calendar month, YYYY-MM"),
    year: Optional[str] = Query(None, description="Business-calendar year, YYYY"),
    principal: Principal = Depends(require_reader),
    db: AsyncSession = Depends(get_db),
):
    """Unknown or empty periods fall back to the latest one with DONE bookings."""
    report = await get_finance_report(db, month=month, year=year)
    return ok(FinanceReportOut.model_validate(report))
