"""Finance API routes — pattern assignment, ledger edits, validation, settlement."""
import logging
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from tour_finance.api.deps import Principal, require_reader, require_staff
from tour_finance.api.responses import ok
from tour_finance.db import get_db
from tour_finance.models.orm_models import BookingFinance
from tour_finance.models.schemas import (
    AssignPatternRequest, BookingOut, CommissionSplitOut, CommissionSplitRequest,
    FinanceItemOut, FinanceOut, FinanceSummaryOut, ItemPatchRequest, LockRequest,
    SaveItemsRequest, SettleRequest, SettleResultOut, SettlementQueueItemOut,
    ValidationRowOut,
)
from tour_finance.services import ledger_service
from tour_finance.services.finance_summary import summarize_items

router = APIRouter(prefix="/finance", tags=["Finance"])
logger = logging.getLogger("tour-finance-api.finance")


def _summary_out(finance: BookingFinance) -> FinanceSummaryOut:
    return FinanceSummaryOut(**summarize_items(finance.items).as_dict())


def _finance_out(finance: BookingFinance) -> FinanceOut:
    return FinanceOut(
        id=finance.id,
        booking_id=finance.booking_id,
        pattern_id=finance.pattern_id,
        assigned_at=finance.assigned_at,
        validated_at=finance.validated_at,
        is_locked=bool(finance.is_locked),
        booking=BookingOut.model_validate(finance.booking),
        items=[FinanceItemOut.of(item) for item in finance.items],
        summary=_summary_out(finance),
    )


@router.post("/assign-pattern")
async def assign_pattern(
    body: AssignPatternRequest,
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Replace the booking's ledger items with the pattern's instantiated items."""
    finance = await ledger_service.assign_pattern(db, body.booking_id, body.pattern_id)
    return ok(_finance_out(finance))


@router.get("/booking/{booking_id}")
async def get_booking_finance(
    booking_id: int,
    principal: Principal = Depends(require_reader),
    db: AsyncSession = Depends(get_db),
):
    finance = await ledger_service.get_finance(db, booking_id)
    return ok(_finance_out(finance))


@router.put("/booking/{booking_id}/items")
async def save_booking_items(
    booking_id: int,
    body: SaveItemsRequest,
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Save the edited item list; markValidated also locks the ledger."""
    finance = await ledger_service.save_items(
        db,
        booking_id,
        [item.model_dump() for item in body.items],
        mark_validated=body.mark_validated,
    )
    return ok(_finance_out(finance))


@router.post("/booking/{booking_id}/lock")
@router.patch("/booking/{booking_id}/lock")
async def set_booking_lock(
    booking_id: int,
    body: LockRequest,
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    finance = await ledger_service.set_lock(db, booking_id, body.is_locked)
    return ok(_finance_out(finance))


@router.patch("/items/{item_id}")
async def patch_finance_item(
    item_id: int,
    body: ItemPatchRequest,
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Edit one item. Only the fields sent are applied."""
    item = await ledger_service.patch_item(db, item_id, body.model_dump(exclude_unset=True))
    return ok(FinanceItemOut.of(item))


@router.post("/items/{item_id}/commission-split")
async def split_item_commission(
    item_id: int,
    body: CommissionSplitRequest,
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    split, items = await ledger_service.split_commission(
        db,
        item_id,
        body.total_commission,
        body.driver_commission,
        driver_id=body.driver_id,
        notes=body.notes,
    )
    return ok(CommissionSplitOut(
        total=split.total,
        driver_portion=split.driver_portion,
        remainder=split.remainder,
        items=[FinanceItemOut.of(item) for item in items],
    ))


@router.get("/settlements")
async def list_settlement_queue(
    principal: Principal = Depends(require_reader),
    db: AsyncSession = Depends(get_db),
):
    """Unpaid items with a payee on validated, locked ledgers."""
    items = await ledger_service.settlement_queue(db)
    rows = []
    for item in items:
        booking = item.finance.booking
        rows.append(SettlementQueueItemOut(
            **FinanceItemOut.of(item).model_dump(),
            booking_id=booking.id,
            booking_ref=booking.booking_ref,
            tour_date=booking.tour_date,
        ))
    return ok(rows)


@router.post("/settlements")
async def settle_items(
    body: SettleRequest,
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Bulk-mark items paid. paidBy defaults to the caller."""
    result = await ledger_service.bulk_settle(
        db,
        body.item_ids,
        paid_by=body.paid_by or principal.name or principal.user_id,
        paid_note=body.paid_note,
        paid_at=body.paid_at,
    )
    return ok(SettleResultOut(**result))


@router.get("/validate")
async def list_validation_queue(
    status: str = Query("unvalidated"),
    principal: Principal = Depends(require_reader),
    db: AsyncSession = Depends(get_db),
):
    finances = await ledger_service.list_validation(db, status)
    return ok([
        ValidationRowOut(
            booking=BookingOut.model_validate(finance.booking),
            finance_id=finance.id,
            validated_at=finance.validated_at,
            is_locked=bool(finance.is_locked),
            finance_summary=_summary_out(finance),
        )
        for finance in finances
    ])
