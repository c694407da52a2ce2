from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from stockledger.core.api_docs import error_responses
from stockledger.core.deps import get_db
from stockledger.core.errors import (
    IdempotencyConflict,
    InsufficientStock,
    InvalidLocation,
    InvalidQuantity,
    ItemNotFound,
    ItemNotTracked,
    LocationNotFound,
    MissingCoreLocation,
)
from stockledger.core.permissions import can_override_stock_floor
from stockledger.core.security_current import Actor, get_current_actor
from stockledger.models.ledger import Balance, LedgerEntry
from stockledger.schemas.movement import (
    AdjustIn,
    BalanceOut,
    ConsumeIn,
    LedgerEntryListOut,
    LedgerEntryOut,
    MovementOut,
    ReceiveIn,
    SkippedLineOut,
    TransferIn,
)
from stockledger.services import ledger_store, movement_service
from stockledger.services.movement_service import MovementResult, ReceiptLine

router = APIRouter(prefix="/movements", tags=["movements"])

_MOVEMENT_ERRORS = (
    InvalidLocation,
    InvalidQuantity,
    InsufficientStock,
    ItemNotTracked,
    ItemNotFound,
    LocationNotFound,
    IdempotencyConflict,
)


def _entry_out(entry: LedgerEntry) -> LedgerEntryOut:
    return LedgerEntryOut(
        id=entry.id,
        item_id=entry.item_id,
        location_id=entry.location_id,
        quantity_delta=entry.quantity_delta,
        reason=entry.reason,
        reference=entry.reference,
        correlation_id=entry.correlation_id,
        note=entry.note,
        actor=entry.actor,
        idempotency_key=entry.idempotency_key,
        created_at=entry.created_at,
    )


def _balance_out(balance: Balance) -> BalanceOut:
    return BalanceOut(
        item_id=balance.item_id,
        location_id=balance.location_id,
        quantity_on_hand=balance.quantity_on_hand,
        as_of_entry_id=balance.as_of_entry_id,
    )


def _movement_out(result: MovementResult) -> MovementOut:
    return MovementOut(
        operation=result.operation,
        correlation_id=result.correlation_id,
        replayed=result.replayed,
        entries=[_entry_out(entry) for entry in result.entries],
        balances=[_balance_out(balance) for balance in result.balances],
        skipped_lines=[SkippedLineOut(**line) for line in result.skipped_lines],
    )


def _commit_and_render(db: Session, result: MovementResult) -> MovementOut:
    db.commit()
    for balance in result.balances:
        db.refresh(balance)
    return _movement_out(result)


@router.post(
    "/adjust",
    response_model=MovementOut,
    summary="Record a stock adjustment at one location",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500, errors=_MOVEMENT_ERRORS),
)
def adjust_stock(
    payload: AdjustIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    if payload.allow_negative and not can_override_stock_floor(actor):
        raise HTTPException(status_code=403, detail="Only admins can override the stock floor")

    result = movement_service.adjust(
        db,
        item_id=payload.item_id,
        location_id=payload.location_id,
        delta=payload.delta,
        idempotency_key=payload.idempotency_key,
        actor=actor.id,
        note=payload.note,
        allow_negative=payload.allow_negative,
    )
    return _commit_and_render(db, result)


@router.post(
    "/transfer",
    response_model=MovementOut,
    summary="Move stock between two locations",
    responses=error_responses(400, 401, 404, 409, 422, 500, errors=_MOVEMENT_ERRORS),
)
def transfer_stock(
    payload: TransferIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    result = movement_service.transfer(
        db,
        item_id=payload.item_id,
        from_location_id=payload.from_location_id,
        to_location_id=payload.to_location_id,
        qty=payload.qty,
        idempotency_key=payload.idempotency_key,
        actor=actor.id,
        note=payload.note,
    )
    return _commit_and_render(db, result)


@router.post(
    "/consume",
    response_model=MovementOut,
    summary="Consume stock for a project",
    responses=error_responses(400, 401, 404, 409, 422, 500, errors=_MOVEMENT_ERRORS),
)
def consume_stock(
    payload: ConsumeIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    result = movement_service.consume_for_project(
        db,
        item_id=payload.item_id,
        from_location_id=payload.location_id,
        project_id=payload.project_id,
        qty=payload.qty,
        idempotency_key=payload.idempotency_key,
        actor=actor.id,
        note=payload.note,
    )
    return _commit_and_render(db, result)


@router.post(
    "/receive",
    response_model=MovementOut,
    summary="Receive purchase-order lines into the loading bay",
    responses=error_responses(400, 401, 404, 409, 422, 500, errors=_MOVEMENT_ERRORS + (MissingCoreLocation,)),
)
def receive_stock(
    payload: ReceiveIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    result = movement_service.receive_from_purchase_order(
        db,
        po_id=payload.po_id,
        lines=[ReceiptLine(line_id=line.line_id, item_id=line.item_id, qty=line.qty) for line in payload.lines],
        actor=actor.id,
        idempotency_key_prefix=payload.idempotency_key_prefix,
        note=payload.note,
    )
    return _commit_and_render(db, result)


@router.get(
    "",
    response_model=LedgerEntryListOut,
    summary="List ledger entries in entry order",
    responses=error_responses(401, 422, 500),
)
def list_movements(
    item_id: str | None = Query(default=None),
    location_id: str | None = Query(default=None),
    reference: str | None = Query(default=None, max_length=120, description="PO id, project id or seed batch id"),
    since_entry_id: int | None = Query(default=None, ge=0, description="Return entries with a greater id"),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    _actor: Actor = Depends(get_current_actor),
):
    rows = ledger_store.list_entries(
        db,
        item_id=item_id,
        location_id=location_id,
        reference=reference,
        since_entry_id=since_entry_id,
        limit=limit,
    )
    return LedgerEntryListOut(
        items=[_entry_out(row) for row in rows],
        next_since_entry_id=rows[-1].id if len(rows) == limit else None,
    )
