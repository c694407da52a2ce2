from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockledger.core.api_docs import error_responses
from stockledger.core.deps import get_db
from stockledger.core.security_current import Actor, get_current_actor
from stockledger.routers.movements import _balance_out
from stockledger.schemas.movement import BalanceListOut, BalanceOut
from stockledger.services import balance_projector
from stockledger.services.item_service import get_item
from stockledger.services.location_registry import get_location

router = APIRouter(prefix="/balances", tags=["balances"])


@router.get(
    "",
    response_model=BalanceListOut,
    summary="List an item's balance at every location",
    responses=error_responses(401, 404, 422, 500),
)
def list_item_balances(
    item_id: str = Query(...),
    include_zero: bool = Query(default=False),
    db: Session = Depends(get_db),
    _actor: Actor = Depends(get_current_actor),
):
    get_item(db, item_id)
    rows = balance_projector.balances_for_item(db, item_id)
    if not include_zero:
        rows = [row for row in rows if row.quantity_on_hand != 0]
    return BalanceListOut(
        item_id=item_id,
        total_on_hand=balance_projector.total_on_hand(db, item_id),
        items=[_balance_out(row) for row in rows],
    )


@router.get(
    "/{item_id}/{location_id}",
    response_model=BalanceOut,
    summary="Get the on-hand quantity of an item at a location",
    responses=error_responses(401, 404, 500),
)
def get_balance(
    item_id: str,
    location_id: str,
    db: Session = Depends(get_db),
    _actor: Actor = Depends(get_current_actor),
):
    get_item(db, item_id)
    get_location(db, location_id)
    row = balance_projector.get_balance_row(db, item_id=item_id, location_id=location_id)
    if row is None:
        return BalanceOut(item_id=item_id, location_id=location_id, quantity_on_hand=0, as_of_entry_id=0)
    return _balance_out(row)
