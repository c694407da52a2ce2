from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stockledger.core.api_docs import error_responses
from stockledger.core.deps import get_db
from stockledger.core.errors import (
    AlreadyExecuted,
    DuplicateStocktakeRow,
    InvalidLocation,
    InvalidQuantity,
    ItemNotFound,
    ItemNotTracked,
    MissingOverrideReason,
)
from stockledger.core.permissions import require_roles
from stockledger.core.security_current import Actor, get_current_actor
from stockledger.models.baseline import BaselineSeedRun
from stockledger.routers.movements import _entry_out
from stockledger.schemas.baseline import (
    BaselineChangeIO,
    BaselineExecuteIn,
    BaselineExecuteOut,
    BaselineProposeIn,
    BaselineProposeOut,
    BaselineRunOut,
    BaselineStatusOut,
)
from stockledger.services import baseline_seeder
from stockledger.services.baseline_seeder import BaselineChange, StocktakeCount

router = APIRouter(prefix="/baseline", tags=["baseline"])


def _run_out(run: BaselineSeedRun) -> BaselineRunOut:
    return BaselineRunOut(
        id=run.id,
        sequence=run.sequence,
        seed_batch_id=run.seed_batch_id,
        executed_by=run.executed_by,
        override_reason=run.override_reason,
        changes_count=run.changes_count,
        units_delta=run.units_delta,
        executed_at=run.executed_at,
    )


@router.post(
    "/propose",
    response_model=BaselineProposeOut,
    summary="Diff a physical stocktake against current balances",
    responses=error_responses(
        400, 401, 403, 404, 422, 500,
        errors=(DuplicateStocktakeRow, InvalidQuantity, InvalidLocation, ItemNotTracked, ItemNotFound),
    ),
)
def propose_baseline(
    payload: BaselineProposeIn,
    db: Session = Depends(get_db),
    _actor: Actor = Depends(require_roles("admin", "manager")),
):
    changes = baseline_seeder.propose(
        db,
        [
            StocktakeCount(item_id=row.item_id, location_id=row.location_id, counted_qty=row.counted_qty)
            for row in payload.stocktake_counts
        ],
    )
    return BaselineProposeOut(
        changes=[
            BaselineChangeIO(
                item_id=change.item_id,
                location_id=change.location_id,
                counted_qty=change.counted_qty,
                current_qty=change.current_qty,
                delta=change.delta,
            )
            for change in changes
        ]
    )


@router.post(
    "/execute",
    response_model=BaselineExecuteOut,
    summary="Apply reviewed baseline changes to the ledger",
    responses=error_responses(
        400, 401, 403, 404, 409, 422, 500,
        errors=(MissingOverrideReason, InvalidQuantity, InvalidLocation, ItemNotFound, AlreadyExecuted),
    ),
)
def execute_baseline(
    payload: BaselineExecuteIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles("admin")),
):
    execution = baseline_seeder.execute(
        db,
        changes=[
            BaselineChange(
                item_id=change.item_id,
                location_id=change.location_id,
                counted_qty=change.counted_qty,
                current_qty=change.current_qty,
                delta=change.delta,
            )
            for change in payload.changes
        ],
        actor=actor.id,
        allow_rerun=payload.allow_rerun,
        override_reason=payload.override_reason,
        seed_batch_id=payload.seed_batch_id,
    )
    db.commit()
    db.refresh(execution.run)
    return BaselineExecuteOut(
        run=_run_out(execution.run),
        replayed=execution.replayed,
        entries=[_entry_out(entry) for entry in execution.entries],
    )


@router.get(
    "/status",
    response_model=BaselineStatusOut,
    summary="Baseline seed state and run history",
    responses=error_responses(401, 500),
)
def baseline_status(
    db: Session = Depends(get_db),
    _actor: Actor = Depends(get_current_actor),
):
    current = baseline_seeder.status(db)
    return BaselineStatusOut(state=current.state, runs=[_run_out(run) for run in current.runs])
