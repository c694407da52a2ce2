"""
One-time Day-0 reconciliation of the ledger to a physical stocktake.

State lives in ``baseline_seed_runs``: no rows is NOT_RUN, any row is RUN.
A second run needs ``allow_rerun`` plus a non-empty override reason and is
recorded as its own row, so the state never returns to NOT_RUN.
"""

from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockledger.core.errors import (
    AlreadyExecuted,
    DuplicateStocktakeRow,
    InvalidQuantity,
    MissingOverrideReason,
)
from stockledger.core.id_utils import generate_correlation_id, generate_shortuuid
from stockledger.core.observability import log_ledger_event
from stockledger.models.baseline import BaselineSeedRun
from stockledger.models.ledger import LedgerEntry
from stockledger.services import balance_projector, movement_service
from stockledger.services.audit_service import log_audit_event
from stockledger.services.item_service import require_tracked_item
from stockledger.services.location_registry import require_active_location

STATE_NOT_RUN = "NOT_RUN"
STATE_RUN = "RUN"


@dataclass(frozen=True)
class StocktakeCount:
    item_id: str
    location_id: str
    counted_qty: int


@dataclass(frozen=True)
class BaselineChange:
    item_id: str
    location_id: str
    counted_qty: int
    current_qty: int
    delta: int


@dataclass
class BaselineExecution:
    run: BaselineSeedRun
    replayed: bool
    entries: list[LedgerEntry] = field(default_factory=list)


@dataclass
class BaselineStatus:
    state: str
    runs: list[BaselineSeedRun]


def _reject_duplicate_pairs(rows) -> None:
    seen: set[tuple[str, str]] = set()
    for row in rows:
        pair = (row.item_id, row.location_id)
        if pair in seen:
            raise DuplicateStocktakeRow(row.item_id, row.location_id)
        seen.add(pair)


def propose(db: Session, counts: list[StocktakeCount]) -> list[BaselineChange]:
    """Diff counted quantities against projected balances; rows that already match are dropped."""
    _reject_duplicate_pairs(counts)
    changes: list[BaselineChange] = []
    for count in counts:
        if count.counted_qty < 0:
            raise InvalidQuantity(
                "Counted quantity cannot be negative",
                item_id=count.item_id,
                location_id=count.location_id,
                requested=count.counted_qty,
            )
        require_tracked_item(db, count.item_id)
        require_active_location(db, count.location_id)
        current = balance_projector.balance_of(db, item_id=count.item_id, location_id=count.location_id)
        delta = count.counted_qty - current
        if delta == 0:
            continue
        changes.append(
            BaselineChange(
                item_id=count.item_id,
                location_id=count.location_id,
                counted_qty=count.counted_qty,
                current_qty=current,
                delta=delta,
            )
        )
    return changes


def list_runs(db: Session) -> list[BaselineSeedRun]:
    return db.execute(select(BaselineSeedRun).order_by(BaselineSeedRun.sequence.asc())).scalars().all()


def status(db: Session) -> BaselineStatus:
    runs = list_runs(db)
    return BaselineStatus(state=STATE_RUN if runs else STATE_NOT_RUN, runs=runs)


def _entries_for_batch(db: Session, seed_batch_id: str) -> list[LedgerEntry]:
    return db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.reason == "baseline_seed", LedgerEntry.reference == seed_batch_id)
        .order_by(LedgerEntry.id.asc())
    ).scalars().all()


def execute(
    db: Session,
    *,
    changes: list[BaselineChange],
    actor: str,
    allow_rerun: bool = False,
    override_reason: str | None = None,
    seed_batch_id: str | None = None,
) -> BaselineExecution:
    seed_batch_id = (seed_batch_id or "").strip() or generate_shortuuid()
    recorded = db.execute(
        select(BaselineSeedRun).where(BaselineSeedRun.seed_batch_id == seed_batch_id)
    ).scalar_one_or_none()
    if recorded is not None:
        log_ledger_event("baseline.replayed", seed_batch_id=seed_batch_id, run_id=recorded.id)
        return BaselineExecution(run=recorded, replayed=True, entries=_entries_for_batch(db, seed_batch_id))

    runs = list_runs(db)
    if runs and not allow_rerun:
        raise AlreadyExecuted(runs[-1].id, len(runs))
    reason = (override_reason or "").strip()
    if allow_rerun and not reason:
        raise MissingOverrideReason()

    _reject_duplicate_pairs(changes)
    correlation_id = generate_correlation_id()
    entries: list[LedgerEntry] = []
    units_delta = 0
    for change in sorted(changes, key=lambda c: (c.item_id, c.location_id)):
        if change.delta == 0:
            continue
        result = movement_service.adjust(
            db,
            item_id=change.item_id,
            location_id=change.location_id,
            delta=change.delta,
            idempotency_key=f"baseline:{seed_batch_id}:{change.item_id}:{change.location_id}",
            actor=actor,
            note=f"Baseline stocktake count {change.counted_qty}",
            reason="baseline_seed",
            reference=seed_batch_id,
            correlation_id=correlation_id,
        )
        entries.extend(result.entries)
        units_delta += change.delta

    run = BaselineSeedRun(
        id=generate_shortuuid(),
        sequence=(runs[-1].sequence + 1) if runs else 1,
        seed_batch_id=seed_batch_id,
        executed_by=actor,
        override_reason=reason if runs else None,
        changes_count=len(entries),
        units_delta=units_delta,
    )
    try:
        with db.begin_nested():
            db.add(run)
            db.flush()
    except IntegrityError as exc:
        # A concurrent execute claimed this sequence number first.
        raise AlreadyExecuted(run.id, len(runs) + 1) from exc

    log_audit_event(
        db,
        actor=actor,
        action="baseline.execute" if not runs else "baseline.rerun",
        target_type="baseline_seed_run",
        target_id=run.id,
        metadata_json={
            "seed_batch_id": seed_batch_id,
            "sequence": run.sequence,
            "changes_count": run.changes_count,
            "units_delta": units_delta,
            "override_reason": run.override_reason,
        },
    )
    db.flush()
    log_ledger_event(
        "baseline.executed",
        run_id=run.id,
        seed_batch_id=seed_batch_id,
        sequence=run.sequence,
        changes=run.changes_count,
        units_delta=units_delta,
    )
    return BaselineExecution(run=run, replayed=False, entries=entries)
