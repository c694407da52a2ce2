"""
Transactional stock movements: adjust, transfer, consume for a project and
receive from a purchase order.

Every operation locks the balance rows it touches, validates against the
locked quantities, appends its ledger entries and projects them, all inside
the caller's session. Nothing here commits: the caller commits once, or the
whole operation is discarded with the session.

Replaying an idempotency key returns the entries recorded the first time and
leaves the ledger untouched.
"""

from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from stockledger.core.errors import (
    InsufficientStock,
    InvalidLocation,
    InvalidQuantity,
    LedgerError,
    LocationNotFound,
    MissingCoreLocation,
)
from stockledger.core.id_utils import generate_correlation_id
from stockledger.core.observability import log_ledger_event
from stockledger.models.ledger import Balance, LedgerEntry
from stockledger.services import balance_projector, ledger_store
from stockledger.services.item_service import get_item, require_tracked_item
from stockledger.services.ledger_store import NewLedgerEntry
from stockledger.services.location_registry import require_active_location, resolve_active_location

_ADJUSTMENT_REASONS = {"adjustment", "baseline_seed"}


@dataclass(frozen=True)
class ReceiptLine:
    line_id: str
    item_id: str
    qty: int


@dataclass
class MovementResult:
    operation: str
    correlation_id: str
    replayed: bool
    entries: list[LedgerEntry] = field(default_factory=list)
    balances: list[Balance] = field(default_factory=list)
    skipped_lines: list[dict] = field(default_factory=list)


def _current_balances(db: Session, entries: list[LedgerEntry]) -> list[Balance]:
    balances: list[Balance] = []
    seen: set[tuple[str, str]] = set()
    for entry in entries:
        pair = (entry.item_id, entry.location_id)
        if pair in seen:
            continue
        seen.add(pair)
        row = balance_projector.get_balance_row(db, item_id=entry.item_id, location_id=entry.location_id)
        if row is not None:
            balances.append(row)
    return balances


def _replayed(db: Session, operation: str, entries: list[LedgerEntry]) -> MovementResult:
    log_ledger_event(
        "movement.replayed",
        operation=operation,
        correlation_id=entries[0].correlation_id,
        entry_ids=[entry.id for entry in entries],
    )
    return MovementResult(
        operation=operation,
        correlation_id=entries[0].correlation_id,
        replayed=True,
        entries=entries,
        balances=_current_balances(db, entries),
    )


def _recorded(operation: str, correlation_id: str, entries: list[LedgerEntry], balances: list[Balance]) -> MovementResult:
    log_ledger_event(
        "movement.recorded",
        operation=operation,
        correlation_id=correlation_id,
        entries=[
            {"id": e.id, "item_id": e.item_id, "location_id": e.location_id, "delta": e.quantity_delta, "reason": e.reason}
            for e in entries
        ],
    )
    return MovementResult(
        operation=operation,
        correlation_id=correlation_id,
        replayed=False,
        entries=entries,
        balances=balances,
    )


def _require_positive(qty: int, *, item_id: str, location_id: str) -> None:
    if qty <= 0:
        raise InvalidQuantity(
            "Quantity must be greater than zero",
            item_id=item_id,
            location_id=location_id,
            requested=qty,
        )


def adjust(
    db: Session,
    *,
    item_id: str,
    location_id: str,
    delta: int,
    idempotency_key: str,
    actor: str,
    note: str | None = None,
    allow_negative: bool = False,
    reason: str = "adjustment",
    reference: str | None = None,
    correlation_id: str | None = None,
) -> MovementResult:
    if reason not in _ADJUSTMENT_REASONS:
        raise LedgerError(f"adjust cannot record reason {reason}", reason=reason)
    if delta == 0:
        raise InvalidQuantity("delta cannot be zero", item_id=item_id, location_id=location_id, requested=0)

    proposed = NewLedgerEntry(
        item_id=item_id,
        location_id=location_id,
        quantity_delta=delta,
        reason=reason,
        idempotency_key=idempotency_key,
        actor=actor,
        correlation_id=correlation_id or generate_correlation_id(),
        reference=reference,
        note=note,
    )
    existing = ledger_store.find_by_idempotency_key(db, idempotency_key)
    if existing is not None:
        ledger_store.assert_same_payload(existing, proposed)
        return _replayed(db, "adjust", [existing])

    require_tracked_item(db, item_id)
    require_active_location(db, location_id)
    balance = balance_projector.lock_balance(db, item_id=item_id, location_id=location_id)
    if balance.quantity_on_hand + delta < 0 and not allow_negative:
        raise InvalidQuantity(
            f"Adjustment would leave {balance.quantity_on_hand + delta} on hand",
            item_id=item_id,
            location_id=location_id,
            on_hand=balance.quantity_on_hand,
            requested=delta,
        )

    appended = ledger_store.append(db, proposed)
    if not appended.created:
        return _replayed(db, "adjust", [appended.entry])
    balance = balance_projector.apply(db, appended.entry, allow_negative=allow_negative)
    return _recorded("adjust", proposed.correlation_id, [appended.entry], [balance])


def _replay_transfer(db: Session, existing_out: LedgerEntry, in_entry: NewLedgerEntry) -> MovementResult:
    # A transfer key covers both legs; the destination only shows on the inbound one.
    existing_in = ledger_store.find_by_idempotency_key(db, in_entry.idempotency_key)
    if existing_in is not None:
        ledger_store.assert_same_payload(existing_in, in_entry)
    return _replayed(db, "transfer", ledger_store.entries_for_correlation(db, existing_out.correlation_id))


def transfer(
    db: Session,
    *,
    item_id: str,
    from_location_id: str,
    to_location_id: str,
    qty: int,
    idempotency_key: str,
    actor: str,
    note: str | None = None,
) -> MovementResult:
    _require_positive(qty, item_id=item_id, location_id=from_location_id)
    if from_location_id == to_location_id:
        raise InvalidLocation(to_location_id, "source and destination must differ")

    correlation_id = generate_correlation_id()
    out_entry = NewLedgerEntry(
        item_id=item_id,
        location_id=from_location_id,
        quantity_delta=-qty,
        reason="transfer_out",
        idempotency_key=f"{idempotency_key}:out",
        actor=actor,
        correlation_id=correlation_id,
        reference=to_location_id,
        note=note,
    )
    in_entry = NewLedgerEntry(
        item_id=item_id,
        location_id=to_location_id,
        quantity_delta=qty,
        reason="transfer_in",
        idempotency_key=f"{idempotency_key}:in",
        actor=actor,
        correlation_id=correlation_id,
        reference=from_location_id,
        note=note,
    )

    existing = ledger_store.find_by_idempotency_key(db, out_entry.idempotency_key)
    if existing is not None:
        return _replay_transfer(db, existing, in_entry)

    require_tracked_item(db, item_id)
    require_active_location(db, from_location_id)
    require_active_location(db, to_location_id)
    locked = balance_projector.lock_balances(db, [(item_id, from_location_id), (item_id, to_location_id)])
    source = locked[(item_id, from_location_id)]
    if source.quantity_on_hand < qty:
        raise InsufficientStock(
            item_id=item_id,
            location_id=from_location_id,
            on_hand=source.quantity_on_hand,
            requested=qty,
        )

    appended_out = ledger_store.append(db, out_entry)
    if not appended_out.created:
        return _replay_transfer(db, appended_out.entry, in_entry)
    appended_in = ledger_store.append(db, in_entry)

    from_balance = balance_projector.apply(db, appended_out.entry)
    to_balance = balance_projector.apply(db, appended_in.entry)
    return _recorded("transfer", correlation_id, [appended_out.entry, appended_in.entry], [from_balance, to_balance])


def consume_for_project(
    db: Session,
    *,
    item_id: str,
    from_location_id: str,
    project_id: str,
    qty: int,
    idempotency_key: str,
    actor: str,
    note: str | None = None,
) -> MovementResult:
    """One-directional; a return to stock is a new transfer or adjustment."""
    _require_positive(qty, item_id=item_id, location_id=from_location_id)
    project_id = (project_id or "").strip()
    if not project_id:
        raise LedgerError("project_id is required for consumption", item_id=item_id)

    proposed = NewLedgerEntry(
        item_id=item_id,
        location_id=from_location_id,
        quantity_delta=-qty,
        reason="consumption",
        idempotency_key=idempotency_key,
        actor=actor,
        correlation_id=generate_correlation_id(),
        reference=project_id,
        note=note,
    )
    existing = ledger_store.find_by_idempotency_key(db, idempotency_key)
    if existing is not None:
        ledger_store.assert_same_payload(existing, proposed)
        return _replayed(db, "consume", [existing])

    require_tracked_item(db, item_id)
    require_active_location(db, from_location_id)
    balance = balance_projector.lock_balance(db, item_id=item_id, location_id=from_location_id)
    if balance.quantity_on_hand < qty:
        raise InsufficientStock(
            item_id=item_id,
            location_id=from_location_id,
            on_hand=balance.quantity_on_hand,
            requested=qty,
        )

    appended = ledger_store.append(db, proposed)
    if not appended.created:
        return _replayed(db, "consume", [appended.entry])
    balance = balance_projector.apply(db, appended.entry)
    return _recorded("consume", proposed.correlation_id, [appended.entry], [balance])


def receive_from_purchase_order(
    db: Session,
    *,
    po_id: str,
    lines: list[ReceiptLine],
    actor: str,
    idempotency_key_prefix: str | None = None,
    note: str | None = None,
) -> MovementResult:
    """
    Book delivered purchase-order lines into the loading bay.

    Each line's key is ``<prefix>:<line_id>``, so calling again for the same
    PO replays the lines already booked and books only lines not seen before.
    Lines for items that do not track inventory are skipped and reported.
    """
    po_id = (po_id or "").strip()
    if not po_id:
        raise LedgerError("po_id is required")
    if not lines:
        raise InvalidQuantity("A receipt needs at least one line")
    seen_line_ids: set[str] = set()
    for line in lines:
        _require_positive(line.qty, item_id=line.item_id, location_id="loading_bay")
        if line.line_id in seen_line_ids:
            raise LedgerError(f"Duplicate receipt line {line.line_id}", po_id=po_id, line_id=line.line_id)
        seen_line_ids.add(line.line_id)

    try:
        loading_bay = resolve_active_location(db, kind="loading_bay")
    except LocationNotFound as exc:
        raise MissingCoreLocation(["loading_bay"]) from exc

    prefix = (idempotency_key_prefix or "").strip() or f"po:{po_id}"
    correlation_id = generate_correlation_id()
    result = MovementResult(operation="receive", correlation_id=correlation_id, replayed=False)

    tracked_lines: list[ReceiptLine] = []
    for line in lines:
        if get_item(db, line.item_id).tracks_inventory:
            tracked_lines.append(line)
        else:
            result.skipped_lines.append({"line_id": line.line_id, "item_id": line.item_id, "reason": "item_not_tracked"})

    balance_projector.lock_balances(db, [(line.item_id, loading_bay.id) for line in tracked_lines])

    created: list[LedgerEntry] = []
    replayed: list[LedgerEntry] = []
    for line in tracked_lines:
        appended = ledger_store.append(
            db,
            NewLedgerEntry(
                item_id=line.item_id,
                location_id=loading_bay.id,
                quantity_delta=line.qty,
                reason="receipt",
                idempotency_key=f"{prefix}:{line.line_id}",
                actor=actor,
                correlation_id=correlation_id,
                reference=po_id,
                note=note,
            ),
        )
        if appended.created:
            balance_projector.apply(db, appended.entry)
            created.append(appended.entry)
        else:
            replayed.append(appended.entry)

    result.entries = sorted(created + replayed, key=lambda entry: entry.id)
    result.balances = _current_balances(db, result.entries)
    result.replayed = bool(result.entries) and not created
    if result.replayed:
        result.correlation_id = result.entries[0].correlation_id
    if created:
        log_ledger_event(
            "movement.recorded",
            operation="receive",
            po_id=po_id,
            correlation_id=correlation_id,
            lines_booked=len(created),
            lines_replayed=len(replayed),
            lines_skipped=len(result.skipped_lines),
        )
    elif replayed:
        log_ledger_event("movement.replayed", operation="receive", po_id=po_id, lines_replayed=len(replayed))
    return result
