"""
Current-quantity projection per (item, location).

``apply`` folds one ledger entry into its balance row and must run in the same
transaction as the ``ledger_store.append`` that produced the entry. Balance
rows are locked with ``SELECT ... FOR UPDATE`` so concurrent movements on the
same pair serialize; disjoint pairs never contend.
"""

from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockledger.core.errors import InsufficientStock, InvalidQuantity
from stockledger.models.ledger import Balance, LedgerEntry


@dataclass(frozen=True)
class ProjectionDrift:
    item_id: str
    location_id: str
    projected: int
    ledger_total: int

    @property
    def difference(self) -> int:
        return self.ledger_total - self.projected


def _balance_stmt(item_id: str, location_id: str):
    return (
        select(Balance)
        .where(Balance.item_id == item_id, Balance.location_id == location_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


def lock_balance(db: Session, *, item_id: str, location_id: str) -> Balance:
    balance = db.execute(_balance_stmt(item_id, location_id)).scalar_one_or_none()
    if balance is not None:
        return balance
    try:
        with db.begin_nested():
            db.add(Balance(item_id=item_id, location_id=location_id, quantity_on_hand=0, as_of_entry_id=0))
            db.flush()
    except IntegrityError:
        # Another transaction created the row first; fall through and lock theirs.
        pass
    return db.execute(_balance_stmt(item_id, location_id)).scalar_one()


def lock_balances(db: Session, pairs: Iterable[tuple[str, str]]) -> dict[tuple[str, str], Balance]:
    # Fixed lock order keeps two transfers in opposite directions from deadlocking.
    ordered = sorted(set(pairs))
    return {pair: lock_balance(db, item_id=pair[0], location_id=pair[1]) for pair in ordered}


def apply(db: Session, entry: LedgerEntry, *, allow_negative: bool = False) -> Balance:
    balance = lock_balance(db, item_id=entry.item_id, location_id=entry.location_id)
    if entry.id <= balance.as_of_entry_id:
        return balance

    new_quantity = balance.quantity_on_hand + entry.quantity_delta
    if new_quantity < 0 and not allow_negative:
        raise InsufficientStock(
            item_id=entry.item_id,
            location_id=entry.location_id,
            on_hand=balance.quantity_on_hand,
            requested=-entry.quantity_delta,
        )

    balance.quantity_on_hand = new_quantity
    balance.as_of_entry_id = entry.id
    db.flush()
    return balance


def balance_of(db: Session, *, item_id: str, location_id: str) -> int:
    quantity = db.execute(
        select(Balance.quantity_on_hand).where(
            Balance.item_id == item_id,
            Balance.location_id == location_id,
        )
    ).scalar_one_or_none()
    return int(quantity or 0)


def get_balance_row(db: Session, *, item_id: str, location_id: str) -> Balance | None:
    return db.execute(
        select(Balance).where(Balance.item_id == item_id, Balance.location_id == location_id)
    ).scalar_one_or_none()


def balances_for_item(db: Session, item_id: str) -> list[Balance]:
    return db.execute(
        select(Balance).where(Balance.item_id == item_id).order_by(Balance.location_id.asc())
    ).scalars().all()


def balances_at_location(db: Session, location_id: str, *, non_zero_only: bool = False) -> list[Balance]:
    stmt = select(Balance).where(Balance.location_id == location_id)
    if non_zero_only:
        stmt = stmt.where(Balance.quantity_on_hand != 0)
    return db.execute(stmt.order_by(Balance.item_id.asc())).scalars().all()


def total_on_hand(db: Session, item_id: str) -> int:
    return int(
        db.execute(
            select(func.coalesce(func.sum(Balance.quantity_on_hand), 0)).where(Balance.item_id == item_id)
        ).scalar_one()
    )


def ledger_total(db: Session, *, item_id: str, location_id: str) -> tuple[int, int]:
    total, last_entry_id = db.execute(
        select(
            func.coalesce(func.sum(LedgerEntry.quantity_delta), 0),
            func.coalesce(func.max(LedgerEntry.id), 0),
        ).where(LedgerEntry.item_id == item_id, LedgerEntry.location_id == location_id)
    ).one()
    return int(total), int(last_entry_id)


def rebuild(db: Session, *, item_id: str, location_id: str) -> ProjectionDrift:
    """Replay the pair's ledger from zero into its balance row."""
    balance = lock_balance(db, item_id=item_id, location_id=location_id)
    total, last_entry_id = ledger_total(db, item_id=item_id, location_id=location_id)
    drift = ProjectionDrift(
        item_id=item_id,
        location_id=location_id,
        projected=balance.quantity_on_hand,
        ledger_total=total,
    )
    if last_entry_id < balance.as_of_entry_id:
        raise InvalidQuantity(
            "Balance is ahead of the ledger; refusing to rebuild",
            item_id=item_id,
            location_id=location_id,
            on_hand=balance.quantity_on_hand,
        )
    balance.quantity_on_hand = total
    balance.as_of_entry_id = last_entry_id
    db.flush()
    return drift
