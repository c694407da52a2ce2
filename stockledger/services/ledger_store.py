"""
Append-only store of stock movements.

``append`` is the only way a ``LedgerEntry`` row is created. A repeated
idempotency key resolves to the entry already stored under it; the insert is
wrapped in a SAVEPOINT so a concurrent writer losing the unique-key race gets
the winner's entry instead of aborting its whole transaction.
"""

from collections.abc import Iterator
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockledger.core.config import settings
from stockledger.core.errors import IdempotencyConflict, InvalidQuantity, LedgerError
from stockledger.models.ledger import LEDGER_REASONS, LedgerEntry


@dataclass(frozen=True)
class NewLedgerEntry:
    item_id: str
    location_id: str
    quantity_delta: int
    reason: str
    idempotency_key: str
    actor: str
    correlation_id: str
    reference: str | None = None
    note: str | None = None


@dataclass(frozen=True)
class AppendResult:
    entry: LedgerEntry
    created: bool


def find_by_idempotency_key(db: Session, idempotency_key: str) -> LedgerEntry | None:
    return db.execute(
        select(LedgerEntry).where(LedgerEntry.idempotency_key == idempotency_key)
    ).scalar_one_or_none()


def assert_same_payload(existing: LedgerEntry, proposed: NewLedgerEntry) -> None:
    for field in ("item_id", "location_id", "quantity_delta", "reason"):
        if getattr(existing, field) != getattr(proposed, field):
            raise IdempotencyConflict(proposed.idempotency_key, field)


def append(db: Session, proposed: NewLedgerEntry) -> AppendResult:
    if proposed.reason not in LEDGER_REASONS:
        raise LedgerError(f"Unknown ledger reason {proposed.reason}", reason=proposed.reason)
    if proposed.quantity_delta == 0:
        raise InvalidQuantity(
            "quantity_delta cannot be zero",
            item_id=proposed.item_id,
            location_id=proposed.location_id,
            requested=0,
        )
    if not proposed.idempotency_key.strip():
        raise LedgerError("idempotency_key is required")

    existing = find_by_idempotency_key(db, proposed.idempotency_key)
    if existing is not None:
        assert_same_payload(existing, proposed)
        return AppendResult(entry=existing, created=False)

    entry = LedgerEntry(
        item_id=proposed.item_id,
        location_id=proposed.location_id,
        quantity_delta=proposed.quantity_delta,
        reason=proposed.reason,
        reference=proposed.reference,
        correlation_id=proposed.correlation_id,
        note=proposed.note,
        actor=proposed.actor,
        idempotency_key=proposed.idempotency_key,
    )
    try:
        with db.begin_nested():
            db.add(entry)
            db.flush()
    except IntegrityError:
        existing = find_by_idempotency_key(db, proposed.idempotency_key)
        if existing is None:
            raise
        assert_same_payload(existing, proposed)
        return AppendResult(entry=existing, created=False)
    return AppendResult(entry=entry, created=True)


class LedgerCursor:
    """
    Lazy view over the entries of one (item, location) pair in insertion order.

    Each iteration starts again from ``since_entry_id`` and stops at the last
    entry that existed when iteration began, so the sequence is finite even
    while other transactions keep appending.
    """

    def __init__(
        self,
        db: Session,
        *,
        item_id: str,
        location_id: str,
        since_entry_id: int | None = None,
        batch_size: int | None = None,
    ) -> None:
        self._db = db
        self.item_id = item_id
        self.location_id = location_id
        self.since_entry_id = since_entry_id or 0
        self.batch_size = batch_size or settings.ledger_stream_batch_size

    def _pair_filter(self):
        return (
            LedgerEntry.item_id == self.item_id,
            LedgerEntry.location_id == self.location_id,
        )

    def __iter__(self) -> Iterator[LedgerEntry]:
        upper = self._db.execute(
            select(func.max(LedgerEntry.id)).where(*self._pair_filter())
        ).scalar_one_or_none()
        if upper is None:
            return
        last_id = self.since_entry_id
        while last_id < upper:
            rows = self._db.execute(
                select(LedgerEntry)
                .where(*self._pair_filter(), LedgerEntry.id > last_id, LedgerEntry.id <= upper)
                .order_by(LedgerEntry.id.asc())
                .limit(self.batch_size)
            ).scalars().all()
            if not rows:
                return
            yield from rows
            last_id = rows[-1].id


def entries_for(
    db: Session,
    *,
    item_id: str,
    location_id: str,
    since_entry_id: int | None = None,
    batch_size: int | None = None,
) -> LedgerCursor:
    return LedgerCursor(
        db,
        item_id=item_id,
        location_id=location_id,
        since_entry_id=since_entry_id,
        batch_size=batch_size,
    )


def entries_for_correlation(db: Session, correlation_id: str) -> list[LedgerEntry]:
    return db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.correlation_id == correlation_id)
        .order_by(LedgerEntry.id.asc())
    ).scalars().all()


def list_entries(
    db: Session,
    *,
    item_id: str | None = None,
    location_id: str | None = None,
    reference: str | None = None,
    since_entry_id: int | None = None,
    limit: int = 100,
) -> list[LedgerEntry]:
    stmt = select(LedgerEntry)
    if item_id:
        stmt = stmt.where(LedgerEntry.item_id == item_id)
    if location_id:
        stmt = stmt.where(LedgerEntry.location_id == location_id)
    if reference:
        stmt = stmt.where(LedgerEntry.reference == reference)
    if since_entry_id:
        stmt = stmt.where(LedgerEntry.id > since_entry_id)
    return db.execute(stmt.order_by(LedgerEntry.id.asc()).limit(limit)).scalars().all()


def last_entry_id_at_location(db: Session, location_id: str) -> int | None:
    return db.execute(
        select(func.max(LedgerEntry.id)).where(LedgerEntry.location_id == location_id)
    ).scalar_one_or_none()
