"""
Canonical set of stock locations and their structural invariants.

Singleton kinds (warehouse, loading bay) must have exactly one active row
system-wide; owner-scoped kinds (vehicle, project) at most one active row per
owner. The database does not enforce either rule, because imports and operator
error do produce duplicates; ``deduplicate`` is the repair path.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import func, select, text
from sqlalchemy.orm import Session

from stockledger.core.config import settings
from stockledger.core.errors import (
    DuplicateActiveLocations,
    InvalidLocation,
    LedgerError,
    LocationNotEmpty,
    LocationNotFound,
    MissingCoreLocation,
)
from stockledger.core.id_utils import generate_correlation_id, generate_shortuuid
from stockledger.core.observability import log_ledger_event
from stockledger.models.ledger import Balance
from stockledger.models.location import LOCATION_KINDS, OWNER_SCOPED_KINDS, SINGLETON_KINDS, StockLocation
from stockledger.services import balance_projector, ledger_store
from stockledger.services.audit_service import log_audit_event
from stockledger.services.ledger_store import NewLedgerEntry


@dataclass(frozen=True)
class MigratedBalance:
    item_id: str
    from_location_id: str
    to_location_id: str
    quantity: int


@dataclass(frozen=True)
class DeduplicationResult:
    kind: str
    owner_reference: str | None
    kept_location_id: str | None
    deactivated_location_ids: list[str] = field(default_factory=list)
    migrated_balances: list[MigratedBalance] = field(default_factory=list)
    correlation_id: str | None = None

    @property
    def changed(self) -> bool:
        return bool(self.deactivated_location_ids)


def validate_kind_and_owner(kind: str, owner_reference: str | None) -> str | None:
    if kind not in LOCATION_KINDS:
        raise LedgerError(f"Unknown location kind {kind}", kind=kind)
    cleaned = owner_reference.strip() if owner_reference else None
    if kind in OWNER_SCOPED_KINDS and not cleaned:
        raise LedgerError(f"{kind} locations require an owner_reference", kind=kind)
    if kind in SINGLETON_KINDS and cleaned:
        raise LedgerError(f"{kind} locations cannot have an owner_reference", kind=kind)
    return cleaned


def get_location(db: Session, location_id: str) -> StockLocation:
    location = db.execute(
        select(StockLocation).where(StockLocation.id == location_id)
    ).scalar_one_or_none()
    if not location:
        raise LocationNotFound(kind="location", location_id=location_id)
    return location


def list_locations(
    db: Session,
    *,
    kind: str | None = None,
    owner_reference: str | None = None,
    include_inactive: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[StockLocation], int]:
    filters = []
    if kind:
        filters.append(StockLocation.kind == kind)
    if owner_reference:
        filters.append(StockLocation.owner_reference == owner_reference)
    if not include_inactive:
        filters.append(StockLocation.is_active.is_(True))

    total = int(db.execute(select(func.count(StockLocation.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(StockLocation)
        .where(*filters)
        .order_by(StockLocation.created_at.asc(), StockLocation.id.asc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return rows, total


def active_locations(
    db: Session,
    *,
    kind: str,
    owner_reference: str | None,
    for_update: bool = False,
) -> list[StockLocation]:
    stmt = select(StockLocation).where(
        StockLocation.kind == kind,
        StockLocation.is_active.is_(True),
    )
    if owner_reference is None:
        stmt = stmt.where(StockLocation.owner_reference.is_(None))
    else:
        stmt = stmt.where(StockLocation.owner_reference == owner_reference)
    stmt = stmt.order_by(StockLocation.created_at.asc(), StockLocation.id.asc())
    if for_update:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalars().all()


def require_active_location(db: Session, location_id: str) -> StockLocation:
    """Movement-time check; reads inside the caller's transaction."""
    location = db.execute(
        select(StockLocation).where(StockLocation.id == location_id)
    ).scalar_one_or_none()
    if not location:
        raise InvalidLocation(location_id, "unknown location")
    if not location.is_active:
        raise InvalidLocation(location_id, "location is inactive")
    return location


def resolve_active_location(db: Session, *, kind: str, owner_reference: str | None = None) -> StockLocation:
    owner_reference = validate_kind_and_owner(kind, owner_reference)
    rows = active_locations(db, kind=kind, owner_reference=owner_reference)
    if not rows:
        raise LocationNotFound(kind=kind, owner_reference=owner_reference)
    if len(rows) > 1:
        raise DuplicateActiveLocations(
            kind=kind,
            owner_reference=owner_reference,
            location_ids=[row.id for row in rows],
        )
    return rows[0]


def lock_location_key(db: Session, *, kind: str, owner_reference: str | None = None) -> None:
    """
    Serialize creation of the active row for (kind, owner_reference).

    An empty ``FOR UPDATE`` read locks nothing, so on PostgreSQL creators take a
    transaction-scoped advisory lock on the key instead. SQLite already admits
    a single writer at a time.
    """
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(
        text("SELECT pg_advisory_xact_lock(hashtext(:lock_key))"),
        {"lock_key": f"stock_location:{kind}:{owner_reference or ''}"},
    )


def missing_core_kinds(db: Session) -> list[str]:
    present = set(
        db.execute(
            select(StockLocation.kind).where(
                StockLocation.kind.in_(SINGLETON_KINDS),
                StockLocation.is_active.is_(True),
            )
        ).scalars().all()
    )
    return [kind for kind in SINGLETON_KINDS if kind not in present]


def _core_display_name(kind: str) -> str:
    if kind == "warehouse":
        return settings.warehouse_display_name
    return settings.loading_bay_display_name


def ensure_core_locations(db: Session, *, read_only: bool = False, actor: str = "system") -> list[str]:
    """Create the singleton locations that are absent; returns the kinds that were missing."""
    if not read_only:
        for kind in SINGLETON_KINDS:
            lock_location_key(db, kind=kind)
    missing = missing_core_kinds(db)
    if not missing:
        return []
    if read_only:
        raise MissingCoreLocation(missing)

    for kind in missing:
        location = StockLocation(
            id=generate_shortuuid(),
            kind=kind,
            owner_reference=None,
            display_name=_core_display_name(kind),
            is_active=True,
        )
        db.add(location)
        log_audit_event(
            db,
            actor=actor,
            action="location.ensure_core",
            target_type="stock_location",
            target_id=location.id,
            metadata_json={"kind": kind, "display_name": location.display_name},
        )
    db.flush()
    log_ledger_event("location.core_created", kinds=missing, actor=actor)
    return missing


def ensure_owner_location(
    db: Session,
    *,
    kind: str,
    owner_reference: str,
    display_name: str | None = None,
    actor: str = "system",
) -> tuple[StockLocation, bool]:
    owner_reference = validate_kind_and_owner(kind, owner_reference)
    if kind not in OWNER_SCOPED_KINDS:
        raise LedgerError(f"{kind} is not an owner-scoped location kind", kind=kind)

    lock_location_key(db, kind=kind, owner_reference=owner_reference)
    rows = active_locations(db, kind=kind, owner_reference=owner_reference, for_update=True)
    if len(rows) > 1:
        raise DuplicateActiveLocations(
            kind=kind,
            owner_reference=owner_reference,
            location_ids=[row.id for row in rows],
        )
    if rows:
        return rows[0], False

    location = StockLocation(
        id=generate_shortuuid(),
        kind=kind,
        owner_reference=owner_reference,
        display_name=(display_name or "").strip() or f"{kind.title()}: {owner_reference}",
        is_active=True,
    )
    db.add(location)
    log_audit_event(
        db,
        actor=actor,
        action="location.create_owner",
        target_type="stock_location",
        target_id=location.id,
        metadata_json={"kind": kind, "owner_reference": owner_reference},
    )
    db.flush()
    return location, True


def _deactivate(location: StockLocation, reason: str) -> None:
    location.is_active = False
    location.deactivated_at = datetime.now(timezone.utc)
    location.deactivation_reason = reason


def retire_owner_locations(
    db: Session,
    *,
    kind: str,
    owner_reference: str,
    actor: str,
) -> list[StockLocation]:
    owner_reference = validate_kind_and_owner(kind, owner_reference)
    rows = active_locations(db, kind=kind, owner_reference=owner_reference, for_update=True)
    for location in rows:
        holding = balance_projector.balances_at_location(db, location.id, non_zero_only=True)
        if holding:
            raise LocationNotEmpty(location.id, [balance.item_id for balance in holding])

    for location in rows:
        _deactivate(location, "owner_retired")
        log_audit_event(
            db,
            actor=actor,
            action="location.retire",
            target_type="stock_location",
            target_id=location.id,
            metadata_json={"kind": kind, "owner_reference": owner_reference},
        )
    db.flush()
    return rows


def _usage_rank(db: Session, location: StockLocation) -> tuple:
    last_used = ledger_store.last_entry_id_at_location(db, location.id) or 0
    last_non_zero = db.execute(
        select(func.max(Balance.as_of_entry_id)).where(
            Balance.location_id == location.id,
            Balance.quantity_on_hand != 0,
        )
    ).scalar_one_or_none() or 0
    created_at = location.created_at or datetime.min.replace(tzinfo=timezone.utc)
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return (last_used, last_non_zero, created_at, location.id)


def deduplicate(
    db: Session,
    *,
    kind: str,
    owner_reference: str | None,
    actor: str,
) -> DeduplicationResult:
    """
    Keep the most recently used active location for the owner, deactivate the
    rest and move their non-zero balances onto the kept row.

    Each migrated balance becomes a pair of ``adjustment`` entries (out of the
    duplicate, into the kept row) under one correlation id, written in the
    caller's transaction together with the deactivation.
    """
    owner_reference = validate_kind_and_owner(kind, owner_reference)
    rows = active_locations(db, kind=kind, owner_reference=owner_reference, for_update=True)
    if len(rows) <= 1:
        return DeduplicationResult(
            kind=kind,
            owner_reference=owner_reference,
            kept_location_id=rows[0].id if rows else None,
        )

    ranked = sorted(rows, key=lambda row: _usage_rank(db, row), reverse=True)
    kept, duplicates = ranked[0], ranked[1:]
    correlation_id = generate_correlation_id()
    migrated: list[MigratedBalance] = []

    for duplicate in duplicates:
        holding = balance_projector.balances_at_location(db, duplicate.id, non_zero_only=True)
        pairs = [(b.item_id, duplicate.id) for b in holding] + [(b.item_id, kept.id) for b in holding]
        balance_projector.lock_balances(db, pairs)

        for balance in holding:
            quantity = balance.quantity_on_hand
            if quantity == 0:
                continue
            key = f"dedup:{duplicate.id}:{balance.item_id}:{balance.as_of_entry_id}"
            note = f"Moved from duplicate {kind} location {duplicate.id}"
            out_result = ledger_store.append(
                db,
                NewLedgerEntry(
                    item_id=balance.item_id,
                    location_id=duplicate.id,
                    quantity_delta=-quantity,
                    reason="adjustment",
                    idempotency_key=f"{key}:out",
                    actor=actor,
                    correlation_id=correlation_id,
                    reference=kept.id,
                    note=note,
                ),
            )
            in_result = ledger_store.append(
                db,
                NewLedgerEntry(
                    item_id=balance.item_id,
                    location_id=kept.id,
                    quantity_delta=quantity,
                    reason="adjustment",
                    idempotency_key=f"{key}:in",
                    actor=actor,
                    correlation_id=correlation_id,
                    reference=duplicate.id,
                    note=note,
                ),
            )
            # Repairs move whatever is there, including overridden negatives.
            balance_projector.apply(db, out_result.entry, allow_negative=True)
            balance_projector.apply(db, in_result.entry, allow_negative=True)
            migrated.append(
                MigratedBalance(
                    item_id=balance.item_id,
                    from_location_id=duplicate.id,
                    to_location_id=kept.id,
                    quantity=quantity,
                )
            )

        _deactivate(duplicate, f"duplicate_of:{kept.id}")

    result = DeduplicationResult(
        kind=kind,
        owner_reference=owner_reference,
        kept_location_id=kept.id,
        deactivated_location_ids=[row.id for row in duplicates],
        migrated_balances=migrated,
        correlation_id=correlation_id,
    )
    log_audit_event(
        db,
        actor=actor,
        action="location.deduplicate",
        target_type="stock_location",
        target_id=kept.id,
        metadata_json={
            "kind": kind,
            "owner_reference": owner_reference,
            "deactivated_location_ids": result.deactivated_location_ids,
            "migrated_balances": [
                {"item_id": m.item_id, "from_location_id": m.from_location_id, "quantity": m.quantity}
                for m in migrated
            ],
            "correlation_id": correlation_id,
        },
    )
    db.flush()
    log_ledger_event(
        "location.deduplicated",
        kind=kind,
        owner_reference=owner_reference,
        kept_location_id=kept.id,
        deactivated=len(duplicates),
        migrated=len(migrated),
    )
    return result
