"""
Read-only integrity checks over locations and the balance projection, plus the
repair routines that fix what they find. Repairs always return a report of
what they changed.
"""

from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockledger.core.observability import log_ledger_event
from stockledger.models.ledger import Balance, LedgerEntry
from stockledger.models.location import SINGLETON_KINDS, StockLocation
from stockledger.services import balance_projector, location_registry
from stockledger.services.audit_service import log_audit_event
from stockledger.services.balance_projector import ProjectionDrift
from stockledger.services.location_registry import DeduplicationResult

STATUS_PASS = "PASS"
STATUS_FAIL = "FAIL"


@dataclass(frozen=True)
class DuplicateGroup:
    kind: str
    owner_reference: str | None
    location_ids: list[str]


@dataclass(frozen=True)
class OrphanedBalance:
    item_id: str
    location_id: str
    quantity_on_hand: int


@dataclass(frozen=True)
class InactiveLocationStock:
    location_id: str
    kind: str
    owner_reference: str | None
    item_id: str
    quantity_on_hand: int


@dataclass
class IntegrityReport:
    status: str
    missing_core_locations: list[str] = field(default_factory=list)
    duplicate_locations: list[DuplicateGroup] = field(default_factory=list)
    orphaned_balances: list[OrphanedBalance] = field(default_factory=list)
    inactive_locations_with_stock: list[InactiveLocationStock] = field(default_factory=list)
    projection_drift: list[ProjectionDrift] = field(default_factory=list)
    summary: dict[str, int] = field(default_factory=dict)


@dataclass
class DuplicateRepairReport:
    dry_run: bool
    planned: list[DuplicateGroup] = field(default_factory=list)
    results: list[DeduplicationResult] = field(default_factory=list)


def check_core_locations(db: Session) -> list[str]:
    return location_registry.missing_core_kinds(db)


def check_duplicate_owner_locations(db: Session) -> list[DuplicateGroup]:
    """Active-location groups with more than one row; singleton kinds group under a null owner."""
    rows = db.execute(
        select(StockLocation.kind, StockLocation.owner_reference, StockLocation.id)
        .where(StockLocation.is_active.is_(True))
        .order_by(StockLocation.kind, StockLocation.owner_reference, StockLocation.created_at, StockLocation.id)
    ).all()
    grouped: dict[tuple[str, str | None], list[str]] = {}
    for kind, owner_reference, location_id in rows:
        grouped.setdefault((kind, owner_reference), []).append(location_id)
    return [
        DuplicateGroup(kind=kind, owner_reference=owner_reference, location_ids=ids)
        for (kind, owner_reference), ids in grouped.items()
        if len(ids) > 1
    ]


def check_orphaned_balances(db: Session) -> list[OrphanedBalance]:
    rows = db.execute(
        select(Balance.item_id, Balance.location_id, Balance.quantity_on_hand)
        .outerjoin(StockLocation, StockLocation.id == Balance.location_id)
        .where(StockLocation.id.is_(None))
        .order_by(Balance.location_id, Balance.item_id)
    ).all()
    return [
        OrphanedBalance(item_id=item_id, location_id=location_id, quantity_on_hand=qty)
        for item_id, location_id, qty in rows
    ]


def check_inactive_locations_with_stock(db: Session) -> list[InactiveLocationStock]:
    rows = db.execute(
        select(
            StockLocation.id,
            StockLocation.kind,
            StockLocation.owner_reference,
            Balance.item_id,
            Balance.quantity_on_hand,
        )
        .join(Balance, Balance.location_id == StockLocation.id)
        .where(StockLocation.is_active.is_(False), Balance.quantity_on_hand != 0)
        .order_by(StockLocation.id, Balance.item_id)
    ).all()
    return [
        InactiveLocationStock(
            location_id=location_id,
            kind=kind,
            owner_reference=owner_reference,
            item_id=item_id,
            quantity_on_hand=qty,
        )
        for location_id, kind, owner_reference, item_id, qty in rows
    ]


def check_projection_drift(db: Session) -> list[ProjectionDrift]:
    ledger_totals = {
        (item_id, location_id): int(total)
        for item_id, location_id, total in db.execute(
            select(
                LedgerEntry.item_id,
                LedgerEntry.location_id,
                func.sum(LedgerEntry.quantity_delta),
            ).group_by(LedgerEntry.item_id, LedgerEntry.location_id)
        ).all()
    }
    projected = {
        (item_id, location_id): int(qty)
        for item_id, location_id, qty in db.execute(
            select(Balance.item_id, Balance.location_id, Balance.quantity_on_hand)
        ).all()
    }
    drift: list[ProjectionDrift] = []
    for pair in sorted(set(ledger_totals) | set(projected)):
        expected = ledger_totals.get(pair, 0)
        actual = projected.get(pair, 0)
        if expected != actual:
            drift.append(ProjectionDrift(item_id=pair[0], location_id=pair[1], projected=actual, ledger_total=expected))
    return drift


def build_report(db: Session) -> IntegrityReport:
    missing = check_core_locations(db)
    duplicates = check_duplicate_owner_locations(db)
    orphaned = check_orphaned_balances(db)
    inactive_with_stock = check_inactive_locations_with_stock(db)
    drift = check_projection_drift(db)

    total_locations = int(db.execute(select(func.count(StockLocation.id))).scalar_one())
    active_by_kind = dict(
        db.execute(
            select(StockLocation.kind, func.count(StockLocation.id))
            .where(StockLocation.is_active.is_(True))
            .group_by(StockLocation.kind)
        ).all()
    )
    failed = any([missing, duplicates, orphaned, inactive_with_stock, drift])
    return IntegrityReport(
        status=STATUS_FAIL if failed else STATUS_PASS,
        missing_core_locations=missing,
        duplicate_locations=duplicates,
        orphaned_balances=orphaned,
        inactive_locations_with_stock=inactive_with_stock,
        projection_drift=drift,
        summary={
            "total_locations": total_locations,
            "active_locations": sum(active_by_kind.values()),
            "warehouse_count": active_by_kind.get("warehouse", 0),
            "loading_bay_count": active_by_kind.get("loading_bay", 0),
            "vehicle_location_count": active_by_kind.get("vehicle", 0),
            "project_location_count": active_by_kind.get("project", 0),
            "ledger_entries": int(db.execute(select(func.count(LedgerEntry.id))).scalar_one()),
        },
    )


def repair_duplicates(db: Session, *, actor: str, dry_run: bool = False) -> DuplicateRepairReport:
    groups = check_duplicate_owner_locations(db)
    report = DuplicateRepairReport(dry_run=dry_run, planned=groups)
    if dry_run or not groups:
        return report

    for group in groups:
        result = location_registry.deduplicate(
            db,
            kind=group.kind,
            owner_reference=None if group.kind in SINGLETON_KINDS else group.owner_reference,
            actor=actor,
        )
        report.results.append(result)

    log_audit_event(
        db,
        actor=actor,
        action="integrity.repair_duplicates",
        target_type="stock_location",
        metadata_json={
            "groups": len(groups),
            "deactivated_location_ids": [
                location_id for result in report.results for location_id in result.deactivated_location_ids
            ],
        },
    )
    db.flush()
    log_ledger_event("integrity.duplicates_repaired", groups=len(groups), actor=actor)
    return report


def repair_projection_drift(db: Session, *, actor: str) -> list[ProjectionDrift]:
    """Rebuild every drifted balance row by replaying its ledger."""
    repaired: list[ProjectionDrift] = []
    for drift in check_projection_drift(db):
        repaired.append(balance_projector.rebuild(db, item_id=drift.item_id, location_id=drift.location_id))
    if repaired:
        log_audit_event(
            db,
            actor=actor,
            action="integrity.rebuild_projection",
            target_type="balance",
            metadata_json={
                "pairs": [
                    {
                        "item_id": d.item_id,
                        "location_id": d.location_id,
                        "projected": d.projected,
                        "ledger_total": d.ledger_total,
                    }
                    for d in repaired
                ]
            },
        )
        db.flush()
        log_ledger_event("integrity.projection_rebuilt", pairs=len(repaired), actor=actor)
    return repaired
