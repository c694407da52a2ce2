from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from stockledger.core.errors import (
    DuplicateActiveLocations,
    LocationNotEmpty,
    LocationNotFound,
    MissingCoreLocation,
)
from stockledger.core.id_utils import generate_shortuuid
from stockledger.models.audit_log import AuditLog
from stockledger.models.item import StockItem
from stockledger.models.ledger import Balance
from stockledger.models.location import StockLocation
from stockledger.services import balance_projector, integrity_auditor, location_registry, movement_service


def _item(db, name: str = "Cable 2.5mm") -> StockItem:
    item = StockItem(id=generate_shortuuid(), name=name)
    db.add(item)
    db.flush()
    return item


def _raw_location(db, *, kind: str, owner_reference: str | None = None) -> StockLocation:
    location = StockLocation(
        id=generate_shortuuid(),
        kind=kind,
        owner_reference=owner_reference,
        display_name=f"{kind} {owner_reference or ''}".strip(),
        is_active=True,
    )
    db.add(location)
    db.flush()
    return location


def _stock(db, item, location, qty: int) -> None:
    movement_service.adjust(
        db,
        item_id=item.id,
        location_id=location.id,
        delta=qty,
        idempotency_key=generate_shortuuid(),
        actor="admin-1",
    )


def test_ensure_core_locations_is_idempotent(db_session):
    db = db_session

    assert location_registry.missing_core_kinds(db) == ["warehouse", "loading_bay"]
    with pytest.raises(MissingCoreLocation) as exc_info:
        location_registry.ensure_core_locations(db, read_only=True)
    assert exc_info.value.context["missing_kinds"] == ["warehouse", "loading_bay"]

    assert location_registry.ensure_core_locations(db, actor="admin-1") == ["warehouse", "loading_bay"]
    assert location_registry.ensure_core_locations(db, actor="admin-1") == []
    db.commit()

    warehouse = location_registry.resolve_active_location(db, kind="warehouse")
    assert warehouse.display_name == "Main Warehouse"
    assert warehouse.owner_reference is None
    assert integrity_auditor.check_core_locations(db) == []

    audit_actions = db.execute(select(AuditLog.action)).scalars().all()
    assert audit_actions.count("location.ensure_core") == 2


def test_ensure_owner_location_creates_once(db_session):
    db = db_session

    first, created = location_registry.ensure_owner_location(db, kind="vehicle", owner_reference="vehicle-7")
    again, created_again = location_registry.ensure_owner_location(db, kind="vehicle", owner_reference="vehicle-7")

    assert created is True
    assert created_again is False
    assert again.id == first.id
    assert location_registry.resolve_active_location(db, kind="vehicle", owner_reference="vehicle-7").id == first.id

    with pytest.raises(LocationNotFound):
        location_registry.resolve_active_location(db, kind="vehicle", owner_reference="vehicle-8")


def test_resolve_refuses_to_pick_between_duplicates(db_session):
    db = db_session
    first = _raw_location(db, kind="vehicle", owner_reference="vehicle-7")
    second = _raw_location(db, kind="vehicle", owner_reference="vehicle-7")

    with pytest.raises(DuplicateActiveLocations) as exc_info:
        location_registry.resolve_active_location(db, kind="vehicle", owner_reference="vehicle-7")
    assert sorted(exc_info.value.context["location_ids"]) == sorted([first.id, second.id])


def test_deduplicate_merges_balances_onto_most_recently_used(db_session):
    db = db_session
    location_registry.ensure_core_locations(db)
    item = _item(db)
    older = _raw_location(db, kind="vehicle", owner_reference="vehicle-7")
    newer = _raw_location(db, kind="vehicle", owner_reference="vehicle-7")
    _stock(db, item, older, 3)
    _stock(db, item, newer, 5)
    db.commit()

    groups = integrity_auditor.check_duplicate_owner_locations(db)
    assert [(group.kind, group.owner_reference, len(group.location_ids)) for group in groups] == [
        ("vehicle", "vehicle-7", 2)
    ]

    result = location_registry.deduplicate(db, kind="vehicle", owner_reference="vehicle-7", actor="admin-1")
    db.commit()

    assert result.kept_location_id == newer.id
    assert result.deactivated_location_ids == [older.id]
    assert [(m.item_id, m.quantity) for m in result.migrated_balances] == [(item.id, 3)]

    active = location_registry.active_locations(db, kind="vehicle", owner_reference="vehicle-7")
    assert [row.id for row in active] == [newer.id]
    assert balance_projector.balance_of(db, item_id=item.id, location_id=newer.id) == 8
    assert balance_projector.balance_of(db, item_id=item.id, location_id=older.id) == 0
    assert balance_projector.total_on_hand(db, item.id) == 8

    db.refresh(older)
    assert older.is_active is False
    assert older.deactivation_reason == f"duplicate_of:{newer.id}"
    assert integrity_auditor.check_duplicate_owner_locations(db) == []
    assert integrity_auditor.check_projection_drift(db) == []

    again = location_registry.deduplicate(db, kind="vehicle", owner_reference="vehicle-7", actor="admin-1")
    assert again.changed is False
    assert again.kept_location_id == newer.id


def test_deduplicate_keeps_newest_row_when_neither_was_used(db_session):
    db = db_session
    newer = _raw_location(db, kind="project", owner_reference="job-31")
    older = _raw_location(db, kind="project", owner_reference="job-31")
    newer.created_at = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    older.created_at = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    db.commit()

    result = location_registry.deduplicate(db, kind="project", owner_reference="job-31", actor="admin-1")
    db.commit()

    assert result.kept_location_id == newer.id
    assert result.deactivated_location_ids == [older.id]
    assert result.migrated_balances == []
    active = location_registry.active_locations(db, kind="project", owner_reference="job-31")
    assert [row.id for row in active] == [newer.id]


def test_repair_duplicates_dry_run_writes_nothing(db_session):
    db = db_session
    location_registry.ensure_core_locations(db)
    _raw_location(db, kind="warehouse")
    _raw_location(db, kind="project", owner_reference="job-9")
    _raw_location(db, kind="project", owner_reference="job-9")
    db.commit()

    planned = integrity_auditor.repair_duplicates(db, actor="admin-1", dry_run=True)
    assert planned.dry_run is True
    assert sorted(group.kind for group in planned.planned) == ["project", "warehouse"]
    assert planned.results == []
    assert len(integrity_auditor.check_duplicate_owner_locations(db)) == 2

    repaired = integrity_auditor.repair_duplicates(db, actor="admin-1")
    db.commit()
    assert len(repaired.results) == 2
    assert integrity_auditor.check_duplicate_owner_locations(db) == []
    assert location_registry.resolve_active_location(db, kind="warehouse") is not None


def test_orphaned_balances_are_reported(db_session):
    db = db_session
    location_registry.ensure_core_locations(db)
    item = _item(db)
    db.add(Balance(item_id=item.id, location_id="deleted-location", quantity_on_hand=4, as_of_entry_id=0))
    db.commit()

    orphans = integrity_auditor.check_orphaned_balances(db)
    assert [(o.item_id, o.location_id, o.quantity_on_hand) for o in orphans] == [
        (item.id, "deleted-location", 4)
    ]
    report = integrity_auditor.build_report(db)
    assert report.status == integrity_auditor.STATUS_FAIL


def test_report_passes_on_clean_ledger(db_session):
    db = db_session
    location_registry.ensure_core_locations(db)
    location_registry.ensure_owner_location(db, kind="vehicle", owner_reference="vehicle-1")
    item = _item(db)
    warehouse = location_registry.resolve_active_location(db, kind="warehouse")
    _stock(db, item, warehouse, 12)
    db.commit()

    report = integrity_auditor.build_report(db)
    assert report.status == integrity_auditor.STATUS_PASS
    assert report.summary["warehouse_count"] == 1
    assert report.summary["loading_bay_count"] == 1
    assert report.summary["vehicle_location_count"] == 1
    assert report.summary["ledger_entries"] == 1


def test_projection_drift_is_detected_and_rebuilt(db_session):
    db = db_session
    location_registry.ensure_core_locations(db)
    item = _item(db)
    warehouse = location_registry.resolve_active_location(db, kind="warehouse")
    _stock(db, item, warehouse, 5)
    _stock(db, item, warehouse, 2)
    db.commit()

    balance = balance_projector.get_balance_row(db, item_id=item.id, location_id=warehouse.id)
    balance.quantity_on_hand = 3
    db.commit()

    drift = integrity_auditor.check_projection_drift(db)
    assert [(d.projected, d.ledger_total, d.difference) for d in drift] == [(3, 7, 4)]

    repaired = integrity_auditor.repair_projection_drift(db, actor="admin-1")
    db.commit()
    assert len(repaired) == 1
    assert balance_projector.balance_of(db, item_id=item.id, location_id=warehouse.id) == 7
    assert integrity_auditor.check_projection_drift(db) == []


def test_retire_owner_refuses_while_holding_stock(db_session):
    db = db_session
    location_registry.ensure_core_locations(db)
    item = _item(db)
    warehouse = location_registry.resolve_active_location(db, kind="warehouse")
    van, _ = location_registry.ensure_owner_location(db, kind="vehicle", owner_reference="vehicle-3")
    _stock(db, item, van, 2)
    db.commit()

    with pytest.raises(LocationNotEmpty):
        location_registry.retire_owner_locations(db, kind="vehicle", owner_reference="vehicle-3", actor="admin-1")

    movement_service.transfer(
        db,
        item_id=item.id,
        from_location_id=van.id,
        to_location_id=warehouse.id,
        qty=2,
        idempotency_key="empty-van-3",
        actor="tech-1",
    )
    retired = location_registry.retire_owner_locations(
        db, kind="vehicle", owner_reference="vehicle-3", actor="admin-1"
    )
    db.commit()
    assert [row.id for row in retired] == [van.id]
    assert integrity_auditor.check_inactive_locations_with_stock(db) == []


def test_inactive_location_with_stock_is_reported(db_session):
    db = db_session
    location_registry.ensure_core_locations(db)
    item = _item(db)
    van, _ = location_registry.ensure_owner_location(db, kind="vehicle", owner_reference="vehicle-4")
    _stock(db, item, van, 6)
    van.is_active = False
    db.commit()

    rows = integrity_auditor.check_inactive_locations_with_stock(db)
    assert [(row.location_id, row.item_id, row.quantity_on_hand) for row in rows] == [(van.id, item.id, 6)]
    assert integrity_auditor.build_report(db).status == integrity_auditor.STATUS_FAIL
