from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockledger.core.api_docs import error_responses
from stockledger.core.deps import get_db
from stockledger.core.permissions import require_roles
from stockledger.core.security_current import Actor, get_current_actor
from stockledger.routers.locations import _dedup_out
from stockledger.schemas.integrity import (
    CoreLocationsOut,
    DuplicateGroupOut,
    InactiveLocationStockOut,
    IntegrityReportOut,
    OrphanedBalanceOut,
    ProjectionDriftOut,
    RebuildProjectionOut,
    RepairDuplicatesOut,
)
from stockledger.services import integrity_auditor, location_registry
from stockledger.services.balance_projector import ProjectionDrift
from stockledger.services.integrity_auditor import DuplicateGroup

router = APIRouter(prefix="/integrity", tags=["integrity"])


def _group_out(group: DuplicateGroup) -> DuplicateGroupOut:
    return DuplicateGroupOut(kind=group.kind, owner_reference=group.owner_reference, location_ids=group.location_ids)


def _drift_out(drift: ProjectionDrift) -> ProjectionDriftOut:
    return ProjectionDriftOut(
        item_id=drift.item_id,
        location_id=drift.location_id,
        projected=drift.projected,
        ledger_total=drift.ledger_total,
        difference=drift.difference,
    )


@router.get(
    "/report",
    response_model=IntegrityReportOut,
    summary="Run every location and projection check",
    responses=error_responses(401, 403, 500),
)
def integrity_report(
    db: Session = Depends(get_db),
    _actor: Actor = Depends(require_roles("admin", "manager")),
):
    report = integrity_auditor.build_report(db)
    return IntegrityReportOut(
        status=report.status,
        missing_core_locations=report.missing_core_locations,
        duplicate_locations=[_group_out(group) for group in report.duplicate_locations],
        orphaned_balances=[
            OrphanedBalanceOut(item_id=o.item_id, location_id=o.location_id, quantity_on_hand=o.quantity_on_hand)
            for o in report.orphaned_balances
        ],
        inactive_locations_with_stock=[
            InactiveLocationStockOut(
                location_id=row.location_id,
                kind=row.kind,
                owner_reference=row.owner_reference,
                item_id=row.item_id,
                quantity_on_hand=row.quantity_on_hand,
            )
            for row in report.inactive_locations_with_stock
        ],
        projection_drift=[_drift_out(drift) for drift in report.projection_drift],
        summary=report.summary,
    )


@router.get(
    "/core-locations",
    response_model=CoreLocationsOut,
    summary="Fail with 409 when the warehouse or loading bay is missing",
    responses=error_responses(401, 409, 500),
)
def core_locations(
    db: Session = Depends(get_db),
    _actor: Actor = Depends(get_current_actor),
):
    location_registry.ensure_core_locations(db, read_only=True)
    return CoreLocationsOut()


@router.post(
    "/repair-duplicates",
    response_model=RepairDuplicatesOut,
    summary="Deduplicate every owner with more than one active location",
    responses=error_responses(401, 403, 422, 500),
)
def repair_duplicates(
    dry_run: bool = Query(default=False, description="Report what would change without writing"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles("admin")),
):
    report = integrity_auditor.repair_duplicates(db, actor=actor.id, dry_run=dry_run)
    if not dry_run:
        db.commit()
    return RepairDuplicatesOut(
        dry_run=report.dry_run,
        planned=[_group_out(group) for group in report.planned],
        results=[_dedup_out(result) for result in report.results],
    )


@router.post(
    "/rebuild-projection",
    response_model=RebuildProjectionOut,
    summary="Rebuild balances that disagree with the ledger",
    responses=error_responses(400, 401, 403, 500),
)
def rebuild_projection(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles("admin")),
):
    repaired = integrity_auditor.repair_projection_drift(db, actor=actor.id)
    db.commit()
    return RebuildProjectionOut(repaired=[_drift_out(drift) for drift in repaired])
