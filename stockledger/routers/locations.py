from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockledger.core.api_docs import error_responses
from stockledger.core.deps import get_db
from stockledger.core.permissions import require_roles
from stockledger.core.security_current import Actor, get_current_actor
from stockledger.models.location import SINGLETON_KINDS, StockLocation
from stockledger.schemas.common import PaginationMeta
from stockledger.schemas.location import (
    DeduplicateIn,
    DeduplicateOut,
    EnsureCoreOut,
    LocationListOut,
    LocationOut,
    MigratedBalanceOut,
    OwnerLocationIn,
    OwnerLocationOut,
    RetireOwnerIn,
    RetireOwnerOut,
)
from stockledger.services import location_registry
from stockledger.services.location_registry import DeduplicationResult

router = APIRouter(prefix="/locations", tags=["locations"])


def _location_out(location: StockLocation) -> LocationOut:
    return LocationOut(
        id=location.id,
        kind=location.kind,
        owner_reference=location.owner_reference,
        display_name=location.display_name,
        is_active=location.is_active,
        deactivated_at=location.deactivated_at,
        deactivation_reason=location.deactivation_reason,
        created_at=location.created_at,
    )


def _dedup_out(result: DeduplicationResult) -> DeduplicateOut:
    return DeduplicateOut(
        kind=result.kind,
        owner_reference=result.owner_reference,
        kept_location_id=result.kept_location_id,
        deactivated_location_ids=result.deactivated_location_ids,
        migrated_balances=[
            MigratedBalanceOut(
                item_id=m.item_id,
                from_location_id=m.from_location_id,
                to_location_id=m.to_location_id,
                quantity=m.quantity,
            )
            for m in result.migrated_balances
        ],
        correlation_id=result.correlation_id,
        changed=result.changed,
    )


@router.post(
    "/ensure-core",
    response_model=EnsureCoreOut,
    summary="Create the warehouse and loading bay if absent",
    responses=error_responses(401, 403, 500),
)
def ensure_core(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles("admin")),
):
    created = location_registry.ensure_core_locations(db, actor=actor.id)
    db.commit()
    cores = [
        row
        for kind in SINGLETON_KINDS
        for row in location_registry.active_locations(db, kind=kind, owner_reference=None)
    ]
    return EnsureCoreOut(created_kinds=created, locations=[_location_out(row) for row in cores])


@router.post(
    "/deduplicate",
    response_model=DeduplicateOut,
    summary="Collapse duplicate active locations for one owner",
    responses=error_responses(400, 401, 403, 422, 500),
)
def deduplicate_locations(
    payload: DeduplicateIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles("admin")),
):
    result = location_registry.deduplicate(
        db,
        kind=payload.kind,
        owner_reference=payload.owner_reference,
        actor=actor.id,
    )
    db.commit()
    return _dedup_out(result)


@router.get(
    "",
    response_model=LocationListOut,
    summary="List stock locations",
    responses=error_responses(401, 422, 500),
)
def list_locations(
    kind: str | None = Query(default=None, pattern="^(warehouse|loading_bay|vehicle|project)$"),
    owner_reference: str | None = Query(default=None, max_length=64),
    include_inactive: bool = Query(default=False),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _actor: Actor = Depends(get_current_actor),
):
    rows, total = location_registry.list_locations(
        db,
        kind=kind,
        owner_reference=owner_reference,
        include_inactive=include_inactive,
        limit=limit,
        offset=offset,
    )
    count = len(rows)
    return LocationListOut(
        items=[_location_out(row) for row in rows],
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.post(
    "/owners",
    response_model=OwnerLocationOut,
    summary="Get or create the active location for a vehicle or project",
    responses=error_responses(400, 401, 403, 409, 422, 500),
)
def ensure_owner_location(
    payload: OwnerLocationIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles("admin", "manager")),
):
    location, created = location_registry.ensure_owner_location(
        db,
        kind=payload.kind,
        owner_reference=payload.owner_reference,
        display_name=payload.display_name,
        actor=actor.id,
    )
    db.commit()
    return OwnerLocationOut(location=_location_out(location), created=created)


@router.post(
    "/owners/retire",
    response_model=RetireOwnerOut,
    summary="Deactivate the locations of a retired vehicle or project",
    responses=error_responses(400, 401, 403, 409, 422, 500),
)
def retire_owner(
    payload: RetireOwnerIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles("admin")),
):
    retired = location_registry.retire_owner_locations(
        db,
        kind=payload.kind,
        owner_reference=payload.owner_reference,
        actor=actor.id,
    )
    db.commit()
    return RetireOwnerOut(retired=[_location_out(row) for row in retired])


@router.get(
    "/{location_id}",
    response_model=LocationOut,
    summary="Get a stock location",
    responses=error_responses(401, 404, 500),
)
def get_location(
    location_id: str,
    db: Session = Depends(get_db),
    _actor: Actor = Depends(get_current_actor),
):
    return _location_out(location_registry.get_location(db, location_id))
