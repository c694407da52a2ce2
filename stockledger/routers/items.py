from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockledger.core.api_docs import error_responses
from stockledger.core.deps import get_db
from stockledger.core.id_utils import generate_shortuuid
from stockledger.core.permissions import require_roles
from stockledger.core.security_current import Actor, get_current_actor
from stockledger.models.item import StockItem
from stockledger.schemas.common import PaginationMeta
from stockledger.schemas.item import ItemCreateIn, ItemListOut, ItemOut, ItemUpdateIn
from stockledger.services.audit_service import log_audit_event
from stockledger.services.item_service import get_item, normalize_sku, sku_in_use

router = APIRouter(prefix="/items", tags=["items"])


def _item_out(item: StockItem) -> ItemOut:
    return ItemOut(
        id=item.id,
        name=item.name,
        sku=item.sku,
        unit=item.unit,
        tracks_inventory=item.tracks_inventory,
        created_at=item.created_at,
    )


@router.post(
    "",
    response_model=ItemOut,
    summary="Create a stock item",
    responses=error_responses(401, 403, 409, 422, 500),
)
def create_item(
    payload: ItemCreateIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles("admin", "manager")),
):
    sku = normalize_sku(payload.sku)
    if sku and sku_in_use(db, sku):
        raise HTTPException(status_code=409, detail="SKU already exists")

    item = StockItem(
        id=generate_shortuuid(),
        name=payload.name,
        sku=sku,
        unit=payload.unit.strip(),
        tracks_inventory=payload.tracks_inventory,
    )
    db.add(item)
    log_audit_event(
        db,
        actor=actor.id,
        action="item.create",
        target_type="stock_item",
        target_id=item.id,
        metadata_json={"name": item.name, "sku": sku, "tracks_inventory": item.tracks_inventory},
    )
    db.commit()
    db.refresh(item)
    return _item_out(item)


@router.get(
    "",
    response_model=ItemListOut,
    summary="List stock items",
    responses=error_responses(401, 422, 500),
)
def list_items(
    q: str | None = Query(default=None, max_length=100, description="Name or SKU contains"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _actor: Actor = Depends(get_current_actor),
):
    count_stmt = select(func.count(StockItem.id))
    stmt = select(StockItem)
    if q and q.strip():
        pattern = f"%{q.strip().lower()}%"
        condition = func.lower(StockItem.name).like(pattern) | func.lower(func.coalesce(StockItem.sku, "")).like(pattern)
        count_stmt = count_stmt.where(condition)
        stmt = stmt.where(condition)

    total = int(db.execute(count_stmt).scalar_one())
    rows = db.execute(stmt.order_by(StockItem.name.asc(), StockItem.id.asc()).offset(offset).limit(limit)).scalars().all()
    count = len(rows)
    return ItemListOut(
        items=[_item_out(row) for row in rows],
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.get(
    "/{item_id}",
    response_model=ItemOut,
    summary="Get a stock item",
    responses=error_responses(401, 404, 500),
)
def read_item(
    item_id: str,
    db: Session = Depends(get_db),
    _actor: Actor = Depends(get_current_actor),
):
    return _item_out(get_item(db, item_id))


@router.patch(
    "/{item_id}",
    response_model=ItemOut,
    summary="Update descriptive fields of a stock item",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def update_item(
    item_id: str,
    payload: ItemUpdateIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles("admin", "manager")),
):
    item = get_item(db, item_id)
    changes = payload.model_dump(exclude_unset=True)
    if "sku" in changes:
        sku = normalize_sku(changes["sku"])
        if sku and sku_in_use(db, sku, exclude_item_id=item.id):
            raise HTTPException(status_code=409, detail="SKU already exists")
        item.sku = sku
    if changes.get("name") is not None:
        item.name = changes["name"]
    if changes.get("unit") is not None:
        item.unit = changes["unit"].strip()
    if changes.get("tracks_inventory") is not None:
        item.tracks_inventory = changes["tracks_inventory"]

    log_audit_event(
        db,
        actor=actor.id,
        action="item.update",
        target_type="stock_item",
        target_id=item.id,
        metadata_json={key: value for key, value in changes.items()},
    )
    db.commit()
    db.refresh(item)
    return _item_out(item)
