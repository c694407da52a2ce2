from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockledger.core.errors import ItemNotFound, ItemNotTracked
from stockledger.models.item import StockItem


def normalize_sku(sku: str | None) -> str | None:
    if sku is None:
        return None
    cleaned = sku.strip().upper()
    return cleaned or None


def get_item(db: Session, item_id: str) -> StockItem:
    item = db.execute(select(StockItem).where(StockItem.id == item_id)).scalar_one_or_none()
    if not item:
        raise ItemNotFound(item_id)
    return item


def require_tracked_item(db: Session, item_id: str) -> StockItem:
    item = get_item(db, item_id)
    if not item.tracks_inventory:
        raise ItemNotTracked(item_id)
    return item


def sku_in_use(db: Session, sku: str, *, exclude_item_id: str | None = None) -> bool:
    stmt = select(StockItem.id).where(func.upper(StockItem.sku) == sku.upper())
    if exclude_item_id:
        stmt = stmt.where(StockItem.id != exclude_item_id)
    return db.execute(stmt.limit(1)).scalar_one_or_none() is not None
