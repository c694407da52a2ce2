from pydantic import BaseModel, Field

from stockledger.schemas.location import DeduplicateOut


class DuplicateGroupOut(BaseModel):
    kind: str
    owner_reference: str | None = None
    location_ids: list[str]


class OrphanedBalanceOut(BaseModel):
    item_id: str
    location_id: str
    quantity_on_hand: int


class InactiveLocationStockOut(BaseModel):
    location_id: str
    kind: str
    owner_reference: str | None = None
    item_id: str
    quantity_on_hand: int


class ProjectionDriftOut(BaseModel):
    item_id: str
    location_id: str
    projected: int
    ledger_total: int
    difference: int


class IntegrityReportOut(BaseModel):
    status: str = Field(description="PASS when every check is clean, FAIL otherwise")
    missing_core_locations: list[str]
    duplicate_locations: list[DuplicateGroupOut]
    orphaned_balances: list[OrphanedBalanceOut]
    inactive_locations_with_stock: list[InactiveLocationStockOut]
    projection_drift: list[ProjectionDriftOut]
    summary: dict[str, int]


class CoreLocationsOut(BaseModel):
    ok: bool = True
    missing_core_locations: list[str] = Field(default_factory=list)


class RepairDuplicatesOut(BaseModel):
    dry_run: bool
    planned: list[DuplicateGroupOut]
    results: list[DeduplicateOut]


class RebuildProjectionOut(BaseModel):
    repaired: list[ProjectionDriftOut]
