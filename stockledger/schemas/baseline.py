from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from stockledger.schemas.movement import LedgerEntryOut


class StocktakeCountIn(BaseModel):
    item_id: str
    location_id: str
    counted_qty: int = Field(ge=0, validation_alias=AliasChoices("counted_qty", "countedQty"))

    model_config = ConfigDict(populate_by_name=True)


class BaselineProposeIn(BaseModel):
    stocktake_counts: list[StocktakeCountIn] = Field(
        min_length=1,
        validation_alias=AliasChoices("stocktake_counts", "stocktakeCounts"),
    )

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "stocktake_counts": [
                    {"item_id": "item-id-here", "location_id": "warehouse-location-id", "counted_qty": 6},
                ]
            }
        },
    )


class BaselineChangeIO(BaseModel):
    item_id: str
    location_id: str
    counted_qty: int = Field(ge=0)
    current_qty: int
    delta: int


class BaselineProposeOut(BaseModel):
    changes: list[BaselineChangeIO]


class BaselineExecuteIn(BaseModel):
    changes: list[BaselineChangeIO]
    allow_rerun: bool = Field(default=False, validation_alias=AliasChoices("allow_rerun", "allowRerun"))
    override_reason: str | None = Field(
        default=None,
        max_length=500,
        validation_alias=AliasChoices("override_reason", "overrideReason"),
    )
    seed_batch_id: str | None = Field(
        default=None,
        max_length=64,
        description="Client-chosen batch id. Re-posting a recorded batch id returns the recorded run.",
        validation_alias=AliasChoices("seed_batch_id", "seedBatchId"),
    )

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "changes": [
                    {
                        "item_id": "item-id-here",
                        "location_id": "warehouse-location-id",
                        "counted_qty": 12,
                        "current_qty": 6,
                        "delta": 6,
                    }
                ],
                "allow_rerun": False,
                "override_reason": None,
                "seed_batch_id": "day0-2026-10",
            }
        },
    )


class BaselineRunOut(BaseModel):
    id: str
    sequence: int
    seed_batch_id: str
    executed_by: str
    override_reason: str | None = None
    changes_count: int
    units_delta: int
    executed_at: datetime


class BaselineExecuteOut(BaseModel):
    run: BaselineRunOut
    replayed: bool
    entries: list[LedgerEntryOut]


class BaselineStatusOut(BaseModel):
    state: str
    runs: list[BaselineRunOut]
