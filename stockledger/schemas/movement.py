from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class AdjustIn(BaseModel):
    item_id: str
    location_id: str
    delta: int = Field(..., description="Positive adds stock, negative removes stock. Cannot be zero.")
    note: str | None = Field(default=None, max_length=255)
    idempotency_key: str = Field(min_length=1, max_length=160)
    allow_negative: bool = Field(
        default=False,
        description="Admin-only override that lets the balance go below zero.",
    )

    @field_validator("delta")
    @classmethod
    def validate_non_zero_delta(cls, value: int) -> int:
        if value == 0:
            raise ValueError("delta cannot be zero")
        return value

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "item_id": "item-id-here",
                "location_id": "warehouse-location-id",
                "delta": 10,
                "note": "Found in back room",
                "idempotency_key": "adj-2026-10-17-001",
            }
        }
    )


class TransferIn(BaseModel):
    item_id: str
    from_location_id: str
    to_location_id: str
    qty: int = Field(gt=0)
    note: str | None = Field(default=None, max_length=255)
    idempotency_key: str = Field(min_length=1, max_length=160)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "item_id": "item-id-here",
                "from_location_id": "warehouse-location-id",
                "to_location_id": "vehicle-location-id",
                "qty": 4,
                "idempotency_key": "xfer-2026-10-17-001",
            }
        }
    )


class ConsumeIn(BaseModel):
    item_id: str
    location_id: str
    project_id: str = Field(min_length=1, max_length=120)
    qty: int = Field(gt=0)
    note: str | None = Field(default=None, max_length=255)
    idempotency_key: str = Field(min_length=1, max_length=160)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "item_id": "item-id-here",
                "location_id": "vehicle-location-id",
                "project_id": "job-1042",
                "qty": 2,
                "idempotency_key": "use-job-1042-breakers",
            }
        }
    )


class ReceiptLineIn(BaseModel):
    line_id: str = Field(
        min_length=1,
        max_length=60,
        validation_alias=AliasChoices("line_id", "lineId"),
    )
    item_id: str
    qty: int = Field(gt=0)

    model_config = ConfigDict(populate_by_name=True)


class ReceiveIn(BaseModel):
    po_id: str = Field(min_length=1, max_length=80)
    lines: list[ReceiptLineIn] = Field(min_length=1)
    idempotency_key_prefix: str | None = Field(default=None, max_length=90)
    note: str | None = Field(default=None, max_length=255)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "po_id": "PO-2210",
                "lines": [
                    {"line_id": "1", "item_id": "item-id-here", "qty": 24},
                    {"line_id": "2", "item_id": "other-item-id", "qty": 6},
                ],
            }
        }
    )


class LedgerEntryOut(BaseModel):
    id: int
    item_id: str
    location_id: str
    quantity_delta: int
    reason: str
    reference: str | None = None
    correlation_id: str
    note: str | None = None
    actor: str
    idempotency_key: str
    created_at: datetime


class BalanceOut(BaseModel):
    item_id: str
    location_id: str
    quantity_on_hand: int
    as_of_entry_id: int


class SkippedLineOut(BaseModel):
    line_id: str
    item_id: str
    reason: str


class MovementOut(BaseModel):
    operation: str
    correlation_id: str
    replayed: bool
    entries: list[LedgerEntryOut]
    balances: list[BalanceOut]
    skipped_lines: list[SkippedLineOut] = Field(default_factory=list)


class LedgerEntryListOut(BaseModel):
    items: list[LedgerEntryOut]
    next_since_entry_id: int | None = None


class BalanceListOut(BaseModel):
    item_id: str
    total_on_hand: int
    items: list[BalanceOut]
