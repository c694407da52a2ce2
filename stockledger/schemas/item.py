from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from stockledger.schemas.common import PaginationMeta


class ItemCreateIn(BaseModel):
    name: str = Field(min_length=1, max_length=160)
    sku: str | None = Field(default=None, max_length=64)
    unit: str = Field(default="each", min_length=1, max_length=20)
    tracks_inventory: bool = Field(
        default=True,
        validation_alias=AliasChoices("tracks_inventory", "tracksInventory"),
    )

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name cannot be empty")
        return cleaned

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "name": "15A circuit breaker",
                "sku": "CB-15A",
                "unit": "each",
                "tracks_inventory": True,
            }
        },
    )


class ItemUpdateIn(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=160)
    sku: str | None = Field(default=None, max_length=64)
    unit: str | None = Field(default=None, min_length=1, max_length=20)
    tracks_inventory: bool | None = Field(
        default=None,
        validation_alias=AliasChoices("tracks_inventory", "tracksInventory"),
    )

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name cannot be empty")
        return cleaned

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "ItemUpdateIn":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self

    model_config = ConfigDict(populate_by_name=True)


class ItemOut(BaseModel):
    id: str
    name: str
    sku: str | None = None
    unit: str
    tracks_inventory: bool
    created_at: datetime


class ItemListOut(BaseModel):
    items: list[ItemOut]
    pagination: PaginationMeta
