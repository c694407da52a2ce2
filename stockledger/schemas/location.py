from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from stockledger.schemas.common import PaginationMeta


class LocationOut(BaseModel):
    id: str
    kind: str
    owner_reference: str | None = None
    display_name: str
    is_active: bool
    deactivated_at: datetime | None = None
    deactivation_reason: str | None = None
    created_at: datetime


class LocationListOut(BaseModel):
    items: list[LocationOut]
    pagination: PaginationMeta


class EnsureCoreOut(BaseModel):
    created_kinds: list[str]
    locations: list[LocationOut]


class DeduplicateIn(BaseModel):
    kind: str = Field(pattern="^(warehouse|loading_bay|vehicle|project)$")
    owner_reference: str | None = Field(
        default=None,
        max_length=64,
        validation_alias=AliasChoices("owner_reference", "ownerReference"),
    )

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "kind": "vehicle",
                "owner_reference": "vehicle-7",
            }
        },
    )


class MigratedBalanceOut(BaseModel):
    item_id: str
    from_location_id: str
    to_location_id: str
    quantity: int


class DeduplicateOut(BaseModel):
    kind: str
    owner_reference: str | None = None
    kept_location_id: str | None = None
    deactivated_location_ids: list[str]
    migrated_balances: list[MigratedBalanceOut]
    correlation_id: str | None = None
    changed: bool


class OwnerLocationIn(BaseModel):
    kind: str = Field(pattern="^(vehicle|project)$")
    owner_reference: str = Field(
        min_length=1,
        max_length=64,
        validation_alias=AliasChoices("owner_reference", "ownerReference"),
    )
    display_name: str | None = Field(default=None, max_length=120)

    @field_validator("owner_reference")
    @classmethod
    def normalize_owner_reference(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("owner_reference cannot be empty")
        return cleaned

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "kind": "vehicle",
                "owner_reference": "vehicle-7",
                "display_name": "Van 7",
            }
        },
    )


class OwnerLocationOut(BaseModel):
    location: LocationOut
    created: bool


class RetireOwnerIn(BaseModel):
    kind: str = Field(pattern="^(vehicle|project)$")
    owner_reference: str = Field(
        min_length=1,
        max_length=64,
        validation_alias=AliasChoices("owner_reference", "ownerReference"),
    )

    model_config = ConfigDict(populate_by_name=True)


class RetireOwnerOut(BaseModel):
    retired: list[LocationOut]
