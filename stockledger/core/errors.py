"""
Typed errors raised by the stock ledger services.

Every error carries a machine-readable ``code``, the HTTP ``status_code`` the
API renders it with, and a ``context`` dict holding the offending ids so a
caller can build a specific message without parsing text.

    LedgerError
    +-- InvalidLocation
    +-- LocationNotFound
    +-- DuplicateActiveLocations
    +-- LocationNotEmpty
    +-- MissingCoreLocation
    +-- ItemNotFound
    +-- ItemNotTracked
    +-- InvalidQuantity
    |   +-- InsufficientStock
    +-- DuplicateStocktakeRow
    +-- IdempotencyConflict
    +-- AlreadyExecuted
    +-- MissingOverrideReason

``DuplicateEntry`` is not an error here: an idempotent replay resolves to the
original result and never reaches the caller as a failure.
"""

from typing import Any


class LedgerError(Exception):
    code = "ledger_error"
    status_code = 400

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class InvalidLocation(LedgerError):
    code = "invalid_location"

    def __init__(self, location_id: str | None, reason: str) -> None:
        super().__init__(f"Location {location_id} cannot be used: {reason}", location_id=location_id, reason=reason)
        self.location_id = location_id


class LocationNotFound(LedgerError):
    code = "location_not_found"
    status_code = 404

    def __init__(self, *, kind: str, owner_reference: str | None = None, location_id: str | None = None) -> None:
        target = location_id or f"{kind}:{owner_reference or '-'}"
        super().__init__(
            f"No active location found for {target}",
            kind=kind,
            owner_reference=owner_reference,
            location_id=location_id,
        )


class DuplicateActiveLocations(LedgerError):
    code = "duplicate_active_locations"
    status_code = 409

    def __init__(self, *, kind: str, owner_reference: str | None, location_ids: list[str]) -> None:
        super().__init__(
            f"{len(location_ids)} active {kind} locations exist for {owner_reference or 'singleton'}; deduplicate first",
            kind=kind,
            owner_reference=owner_reference,
            location_ids=location_ids,
        )


class LocationNotEmpty(LedgerError):
    code = "location_not_empty"
    status_code = 409

    def __init__(self, location_id: str, item_ids: list[str]) -> None:
        super().__init__(
            f"Location {location_id} still holds stock for {len(item_ids)} item(s)",
            location_id=location_id,
            item_ids=item_ids,
        )


class MissingCoreLocation(LedgerError):
    code = "missing_core_location"
    status_code = 409

    def __init__(self, missing_kinds: list[str]) -> None:
        super().__init__(f"Core locations missing: {', '.join(missing_kinds)}", missing_kinds=missing_kinds)
        self.missing_kinds = missing_kinds


class ItemNotFound(LedgerError):
    code = "item_not_found"
    status_code = 404

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Stock item {item_id} not found", item_id=item_id)


class ItemNotTracked(LedgerError):
    code = "item_not_tracked"

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Stock item {item_id} does not track inventory", item_id=item_id)


class InvalidQuantity(LedgerError):
    code = "invalid_quantity"

    def __init__(
        self,
        message: str,
        *,
        item_id: str | None = None,
        location_id: str | None = None,
        on_hand: int | None = None,
        requested: int | None = None,
    ) -> None:
        super().__init__(
            message,
            item_id=item_id,
            location_id=location_id,
            on_hand=on_hand,
            requested=requested,
        )
        self.item_id = item_id
        self.location_id = location_id
        self.on_hand = on_hand
        self.requested = requested


class InsufficientStock(InvalidQuantity):
    code = "insufficient_stock"

    def __init__(self, *, item_id: str, location_id: str, on_hand: int, requested: int) -> None:
        super().__init__(
            f"Insufficient stock at {location_id}. Available: {on_hand}, Requested: {requested}",
            item_id=item_id,
            location_id=location_id,
            on_hand=on_hand,
            requested=requested,
        )


class DuplicateStocktakeRow(LedgerError):
    code = "duplicate_stocktake_row"

    def __init__(self, item_id: str, location_id: str) -> None:
        super().__init__(
            f"Stocktake lists item {item_id} at {location_id} more than once",
            item_id=item_id,
            location_id=location_id,
        )


class IdempotencyConflict(LedgerError):
    code = "idempotency_conflict"
    status_code = 409

    def __init__(self, idempotency_key: str, field: str) -> None:
        super().__init__(
            f"Idempotency key {idempotency_key} was already used with a different {field}",
            idempotency_key=idempotency_key,
            field=field,
        )


class AlreadyExecuted(LedgerError):
    code = "already_executed"
    status_code = 409

    def __init__(self, last_run_id: str, runs_count: int) -> None:
        super().__init__(
            "Baseline seed already executed; re-run requires allow_rerun and an override reason",
            last_run_id=last_run_id,
            runs_count=runs_count,
        )


class MissingOverrideReason(LedgerError):
    code = "missing_override_reason"

    def __init__(self) -> None:
        super().__init__("override_reason is required when allow_rerun is set")
