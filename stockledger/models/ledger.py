from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.db.base import Base

LEDGER_REASONS = (
    "adjustment",
    "transfer_out",
    "transfer_in",
    "consumption",
    "receipt",
    "baseline_seed",
)

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
EntryId = BigInteger().with_variant(Integer, "sqlite")


class LedgerEntry(Base):
    """
    One row per signed quantity change at one location. Rows are never updated
    or deleted; a correction is a new row.
    """
    __tablename__ = "ledger_entries"

    id: Mapped[int] = mapped_column(EntryId, primary_key=True, autoincrement=True)
    item_id: Mapped[str] = mapped_column(String(36), ForeignKey("stock_items.id"), nullable=False)
    # No FK: an operator hard-deleting a location must leave a detectable orphan, not a failed delete.
    location_id: Mapped[str] = mapped_column(String(36), nullable=False)
    quantity_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(20), nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)  # PO id, project id, batch id
    correlation_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    note: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    actor: Mapped[str] = mapped_column(String(120), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("quantity_delta <> 0", name="ck_ledger_entries_nonzero_delta"),
        CheckConstraint(
            "reason IN ('adjustment', 'transfer_out', 'transfer_in', 'consumption', 'receipt', 'baseline_seed')",
            name="ck_ledger_entries_reason",
        ),
        Index("ix_ledger_entries_item_location_id", "item_id", "location_id", "id"),
        Index("ix_ledger_entries_location_id", "location_id", "id"),
        Index("ix_ledger_entries_reference", "reference"),
    )


class Balance(Base):
    """
    Projection of the ledger: quantity_on_hand is the sum of quantity_delta for
    the pair up to as_of_entry_id. Only the balance projector writes these rows.
    """
    __tablename__ = "balances"

    item_id: Mapped[str] = mapped_column(String(36), ForeignKey("stock_items.id"), primary_key=True)
    location_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    quantity_on_hand: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    as_of_entry_id: Mapped[int] = mapped_column(EntryId, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_balances_location_id", "location_id"),
    )
