from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.db.base import Base

# Exactly one active row must exist system-wide for each singleton kind.
SINGLETON_KINDS = ("warehouse", "loading_bay")
# At most one active row per (kind, owner_reference).
OWNER_SCOPED_KINDS = ("vehicle", "project")
LOCATION_KINDS = SINGLETON_KINDS + OWNER_SCOPED_KINDS


class StockLocation(Base):
    __tablename__ = "stock_locations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    owner_reference: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    display_name: Mapped[str] = mapped_column(String(120), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    deactivated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    deactivation_reason: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        CheckConstraint(
            "kind IN ('warehouse', 'loading_bay', 'vehicle', 'project')",
            name="ck_stock_locations_kind",
        ),
        CheckConstraint(
            "(kind IN ('vehicle', 'project') AND owner_reference IS NOT NULL) "
            "OR (kind IN ('warehouse', 'loading_bay') AND owner_reference IS NULL)",
            name="ck_stock_locations_owner_reference",
        ),
        Index("ix_stock_locations_kind_owner_active", "kind", "owner_reference", "is_active"),
    )

    @property
    def is_singleton(self) -> bool:
        return self.kind in SINGLETON_KINDS
