from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.db.base import Base


class BaselineSeedRun(Base):
    """Persisted Day-0 seed state: no rows means NOT_RUN, any row means RUN."""

    __tablename__ = "baseline_seed_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    # Unique so two concurrent first runs cannot both commit.
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    seed_batch_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    executed_by: Mapped[str] = mapped_column(String(120), nullable=False)
    override_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    changes_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    units_delta: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    executed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
