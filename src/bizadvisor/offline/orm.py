"""
SQLAlchemy table for queued items.
"""

from typing import Any

from sqlalchemy import JSON, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from bizadvisor.shared.database import Base


class QueuedItemRecord(Base):
    """Persisted QueuedItem. `seq` breaks ties between equal timestamps."""

    __tablename__ = "queued_items"
    __table_args__ = (Index("ix_queued_items_status_order", "status", "created_epoch", "seq"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    item_type: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    session_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_epoch: Mapped[float] = mapped_column(Float, nullable=False)
    updated_epoch: Mapped[float] = mapped_column(Float, nullable=False)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
