"""
SQLAlchemy tables for session contexts and user profiles.

Records are keyed JSON payloads; the indexed scalar columns exist for lookups
(by user, by status) and are kept in step with the payload on every save.
"""

from typing import Any

from sqlalchemy import JSON, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from bizadvisor.shared.database import Base


class SessionRecord(Base):
    """Persisted SessionContext."""

    __tablename__ = "session_contexts"

    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    created_epoch: Mapped[float] = mapped_column(Float, nullable=False)
    last_updated_epoch: Mapped[float] = mapped_column(Float, nullable=False)
    closed_epoch: Mapped[float | None] = mapped_column(Float, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)


class UserProfileRecord(Base):
    """Persisted UserProfile."""

    __tablename__ = "user_profiles"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    last_active_epoch: Mapped[float | None] = mapped_column(Float, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
