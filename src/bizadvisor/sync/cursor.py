"""
Persisted per-user watermark of applied server updates.
"""

from sqlalchemy import Float, Integer, String
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from bizadvisor.shared.clock import Clock, to_epoch, utc_now
from bizadvisor.shared.database import Base, DatabaseManager


class SyncCursorRecord(Base):
    __tablename__ = "sync_cursors"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    cursor: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_epoch: Mapped[float] = mapped_column(Float, nullable=False)


class SyncCursorRepository:
    """Repository for sync cursor rows."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: str) -> int:
        record = await self._session.get(SyncCursorRecord, user_id)
        return record.cursor if record else 0

    async def advance(self, user_id: str, cursor: int, at: float) -> int:
        """Move the watermark forward; never backwards. Returns the stored value."""
        record = await self._session.get(SyncCursorRecord, user_id)
        if record is None:
            record = SyncCursorRecord(user_id=user_id, cursor=cursor, updated_epoch=at)
            self._session.add(record)
        elif cursor > record.cursor:
            record.cursor = cursor
            record.updated_epoch = at
        await self._session.flush()
        return record.cursor


class SyncCursorStore:
    """Transactional access to cursors for the coordinator."""

    def __init__(self, db_manager: DatabaseManager, clock: Clock = utc_now) -> None:
        self._db = db_manager
        self._clock = clock

    async def get(self, user_id: str) -> int:
        async with self._db.session() as db:
            return await SyncCursorRepository(db).get(user_id)

    async def advance(self, user_id: str, cursor: int) -> int:
        async with self._db.session() as db:
            return await SyncCursorRepository(db).advance(user_id, cursor, to_epoch(self._clock()))
