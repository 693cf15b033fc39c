"""
Offline queue: a durable write-ahead log of user actions awaiting sync.

Every operation is a single transaction. Items move
pending -> in_flight -> (removed | pending | dead_letter); nothing is dropped
except by `acknowledge` (synced) or `evict` (which returns what it pruned so
the caller can tell the user).
"""

import asyncio
from collections.abc import Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bizadvisor.offline.models import QueuedItem, QueueItemStatus, QueueItemType, QueueStats
from bizadvisor.offline.orm import QueuedItemRecord
from bizadvisor.shared.clock import Clock, from_epoch, to_epoch, utc_now
from bizadvisor.shared.database import DatabaseManager
from bizadvisor.shared.exceptions import QueueFullError
from bizadvisor.shared.logging import get_logger

logger = get_logger(__name__)


def _to_item(record: QueuedItemRecord) -> QueuedItem:
    return QueuedItem(
        id=record.id,
        type=QueueItemType(record.item_type),
        payload=dict(record.payload),
        session_id=record.session_id,
        user_id=record.user_id,
        timestamp=from_epoch(record.created_epoch),
        retry_count=record.retry_count,
        status=QueueItemStatus(record.status),
        last_error=record.last_error,
    )


class OfflineQueue:
    """Durable FIFO of pending user actions."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        max_items: int = 500,
        clock: Clock = utc_now,
    ) -> None:
        self._db = db_manager
        self._max_items = max_items
        self._clock = clock
        self._enqueue_lock = asyncio.Lock()

    @property
    def capacity(self) -> int:
        return self._max_items

    async def _count(self, db: AsyncSession, *statuses: QueueItemStatus) -> int:
        stmt = select(func.count(QueuedItemRecord.id)).where(
            QueuedItemRecord.status.in_([s.value for s in statuses])
        )
        count = (await db.execute(stmt)).scalar()
        return count if count is not None else 0

    async def _records(
        self,
        db: AsyncSession,
        ids: Sequence[str],
        status: QueueItemStatus | None = None,
    ) -> list[QueuedItemRecord]:
        if not ids:
            return []
        stmt = select(QueuedItemRecord).where(QueuedItemRecord.id.in_(list(ids)))
        if status is not None:
            stmt = stmt.where(QueuedItemRecord.status == status.value)
        stmt = stmt.order_by(QueuedItemRecord.created_epoch, QueuedItemRecord.seq)
        return list((await db.execute(stmt)).scalars().all())

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------
    async def enqueue(self, item: QueuedItem) -> str:
        """Persist an item as pending.

        Returns:
            The item id.

        Raises:
            QueueFullError: If pending + in-flight items already fill the queue.
        """
        async with self._enqueue_lock:
            async with self._db.session() as db:
                occupied = await self._count(db, QueueItemStatus.PENDING, QueueItemStatus.IN_FLIGHT)
                if occupied >= self._max_items:
                    raise QueueFullError(
                        "Offline queue is full",
                        capacity=self._max_items,
                        item_type=item.type.value,
                    )
                seq = (await db.execute(select(func.max(QueuedItemRecord.seq)))).scalar() or 0
                now = to_epoch(self._clock())
                db.add(
                    QueuedItemRecord(
                        id=item.id,
                        seq=seq + 1,
                        item_type=item.type.value,
                        status=QueueItemStatus.PENDING.value,
                        session_id=item.session_id,
                        user_id=item.user_id,
                        created_epoch=to_epoch(item.timestamp),
                        updated_epoch=now,
                        retry_count=item.retry_count,
                        last_error=None,
                        payload=item.payload,
                    )
                )
                await db.flush()

        logger.debug(
            "Item enqueued",
            extra={"item_id": item.id, "item_type": item.type.value, "session_id": item.session_id},
        )
        return item.id

    async def _evictable(self, db: AsyncSession, limit: int) -> list[QueuedItemRecord]:
        stmt = (
            select(QueuedItemRecord)
            .where(
                QueuedItemRecord.status == QueueItemStatus.PENDING.value,
                QueuedItemRecord.item_type != QueueItemType.AUDIO.value,
            )
            .order_by(QueuedItemRecord.created_epoch, QueuedItemRecord.seq)
            .limit(limit)
        )
        return list((await db.execute(stmt)).scalars().all())

    async def evict(self, count: int = 1) -> list[QueuedItem]:
        """Prune the oldest pending non-audio items.

        Audio is never evicted. Returns the removed items.
        """
        async with self._enqueue_lock:
            async with self._db.session() as db:
                records = await self._evictable(db, count)
                evicted = [_to_item(r) for r in records]
                for record in records:
                    await db.delete(record)

        if evicted:
            logger.warning(
                "Queue items evicted",
                extra={"item_ids": [i.id for i in evicted], "count": len(evicted)},
            )
        return evicted

    async def reserve(self, slots: int) -> list[QueuedItem]:
        """Make room for `slots` new items, evicting only as much as needed.

        Returns:
            The evicted items (empty when there was room).

        Raises:
            QueueFullError: If audio and in-flight items leave too little room.
                Nothing is evicted in that case.
        """
        async with self._enqueue_lock:
            async with self._db.session() as db:
                occupied = await self._count(db, QueueItemStatus.PENDING, QueueItemStatus.IN_FLIGHT)
                shortfall = occupied + slots - self._max_items
                if shortfall <= 0:
                    return []
                records = await self._evictable(db, shortfall)
                if len(records) < shortfall:
                    raise QueueFullError(
                        "Offline queue is full and holds nothing evictable",
                        capacity=self._max_items,
                    )
                evicted = [_to_item(r) for r in records]
                for record in records:
                    await db.delete(record)

        logger.warning(
            "Queue items evicted to make room",
            extra={"item_ids": [i.id for i in evicted], "count": len(evicted), "slots": slots},
        )
        return evicted

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------
    async def dequeue_batch(self, max_items: int) -> list[QueuedItem]:
        """Mark up to `max_items` oldest pending items in-flight and return them."""
        async with self._db.session() as db:
            stmt = (
                select(QueuedItemRecord)
                .where(QueuedItemRecord.status == QueueItemStatus.PENDING.value)
                .order_by(QueuedItemRecord.created_epoch, QueuedItemRecord.seq)
                .limit(max_items)
            )
            records = list((await db.execute(stmt)).scalars().all())
            now = to_epoch(self._clock())
            for record in records:
                record.status = QueueItemStatus.IN_FLIGHT.value
                record.updated_epoch = now
            await db.flush()
            return [_to_item(r) for r in records]

    async def acknowledge(self, ids: Sequence[str]) -> list[QueuedItem]:
        """Remove synced items. Returns them as they were at removal."""
        async with self._db.session() as db:
            records = await self._records(db, ids)
            removed = [_to_item(r) for r in records]
            if records:
                await db.execute(
                    delete(QueuedItemRecord).where(
                        QueuedItemRecord.id.in_([r.id for r in records])
                    )
                )
        return removed

    async def requeue(self, ids: Sequence[str], error: str | None = None) -> list[QueuedItem]:
        """Return in-flight items to pending after a failed attempt (retry_count + 1)."""
        async with self._db.session() as db:
            records = await self._records(db, ids, QueueItemStatus.IN_FLIGHT)
            now = to_epoch(self._clock())
            for record in records:
                record.status = QueueItemStatus.PENDING.value
                record.retry_count += 1
                record.updated_epoch = now
                if error is not None:
                    record.last_error = error
            await db.flush()
            return [_to_item(r) for r in records]

    async def claim(self, ids: Sequence[str]) -> list[QueuedItem]:
        """Mark specific pending items in-flight (used to retry a batch)."""
        async with self._db.session() as db:
            records = await self._records(db, ids, QueueItemStatus.PENDING)
            now = to_epoch(self._clock())
            for record in records:
                record.status = QueueItemStatus.IN_FLIGHT.value
                record.updated_epoch = now
            await db.flush()
            return [_to_item(r) for r in records]

    async def release(self, ids: Sequence[str]) -> int:
        """Return in-flight items to pending without counting an attempt."""
        async with self._db.session() as db:
            records = await self._records(db, ids, QueueItemStatus.IN_FLIGHT)
            now = to_epoch(self._clock())
            for record in records:
                record.status = QueueItemStatus.PENDING.value
                record.updated_epoch = now
            return len(records)

    async def dead_letter(self, ids: Sequence[str], error: str | None = None) -> list[QueuedItem]:
        """Park items that exhausted their retries."""
        async with self._db.session() as db:
            records = await self._records(db, ids)
            now = to_epoch(self._clock())
            for record in records:
                record.status = QueueItemStatus.DEAD_LETTER.value
                record.updated_epoch = now
                if error is not None:
                    record.last_error = error
            await db.flush()
            items = [_to_item(r) for r in records]

        if items:
            logger.error(
                "Queue items dead-lettered",
                extra={
                    "item_ids": [i.id for i in items],
                    "retry_counts": [i.retry_count for i in items],
                    "error": error,
                },
            )
        return items

    async def recover_in_flight(self) -> int:
        """Return every in-flight item to pending (startup, connectivity loss)."""
        async with self._db.session() as db:
            stmt = select(QueuedItemRecord).where(
                QueuedItemRecord.status == QueueItemStatus.IN_FLIGHT.value
            )
            records = list((await db.execute(stmt)).scalars().all())
            now = to_epoch(self._clock())
            for record in records:
                record.status = QueueItemStatus.PENDING.value
                record.updated_epoch = now

        if records:
            logger.info("Recovered in-flight items", extra={"count": len(records)})
        return len(records)

    async def redrive(self, ids: Sequence[str] | None = None) -> int:
        """Move dead-lettered items back to pending with a fresh retry budget.

        Args:
            ids: Items to redrive; all dead letters when None.
        """
        async with self._db.session() as db:
            stmt = select(QueuedItemRecord).where(
                QueuedItemRecord.status == QueueItemStatus.DEAD_LETTER.value
            )
            if ids is not None:
                stmt = stmt.where(QueuedItemRecord.id.in_(list(ids)))
            records = list((await db.execute(stmt)).scalars().all())
            now = to_epoch(self._clock())
            for record in records:
                record.status = QueueItemStatus.PENDING.value
                record.retry_count = 0
                record.last_error = None
                record.updated_epoch = now

        logger.info("Dead letters redriven", extra={"count": len(records)})
        return len(records)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------
    async def get(self, item_id: str) -> QueuedItem | None:
        async with self._db.session() as db:
            record = await db.get(QueuedItemRecord, item_id)
            return _to_item(record) if record else None

    async def pending_count(self) -> int:
        async with self._db.session() as db:
            return await self._count(db, QueueItemStatus.PENDING)

    async def list_dead_letters(self) -> list[QueuedItem]:
        async with self._db.session() as db:
            stmt = (
                select(QueuedItemRecord)
                .where(QueuedItemRecord.status == QueueItemStatus.DEAD_LETTER.value)
                .order_by(QueuedItemRecord.created_epoch, QueuedItemRecord.seq)
            )
            return [_to_item(r) for r in (await db.execute(stmt)).scalars().all()]

    async def stats(self) -> QueueStats:
        async with self._db.session() as db:
            stmt = select(QueuedItemRecord.status, func.count(QueuedItemRecord.id)).group_by(
                QueuedItemRecord.status
            )
            counts = {status: count for status, count in (await db.execute(stmt)).all()}
        return QueueStats(
            pending=counts.get(QueueItemStatus.PENDING.value, 0),
            in_flight=counts.get(QueueItemStatus.IN_FLIGHT.value, 0),
            dead_letter=counts.get(QueueItemStatus.DEAD_LETTER.value, 0),
            capacity=self._max_items,
        )
