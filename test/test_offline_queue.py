"""Tests for the durable offline queue."""

from datetime import timedelta

import pytest

from bizadvisor.offline.models import QueuedItem, QueueItemStatus, QueueItemType
from bizadvisor.offline.queue import OfflineQueue
from bizadvisor.shared.database import DatabaseManager
from bizadvisor.shared.exceptions import QueueFullError

from conftest import START, FakeClock


def _item(
    n: int,
    item_type: QueueItemType = QueueItemType.TEXT,
    session_id: str = "loc-1",
) -> QueuedItem:
    return QueuedItem(
        type=item_type,
        payload={"text": f"message {n}"},
        session_id=session_id,
        user_id="user-1",
        timestamp=START + timedelta(seconds=n),
    )


class TestEnqueueDequeue:
    @pytest.mark.asyncio
    async def test_fifo_order(self, queue: OfflineQueue) -> None:
        items = [_item(n) for n in range(5)]
        for item in reversed(items):
            await queue.enqueue(item)

        batch = await queue.dequeue_batch(3)

        assert [i.id for i in batch] == [i.id for i in items[:3]]
        assert all(i.status == QueueItemStatus.IN_FLIGHT for i in batch)
        assert await queue.pending_count() == 2

    @pytest.mark.asyncio
    async def test_same_timestamp_keeps_insertion_order(self, queue: OfflineQueue) -> None:
        first = _item(1)
        second = _item(1, QueueItemType.CONTEXT)
        await queue.enqueue(first)
        await queue.enqueue(second)

        batch = await queue.dequeue_batch(10)

        assert [i.id for i in batch] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_payload_round_trips(self, queue: OfflineQueue) -> None:
        item = _item(1)
        await queue.enqueue(item)

        stored = await queue.get(item.id)

        assert stored is not None
        assert stored.payload == {"text": "message 1"}
        assert stored.timestamp == item.timestamp
        assert stored.to_wire()["id"] == item.id

    @pytest.mark.asyncio
    async def test_acknowledge_removes(self, queue: OfflineQueue) -> None:
        item = _item(1)
        await queue.enqueue(item)
        await queue.dequeue_batch(10)

        removed = await queue.acknowledge([item.id])

        assert [i.id for i in removed] == [item.id]
        assert await queue.get(item.id) is None


class TestCapacity:
    @pytest.mark.asyncio
    async def test_full_queue_raises(self, db_manager: DatabaseManager, clock: FakeClock) -> None:
        small = OfflineQueue(db_manager, max_items=2, clock=clock)
        await small.enqueue(_item(1))
        await small.enqueue(_item(2))

        with pytest.raises(QueueFullError) as exc_info:
            await small.enqueue(_item(3))

        assert exc_info.value.capacity == 2

    @pytest.mark.asyncio
    async def test_in_flight_items_count_towards_capacity(
        self, db_manager: DatabaseManager, clock: FakeClock
    ) -> None:
        small = OfflineQueue(db_manager, max_items=1, clock=clock)
        await small.enqueue(_item(1))
        await small.dequeue_batch(1)

        with pytest.raises(QueueFullError):
            await small.enqueue(_item(2))

    @pytest.mark.asyncio
    async def test_evict_skips_audio(self, queue: OfflineQueue) -> None:
        audio = _item(1, QueueItemType.AUDIO)
        text = _item(2)
        await queue.enqueue(audio)
        await queue.enqueue(text)

        evicted = await queue.evict(1)

        assert [i.id for i in evicted] == [text.id]
        assert await queue.get(audio.id) is not None
        assert await queue.evict(1) == []

    @pytest.mark.asyncio
    async def test_reserve_evicts_only_the_shortfall(
        self, db_manager: DatabaseManager, clock: FakeClock
    ) -> None:
        small = OfflineQueue(db_manager, max_items=3, clock=clock)
        items = [_item(n) for n in range(3)]
        for item in items:
            await small.enqueue(item)

        assert await small.reserve(0) == []
        evicted = await small.reserve(2)

        assert [i.id for i in evicted] == [items[0].id, items[1].id]
        assert await small.pending_count() == 1

    @pytest.mark.asyncio
    async def test_reserve_without_evictable_room_keeps_everything(
        self, db_manager: DatabaseManager, clock: FakeClock
    ) -> None:
        small = OfflineQueue(db_manager, max_items=2, clock=clock)
        await small.enqueue(_item(1, QueueItemType.AUDIO))
        await small.enqueue(_item(2))

        with pytest.raises(QueueFullError):
            await small.reserve(2)

        assert await small.pending_count() == 2


class TestRetryLifecycle:
    @pytest.mark.asyncio
    async def test_requeue_counts_attempts(self, queue: OfflineQueue) -> None:
        item = _item(1)
        await queue.enqueue(item)
        await queue.dequeue_batch(1)

        requeued = await queue.requeue([item.id], "server said no")

        assert requeued[0].retry_count == 1
        assert requeued[0].status == QueueItemStatus.PENDING
        assert requeued[0].last_error == "server said no"

    @pytest.mark.asyncio
    async def test_release_does_not_count_attempt(self, queue: OfflineQueue) -> None:
        item = _item(1)
        await queue.enqueue(item)
        await queue.dequeue_batch(1)

        assert await queue.release([item.id]) == 1
        stored = await queue.get(item.id)
        assert stored is not None
        assert stored.retry_count == 0
        assert stored.status == QueueItemStatus.PENDING

    @pytest.mark.asyncio
    async def test_claim_only_pending(self, queue: OfflineQueue) -> None:
        item = _item(1)
        await queue.enqueue(item)

        claimed = await queue.claim([item.id])
        assert [i.status for i in claimed] == [QueueItemStatus.IN_FLIGHT]
        assert await queue.claim([item.id]) == []

    @pytest.mark.asyncio
    async def test_dead_letter_and_redrive(self, queue: OfflineQueue) -> None:
        item = _item(1)
        await queue.enqueue(item)
        await queue.dequeue_batch(1)
        await queue.requeue([item.id])

        await queue.dead_letter([item.id], "rejected three times")
        stats = await queue.stats()
        assert stats.dead_letter == 1
        assert stats.pending == 0
        assert [i.id for i in await queue.list_dead_letters()] == [item.id]

        assert await queue.redrive() == 1
        stored = await queue.get(item.id)
        assert stored is not None
        assert stored.status == QueueItemStatus.PENDING
        assert stored.retry_count == 0
        assert stored.last_error is None

    @pytest.mark.asyncio
    async def test_recover_in_flight_after_restart(
        self, queue: OfflineQueue, db_manager: DatabaseManager, clock: FakeClock
    ) -> None:
        for n in range(3):
            await queue.enqueue(_item(n))
        await queue.dequeue_batch(2)

        restarted = OfflineQueue(db_manager, max_items=50, clock=clock)
        assert await restarted.recover_in_flight() == 2

        stats = await restarted.stats()
        assert stats.pending == 3
        assert stats.in_flight == 0
        assert stats.free == 47
