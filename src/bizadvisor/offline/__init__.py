"""Offline-first durability: the queue of actions awaiting sync."""

from bizadvisor.offline.models import QueuedItem, QueueItemStatus, QueueItemType, QueueStats
from bizadvisor.offline.queue import OfflineQueue

__all__ = [
    "OfflineQueue",
    "QueueItemStatus",
    "QueueItemType",
    "QueueStats",
    "QueuedItem",
]
