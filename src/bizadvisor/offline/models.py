"""
Domain models for the offline queue.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from bizadvisor.shared.clock import as_utc


class QueueItemType(str, Enum):
    AUDIO = "audio"
    TEXT = "text"
    CONTEXT = "context"
    FEEDBACK = "feedback"


class QueueItemStatus(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DEAD_LETTER = "dead_letter"


@dataclass
class QueuedItem:
    """One pending user action, owned by the queue until synced or dead-lettered."""

    type: QueueItemType
    payload: dict[str, Any]
    session_id: str
    timestamp: datetime
    user_id: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    retry_count: int = 0
    status: QueueItemStatus = QueueItemStatus.PENDING
    last_error: str | None = None

    def to_wire(self) -> dict[str, Any]:
        """Upload representation; the server deduplicates on `id`."""
        return {
            "id": self.id,
            "type": self.type.value,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "timestamp": as_utc(self.timestamp).isoformat(),
            "retry_count": self.retry_count,
            "payload": self.payload,
        }


@dataclass(frozen=True)
class QueueStats:
    pending: int
    in_flight: int
    dead_letter: int
    capacity: int

    @property
    def occupied(self) -> int:
        return self.pending + self.in_flight

    @property
    def free(self) -> int:
        return max(0, self.capacity - self.occupied)
