"""
Data models for the sync layer.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from bizadvisor.shared.clock import as_utc


class SyncState(str, Enum):
    """Connectivity / sync state machine."""

    OFFLINE = "offline"
    DETECTING = "detecting"
    SYNCING = "syncing"
    IDLE = "idle"


@dataclass
class UploadResult:
    """Server verdict on one uploaded batch."""

    accepted_ids: list[str] = field(default_factory=list)
    rejected_ids: list[str] = field(default_factory=list)
    session_suffixes: dict[str, str] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> UploadResult:
        return cls(
            accepted_ids=[str(i) for i in data.get("accepted_ids") or []],
            rejected_ids=[str(i) for i in data.get("rejected_ids") or []],
            session_suffixes={
                str(k): str(v) for k, v in (data.get("session_suffixes") or {}).items()
            },
            errors={str(k): str(v) for k, v in (data.get("errors") or {}).items()},
        )


@dataclass
class ServerUpdate:
    """A context change made elsewhere (another device, the server)."""

    cursor: int
    user_id: str
    produced_at: datetime
    snapshot: dict[str, Any] = field(default_factory=dict)
    session_id: str | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ServerUpdate:
        return cls(
            cursor=int(data["cursor"]),
            user_id=str(data["user_id"]),
            produced_at=as_utc(datetime.fromisoformat(data["produced_at"])),
            snapshot=dict(data.get("snapshot") or {}),
            session_id=data.get("session_id"),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "cursor": self.cursor,
            "user_id": self.user_id,
            "produced_at": as_utc(self.produced_at).isoformat(),
            "snapshot": self.snapshot,
            "session_id": self.session_id,
        }


@dataclass(frozen=True)
class SyncErrorSummary:
    """Items a sync cycle had to dead-letter."""

    item_ids: tuple[str, ...]
    error: str
    at: datetime


@dataclass
class SyncStatus:
    is_online: bool
    is_syncing: bool
    pending_items: int
    dead_letter_items: int
    last_sync: datetime | None
    state: SyncState
    notices: list[SyncErrorSummary] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_online": self.is_online,
            "is_syncing": self.is_syncing,
            "pending_items": self.pending_items,
            "dead_letter_items": self.dead_letter_items,
            "last_sync": as_utc(self.last_sync).isoformat() if self.last_sync else None,
            "state": self.state.value,
            "notices": [
                {"item_ids": list(n.item_ids), "error": n.error, "at": as_utc(n.at).isoformat()}
                for n in self.notices
            ],
        }
