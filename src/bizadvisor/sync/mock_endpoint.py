"""
In-process sync endpoint for tests and offline development.
"""

import asyncio
from datetime import datetime
from typing import Any

from bizadvisor.context.ids import local_part
from bizadvisor.shared.exceptions import ConnectivityLostError, SyncError
from bizadvisor.shared.logging import get_logger
from bizadvisor.sync.models import ServerUpdate, UploadResult

logger = get_logger(__name__)


class MockSyncEndpoint:
    """Scriptable server: idempotent on item id, assigns session suffixes."""

    def __init__(self) -> None:
        self.reachable = True
        self.ping_delay: float = 0.0
        self._received: dict[str, dict[str, Any]] = {}
        self._uploads: list[list[str]] = []
        self._reject_counts: dict[str, int] = {}
        self._failures: list[Exception] = []
        self._suffixes: dict[str, str] = {}
        self._updates: list[ServerUpdate] = []
        self._next_cursor = 1
        self._drop_connection_after: int | None = None
        # Deliver every update regardless of cursor (at-least-once delivery).
        self.replay_all = False

    # ------------------------------------------------------------------
    # Scripting
    # ------------------------------------------------------------------
    def reject_item(self, item_id: str, times: int = 1) -> None:
        """Reject `item_id` in the next `times` uploads that contain it."""
        self._reject_counts[item_id] = self._reject_counts.get(item_id, 0) + times

    def reject_always(self, item_id: str) -> None:
        self._reject_counts[item_id] = 10**9

    def fail_next_uploads(self, count: int = 1, error: Exception | None = None) -> None:
        """Fail whole upload calls with a server error."""
        for _ in range(count):
            self._failures.append(error or SyncError("Mock server error", status_code=503))

    def drop_connection_after(self, uploads: int) -> None:
        """Raise ConnectivityLostError once `uploads` uploads have succeeded."""
        self._drop_connection_after = uploads

    def add_update(
        self,
        user_id: str,
        snapshot: dict[str, Any],
        produced_at: datetime,
        session_id: str | None = None,
    ) -> ServerUpdate:
        update = ServerUpdate(
            cursor=self._next_cursor,
            user_id=user_id,
            produced_at=produced_at,
            snapshot=snapshot,
            session_id=session_id,
        )
        self._next_cursor += 1
        self._updates.append(update)
        return update

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------
    @property
    def received(self) -> dict[str, dict[str, Any]]:
        return dict(self._received)

    @property
    def uploads(self) -> list[list[str]]:
        return [list(u) for u in self._uploads]

    def suffix_for(self, session_id: str) -> str | None:
        return self._suffixes.get(local_part(session_id))

    # ------------------------------------------------------------------
    # SyncEndpoint
    # ------------------------------------------------------------------
    async def ping(self) -> bool:
        if self.ping_delay:
            await asyncio.sleep(self.ping_delay)
        return self.reachable

    async def upload(self, batch: list[dict[str, Any]]) -> UploadResult:
        item_ids = [str(item["id"]) for item in batch]
        if not self.reachable:
            raise ConnectivityLostError("Mock endpoint offline", item_ids=item_ids)
        if self._drop_connection_after is not None and len(self._uploads) >= self._drop_connection_after:
            self.reachable = False
            raise ConnectivityLostError("Mock connection dropped", item_ids=item_ids)

        self._uploads.append(item_ids)
        if self._failures:
            raise self._failures.pop(0)

        result = UploadResult()
        blocked_sessions: set[str] = set()
        for item in batch:
            item_id = str(item["id"])
            session_id = local_part(str(item["session_id"]))
            if session_id in blocked_sessions:
                result.rejected_ids.append(item_id)
                result.errors[item_id] = "blocked by an earlier item"
                continue
            remaining = self._reject_counts.get(item_id, 0)
            if remaining > 0:
                self._reject_counts[item_id] = remaining - 1
                result.rejected_ids.append(item_id)
                result.errors[item_id] = "rejected by mock"
                blocked_sessions.add(session_id)
                continue
            self._received.setdefault(item_id, item)
            result.accepted_ids.append(item_id)
            if session_id not in self._suffixes:
                self._suffixes[session_id] = f"srv{len(self._suffixes) + 1}"
            result.session_suffixes[session_id] = self._suffixes[session_id]

        logger.debug(
            "Mock: upload handled",
            extra={"accepted": len(result.accepted_ids), "rejected": len(result.rejected_ids)},
        )
        return result

    async def download_updates(self, user_id: str, since_cursor: int) -> list[ServerUpdate]:
        if not self.reachable:
            raise ConnectivityLostError("Mock endpoint offline")
        return [
            u
            for u in self._updates
            if u.user_id == user_id and (self.replay_all or u.cursor > since_cursor)
        ]
