"""
Sync coordinator: drains the offline queue when connectivity allows.

States: OFFLINE -> DETECTING -> SYNCING -> IDLE, and back to OFFLINE whenever
connectivity is lost. A connectivity-restored signal must be confirmed by a
reachability check within the configured window before any upload happens.

Each batch is retried with exponential backoff; an item that fails
`max_attempts` times is dead-lettered and reported, and the rest of the queue
keeps moving. A session's items are never sent past an unresolved earlier
item of the same session. After the queue is drained, server-side updates for
every known user are pulled and merged through the same ContextMerger as live
input.
"""

import asyncio
from collections.abc import Awaitable, Callable

from bizadvisor.context.ids import local_part
from bizadvisor.context.store import ContextStore
from bizadvisor.extraction.models import ExtractedContext
from bizadvisor.offline.models import QueuedItem
from bizadvisor.offline.queue import OfflineQueue
from bizadvisor.shared.clock import Clock, utc_now
from bizadvisor.shared.exceptions import (
    ConnectivityLostError,
    SessionClosedError,
    SessionNotFoundError,
    SyncError,
)
from bizadvisor.shared.logging import get_logger
from bizadvisor.sync.backoff import backoff_delay
from bizadvisor.sync.cursor import SyncCursorStore
from bizadvisor.sync.endpoint import SyncEndpoint
from bizadvisor.sync.models import (
    ServerUpdate,
    SyncErrorSummary,
    SyncState,
    SyncStatus,
)

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class SyncCoordinator:
    """Connectivity state machine around the offline queue."""

    def __init__(
        self,
        queue: OfflineQueue,
        store: ContextStore,
        endpoint: SyncEndpoint,
        cursors: SyncCursorStore,
        batch_size: int = 20,
        max_attempts: int = 3,
        backoff_base_seconds: float = 1.0,
        reachability_timeout_seconds: float = 5.0,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = utc_now,
    ) -> None:
        self._queue = queue
        self._store = store
        self._endpoint = endpoint
        self._cursors = cursors
        self._batch_size = batch_size
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base_seconds
        self._reachability_timeout = reachability_timeout_seconds
        self._sleep = sleep
        self._clock = clock

        self._state = SyncState.OFFLINE
        self._task: asyncio.Task[None] | None = None
        self._rerun = False
        self._last_sync = None
        self._notices: list[SyncErrorSummary] = []

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state in (SyncState.SYNCING, SyncState.IDLE)

    @property
    def notices(self) -> list[SyncErrorSummary]:
        return list(self._notices)

    def drain_notices(self) -> list[SyncErrorSummary]:
        """Return and forget the dead-letter summaries not yet shown to the user."""
        notices, self._notices = self._notices, []
        return notices

    async def start(self) -> None:
        """Return items left in-flight by a previous run to pending."""
        recovered = await self._queue.recover_in_flight()
        logger.info("Sync coordinator started", extra={"recovered_items": recovered})

    async def stop(self) -> None:
        await self._cancel_task()
        await self._queue.recover_in_flight()
        logger.info("Sync coordinator stopped", extra={"state": self._state.value})

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------
    async def on_connectivity_change(self, online: bool) -> SyncState:
        """Consume the binary reachability signal.

        Args:
            online: True when the network came back, False when it went away.

        Returns:
            The state right after handling the signal.
        """
        if not online:
            await self._go_offline("signal")
            return self._state

        if self._state == SyncState.OFFLINE:
            self._set_state(SyncState.DETECTING)
            self._task = asyncio.create_task(self._detect_and_sync())
        elif self._state == SyncState.IDLE:
            self.sync_now()
        return self._state

    def sync_now(self) -> asyncio.Task[None] | None:
        """Start a sync cycle if online and idle; mark a rerun if one is running."""
        if self._state == SyncState.IDLE and (self._task is None or self._task.done()):
            self._task = asyncio.create_task(self._run_cycles())
            return self._task
        if self._state in (SyncState.SYNCING, SyncState.DETECTING):
            self._rerun = True
        return self._task

    async def wait_until_settled(self) -> None:
        """Wait for the current detect / sync task (and any reruns) to finish."""
        while self._task is not None and not self._task.done():
            task = self._task
            try:
                await task
            except asyncio.CancelledError:
                if task is self._task:
                    break

    async def get_sync_status(self) -> SyncStatus:
        stats = await self._queue.stats()
        return SyncStatus(
            is_online=self.is_online,
            is_syncing=self._state == SyncState.SYNCING,
            pending_items=stats.pending + stats.in_flight,
            dead_letter_items=stats.dead_letter,
            last_sync=self._last_sync,
            state=self._state,
            notices=list(self._notices),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _set_state(self, state: SyncState) -> None:
        if state != self._state:
            logger.info(
                "Sync state changed",
                extra={"from_state": self._state.value, "to_state": state.value},
            )
            self._state = state

    async def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _go_offline(self, cause: str) -> None:
        await self._cancel_task()
        recovered = await self._queue.recover_in_flight()
        self._rerun = False
        self._set_state(SyncState.OFFLINE)
        logger.info(
            "Sync went offline",
            extra={"cause": cause, "recovered_items": recovered},
        )

    async def _detect_and_sync(self) -> None:
        try:
            reachable = await asyncio.wait_for(
                self._endpoint.ping(), timeout=self._reachability_timeout
            )
        except (asyncio.TimeoutError, SyncError):
            reachable = False

        if not reachable:
            self._set_state(SyncState.OFFLINE)
            logger.warning(
                "Reachability not confirmed",
                extra={"timeout_seconds": self._reachability_timeout},
            )
            return

        self._set_state(SyncState.IDLE)
        await self._run_cycles()

    async def _run_cycles(self) -> None:
        self._rerun = True
        while self._rerun and self._state == SyncState.IDLE:
            self._rerun = False
            try:
                await self._cycle()
            except ConnectivityLostError as exc:
                # Runs inside the task being torn down; do not cancel ourselves.
                recovered = await self._queue.recover_in_flight()
                self._rerun = False
                self._set_state(SyncState.OFFLINE)
                logger.warning(
                    "Connectivity lost during sync",
                    extra={"error": str(exc), "recovered_items": recovered},
                )
                return
            except Exception:
                logger.exception("Sync cycle failed")
                await self._queue.recover_in_flight()
                self._set_state(SyncState.IDLE)
                return

    async def _cycle(self) -> None:
        self._set_state(SyncState.SYNCING)
        uploaded = 0
        while True:
            batch = await self._queue.dequeue_batch(self._batch_size)
            if not batch:
                break
            uploaded += await self._upload_with_retry(batch)

        applied = await self._pull_updates()
        self._last_sync = self._clock()
        self._set_state(SyncState.IDLE)
        logger.info(
            "Sync cycle completed",
            extra={"uploaded_items": uploaded, "applied_updates": applied},
        )

    async def _upload_with_retry(self, batch: list[QueuedItem]) -> int:
        """Upload one batch until every item is accepted or dead-lettered.

        Returns:
            Number of items acknowledged.
        """
        items = batch
        acknowledged = 0
        while items:
            result = None
            error = ""
            try:
                result = await self._endpoint.upload([item.to_wire() for item in items])
            except ConnectivityLostError:
                raise
            except SyncError as exc:
                error = str(exc)
                logger.warning(
                    "Batch upload failed",
                    extra={
                        "item_ids": [i.id for i in items],
                        "attempt": max(i.retry_count for i in items) + 1,
                        "status_code": exc.status_code,
                    },
                )

            failed_ids = [i.id for i in items]
            if result is not None:
                accepted_set = set(result.accepted_ids)
                held = self._held_behind_rejections(items, accepted_set)
                if held:
                    # Re-sent after the earlier item of their session settles.
                    await self._queue.release(held)
                    logger.info(
                        "Items held behind a rejected item of their session",
                        extra={"item_ids": held},
                    )
                held_set = set(held)
                items = [i for i in items if i.id not in held_set]
                accepted = [i.id for i in items if i.id in accepted_set]
                removed = await self._queue.acknowledge(accepted)
                acknowledged += len(removed)
                for removed_item in removed:
                    logger.debug(
                        "Item synced",
                        extra={"item_id": removed_item.id, "retry_count": removed_item.retry_count},
                    )
                await self._apply_suffixes(result.session_suffixes)
                failed_ids = [i.id for i in items if i.id not in accepted_set]
                error = "; ".join(
                    result.errors.get(i, "rejected") for i in failed_ids
                ) or "rejected"

            if not failed_ids:
                break

            requeued = await self._queue.requeue(failed_ids, error)
            exhausted = [i for i in requeued if i.retry_count >= self._max_attempts]
            if exhausted:
                await self._queue.dead_letter([i.id for i in exhausted], error)
                self._notices.append(
                    SyncErrorSummary(
                        item_ids=tuple(i.id for i in exhausted),
                        error=error,
                        at=self._clock(),
                    )
                )

            retry = [i for i in requeued if i.retry_count < self._max_attempts]
            if not retry:
                break

            delay = backoff_delay(max(i.retry_count for i in retry), self._backoff_base)
            logger.info(
                "Retrying batch",
                extra={
                    "item_ids": [i.id for i in retry],
                    "attempt": max(i.retry_count for i in retry) + 1,
                    "delay_seconds": delay,
                },
            )
            await self._sleep(delay)
            items = await self._queue.claim([i.id for i in retry])
        return acknowledged

    @staticmethod
    def _held_behind_rejections(items: list[QueuedItem], accepted: set[str]) -> list[str]:
        """Ids that follow a rejected item of the same session, in batch order."""
        blocked_sessions: set[str] = set()
        held: list[str] = []
        for item in items:
            if item.session_id in blocked_sessions:
                held.append(item.id)
            elif item.id not in accepted:
                blocked_sessions.add(item.session_id)
        return held

    async def _apply_suffixes(self, suffixes: dict[str, str]) -> None:
        for session_id, suffix in suffixes.items():
            try:
                await self._store.assign_server_suffix(local_part(session_id), suffix)
            except SessionNotFoundError:
                logger.warning("Suffix for unknown session", extra={"session_id": session_id})

    async def _pull_updates(self) -> int:
        applied = 0
        for user_id in await self._store.list_user_ids():
            cursor = await self._cursors.get(user_id)
            try:
                updates = await self._endpoint.download_updates(user_id, cursor)
            except ConnectivityLostError:
                raise
            except SyncError as exc:
                logger.warning(
                    "Update download failed",
                    extra={"user_id": user_id, "error": str(exc)},
                )
                continue

            for update in sorted(updates, key=lambda u: u.cursor):
                if update.cursor <= cursor:
                    continue
                try:
                    await self._apply_update(update)
                    applied += 1
                except SyncError as exc:
                    # A malformed update is skipped; the cursor still moves past it.
                    logger.warning(
                        "Server update skipped",
                        extra={"user_id": user_id, "cursor": update.cursor, "error": str(exc)},
                    )
                cursor = await self._cursors.advance(user_id, update.cursor)
        return applied

    async def _apply_update(self, update: ServerUpdate) -> None:
        merger = self._store.merger
        session_id = local_part(update.session_id) if update.session_id else ""
        try:
            extracted = ExtractedContext.from_snapshot(session_id, update.snapshot, update.produced_at)
        except (ValueError, TypeError, AttributeError) as exc:
            raise SyncError(f"Malformed server update at cursor {update.cursor}: {exc}") from exc

        if update.session_id:
            try:
                await self._store.apply(session_id, lambda ctx: merger.merge_into(ctx, extracted))
            except (SessionNotFoundError, SessionClosedError) as exc:
                logger.info(
                    "Server update not applied to session",
                    extra={"session_id": session_id, "cursor": update.cursor, "reason": type(exc).__name__},
                )

        await self._store.update_user_profile(
            update.user_id, lambda profile: merger.merge_profile(profile, extracted)
        )
