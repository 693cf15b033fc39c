"""
Context store: durable, per-session serialized access to SessionContext.

Every mutation goes through `apply`, which loads the record, runs a mutator and
saves the result in one transaction while holding the session's asyncio lock.
Different sessions never contend.
"""

import asyncio
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Callable, TypeVar

from bizadvisor.context.ids import new_session_id
from bizadvisor.context.merger import ContextMerger
from bizadvisor.context.models import (
    CloseReason,
    DialoguePhase,
    LocationInfo,
    Provenance,
    SessionContext,
    SessionStatus,
    TrackedValue,
    UserProfile,
)
from bizadvisor.context.repository import ContextRepository
from bizadvisor.shared.clock import Clock, as_utc, utc_now
from bizadvisor.shared.database import DatabaseManager
from bizadvisor.shared.exceptions import (
    BizAdvisorError,
    SessionClosedError,
    SessionNotFoundError,
    SessionTimeoutError,
)
from bizadvisor.shared.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

SessionMutator = Callable[[SessionContext], T]

_PARTIAL_KEYS = frozenset({"business_type", "operating_conditions", "location", "preferences"})


class ContextStore:
    """Versioned, mergeable session and user state."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        merger: ContextMerger | None = None,
        clock: Clock = utc_now,
        session_timeout_seconds: float = 30 * 60,
    ) -> None:
        self._db = db_manager
        self._merger = merger or ContextMerger()
        self._clock = clock
        self._timeout = session_timeout_seconds
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def merger(self) -> ContextMerger:
        return self._merger

    @property
    def session_timeout_seconds(self) -> float:
        return self._timeout

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _forget_lock(self, key: str) -> None:
        """Drop the lock of a session that will take no more turns."""
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    async def create_session(self, user_id: str) -> str:
        """Start a session, seeded from the user's most recent closed session.

        Args:
            user_id: Owning user.

        Returns:
            The new local session id.
        """
        if not user_id:
            raise ValueError("user_id is required")

        now = self._clock()
        session_id = new_session_id()
        context = SessionContext(
            session_id=session_id,
            user_id=user_id,
            created_at=now,
            last_updated=now,
        )

        async with self._lock(f"user:{user_id}"):
            async with self._db.session() as db:
                repo = ContextRepository(db)
                previous = await repo.latest_closed_session(user_id)
                seeded: list[str] = []
                if previous is not None:
                    seeded = self._merger.seed_session(context, previous)

                profile = await repo.get_profile(user_id) or UserProfile(user_id=user_id)
                profile.session_count += 1
                profile.last_active = now
                if profile.preferred_languages and previous is None:
                    context.language = profile.language

                await repo.save_session(context)
                await repo.save_profile(profile)

        logger.info(
            "Session created",
            extra={
                "session_id": session_id,
                "user_id": user_id,
                "seeded_fields": seeded,
            },
        )
        return session_id

    async def get_session_context(self, session_id: str) -> SessionContext:
        """Read the latest committed state of a session.

        Raises:
            SessionNotFoundError: If no such session exists.
        """
        async with self._db.session() as db:
            context = await ContextRepository(db).get_session(session_id)
        if context is None:
            raise SessionNotFoundError(session_id)
        return context

    async def apply(
        self,
        session_id: str,
        mutator: SessionMutator[T],
    ) -> tuple[SessionContext, T]:
        """Atomic read-modify-write of one session.

        The mutator receives a private copy of the context and may change it in
        place; its return value is passed back to the caller. If it raises,
        nothing is written.

        Raises:
            SessionNotFoundError: Unknown session.
            SessionClosedError: The session is closed.
            SessionTimeoutError: The session had expired; it is now closed.
        """
        timed_out = False
        async with self._lock(session_id):
            now = self._clock()
            async with self._db.session() as db:
                repo = ContextRepository(db)
                context = await repo.get_session(session_id)
                if context is None:
                    raise SessionNotFoundError(session_id)
                if context.is_closed:
                    raise SessionClosedError(session_id)
                if context.is_expired(now, self._timeout):
                    self._close(context, CloseReason.TIMEOUT, now)
                    await repo.save_session(context)
                    timed_out = True
                else:
                    result = mutator(context)
                    context.version += 1
                    context.last_updated = max(as_utc(context.last_updated), as_utc(now))
                    await repo.save_session(context)

        if timed_out:
            self._forget_lock(session_id)
            logger.info(
                "Session closed on write after inactivity",
                extra={"session_id": session_id, "close_reason": CloseReason.TIMEOUT.value},
            )
            raise SessionTimeoutError(session_id)
        return context, result

    async def update_context(self, session_id: str, partial: Mapping[str, Any]) -> SessionContext:
        """Set fields directly as explicit values.

        Args:
            session_id: Target session.
            partial: Any of ``business_type``, ``operating_conditions`` (str),
                ``location`` (str or LocationInfo) and ``preferences`` (dict of str).

        Returns:
            The updated context.
        """
        unknown = set(partial) - _PARTIAL_KEYS
        if unknown:
            raise ValueError(f"Unsupported context fields: {sorted(unknown)}")

        def _mutate(context: SessionContext) -> None:
            now = as_utc(self._clock())
            for name in ("business_type", "operating_conditions"):
                if name in partial:
                    value = partial[name]
                    setattr(
                        context,
                        name,
                        TrackedValue(
                            value=value,
                            provenance=Provenance.EXPLICIT if value is not None else Provenance.UNSET,
                            confidence=1.0 if value is not None else 0.0,
                            updated_at=now,
                        ),
                    )
            if "location" in partial:
                location = partial["location"]
                if isinstance(location, LocationInfo):
                    context.location = location
                else:
                    context.location.explicit = location
                    context.location.explicit_at = now
                    context.location.explicit_confidence = 1.0 if location else 0.0
            for key, value in (partial.get("preferences") or {}).items():
                context.preferences[key] = TrackedValue(
                    value=value,
                    provenance=Provenance.EXPLICIT,
                    confidence=1.0,
                    updated_at=now,
                )

        context, _ = await self.apply(session_id, _mutate)
        return context

    async def close_session(
        self,
        session_id: str,
        reason: CloseReason = CloseReason.EXPLICIT,
    ) -> SessionContext:
        """Close a session. Closing an already-closed session is a no-op."""
        async with self._lock(session_id):
            async with self._db.session() as db:
                repo = ContextRepository(db)
                context = await repo.get_session(session_id)
                if context is None:
                    raise SessionNotFoundError(session_id)
                if context.is_closed:
                    return context
                self._close(context, reason, self._clock())
                await repo.save_session(context)

        self._forget_lock(session_id)
        logger.info(
            "Session closed",
            extra={"session_id": session_id, "close_reason": reason.value},
        )
        return context

    async def archive_session(self, session_id: str) -> SessionContext:
        """Stamp the archival time; the only write a closed session accepts."""
        async with self._lock(session_id):
            async with self._db.session() as db:
                repo = ContextRepository(db)
                context = await repo.get_session(session_id)
                if context is None:
                    raise SessionNotFoundError(session_id)
                if not context.is_closed:
                    raise BizAdvisorError(
                        "Only closed sessions can be archived", session_id=session_id
                    )
                if context.archived_at is None:
                    context.archived_at = self._clock()
                    await repo.save_session(context)
        return context

    async def assign_server_suffix(self, session_id: str, suffix: str) -> SessionContext:
        """Record the server half of the global session id.

        The suffix is write-once; a different suffix for the same session is
        ignored and logged. Allowed on closed sessions.
        """
        async with self._lock(session_id):
            async with self._db.session() as db:
                repo = ContextRepository(db)
                context = await repo.get_session(session_id)
                if context is None:
                    raise SessionNotFoundError(session_id)
                if context.server_suffix is None:
                    context.server_suffix = suffix
                    await repo.save_session(context)
                elif context.server_suffix != suffix:
                    logger.warning(
                        "Ignoring second server suffix",
                        extra={
                            "session_id": session_id,
                            "current_suffix": context.server_suffix,
                            "offered_suffix": suffix,
                        },
                    )
        return context

    async def close_expired(self, now: datetime | None = None) -> list[str]:
        """Close every active session idle longer than the timeout.

        Safe to run repeatedly; sessions touched since the scan are re-checked
        under their lock.

        Returns:
            Ids of the sessions closed by this call.
        """
        now = now or self._clock()
        async with self._db.session() as db:
            candidates = [
                c.session_id
                for c in await ContextRepository(db).list_active_sessions()
                if c.is_expired(now, self._timeout)
            ]

        closed: list[str] = []
        for session_id in candidates:
            async with self._lock(session_id):
                async with self._db.session() as db:
                    repo = ContextRepository(db)
                    context = await repo.get_session(session_id)
                    if context is None or context.is_closed:
                        continue
                    if not context.is_expired(now, self._timeout):
                        continue
                    self._close(context, CloseReason.TIMEOUT, now)
                    await repo.save_session(context)
                    closed.append(session_id)

        for session_id in closed:
            self._forget_lock(session_id)
        if closed:
            logger.info(
                "Expired sessions closed",
                extra={"count": len(closed), "session_ids": closed},
            )
        return closed

    @staticmethod
    def _close(context: SessionContext, reason: CloseReason, now: datetime) -> None:
        context.status = SessionStatus.CLOSED
        context.close_reason = reason
        context.closed_at = now
        context.dialogue.phase = DialoguePhase.CLOSED
        context.dialogue.pending_field = None
        context.dialogue.pending_subdetail = None

    # ------------------------------------------------------------------
    # User profiles
    # ------------------------------------------------------------------
    async def get_user_profile(self, user_id: str) -> UserProfile:
        """Profile of a user; an empty profile if none is stored yet."""
        async with self._db.session() as db:
            profile = await ContextRepository(db).get_profile(user_id)
        return profile or UserProfile(user_id=user_id)

    async def update_user_profile(
        self,
        user_id: str,
        mutator: Callable[[UserProfile], UserProfile | None],
    ) -> UserProfile:
        """Atomic read-modify-write of a user profile.

        The mutator may change the profile in place or return a replacement.
        """
        async with self._lock(f"user:{user_id}"):
            async with self._db.session() as db:
                repo = ContextRepository(db)
                profile = await repo.get_profile(user_id) or UserProfile(user_id=user_id)
                replacement = mutator(profile)
                if replacement is not None:
                    profile = replacement
                await repo.save_profile(profile)
        return profile

    async def list_user_ids(self) -> list[str]:
        async with self._db.session() as db:
            return await ContextRepository(db).list_user_ids()
