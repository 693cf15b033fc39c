"""
Context repository for database operations.
"""

from typing import Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bizadvisor.context.models import SessionContext, SessionStatus, UserProfile
from bizadvisor.context.orm import SessionRecord, UserProfileRecord
from bizadvisor.shared.clock import to_epoch


class ContextRepositoryProtocol(Protocol):
    """Protocol for context repository operations."""

    async def get_session(self, session_id: str) -> SessionContext | None:
        ...

    async def save_session(self, context: SessionContext) -> None:
        ...

    async def list_active_sessions(self) -> Sequence[SessionContext]:
        ...


class ContextRepository:
    """Repository for session context and user profile records."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    async def get_session(self, session_id: str) -> SessionContext | None:
        """Load a session context by its local id.

        Args:
            session_id: Local session id.

        Returns:
            SessionContext if found, None otherwise.
        """
        record = await self._session.get(SessionRecord, session_id)
        if record is None:
            return None
        return SessionContext.from_dict(record.payload)

    async def save_session(self, context: SessionContext) -> None:
        """Insert or overwrite a session record."""
        payload = context.to_dict()
        record = await self._session.get(SessionRecord, context.session_id)
        if record is None:
            record = SessionRecord(session_id=context.session_id)
            self._session.add(record)
        record.user_id = context.user_id
        record.status = context.status.value
        record.created_epoch = to_epoch(context.created_at)
        record.last_updated_epoch = to_epoch(context.last_updated)
        record.closed_epoch = to_epoch(context.closed_at) if context.closed_at else None
        record.version = context.version
        record.payload = payload
        await self._session.flush()

    async def list_active_sessions(self) -> Sequence[SessionContext]:
        """All sessions still in the active status."""
        stmt = (
            select(SessionRecord)
            .where(SessionRecord.status == SessionStatus.ACTIVE.value)
            .order_by(SessionRecord.last_updated_epoch)
        )
        result = await self._session.execute(stmt)
        return [SessionContext.from_dict(r.payload) for r in result.scalars().all()]

    async def latest_closed_session(
        self,
        user_id: str,
        exclude_session_id: str | None = None,
    ) -> SessionContext | None:
        """Most recently closed session of a user, if any.

        Args:
            user_id: Owning user.
            exclude_session_id: Session to ignore (the one being created).

        Returns:
            The closed session with the newest close time, or None.
        """
        stmt = (
            select(SessionRecord)
            .where(
                SessionRecord.user_id == user_id,
                SessionRecord.status == SessionStatus.CLOSED.value,
            )
            .order_by(SessionRecord.closed_epoch.desc(), SessionRecord.last_updated_epoch.desc())
        )
        if exclude_session_id is not None:
            stmt = stmt.where(SessionRecord.session_id != exclude_session_id)
        result = await self._session.execute(stmt.limit(1))
        record = result.scalars().first()
        return SessionContext.from_dict(record.payload) if record else None

    async def get_profile(self, user_id: str) -> UserProfile | None:
        record = await self._session.get(UserProfileRecord, user_id)
        if record is None:
            return None
        return UserProfile.from_dict(record.payload)

    async def save_profile(self, profile: UserProfile) -> None:
        """Insert or overwrite a user profile record."""
        record = await self._session.get(UserProfileRecord, profile.user_id)
        if record is None:
            record = UserProfileRecord(user_id=profile.user_id)
            self._session.add(record)
        record.last_active_epoch = to_epoch(profile.last_active) if profile.last_active else None
        record.payload = profile.to_dict()
        await self._session.flush()

    async def list_user_ids(self) -> list[str]:
        """Every user known on this device (profiles and session owners)."""
        profiles = await self._session.execute(select(UserProfileRecord.user_id))
        owners = await self._session.execute(select(SessionRecord.user_id).distinct())
        return sorted(set(profiles.scalars().all()) | set(owners.scalars().all()))
