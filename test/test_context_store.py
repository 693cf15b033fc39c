"""Tests for the durable context store and the session sweeper."""

import asyncio
from datetime import timedelta

import pytest

from bizadvisor.context.models import (
    CloseReason,
    DialoguePhase,
    Message,
    MessageRole,
    Provenance,
    SessionStatus,
)
from bizadvisor.context.store import ContextStore
from bizadvisor.context.sweeper import SessionSweeper
from bizadvisor.shared.database import DatabaseManager
from bizadvisor.shared.exceptions import (
    BizAdvisorError,
    SessionClosedError,
    SessionNotFoundError,
    SessionTimeoutError,
)

from conftest import START, FakeClock


class TestSessionLifecycle:
    @pytest.mark.asyncio
    async def test_create_session(self, store: ContextStore) -> None:
        session_id = await store.create_session("user-1")

        context = await store.get_session_context(session_id)
        assert session_id.startswith("loc-")
        assert context.user_id == "user-1"
        assert context.status == SessionStatus.ACTIVE
        assert context.dialogue.phase == DialoguePhase.GATHERING
        assert context.created_at == START

        profile = await store.get_user_profile("user-1")
        assert profile.session_count == 1

    @pytest.mark.asyncio
    async def test_create_requires_user(self, store: ContextStore) -> None:
        with pytest.raises(ValueError):
            await store.create_session("")

    @pytest.mark.asyncio
    async def test_unknown_session(self, store: ContextStore) -> None:
        with pytest.raises(SessionNotFoundError):
            await store.get_session_context("loc-missing")

    @pytest.mark.asyncio
    async def test_update_context_sets_explicit_values(self, store: ContextStore) -> None:
        session_id = await store.create_session("user-1")

        context = await store.update_context(
            session_id,
            {"business_type": "tea", "location": "Pune", "preferences": {"budget": "5000"}},
        )

        assert context.business_type.value == "tea"
        assert context.business_type.provenance == Provenance.EXPLICIT
        assert context.location.resolved == "Pune"
        assert context.preferences["budget"].value == "5000"
        assert context.version == 1

    @pytest.mark.asyncio
    async def test_update_context_rejects_unknown_fields(self, store: ContextStore) -> None:
        session_id = await store.create_session("user-1")
        with pytest.raises(ValueError):
            await store.update_context(session_id, {"favourite_colour": "blue"})

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, store: ContextStore) -> None:
        session_id = await store.create_session("user-1")

        first = await store.close_session(session_id)
        second = await store.close_session(session_id, CloseReason.TIMEOUT)

        assert first.status == SessionStatus.CLOSED
        assert second.close_reason == CloseReason.EXPLICIT
        assert second.dialogue.phase == DialoguePhase.CLOSED

    @pytest.mark.asyncio
    async def test_closed_session_rejects_writes(self, store: ContextStore) -> None:
        session_id = await store.create_session("user-1")
        await store.close_session(session_id)

        with pytest.raises(SessionClosedError):
            await store.update_context(session_id, {"business_type": "tea"})

    @pytest.mark.asyncio
    async def test_write_after_timeout_closes_session(
        self, store: ContextStore, clock: FakeClock
    ) -> None:
        session_id = await store.create_session("user-1")
        clock.advance(minutes=31)

        with pytest.raises(SessionTimeoutError):
            await store.update_context(session_id, {"business_type": "tea"})

        context = await store.get_session_context(session_id)
        assert context.status == SessionStatus.CLOSED
        assert context.close_reason == CloseReason.TIMEOUT
        assert context.business_type.is_set is False

    @pytest.mark.asyncio
    async def test_close_expired(self, store: ContextStore, clock: FakeClock) -> None:
        idle = await store.create_session("user-1")
        clock.advance(minutes=20)
        busy = await store.create_session("user-2")
        clock.advance(minutes=15)

        closed = await store.close_expired()

        assert closed == [idle]
        assert (await store.get_session_context(busy)).status == SessionStatus.ACTIVE
        assert await store.close_expired() == []

    @pytest.mark.asyncio
    async def test_closing_drops_session_locks(self, store: ContextStore, clock: FakeClock) -> None:
        explicit = await store.create_session("user-1")
        idle = await store.create_session("user-2")
        await store.update_context(explicit, {"business_type": "tea"})
        await store.update_context(idle, {"business_type": "samosa"})
        assert {explicit, idle} <= set(store._locks)

        await store.close_session(explicit)
        clock.advance(minutes=31)
        await store.close_expired()

        assert explicit not in store._locks
        assert idle not in store._locks

    @pytest.mark.asyncio
    async def test_archive_only_closed_sessions(self, store: ContextStore, clock: FakeClock) -> None:
        session_id = await store.create_session("user-1")
        with pytest.raises(BizAdvisorError):
            await store.archive_session(session_id)

        await store.close_session(session_id)
        clock.advance(minutes=1)
        archived = await store.archive_session(session_id)

        assert archived.archived_at == START + timedelta(minutes=1)


class TestCrossSessionMemory:
    @pytest.mark.asyncio
    async def test_new_session_seeded_from_last_closed(self, store: ContextStore) -> None:
        first = await store.create_session("user-1")
        await store.update_context(first, {"business_type": "tea", "location": "Pune"})
        await store.close_session(first)

        second = await store.create_session("user-1")
        context = await store.get_session_context(second)

        assert context.business_type.value == "tea"
        assert context.business_type.is_explicit
        assert context.location.explicit == "Pune"
        assert context.conversation_history == []
        assert (await store.get_user_profile("user-1")).session_count == 2

    @pytest.mark.asyncio
    async def test_other_users_are_not_seeded(self, store: ContextStore) -> None:
        first = await store.create_session("user-1")
        await store.update_context(first, {"business_type": "tea"})
        await store.close_session(first)

        other = await store.get_session_context(await store.create_session("user-2"))
        assert other.business_type.is_set is False


class TestServerSuffix:
    @pytest.mark.asyncio
    async def test_suffix_is_write_once(self, store: ContextStore) -> None:
        session_id = await store.create_session("user-1")
        await store.close_session(session_id)

        await store.assign_server_suffix(session_id, "srv1")
        context = await store.assign_server_suffix(session_id, "srv2")

        assert context.server_suffix == "srv1"
        assert context.global_id == f"{session_id}.srv1"


class TestConcurrencyAndDurability:
    @pytest.mark.asyncio
    async def test_concurrent_writes_are_serialized(self, store: ContextStore) -> None:
        session_id = await store.create_session("user-1")

        def _append(n: int):
            def _mutate(context):
                context.conversation_history.append(
                    Message(role=MessageRole.USER, text=f"turn {n}", timestamp=START)
                )
            return _mutate

        await asyncio.gather(*(store.apply(session_id, _append(n)) for n in range(10)))

        context = await store.get_session_context(session_id)
        assert context.version == 10
        assert len(context.conversation_history) == 10

    @pytest.mark.asyncio
    async def test_failed_mutation_writes_nothing(self, store: ContextStore) -> None:
        session_id = await store.create_session("user-1")

        def _boom(context):
            context.business_type.value = "tea"
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await store.apply(session_id, _boom)

        context = await store.get_session_context(session_id)
        assert context.business_type.is_set is False
        assert context.version == 0

    @pytest.mark.asyncio
    async def test_state_survives_a_new_store(
        self, store: ContextStore, db_manager: DatabaseManager, clock: FakeClock
    ) -> None:
        session_id = await store.create_session("user-1")
        await store.update_context(session_id, {"operating_conditions": "6am-10pm"})

        restarted = ContextStore(db_manager, clock=clock)
        context = await restarted.get_session_context(session_id)

        assert context.operating_conditions.value == "6am-10pm"
        assert context.created_at == START


class TestSessionSweeper:
    @pytest.mark.asyncio
    async def test_run_once_closes_expired(self, store: ContextStore, clock: FakeClock) -> None:
        session_id = await store.create_session("user-1")
        clock.advance(minutes=45)

        sweeper = SessionSweeper(store, interval_seconds=60)
        closed = await sweeper.run_once()

        assert closed == [session_id]

    @pytest.mark.asyncio
    async def test_start_and_stop(self, store: ContextStore) -> None:
        sweeper = SessionSweeper(store, interval_seconds=60)

        await sweeper.start()
        assert sweeper.is_running
        await sweeper.stop()
        assert not sweeper.is_running
