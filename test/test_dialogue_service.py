"""Tests for the dialogue service, one user turn end to end."""

import pytest

from bizadvisor.advisor.mock import MockBusinessAdvisor
from bizadvisor.context.models import (
    CloseReason,
    ContextField,
    DialoguePhase,
    MessageRole,
    SessionStatus,
)
from bizadvisor.context.store import ContextStore
from bizadvisor.dialogue import prompts
from bizadvisor.dialogue.models import (
    ClarifyReason,
    DecisionKind,
    DialogueDecision,
    NoticeKind,
    UserNotice,
)
from bizadvisor.dialogue.policy import DialoguePolicy
from bizadvisor.dialogue.service import DialogueService
from bizadvisor.dialogue.speech import SpeechOptions, Transcription
from bizadvisor.extraction.extractor import RuleBasedExtractor
from bizadvisor.offline.models import QueueItemType
from bizadvisor.offline.queue import OfflineQueue
from bizadvisor.shared.database import DatabaseManager
from bizadvisor.shared.exceptions import (
    QueueFullError,
    SessionNotFoundError,
    SpeechUnavailableError,
)
from bizadvisor.sync.coordinator import SyncCoordinator
from bizadvisor.sync.mock_endpoint import MockSyncEndpoint

from conftest import FakeClock, FakeSpeechToText


def _service_with_queue(
    queue: OfflineQueue,
    store: ContextStore,
    extractor: RuleBasedExtractor,
    coordinator: SyncCoordinator,
    advisor: MockBusinessAdvisor,
    stt: FakeSpeechToText,
    clock: FakeClock,
) -> DialogueService:
    return DialogueService(
        store=store,
        extractor=extractor,
        policy=DialoguePolicy(),
        queue=queue,
        coordinator=coordinator,
        advisor=advisor,
        stt=stt,
        clock=clock,
    )


class TestConversation:
    @pytest.mark.asyncio
    async def test_gathering_then_guidance(
        self,
        service: DialogueService,
        advisor: MockBusinessAdvisor,
        clock: FakeClock,
    ) -> None:
        context = await service.start_session("user-1")
        session_id = context.session_id

        first = await service.submit_utterance(session_id, text="I sell tea")
        assert first.kind == DecisionKind.ASK
        assert first.field == ContextField.LOCATION
        assert first.text == prompts.question_text(ContextField.LOCATION)
        assert first.speech_text == first.text

        clock.advance(seconds=30)
        follow_up = await service.submit_utterance(session_id, text="My shop is in Kothrud")
        assert follow_up.subdetail == "landmarks"
        assert "Kothrud" in follow_up.text

        clock.advance(seconds=30)
        hours = await service.submit_utterance(session_id, text="near the temple")
        assert hours.field == ContextField.OPERATING_CONDITIONS

        clock.advance(seconds=30)
        guide = await service.submit_utterance(session_id, text="6am to 10pm")
        assert guide.kind == DecisionKind.GUIDE
        assert guide.guidance is not None
        assert "temple" in guide.text

        request = advisor.requests[0]
        assert request.context.business_type == "tea"
        assert request.context.location == "Kothrud"
        assert request.context.operating_conditions == "6am-10pm"
        assert len(request.context.recent_turns) == 6
        assert request.correlation_id

        state = await service.get_session_state(session_id)
        assert len(state.conversation_history) == 8
        assert state.conversation_history[-1].role == MessageRole.ASSISTANT
        assert state.conversation_history[-1].kind == "guide"
        assert service.missing_fields(state) == []

    @pytest.mark.asyncio
    async def test_turn_is_queued_for_sync(
        self, service: DialogueService, queue: OfflineQueue
    ) -> None:
        context = await service.start_session("user-1")

        await service.submit_utterance(context.session_id, text="I sell tea")

        items = await queue.dequeue_batch(10)
        assert [i.type for i in items] == [QueueItemType.TEXT, QueueItemType.CONTEXT]
        assert items[0].payload == {"text": "I sell tea", "language": "en"}
        assert items[1].payload["changed"] == ["business_type"]
        assert items[1].payload["snapshot"]["business_type"]["value"] == "tea"

    @pytest.mark.asyncio
    async def test_turn_without_changes_queues_only_text(
        self, service: DialogueService, queue: OfflineQueue
    ) -> None:
        context = await service.start_session("user-1")

        decision = await service.submit_utterance(context.session_id, text="hello")

        assert decision.field == ContextField.BUSINESS_TYPE
        assert [i.type for i in await queue.dequeue_batch(10)] == [QueueItemType.TEXT]

    @pytest.mark.asyncio
    async def test_hindi_user_gets_hindi_questions(self, service: DialogueService) -> None:
        context = await service.start_session("user-1")

        decision = await service.submit_utterance(context.session_id, text="नमस्ते")

        assert decision.language == "hi"
        assert decision.text in prompts.QUESTIONS["hi"].values()

    @pytest.mark.asyncio
    async def test_requires_exactly_one_input(self, service: DialogueService) -> None:
        context = await service.start_session("user-1")

        with pytest.raises(ValueError):
            await service.submit_utterance(context.session_id)
        with pytest.raises(ValueError):
            await service.submit_utterance(context.session_id, text="hi", audio=b"\x00")

    @pytest.mark.asyncio
    async def test_unknown_session(self, service: DialogueService) -> None:
        with pytest.raises(SessionNotFoundError):
            await service.submit_utterance("loc-missing", text="hello")


class TestDegradation:
    @pytest.mark.asyncio
    async def test_advisor_failure_degrades_to_clarify(
        self, service: DialogueService, advisor: MockBusinessAdvisor
    ) -> None:
        advisor.configure_failure()
        context = await service.start_session("user-1")

        decision = await service.submit_utterance(
            context.session_id, text="I run a tea stall in Pune from 6am to 10pm"
        )

        assert decision.kind == DecisionKind.CLARIFY
        assert decision.reason == ClarifyReason.ADVISOR_UNAVAILABLE
        state = await service.get_session_state(context.session_id)
        assert state.business_type.value == "tea"

    @pytest.mark.asyncio
    async def test_blank_text_is_clarified(self, service: DialogueService) -> None:
        context = await service.start_session("user-1")

        decision = await service.submit_utterance(context.session_id, text="   ")

        assert decision.kind == DecisionKind.CLARIFY
        assert decision.reason == ClarifyReason.UNUSABLE_INPUT
        state = await service.get_session_state(context.session_id)
        assert state.dialogue.turn_count == 1

    @pytest.mark.asyncio
    async def test_audio_is_transcribed(
        self, service: DialogueService, stt: FakeSpeechToText
    ) -> None:
        context = await service.start_session("user-1")

        decision = await service.submit_utterance(context.session_id, audio=b"\x00\x01")

        assert stt.calls == 1
        assert decision.field == ContextField.LOCATION

    @pytest.mark.asyncio
    async def test_low_confidence_transcription(
        self, service: DialogueService, stt: FakeSpeechToText
    ) -> None:
        stt.transcription = Transcription(text="I sell tea", confidence=0.3)
        context = await service.start_session("user-1")

        decision = await service.submit_utterance(context.session_id, audio=b"\x00\x01")

        assert decision.kind == DecisionKind.CLARIFY
        assert decision.reason == ClarifyReason.LOW_STT_CONFIDENCE
        state = await service.get_session_state(context.session_id)
        assert state.business_type.is_set is False

    @pytest.mark.asyncio
    async def test_speech_unavailable_queues_audio(
        self, service: DialogueService, stt: FakeSpeechToText, queue: OfflineQueue
    ) -> None:
        stt.available = False
        context = await service.start_session("user-1")

        decision = await service.submit_utterance(context.session_id, audio=b"\x00\x01")

        assert decision.reason == ClarifyReason.SPEECH_UNAVAILABLE
        items = await queue.dequeue_batch(10)
        assert [i.type for i in items] == [QueueItemType.AUDIO]
        assert items[0].payload == {"audio_b64": "AAE="}


class FakeTextToSpeech:
    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.spoken: list[tuple[str, str]] = []

    async def synthesize(self, text: str, options: SpeechOptions) -> bytes:
        if not self.available:
            raise SpeechUnavailableError("TTS engine offline")
        self.spoken.append((text, options.language))
        return b"RIFF"


class TestSpeechOutput:
    @pytest.mark.asyncio
    async def test_reply_is_synthesized(
        self,
        queue: OfflineQueue,
        store: ContextStore,
        extractor: RuleBasedExtractor,
        coordinator: SyncCoordinator,
        advisor: MockBusinessAdvisor,
        stt: FakeSpeechToText,
        clock: FakeClock,
    ) -> None:
        tts = FakeTextToSpeech()
        service = DialogueService(
            store=store,
            extractor=extractor,
            policy=DialoguePolicy(),
            queue=queue,
            coordinator=coordinator,
            advisor=advisor,
            stt=stt,
            clock=clock,
            tts=tts,
        )
        context = await service.start_session("user-1")

        decision = await service.submit_utterance(context.session_id, text="I sell tea")

        assert decision.speech_audio == b"RIFF"
        assert tts.spoken == [(decision.speech_text, "en")]
        assert decision.to_dict()["speech_audio_base64"] == "UklGRg=="

    @pytest.mark.asyncio
    async def test_unavailable_tts_keeps_text_reply(
        self,
        queue: OfflineQueue,
        store: ContextStore,
        extractor: RuleBasedExtractor,
        coordinator: SyncCoordinator,
        advisor: MockBusinessAdvisor,
        stt: FakeSpeechToText,
        clock: FakeClock,
    ) -> None:
        service = DialogueService(
            store=store,
            extractor=extractor,
            policy=DialoguePolicy(),
            queue=queue,
            coordinator=coordinator,
            advisor=advisor,
            stt=stt,
            clock=clock,
            tts=FakeTextToSpeech(available=False),
        )
        context = await service.start_session("user-1")

        decision = await service.submit_utterance(context.session_id, text="I sell tea")

        assert decision.speech_audio is None
        assert decision.text == prompts.question_text(ContextField.LOCATION)


class TestSessionRotation:
    @pytest.mark.asyncio
    async def test_expired_session_is_replaced(
        self, service: DialogueService, clock: FakeClock
    ) -> None:
        old = await service.start_session("user-1")
        await service.submit_utterance(old.session_id, text="I sell tea")
        clock.advance(minutes=31)

        decision = await service.submit_utterance(old.session_id, text="My shop is in Kothrud")

        assert decision.rotated_from == old.session_id
        assert decision.session_id != old.session_id
        assert old.session_id not in service._turn_locks
        assert decision.session_id in service._turn_locks
        previous = await service.get_session_state(old.session_id)
        assert previous.status == SessionStatus.CLOSED
        assert previous.close_reason == CloseReason.TIMEOUT

        fresh = await service.get_session_state(decision.session_id)
        assert fresh.business_type.value == "tea"
        assert fresh.location.resolved == "Kothrud"

    @pytest.mark.asyncio
    async def test_closed_session_is_replaced(self, service: DialogueService) -> None:
        old = await service.start_session("user-1")
        closed = await service.close_session(old.session_id)
        assert closed.close_reason == CloseReason.EXPLICIT

        decision = await service.submit_utterance(old.session_id, text="hello")

        assert decision.rotated_from == old.session_id


class TestStorageAndSyncNotices:
    @pytest.mark.asyncio
    async def test_full_queue_evicts_oldest_text(
        self,
        db_manager: DatabaseManager,
        store: ContextStore,
        extractor: RuleBasedExtractor,
        coordinator: SyncCoordinator,
        advisor: MockBusinessAdvisor,
        stt: FakeSpeechToText,
        clock: FakeClock,
    ) -> None:
        small = OfflineQueue(db_manager, max_items=2, clock=clock)
        service = _service_with_queue(small, store, extractor, coordinator, advisor, stt, clock)
        context = await service.start_session("user-1")
        await service.submit_utterance(context.session_id, text="I sell tea")
        oldest = (await small.dequeue_batch(1))[0]
        await small.release([oldest.id])

        decision = await service.submit_utterance(context.session_id, text="hello")

        assert [n.kind for n in decision.notices] == [NoticeKind.STORAGE_FULL]
        assert decision.notices[0].item_ids == [oldest.id]
        assert decision.notices[0].options == ["retry", "exit"]
        assert await small.get(oldest.id) is None

    @pytest.mark.asyncio
    async def test_full_queue_of_audio_is_reported(
        self,
        db_manager: DatabaseManager,
        store: ContextStore,
        extractor: RuleBasedExtractor,
        coordinator: SyncCoordinator,
        advisor: MockBusinessAdvisor,
        stt: FakeSpeechToText,
        clock: FakeClock,
    ) -> None:
        stt.available = False
        small = OfflineQueue(db_manager, max_items=1, clock=clock)
        service = _service_with_queue(small, store, extractor, coordinator, advisor, stt, clock)
        context = await service.start_session("user-1")
        await service.submit_utterance(context.session_id, audio=b"\x00")

        with pytest.raises(QueueFullError):
            await service.submit_utterance(context.session_id, audio=b"\x01")

    @pytest.mark.asyncio
    async def test_full_queue_leaves_session_untouched(
        self,
        db_manager: DatabaseManager,
        store: ContextStore,
        extractor: RuleBasedExtractor,
        coordinator: SyncCoordinator,
        advisor: MockBusinessAdvisor,
        stt: FakeSpeechToText,
        clock: FakeClock,
    ) -> None:
        stt.available = False
        small = OfflineQueue(db_manager, max_items=1, clock=clock)
        service = _service_with_queue(small, store, extractor, coordinator, advisor, stt, clock)
        context = await service.start_session("user-1")
        await service.submit_utterance(context.session_id, audio=b"\x00")
        before = await service.get_session_state(context.session_id)

        with pytest.raises(QueueFullError):
            await service.submit_utterance(context.session_id, text="I don't want to say")

        after = await service.get_session_state(context.session_id)
        assert after.version == before.version
        assert len(after.conversation_history) == len(before.conversation_history)
        assert after.dialogue.turn_count == before.dialogue.turn_count
        assert after.to_dict() == before.to_dict()
        assert await small.pending_count() == 1

    @pytest.mark.asyncio
    async def test_dead_letters_are_reported_on_next_turn(
        self,
        service: DialogueService,
        coordinator: SyncCoordinator,
        endpoint: MockSyncEndpoint,
    ) -> None:
        await coordinator.on_connectivity_change(True)
        await coordinator.wait_until_settled()
        endpoint.fail_next_uploads(3)
        context = await service.start_session("user-1")

        await service.submit_utterance(context.session_id, text="I sell tea")
        await coordinator.wait_until_settled()
        decision = await service.submit_utterance(context.session_id, text="hello")

        sync_notices = [n for n in decision.notices if n.kind == NoticeKind.SYNC_FAILED]
        assert len(sync_notices) == 1
        assert len(sync_notices[0].item_ids) == 2
        await coordinator.wait_until_settled()


class TestFeedback:
    @pytest.mark.asyncio
    async def test_feedback_is_queued(self, service: DialogueService, queue: OfflineQueue) -> None:
        context = await service.start_session("user-1")

        item_id, notices = await service.submit_feedback(context.session_id, 5, "very useful")

        item = await queue.get(item_id)
        assert item is not None
        assert item.type == QueueItemType.FEEDBACK
        assert item.payload == {"rating": 5, "comment": "very useful"}
        assert notices == []

    @pytest.mark.asyncio
    async def test_rating_out_of_range(self, service: DialogueService) -> None:
        context = await service.start_session("user-1")
        with pytest.raises(ValueError):
            await service.submit_feedback(context.session_id, 0)


class TestDecisionModel:
    def test_defaults_and_serialization(self) -> None:
        decision = DialogueDecision(
            kind=DecisionKind.ASK,
            text="What do you sell",
            session_id="loc-1",
            phase=DialoguePhase.GATHERING,
            field=ContextField.BUSINESS_TYPE,
        )
        other = DialogueDecision(
            kind=DecisionKind.CLARIFY, text="", session_id="loc-2", phase=DialoguePhase.GATHERING
        )
        decision.notices.append(UserNotice(kind=NoticeKind.STORAGE_FULL, message="full"))

        assert other.notices == []
        assert other.field is None
        data = decision.to_dict()
        assert data["field"] == "business_type"
        assert data["notices"][0]["options"] == ["retry", "exit"]
        assert data["speech_audio_base64"] is None
