"""
Dialogue service: one user turn, end to end.

utterance -> (STT) -> extractor -> merger + policy inside one store write ->
offline queue -> question text or advisor guidance -> sync kick.

Turns of one session are processed in submission order; a per-session turn
lock spans extraction through persistence.
"""

import asyncio
import base64
import uuid

from bizadvisor.advisor.gateway import BusinessAdvisor
from bizadvisor.advisor.models import AdvisorContext, AdvisorError, GuidanceResponse
from bizadvisor.context.models import (
    CloseReason,
    ContextField,
    Message,
    MessageRole,
    SessionContext,
)
from bizadvisor.context.store import ContextStore
from bizadvisor.dialogue import prompts
from bizadvisor.dialogue.models import (
    ClarifyReason,
    DecisionKind,
    DialogueDecision,
    NoticeKind,
    PolicyDecision,
    TurnInput,
    UserNotice,
)
from bizadvisor.dialogue.policy import DialoguePolicy
from bizadvisor.dialogue.speech import SpeechOptions, SpeechToText, TextToSpeech
from bizadvisor.extraction.extractor import ExtractorProtocol
from bizadvisor.extraction.models import ExtractedContext
from bizadvisor.offline.models import QueuedItem, QueueItemType
from bizadvisor.offline.queue import OfflineQueue
from bizadvisor.shared.clock import Clock, utc_now
from bizadvisor.shared.exceptions import (
    ExtractionError,
    QueueFullError,
    SessionClosedError,
    SpeechUnavailableError,
)
from bizadvisor.shared.logging import correlation_id_var, get_logger, session_id_var
from bizadvisor.sync.coordinator import SyncCoordinator

logger = get_logger(__name__)

RECENT_TURNS_FOR_ADVISOR = 6


class DialogueService:
    """Facade exposed to the API layer."""

    def __init__(
        self,
        store: ContextStore,
        extractor: ExtractorProtocol,
        policy: DialoguePolicy,
        queue: OfflineQueue,
        coordinator: SyncCoordinator,
        advisor: BusinessAdvisor,
        stt: SpeechToText | None = None,
        stt_min_confidence: float = 0.7,
        clock: Clock = utc_now,
        tts: TextToSpeech | None = None,
    ) -> None:
        self._store = store
        self._extractor = extractor
        self._policy = policy
        self._queue = queue
        self._coordinator = coordinator
        self._advisor = advisor
        self._stt = stt
        self._tts = tts
        self._stt_min_confidence = stt_min_confidence
        self._clock = clock
        self._turn_locks: dict[str, asyncio.Lock] = {}

    def _turn_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._turn_locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._turn_locks[session_id] = lock
        return lock

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    async def start_session(self, user_id: str) -> SessionContext:
        session_id = await self._store.create_session(user_id)
        return await self._store.get_session_context(session_id)

    async def get_session_state(self, session_id: str) -> SessionContext:
        """Read-only projection of a session."""
        return await self._store.get_session_context(session_id)

    def missing_fields(self, context: SessionContext) -> list[ContextField]:
        return self._policy.missing_fields(context, context.dialogue)

    async def close_session(self, session_id: str) -> SessionContext:
        context = await self._store.close_session(session_id, CloseReason.EXPLICIT)
        self._turn_locks.pop(session_id, None)
        return context

    async def _active_session(self, session_id: str) -> tuple[SessionContext, str | None]:
        """Return a writable session, rotating to a new one if the given one ended."""
        context = await self._store.get_session_context(session_id)
        if not context.is_closed and not context.is_expired(
            self._clock(), self._store.session_timeout_seconds
        ):
            return context, None

        if not context.is_closed:
            await self._store.close_session(session_id, CloseReason.TIMEOUT)
        self._turn_locks.pop(session_id, None)
        new_id = await self._store.create_session(context.user_id)
        logger.info(
            "Session rotated",
            extra={"session_id": new_id, "previous_session_id": session_id},
        )
        return await self._store.get_session_context(new_id), session_id

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------
    async def submit_utterance(
        self,
        session_id: str,
        text: str | None = None,
        audio: bytes | None = None,
    ) -> DialogueDecision:
        """Process one user utterance.

        Args:
            session_id: Target session; a closed or expired session is replaced
                by a new one for the same user.
            text: Typed or already transcribed text.
            audio: Raw recording, transcribed through the STT collaborator.

        Returns:
            DialogueDecision with the question, guidance or clarification.

        Raises:
            SessionNotFoundError: Unknown session.
            QueueFullError: Local storage is full and nothing could be evicted.
        """
        if (text is None) == (audio is None):
            raise ValueError("Provide exactly one of text or audio")

        token = correlation_id_var.set(correlation_id_var.get() or uuid.uuid4().hex)
        try:
            context, rotated_from = await self._active_session(session_id)
            async with self._turn_lock(context.session_id):
                session_token = session_id_var.set(context.session_id)
                try:
                    decision = await self._process_turn(context, text, audio)
                finally:
                    session_id_var.reset(session_token)
            decision.rotated_from = rotated_from
            decision.speech_audio = await self._speak(decision)
            self._coordinator.sync_now()
            return decision
        finally:
            correlation_id_var.reset(token)

    async def _speak(self, decision: DialogueDecision) -> bytes | None:
        if self._tts is None:
            return None
        try:
            return await self._tts.synthesize(
                decision.speech_text, SpeechOptions(language=decision.language)
            )
        except SpeechUnavailableError as exc:
            logger.warning(
                "Text-to-speech unavailable; replying with text only",
                extra={"session_id": decision.session_id, "error": str(exc)},
            )
            return None

    async def _process_turn(
        self,
        context: SessionContext,
        text: str | None,
        audio: bytes | None,
    ) -> DialogueDecision:
        session_id = context.session_id
        language = context.language
        notices: list[UserNotice] = []

        if audio is not None:
            try:
                if self._stt is None:
                    raise SpeechUnavailableError("No speech-to-text engine configured")
                transcription = await self._stt.transcribe(audio)
            except SpeechUnavailableError as exc:
                logger.warning(
                    "Speech-to-text unavailable; audio queued",
                    extra={"session_id": session_id, "audio_bytes": len(audio), "error": str(exc)},
                )
                notices += await self._enqueue(
                    QueuedItem(
                        type=QueueItemType.AUDIO,
                        payload={"audio_b64": base64.b64encode(audio).decode("ascii")},
                        session_id=session_id,
                        user_id=context.user_id,
                        timestamp=self._clock(),
                    ),
                    language,
                )
                return await self._clarify(session_id, ClarifyReason.SPEECH_UNAVAILABLE, language, notices)

            if transcription.confidence < self._stt_min_confidence:
                logger.info(
                    "Low transcription confidence",
                    extra={"session_id": session_id, "confidence": transcription.confidence},
                )
                return await self._clarify(
                    session_id, ClarifyReason.LOW_STT_CONFIDENCE, transcription.language or language, notices
                )
            text = transcription.text

        if text is None:
            raise ValueError("Provide exactly one of text or audio")
        try:
            extracted = await self._extractor.extract(text, session_id)
        except ExtractionError as exc:
            logger.info(
                "Unusable utterance",
                extra={"session_id": session_id, "text_length": len(text), "error": str(exc)},
            )
            return await self._clarify(session_id, ClarifyReason.UNUSABLE_INPUT, language, notices)

        merger = self._store.merger
        now = self._clock()

        # Room for the turn's queue items is made before the turn is committed,
        # so a full queue leaves the session untouched.
        current = await self._store.get_session_context(session_id)
        _, preview = merger.merge_with_report(current, extracted)
        evicted = await self._queue.reserve(2 if preview.has_changes else 1)
        notices += self._storage_notices(evicted, language)

        def _turn(ctx: SessionContext):
            report = merger.merge_into(ctx, extracted)
            ctx.conversation_history.append(
                Message(role=MessageRole.USER, text=text, timestamp=now, language=extracted.language)
            )
            policy_decision = self._policy.decide(ctx, TurnInput(extracted=extracted, report=report))
            ctx.dialogue = policy_decision.next_state
            return report, policy_decision

        context, (report, policy_decision) = await self._store.apply(session_id, _turn)
        profile = await self._store.update_user_profile(
            context.user_id, lambda p: merger.merge_profile(p, extracted)
        )
        language = profile.language

        notices += await self._enqueue_turn(context, text, extracted, sorted(report.changed), language)

        logger.info(
            "Turn processed",
            extra={
                "session_id": session_id,
                "text_length": len(text),
                "decision": policy_decision.kind.value,
                "field": policy_decision.field.value if policy_decision.field else None,
                "phase": policy_decision.phase.value,
                "changed_fields": sorted(report.changed),
            },
        )

        return await self._render(context, policy_decision, text, language, notices)

    async def _enqueue_turn(
        self,
        context: SessionContext,
        text: str,
        extracted: ExtractedContext,
        changed: list[str],
        language: str,
    ) -> list[UserNotice]:
        notices = await self._enqueue(
            QueuedItem(
                type=QueueItemType.TEXT,
                payload={"text": text, "language": extracted.language},
                session_id=context.session_id,
                user_id=context.user_id,
                timestamp=extracted.produced_at,
            ),
            language,
        )
        if changed:
            notices += await self._enqueue(
                QueuedItem(
                    type=QueueItemType.CONTEXT,
                    payload={
                        "snapshot": context.snapshot(),
                        "version": context.version,
                        "changed": changed,
                    },
                    session_id=context.session_id,
                    user_id=context.user_id,
                    timestamp=extracted.produced_at,
                ),
                language,
            )
        return notices

    async def _enqueue(self, item: QueuedItem, language: str) -> list[UserNotice]:
        """Enqueue, evicting the oldest non-audio item once if storage is full."""
        try:
            await self._queue.enqueue(item)
            return []
        except QueueFullError as exc:
            logger.warning(
                "Offline queue full",
                extra={"session_id": item.session_id, "item_type": item.type.value, "capacity": exc.capacity},
            )
            evicted = await self._queue.evict(1)
            if not evicted:
                raise
            await self._queue.enqueue(item)
            return self._storage_notices(evicted, language)

    @staticmethod
    def _storage_notices(evicted: list[QueuedItem], language: str) -> list[UserNotice]:
        if not evicted:
            return []
        return [
            UserNotice(
                kind=NoticeKind.STORAGE_FULL,
                message=prompts.notice_text(NoticeKind.STORAGE_FULL, len(evicted), language),
                item_ids=[e.id for e in evicted],
            )
        ]

    async def _clarify(
        self,
        session_id: str,
        reason: ClarifyReason,
        language: str,
        notices: list[UserNotice],
    ) -> DialogueDecision:
        """Record an unusable turn and ask the user to try again."""

        def _unusable(ctx: SessionContext) -> PolicyDecision:
            decision = self._policy.decide(ctx, TurnInput(usable=False, unusable_reason=reason))
            ctx.dialogue = decision.next_state
            return decision

        context, policy_decision = await self._store.apply(session_id, _unusable)
        text = prompts.clarify_text(reason, language)
        await self._record_reply(session_id, text, language, DecisionKind.CLARIFY)
        return DialogueDecision(
            kind=DecisionKind.CLARIFY,
            text=text,
            session_id=session_id,
            phase=policy_decision.phase,
            field=policy_decision.field,
            reason=reason,
            language=language,
            speech_text=prompts.to_speech_text(text),
            notices=notices + self._sync_notices(language),
        )

    async def _render(
        self,
        context: SessionContext,
        decision: PolicyDecision,
        utterance: str,
        language: str,
        notices: list[UserNotice],
    ) -> DialogueDecision:
        kind = decision.kind
        reason = decision.reason
        guidance: GuidanceResponse | None = None

        if kind == DecisionKind.ASK:
            if decision.field is None:
                raise ValueError("Policy asked without naming a field")
            if decision.subdetail is not None:
                reply = prompts.follow_up_text(context.location.resolved or "", language)
            elif decision.reconfirm:
                reply = prompts.reconfirm_text(
                    decision.field, context.field_value(decision.field) or "", language
                )
            else:
                reply = prompts.question_text(decision.field, language)
        elif kind == DecisionKind.CLARIFY:
            reply = prompts.clarify_text(reason or ClarifyReason.UNUSABLE_INPUT, language, decision.hint)
        else:
            try:
                guidance = await self._advisor.generate_guidance(
                    self._advisor_context(context, language),
                    utterance,
                    correlation_id=correlation_id_var.get(),
                )
                reply = guidance.text
            except AdvisorError as exc:
                logger.warning(
                    "Advisor unavailable; degrading to clarify",
                    extra={"session_id": context.session_id, "error": str(exc)},
                )
                kind = DecisionKind.CLARIFY
                reason = ClarifyReason.ADVISOR_UNAVAILABLE
                reply = prompts.clarify_text(reason, language)

        await self._record_reply(context.session_id, reply, language, kind)
        return DialogueDecision(
            kind=kind,
            text=reply,
            session_id=context.session_id,
            phase=decision.phase,
            field=decision.field,
            subdetail=decision.subdetail,
            reason=reason,
            guidance=guidance,
            language=language,
            speech_text=prompts.to_speech_text(reply),
            notices=notices + self._sync_notices(language),
        )

    async def _record_reply(
        self,
        session_id: str,
        text: str,
        language: str,
        kind: DecisionKind,
    ) -> None:
        message = Message(
            role=MessageRole.ASSISTANT,
            text=text,
            timestamp=self._clock(),
            language=language,
            kind=kind.value,
        )
        try:
            await self._store.apply(session_id, lambda ctx: ctx.conversation_history.append(message))
        except SessionClosedError:
            logger.info("Session closed before reply was recorded", extra={"session_id": session_id})

    def _sync_notices(self, language: str) -> list[UserNotice]:
        return [
            UserNotice(
                kind=NoticeKind.SYNC_FAILED,
                message=prompts.notice_text(NoticeKind.SYNC_FAILED, len(summary.item_ids), language),
                item_ids=list(summary.item_ids),
            )
            for summary in self._coordinator.drain_notices()
        ]

    @staticmethod
    def _advisor_context(context: SessionContext, language: str) -> AdvisorContext:
        history = context.conversation_history[:-1][-RECENT_TURNS_FOR_ADVISOR:]
        return AdvisorContext(
            session_id=context.session_id,
            user_id=context.user_id,
            language=language,
            business_type=context.field_value(ContextField.BUSINESS_TYPE),
            location=context.location.resolved,
            landmarks=list(context.location.landmarks),
            environmental_cues=list(context.location.environmental_cues),
            operating_conditions=context.field_value(ContextField.OPERATING_CONDITIONS),
            preferences={k: v.value for k, v in context.preferences.items() if v.value},
            unset_fields=list(context.dialogue.accepted_unset),
            recent_turns=[(m.role.value, m.text) for m in history],
        )

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------
    async def submit_feedback(
        self,
        session_id: str,
        rating: int,
        comment: str | None = None,
    ) -> tuple[str, list[UserNotice]]:
        """Queue user feedback on a session.

        Returns:
            The queued item id and any storage notices.
        """
        if not 1 <= rating <= 5:
            raise ValueError("rating must be between 1 and 5")
        context = await self._store.get_session_context(session_id)
        item = QueuedItem(
            type=QueueItemType.FEEDBACK,
            payload={"rating": rating, "comment": comment},
            session_id=session_id,
            user_id=context.user_id,
            timestamp=self._clock(),
        )
        notices = await self._enqueue(item, context.language)
        logger.info(
            "Feedback queued",
            extra={"session_id": session_id, "item_id": item.id, "rating": rating},
        )
        self._coordinator.sync_now()
        return item.id, notices
