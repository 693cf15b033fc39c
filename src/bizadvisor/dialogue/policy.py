"""
Dialogue policy: the GATHERING / READY / CLOSED state machine.

`decide` is synchronous and pure. It reads the merged session context plus
what happened in this turn and returns the next action together with the
dialogue bookkeeping the caller must persist. It never touches the store.
"""

from bizadvisor.context.merger import MergeReport
from bizadvisor.context.models import (
    FIELD_PRIORITY,
    ContextField,
    DialoguePhase,
    DialogueState,
    SessionContext,
)
from bizadvisor.dialogue.models import (
    ClarifyReason,
    DecisionKind,
    PolicyDecision,
    TurnInput,
)
from bizadvisor.extraction.models import DEFAULT_CONFIDENCE_FLOOR, EntityType, ExtractedContext

SUBDETAIL_LANDMARKS = "landmarks"

FIELD_ENTITY_TYPES: dict[ContextField, tuple[EntityType, ...]] = {
    ContextField.BUSINESS_TYPE: (EntityType.BUSINESS_TYPE,),
    ContextField.LOCATION: (
        EntityType.LOCATION,
        EntityType.LANDMARK,
        EntityType.ENVIRONMENTAL_CUE,
    ),
    ContextField.OPERATING_CONDITIONS: (EntityType.OPERATING_CONDITION,),
}


class DialoguePolicy:
    """Decides between asking, guiding and clarifying."""

    def __init__(
        self,
        max_declines: int = 2,
        confidence_floor: float = DEFAULT_CONFIDENCE_FLOOR,
    ) -> None:
        self._max_declines = max_declines
        self._floor = confidence_floor

    def missing_fields(self, context: SessionContext, state: DialogueState) -> list[ContextField]:
        """Unsatisfied fields in asking priority order."""
        return [f for f in FIELD_PRIORITY if not self._satisfied(context, state, f)]

    @staticmethod
    def _satisfied(context: SessionContext, state: DialogueState, f: ContextField) -> bool:
        if f.value in state.reconfirm:
            return False
        return context.field_is_set(f) or f.value in state.accepted_unset

    def decide(self, context: SessionContext, turn: TurnInput) -> PolicyDecision:
        """Choose the next action for a session after one turn was merged.

        Args:
            context: Session context with this turn already merged.
            turn: Extraction result and merge report of this turn.

        Returns:
            PolicyDecision with the next dialogue state.
        """
        state = context.dialogue.copy()
        previous_phase = state.phase

        if context.is_closed or previous_phase == DialoguePhase.CLOSED:
            state.phase = DialoguePhase.CLOSED
            return PolicyDecision(
                kind=DecisionKind.CLARIFY,
                next_state=state,
                reason=ClarifyReason.UNUSABLE_INPUT,
            )

        state.turn_count += 1

        if not turn.usable or turn.extracted is None:
            return PolicyDecision(
                kind=DecisionKind.CLARIFY,
                next_state=state,
                field=state.pending_field,
                subdetail=state.pending_subdetail,
                reason=turn.unusable_reason or ClarifyReason.UNUSABLE_INPUT,
            )

        extracted = turn.extracted
        report = turn.report or MergeReport()
        asked = state.pending_field
        asked_subdetail = state.pending_subdetail

        if asked is not None:
            self._account_for_answer(context, state, asked, asked_subdetail, extracted, report)

        if previous_phase == DialoguePhase.READY:
            for f in FIELD_PRIORITY:
                if f.value in report.contradicted and f.value not in state.reconfirm:
                    state.reconfirm.append(f.value)

        # Only a sub-floor hint for the asked field: check before re-asking.
        if asked is not None and state.pending_field == asked and not report.touched(asked):
            hint = self._best_hint(extracted, asked)
            if hint is not None:
                return PolicyDecision(
                    kind=DecisionKind.CLARIFY,
                    next_state=state,
                    field=asked,
                    subdetail=state.pending_subdetail,
                    reason=ClarifyReason.LOW_CONFIDENCE_HINT,
                    hint=hint,
                )

        missing = self.missing_fields(context, state)

        if (
            asked == ContextField.LOCATION
            and asked_subdetail is None
            and report.touched(ContextField.LOCATION)
            and context.location.explicit
            and not context.location.landmarks
            and ContextField.LOCATION.value not in state.followed_up
            and ContextField.LOCATION not in missing
            and missing
        ):
            state.followed_up.append(ContextField.LOCATION.value)
            state.phase = DialoguePhase.GATHERING
            state.pending_field = ContextField.LOCATION
            state.pending_subdetail = SUBDETAIL_LANDMARKS
            return PolicyDecision(
                kind=DecisionKind.ASK,
                next_state=state,
                field=ContextField.LOCATION,
                subdetail=SUBDETAIL_LANDMARKS,
            )

        if not missing:
            state.phase = DialoguePhase.READY
            state.pending_field = None
            state.pending_subdetail = None
            return PolicyDecision(kind=DecisionKind.GUIDE, next_state=state)

        target = missing[0]
        state.phase = DialoguePhase.GATHERING
        state.pending_field = target
        state.pending_subdetail = None
        return PolicyDecision(
            kind=DecisionKind.ASK,
            next_state=state,
            field=target,
            reconfirm=target.value in state.reconfirm,
        )

    def _account_for_answer(
        self,
        context: SessionContext,
        state: DialogueState,
        asked: ContextField,
        asked_subdetail: str | None,
        extracted: ExtractedContext,
        report: MergeReport,
    ) -> None:
        """Update decline counters and reconfirmations for the field just asked."""
        key = asked.value
        answered = report.touched(asked)

        if asked_subdetail is not None:
            # A follow-up is asked once; any reply closes it.
            state.pending_field = None
            state.pending_subdetail = None
            return

        if answered or (extracted.affirmed and key in state.reconfirm):
            state.decline_counts.pop(key, None)
            if key in state.reconfirm:
                state.reconfirm.remove(key)
            return

        if not extracted.declined:
            state.decline_counts.pop(key, None)
            return

        count = state.decline_counts.get(key, 0) + 1
        state.decline_counts[key] = count
        if count < self._max_declines:
            return

        if key in state.reconfirm:
            # Declining to reconfirm keeps the latest value.
            state.reconfirm.remove(key)
        elif not context.field_is_set(asked) and key not in state.accepted_unset:
            state.accepted_unset.append(key)
        state.decline_counts.pop(key, None)
        state.pending_field = None
        state.pending_subdetail = None

    def _best_hint(self, extracted: ExtractedContext, f: ContextField) -> str | None:
        facts = [
            e for t in FIELD_ENTITY_TYPES[f] for e in extracted.facts(t, self._floor)
        ]
        if facts:
            return None
        hints = [
            e for t in FIELD_ENTITY_TYPES[f] for e in extracted.hints(t, self._floor)
        ]
        if not hints:
            return None
        return max(hints, key=lambda e: e.confidence).value
