"""
Context merger: folds one ExtractedContext into a SessionContext.

Rules, field by field:
- explicit beats inferred beats unset, regardless of recency;
- among equals the most recently produced value wins (last-write-wins on the
  extraction timestamp), but never over a higher-confidence stored value;
- landmarks and environmental cues are unioned;
- the inferred location is replaced only by an inference of equal or stronger
  source rank.

The merger is deterministic and does no I/O; the store applies it under the
per-session lock.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime

from bizadvisor.context.models import (
    INFERENCE_RANKS,
    ContextField,
    LocationInfo,
    Provenance,
    SessionContext,
    TrackedValue,
    UserProfile,
)
from bizadvisor.extraction.models import (
    DEFAULT_CONFIDENCE_FLOOR,
    Entity,
    EntityType,
    ExtractedContext,
)
from bizadvisor.shared.clock import as_utc
from bizadvisor.shared.exceptions import MergeConflictError
from bizadvisor.shared.logging import get_logger

logger = get_logger(__name__)


@dataclass
class MergeReport:
    """What a merge did to each field."""

    applied: set[str] = field(default_factory=set)
    changed: set[str] = field(default_factory=set)
    contradicted: set[str] = field(default_factory=set)
    conflicts: list[str] = field(default_factory=list)

    def touched(self, context_field: ContextField) -> bool:
        return context_field.value in self.applied

    @property
    def has_changes(self) -> bool:
        return bool(self.changed)


def _normalize(value: str) -> str:
    return " ".join(value.lower().split())


def _same(a: str | None, b: str | None) -> bool:
    if a is None or b is None:
        return a is b
    return _normalize(a) == _normalize(b)


class ContextMerger:
    """Deterministic field-by-field merge of extracted entities."""

    def __init__(self, confidence_floor: float = DEFAULT_CONFIDENCE_FLOOR) -> None:
        self._floor = confidence_floor

    @property
    def confidence_floor(self) -> float:
        return self._floor

    def merge(self, existing: SessionContext, extracted: ExtractedContext) -> SessionContext:
        """Return a new SessionContext with `extracted` merged in."""
        merged, _ = self.merge_with_report(existing, extracted)
        return merged

    def merge_with_report(
        self,
        existing: SessionContext,
        extracted: ExtractedContext,
    ) -> tuple[SessionContext, MergeReport]:
        merged = copy.deepcopy(existing)
        report = self.merge_into(merged, extracted)
        return merged, report

    def merge_into(self, context: SessionContext, extracted: ExtractedContext) -> MergeReport:
        """Merge in place. Used by store mutators that already own a copy."""
        report = MergeReport()
        produced_at = as_utc(extracted.produced_at)

        business = self._best_fact(extracted, EntityType.BUSINESS_TYPE)
        if business is not None:
            self._merge_tracked(
                context, context.business_type, business, produced_at,
                ContextField.BUSINESS_TYPE.value, report,
            )

        conditions = self._best_fact(extracted, EntityType.OPERATING_CONDITION)
        if conditions is not None:
            self._merge_tracked(
                context, context.operating_conditions, conditions, produced_at,
                ContextField.OPERATING_CONDITIONS.value, report,
            )

        for key, entity in extracted.preferences.items():
            if not entity.is_fact(self._floor):
                continue
            tracked = context.preferences.setdefault(key, TrackedValue())
            self._merge_tracked(
                context, tracked, entity, produced_at, f"preferences.{key}", report,
            )

        self._merge_location(context, extracted, produced_at, report)

        if extracted.entities:
            context.language = extracted.language
        context.last_updated = max(as_utc(context.last_updated), produced_at)
        return report

    # ------------------------------------------------------------------
    # Tracked scalar fields
    # ------------------------------------------------------------------
    def _best_fact(self, extracted: ExtractedContext, entity_type: EntityType) -> Entity | None:
        best: Entity | None = None
        for entity in extracted.facts(entity_type, self._floor):
            if best is None or (entity.explicit, entity.confidence) > (best.explicit, best.confidence):
                best = entity
        return best

    def _merge_tracked(
        self,
        context: SessionContext,
        current: TrackedValue,
        entity: Entity,
        produced_at: datetime,
        name: str,
        report: MergeReport,
    ) -> None:
        incoming = Provenance.EXPLICIT if entity.explicit else Provenance.INFERRED

        if current.is_set:
            if current.provenance == Provenance.EXPLICIT and incoming == Provenance.INFERRED:
                return
            if current.provenance == incoming:
                if entity.confidence < current.confidence:
                    return
                stored_at = as_utc(current.updated_at) if current.updated_at else None
                if stored_at is not None and produced_at < stored_at:
                    return
                if (
                    stored_at == produced_at
                    and incoming == Provenance.EXPLICIT
                    and not _same(current.value, entity.value)
                ):
                    self._log_conflict(context, name, report)

        changed = not _same(current.value, entity.value)
        if changed and current.is_explicit and incoming == Provenance.EXPLICIT:
            report.contradicted.add(name)

        current.value = entity.value
        current.provenance = incoming
        current.confidence = entity.confidence
        current.updated_at = produced_at
        report.applied.add(name)
        if changed:
            report.changed.add(name)

    def _log_conflict(self, context: SessionContext, name: str, report: MergeReport) -> None:
        # Two explicit values with one timestamp cannot be ordered; the incoming one wins.
        error = MergeConflictError(
            "Explicit values with identical timestamps",
            session_id=context.session_id,
            field=name,
        )
        report.conflicts.append(name)
        logger.warning(
            str(error),
            extra={"session_id": context.session_id, "field": name, "resolution": "incoming"},
        )

    # ------------------------------------------------------------------
    # Location
    # ------------------------------------------------------------------
    def _merge_location(
        self,
        context: SessionContext,
        extracted: ExtractedContext,
        produced_at: datetime,
        report: MergeReport,
    ) -> None:
        location = context.location
        name = ContextField.LOCATION.value
        before = location.resolved
        applied = False

        places = extracted.facts(EntityType.LOCATION, self._floor)
        explicit_places = [e for e in places if e.explicit]
        inferred_places = [e for e in places if not e.explicit]
        landmarks = extracted.facts(EntityType.LANDMARK, self._floor)
        cues = extracted.facts(EntityType.ENVIRONMENTAL_CUE, self._floor)

        if explicit_places:
            best = max(explicit_places, key=lambda e: e.confidence)
            applied |= self._merge_explicit_location(context, location, best, produced_at, report)

        added_landmarks = self._union(location.landmarks, landmarks)
        added_cues = self._union(location.environmental_cues, cues)
        applied |= bool(added_landmarks or added_cues)

        # Strongest inference source available in this pass.
        candidate: tuple[str, str] | None = None
        if inferred_places:
            candidate = ("place", max(inferred_places, key=lambda e: e.confidence).value)
        elif landmarks:
            candidate = ("landmark", f"near {_normalize(landmarks[0].value)}")
        elif cues:
            candidate = ("environmental_cue", f"{_normalize(cues[0].value)} area")

        if candidate is not None:
            source, value = candidate
            if INFERENCE_RANKS[source] >= location.inferred_rank:
                location.inferred_location = value
                location.inferred_source = source
                location.inferred_at = produced_at
                applied = True

        if applied:
            report.applied.add(name)
        if not _same(before, location.resolved):
            report.changed.add(name)

    def _merge_explicit_location(
        self,
        context: SessionContext,
        location: LocationInfo,
        entity: Entity,
        produced_at: datetime,
        report: MergeReport,
    ) -> bool:
        name = ContextField.LOCATION.value
        if location.explicit:
            stored_at = as_utc(location.explicit_at) if location.explicit_at else None
            if stored_at is not None and produced_at < stored_at:
                return False
            differs = not _same(location.explicit, entity.value)
            if differs and stored_at == produced_at:
                self._log_conflict(context, name, report)
            if differs:
                report.contradicted.add(name)
        location.explicit = entity.value
        location.explicit_at = produced_at
        location.explicit_confidence = entity.confidence
        return True

    @staticmethod
    def _union(target: list[str], entities: list[Entity]) -> list[str]:
        added: list[str] = []
        for entity in entities:
            value = _normalize(entity.value)
            if value and value not in target:
                target.append(value)
                added.append(value)
        target.sort()
        return added

    # ------------------------------------------------------------------
    # Profiles and cross-session carry-over
    # ------------------------------------------------------------------
    def merge_profile(self, profile: UserProfile, extracted: ExtractedContext) -> UserProfile:
        """Fold language and explicit preferences of one turn into the user profile."""
        merged = copy.deepcopy(profile)
        produced_at = as_utc(extracted.produced_at)

        if extracted.entities or not merged.preferred_languages:
            language = extracted.language
            if language in merged.preferred_languages:
                merged.preferred_languages.remove(language)
            merged.preferred_languages.insert(0, language)

        for key, entity in extracted.preferences.items():
            if not entity.explicit or not entity.is_fact(self._floor):
                continue
            current = merged.preferences.get(key)
            stored_at = as_utc(current.updated_at) if current and current.updated_at else None
            if stored_at is not None and produced_at < stored_at:
                continue
            merged.preferences[key] = TrackedValue(
                value=entity.value,
                provenance=Provenance.EXPLICIT,
                confidence=entity.confidence,
                updated_at=produced_at,
            )

        if merged.last_active is None or produced_at > as_utc(merged.last_active):
            merged.last_active = produced_at
        return merged

    def seed_session(self, context: SessionContext, previous: SessionContext) -> list[str]:
        """Carry explicit facts from a user's previous session into a new one.

        Only explicitly stated values travel; inferred values, landmarks and the
        conversation history stay with the old session.

        Returns:
            Names of the seeded fields.
        """
        seeded: list[str] = []
        for name in ("business_type", "operating_conditions"):
            previous_value: TrackedValue = getattr(previous, name)
            if previous_value.is_explicit:
                setattr(context, name, copy.deepcopy(previous_value))
                seeded.append(name)
        if previous.location.explicit:
            context.location.explicit = previous.location.explicit
            context.location.explicit_at = previous.location.explicit_at
            context.location.explicit_confidence = previous.location.explicit_confidence
            seeded.append(ContextField.LOCATION.value)
        for key, tracked in previous.preferences.items():
            if tracked.is_explicit:
                context.preferences[key] = copy.deepcopy(tracked)
                seeded.append(f"preferences.{key}")
        context.language = previous.language
        return seeded
