"""
Data models produced by the entity extractor.

Entities are ephemeral: the extractor produces them, the context merger
consumes them in the same turn, and nothing persists them standalone.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

DEFAULT_CONFIDENCE_FLOOR = 0.5


class EntityType(str, Enum):
    """Typed candidate facts found in an utterance."""

    BUSINESS_TYPE = "business_type"
    LOCATION = "location"
    LANDMARK = "landmark"
    ENVIRONMENTAL_CUE = "environmental_cue"
    OPERATING_CONDITION = "operating_condition"
    PREFERENCE = "preference"
    DECLINE = "decline"
    AFFIRMATION = "affirmation"


@dataclass(frozen=True)
class Entity:
    """A typed, confidence-scored fact candidate."""

    type: EntityType
    value: str
    confidence: float
    explicit: bool = False
    key: str | None = None  # preference name, only for PREFERENCE

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")

    def is_fact(self, floor: float = DEFAULT_CONFIDENCE_FLOOR) -> bool:
        """Entities below the floor are hints, not facts."""
        return self.confidence >= floor


@dataclass(frozen=True)
class LocationCandidate:
    """Location-related entities of one utterance, grouped."""

    explicit: Entity | None = None
    landmarks: tuple[Entity, ...] = ()
    environmental_cues: tuple[Entity, ...] = ()


def _best(entities: list[Entity]) -> Entity | None:
    best: Entity | None = None
    for entity in entities:
        if best is None or entity.confidence > best.confidence:
            best = entity
    return best


@dataclass
class ExtractedContext:
    """Result of extracting one utterance (or one server-side context update)."""

    session_id: str
    produced_at: datetime
    entities: list[Entity] = field(default_factory=list)
    language: str = "en"

    def of_type(self, entity_type: EntityType) -> list[Entity]:
        return [e for e in self.entities if e.type == entity_type]

    def facts(
        self,
        entity_type: EntityType,
        floor: float = DEFAULT_CONFIDENCE_FLOOR,
    ) -> list[Entity]:
        return [e for e in self.of_type(entity_type) if e.is_fact(floor)]

    def hints(
        self,
        entity_type: EntityType,
        floor: float = DEFAULT_CONFIDENCE_FLOOR,
    ) -> list[Entity]:
        return [e for e in self.of_type(entity_type) if not e.is_fact(floor)]

    @property
    def business_type(self) -> Entity | None:
        return _best(self.of_type(EntityType.BUSINESS_TYPE))

    @property
    def operating_conditions(self) -> Entity | None:
        return _best(self.of_type(EntityType.OPERATING_CONDITION))

    @property
    def location(self) -> LocationCandidate | None:
        explicit = _best(self.of_type(EntityType.LOCATION))
        landmarks = tuple(self.of_type(EntityType.LANDMARK))
        cues = tuple(self.of_type(EntityType.ENVIRONMENTAL_CUE))
        if explicit is None and not landmarks and not cues:
            return None
        return LocationCandidate(explicit=explicit, landmarks=landmarks, environmental_cues=cues)

    @property
    def preferences(self) -> dict[str, Entity]:
        result: dict[str, Entity] = {}
        for entity in self.of_type(EntityType.PREFERENCE):
            key = entity.key or "general"
            current = result.get(key)
            if current is None or entity.confidence > current.confidence:
                result[key] = entity
        return result

    @property
    def declined(self) -> bool:
        return bool(self.facts(EntityType.DECLINE))

    @property
    def affirmed(self) -> bool:
        return bool(self.facts(EntityType.AFFIRMATION))

    @property
    def is_empty(self) -> bool:
        return not self.entities

    @classmethod
    def from_snapshot(
        cls,
        session_id: str,
        snapshot: dict[str, Any],
        produced_at: datetime,
    ) -> "ExtractedContext":
        """Build an extraction result from a server-side context snapshot.

        Server updates go through the same merger as live input, so they are
        expressed as entities. Expected shape::

            {
              "business_type": {"value": "tea", "confidence": 0.9, "explicit": true},
              "location": {"explicit": "Pune", "confidence": 0.9,
                           "landmarks": ["bus stand"], "environmental_cues": []},
              "operating_conditions": {"value": "6am-10pm", "confidence": 0.8},
              "preferences": {"budget": {"value": "5000", "confidence": 0.8}},
              "language": "hi"
            }
        """
        entities: list[Entity] = []

        def _tracked(entity_type: EntityType, raw: Any, key: str | None = None) -> None:
            if not isinstance(raw, dict) or not raw.get("value"):
                return
            entities.append(
                Entity(
                    type=entity_type,
                    value=str(raw["value"]),
                    confidence=float(raw.get("confidence", 1.0)),
                    explicit=bool(raw.get("explicit", True)),
                    key=key,
                )
            )

        _tracked(EntityType.BUSINESS_TYPE, snapshot.get("business_type"))
        _tracked(EntityType.OPERATING_CONDITION, snapshot.get("operating_conditions"))
        for key, raw in (snapshot.get("preferences") or {}).items():
            _tracked(EntityType.PREFERENCE, raw, key=str(key))

        location = snapshot.get("location") or {}
        confidence = float(location.get("confidence", 1.0))
        if location.get("explicit"):
            entities.append(
                Entity(EntityType.LOCATION, str(location["explicit"]), confidence, explicit=True)
            )
        for landmark in location.get("landmarks") or []:
            entities.append(Entity(EntityType.LANDMARK, str(landmark), confidence))
        for cue in location.get("environmental_cues") or []:
            entities.append(Entity(EntityType.ENVIRONMENTAL_CUE, str(cue), confidence))

        return cls(
            session_id=session_id,
            produced_at=produced_at,
            entities=entities,
            language=str(snapshot.get("language") or "en"),
        )
