"""
Rule-based entity extractor.

`extract_sync` is a pure function of the utterance text plus the fixed ruleset
in `bizadvisor.extraction.rules`; it never touches the context store. `extract`
is the async entry point used by the dialogue service.
"""

import re
from datetime import datetime
from typing import Protocol

import anyio

from bizadvisor.extraction import rules
from bizadvisor.extraction.models import Entity, EntityType, ExtractedContext
from bizadvisor.shared.clock import Clock, utc_now
from bizadvisor.shared.exceptions import ExtractionError
from bizadvisor.shared.logging import get_logger

logger = get_logger(__name__)

NON_PLACE_WORDS = frozenset(
    {
        "trouble", "need", "debt", "loss", "love", "business", "charge", "touch",
        "favour", "favor", "doubt", "hurry", "good", "bad", "profit", "confusion",
        "the morning", "the evening", "the afternoon", "the night", "morning",
        "evening", "afternoon", "night",
    }
)

NON_PLACE_PROPER = frozenset(
    {
        "english", "hindi", "marathi", "tamil", "telugu", "bengali", "gujarati",
        "january", "february", "march", "april", "may", "june", "july", "august",
        "september", "october", "november", "december", "monday", "tuesday",
        "wednesday", "thursday", "friday", "saturday", "sunday", "i",
    }
)

_SELL_VERBS_NEEDING_OUTLET = ("run", "own", "have")
_SELL_VERB_PATTERN = re.compile(
    r"\b(?:i|we)\s+(?P<verb>sell|sells|am selling|are selling|deal in|run|own|have|make)\s+"
)


class ExtractorProtocol(Protocol):
    """Protocol for entity extractor implementations."""

    async def extract(self, text: str, session_id: str) -> ExtractedContext:
        ...


def _cut_span(span: str) -> str:
    """Trim a free-form capture at the first stopword and drop leading articles."""
    words = span.strip().split()
    kept: list[str] = []
    for word in words:
        if word.lower() in rules.SPAN_STOPWORDS:
            break
        kept.append(word)
    while kept and kept[0].lower() in rules.ARTICLES:
        kept.pop(0)
    return " ".join(kept).strip(" '-")


def _strip_outlet(item: str) -> tuple[str, bool]:
    """Remove outlet nouns ("tea stall" -> "tea"). Returns (item, had_outlet)."""
    words = item.split()
    had_outlet = False
    while words and words[-1] in rules.OUTLET_NOUNS:
        words.pop()
        had_outlet = True
    while words and words[0] in rules.FILLER_ADJECTIVES:
        words.pop(0)
    return " ".join(words), had_outlet


def _canonical_business(item: str) -> str:
    if item in rules.BUSINESS_LEXICON:
        return rules.BUSINESS_LEXICON[item]
    for surface, canonical in rules.BUSINESS_LEXICON.items():
        if rules.phrase_pattern(surface).search(item):
            return canonical
    return item


def _contains_any(text: str, phrases: tuple[str, ...] | frozenset[str]) -> bool:
    return any(rules.phrase_pattern(p).search(text) for p in phrases)


def _format_hour(hour: str, minute: str | None, period: str | None) -> str:
    return f"{int(hour)}{':' + minute if minute else ''}{period or ''}"


class RuleBasedExtractor:
    """Extracts business, location, schedule and preference cues from text."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock

    async def extract(self, text: str, session_id: str) -> ExtractedContext:
        """Async entry point; runs the rule pass in a worker thread."""
        return await anyio.to_thread.run_sync(self.extract_sync, text, session_id)

    def extract_sync(
        self,
        text: str,
        session_id: str,
        produced_at: datetime | None = None,
    ) -> ExtractedContext:
        """Extract typed entities from one utterance.

        Args:
            text: Raw utterance text.
            session_id: Owning session (carried through, never read).
            produced_at: Extraction timestamp override.

        Returns:
            ExtractedContext, possibly with no entities.

        Raises:
            ExtractionError: If the text is not a non-empty string.
        """
        if not isinstance(text, str):
            raise ExtractionError("Utterance text must be a string", session_id=session_id)
        if not text.strip():
            raise ExtractionError("Utterance text is empty", session_id=session_id)
        if len(text) > rules.MAX_UTTERANCE_CHARS:
            raise ExtractionError("Utterance text is too long", session_id=session_id)

        original = " ".join(text.split())
        lowered = original.lower()
        is_question = lowered.endswith("?") or any(
            lowered.startswith(starter + " ") for starter in rules.QUESTION_STARTERS
        )

        entities: list[Entity] = []
        entities.extend(self._business_type(lowered, is_question))
        entities.extend(self._locations(original, lowered))
        entities.extend(self._environmental_cues(lowered))
        entities.extend(self._operating_conditions(lowered))
        entities.extend(self._preferences(lowered))
        entities.extend(self._markers(lowered))

        language = "hi" if rules.DEVANAGARI_PATTERN.search(original) else "en"

        result = ExtractedContext(
            session_id=session_id,
            produced_at=produced_at or self._clock(),
            entities=entities,
            language=language,
        )

        logger.debug(
            "Extraction completed",
            extra={
                "session_id": session_id,
                "text_length": len(original),
                "entity_types": sorted({e.type.value for e in entities}),
                "language": language,
            },
        )
        return result

    # ------------------------------------------------------------------
    # Business type
    # ------------------------------------------------------------------
    def _business_type(self, lowered: str, is_question: bool) -> list[Entity]:
        candidates: list[Entity] = []
        correction = bool(rules.CORRECTION_PATTERN.search(lowered))

        for match in _SELL_VERB_PATTERN.finditer(lowered):
            span = lowered[match.end():]
            span = re.split(r"[,.;!?]", span, maxsplit=1)[0]
            item = _cut_span(span)
            if not item or item.startswith(("no ", "not ")) or _contains_any(item, rules.DECLINE_PHRASES):
                continue
            item, had_outlet = _strip_outlet(item)
            if match.group("verb") in _SELL_VERBS_NEEDING_OUTLET and not had_outlet:
                continue
            if not item:
                continue
            confidence = rules.CONF_CORRECTION if correction else rules.CONF_STATED
            candidates.append(
                Entity(EntityType.BUSINESS_TYPE, _canonical_business(item), confidence, explicit=True)
            )

        for match in rules.OWNED_SHOP_PATTERN.finditer(lowered):
            item, _ = _strip_outlet(match.group("item"))
            if item:
                candidates.append(
                    Entity(
                        EntityType.BUSINESS_TYPE,
                        _canonical_business(item),
                        rules.CONF_OWNED_SHOP,
                        explicit=True,
                    )
                )

        if not candidates:
            for surface, canonical in rules.BUSINESS_LEXICON.items():
                if rules.phrase_pattern(surface).search(lowered):
                    candidates.append(
                        Entity(EntityType.BUSINESS_TYPE, canonical, rules.CONF_LEXICON_MENTION)
                    )
                    break

        if is_question:
            # "should I sell tea?" is a hint about intent, not a statement of fact.
            candidates = [
                Entity(e.type, e.value, min(e.confidence, rules.CONF_QUESTION_HINT), explicit=False)
                for e in candidates
            ]
        return candidates

    # ------------------------------------------------------------------
    # Location: explicit places and landmarks
    # ------------------------------------------------------------------
    def _locations(self, original: str, lowered: str) -> list[Entity]:
        entities: list[Entity] = []
        seen_places: set[str] = set()
        landmark_values: set[str] = set()

        def _add_landmark(value: str, confidence: float | None = None) -> None:
            value = value.lower()
            if not value or value in landmark_values:
                return
            landmark_values.add(value)
            if confidence is None:
                known = _contains_any(value, rules.LANDMARK_KEYWORDS)
                confidence = rules.CONF_KNOWN_LANDMARK if known else rules.CONF_UNKNOWN_LANDMARK
            entities.append(Entity(EntityType.LANDMARK, value, confidence))

        def _add_place(raw: str, confidence: float) -> None:
            place = _cut_span(raw)
            lowered_place = place.lower()
            if not place or lowered_place in NON_PLACE_WORDS:
                return
            if lowered_place.split()[0] in NON_PLACE_PROPER:
                return
            if _contains_any(lowered_place, rules.LANDMARK_KEYWORDS):
                _add_landmark(lowered_place)
                return
            if _contains_any(lowered_place, tuple(rules.BUSINESS_LEXICON)) or _contains_any(
                lowered_place, rules.OUTLET_NOUNS
            ):
                return
            if _contains_any(lowered_place, rules.ENVIRONMENTAL_CUES):
                return
            value = place.title() if place == lowered_place else place
            if value.lower() in seen_places:
                return
            seen_places.add(value.lower())
            entities.append(Entity(EntityType.LOCATION, value, confidence, explicit=True))

        for match in rules.STATED_PLACE_PATTERN.finditer(original):
            _add_place(match.group("place"), rules.CONF_STATED_PLACE)
        for match in rules.SELF_PLACE_PATTERN.finditer(original):
            _add_place(match.group("place"), rules.CONF_SELF_PLACE)
        for match in rules.PROPER_NOUN_PLACE_PATTERN.finditer(original):
            _add_place(match.group("place"), rules.CONF_PROPER_NOUN_PLACE)

        for match in rules.LANDMARK_PATTERN.finditer(lowered):
            _add_landmark(_cut_span(match.group("landmark")))

        return entities

    def _environmental_cues(self, lowered: str) -> list[Entity]:
        found: list[Entity] = []
        for cue in rules.ENVIRONMENTAL_CUES:
            if rules.phrase_pattern(cue).search(lowered):
                found.append(Entity(EntityType.ENVIRONMENTAL_CUE, cue, rules.CONF_ENV_CUE))
        return found

    # ------------------------------------------------------------------
    # Operating conditions
    # ------------------------------------------------------------------
    def _operating_conditions(self, lowered: str) -> list[Entity]:
        parts: list[str] = []
        confidence = 0.0
        working = lowered

        for match in rules.HOURS_PATTERN.finditer(lowered):
            start = _format_hour(match.group("h1"), match.group("m1"), match.group("p1"))
            end = _format_hour(match.group("h2"), match.group("m2"), match.group("p2"))
            parts.append(f"{start}-{end}")
            confidence = max(confidence, rules.CONF_HOURS)

        # Longest phrases first so "early morning" is not also counted as "morning".
        for words, level in (
            (rules.SCHEDULE_WORDS, rules.CONF_SCHEDULE_WORD),
            (rules.SETUP_WORDS, rules.CONF_SETUP_WORD),
        ):
            for phrase in sorted(words, key=len, reverse=True):
                pattern = rules.phrase_pattern(phrase)
                if pattern.search(working):
                    parts.append(phrase)
                    confidence = max(confidence, level)
                    working = pattern.sub(" ", working)

        if not parts:
            return []
        return [
            Entity(EntityType.OPERATING_CONDITION, "; ".join(parts), confidence, explicit=True)
        ]

    # ------------------------------------------------------------------
    # Preferences and conversational markers
    # ------------------------------------------------------------------
    def _preferences(self, lowered: str) -> list[Entity]:
        found: list[Entity] = []
        for pattern, key, confidence in (
            (rules.PREFERENCE_PATTERN, "preference", rules.CONF_PREFERENCE),
            (rules.BUDGET_PATTERN, "budget", rules.CONF_BUDGET),
            (rules.GOAL_PATTERN, "goal", rules.CONF_GOAL),
        ):
            match = pattern.search(lowered)
            if match:
                value = match.group("value").strip()
                if value:
                    found.append(
                        Entity(EntityType.PREFERENCE, value, confidence, explicit=True, key=key)
                    )
        return found

    def _markers(self, lowered: str) -> list[Entity]:
        found: list[Entity] = []
        if _contains_any(lowered, rules.DECLINE_PHRASES):
            found.append(Entity(EntityType.DECLINE, "decline", rules.CONF_DECLINE, explicit=True))

        normalized = " ".join(rules.PUNCTUATION_PATTERN.sub(" ", lowered).split())
        if normalized in rules.AFFIRMATIONS:
            found.append(
                Entity(EntityType.AFFIRMATION, normalized, rules.CONF_AFFIRMATION, explicit=True)
            )
        return found
