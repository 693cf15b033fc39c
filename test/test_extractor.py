"""Tests for the rule-based entity extractor."""

import pytest

from bizadvisor.extraction.extractor import RuleBasedExtractor
from bizadvisor.extraction.models import EntityType
from bizadvisor.shared.exceptions import ExtractionError

from conftest import START


@pytest.fixture
def rule_extractor() -> RuleBasedExtractor:
    return RuleBasedExtractor(clock=lambda: START)


class TestBusinessType:
    def test_stated_business_with_landmark(self, rule_extractor: RuleBasedExtractor) -> None:
        result = rule_extractor.extract_sync("I sell vegetables near the railway station", "s-1")

        business = result.business_type
        assert business is not None
        assert business.value == "vegetables"
        assert business.explicit is True
        assert business.confidence == pytest.approx(0.85)

        landmarks = result.of_type(EntityType.LANDMARK)
        assert [e.value for e in landmarks] == ["railway station"]

    def test_outlet_noun_is_stripped_and_place_found(self, rule_extractor: RuleBasedExtractor) -> None:
        result = rule_extractor.extract_sync("I run a tea stall in Pune", "s-1")

        assert result.business_type is not None
        assert result.business_type.value == "tea"
        location = result.location
        assert location is not None
        assert location.explicit is not None
        assert location.explicit.value == "Pune"
        assert location.explicit.explicit is True

    def test_hinglish_surface_form_is_canonicalised(self, rule_extractor: RuleBasedExtractor) -> None:
        result = rule_extractor.extract_sync("I sell chai from a handcart every morning", "s-1")

        assert result.business_type is not None
        assert result.business_type.value == "tea"

    def test_have_without_outlet_is_not_a_business(self, rule_extractor: RuleBasedExtractor) -> None:
        result = rule_extractor.extract_sync("I have two children", "s-1")
        assert result.business_type is None

    def test_question_is_only_a_hint(self, rule_extractor: RuleBasedExtractor) -> None:
        result = rule_extractor.extract_sync("Should I sell tea?", "s-1")

        business = result.business_type
        assert business is not None
        assert business.value == "tea"
        assert business.explicit is False
        assert business.confidence <= 0.4
        assert result.facts(EntityType.BUSINESS_TYPE) == []
        assert len(result.hints(EntityType.BUSINESS_TYPE)) == 1

    def test_correction_word_raises_confidence(self, rule_extractor: RuleBasedExtractor) -> None:
        result = rule_extractor.extract_sync("Actually I sell fruits", "s-1")

        assert result.business_type is not None
        assert result.business_type.value == "fruits"
        assert result.business_type.confidence == pytest.approx(0.9)


class TestLocation:
    def test_stated_place(self, rule_extractor: RuleBasedExtractor) -> None:
        result = rule_extractor.extract_sync("My shop is in Kothrud", "s-1")

        places = result.of_type(EntityType.LOCATION)
        assert [p.value for p in places] == ["Kothrud"]
        assert places[0].confidence == pytest.approx(0.9)
        assert result.business_type is None

    def test_self_place_with_landmark(self, rule_extractor: RuleBasedExtractor) -> None:
        result = rule_extractor.extract_sync("I live in Kothrud near the bus stand", "s-1")

        places = result.of_type(EntityType.LOCATION)
        assert [p.value for p in places] == ["Kothrud"]
        assert [e.value for e in result.of_type(EntityType.LANDMARK)] == ["bus stand"]

    def test_idiom_is_not_a_place(self, rule_extractor: RuleBasedExtractor) -> None:
        result = rule_extractor.extract_sync("I am in trouble", "s-1")
        assert result.of_type(EntityType.LOCATION) == []

    def test_environmental_cue(self, rule_extractor: RuleBasedExtractor) -> None:
        result = rule_extractor.extract_sync("My stall is on a busy road", "s-1")

        cues = result.of_type(EntityType.ENVIRONMENTAL_CUE)
        assert [c.value for c in cues] == ["busy road"]
        assert result.of_type(EntityType.LOCATION) == []


class TestOperatingConditions:
    def test_hours_range(self, rule_extractor: RuleBasedExtractor) -> None:
        result = rule_extractor.extract_sync("I work from 6am to 10pm", "s-1")

        conditions = result.operating_conditions
        assert conditions is not None
        assert conditions.value == "6am-10pm"
        assert conditions.explicit is True

    def test_schedule_and_setup_words(self, rule_extractor: RuleBasedExtractor) -> None:
        result = rule_extractor.extract_sync("I sell chai from a handcart every morning", "s-1")

        conditions = result.operating_conditions
        assert conditions is not None
        assert conditions.value == "morning; handcart"


class TestPreferencesAndMarkers:
    def test_budget(self, rule_extractor: RuleBasedExtractor) -> None:
        result = rule_extractor.extract_sync("My budget is around 5000 rupees", "s-1")

        assert result.preferences["budget"].value == "5000 rupees"

    @pytest.mark.parametrize("text", ["I don't know", "not sure", "Skip this one"])
    def test_decline(self, rule_extractor: RuleBasedExtractor, text: str) -> None:
        assert rule_extractor.extract_sync(text, "s-1").declined is True

    def test_affirmation_requires_whole_utterance(self, rule_extractor: RuleBasedExtractor) -> None:
        assert rule_extractor.extract_sync("Yes!", "s-1").affirmed is True
        assert rule_extractor.extract_sync("yes I sell tea", "s-1").affirmed is False

    def test_no_entities_is_not_an_error(self, rule_extractor: RuleBasedExtractor) -> None:
        result = rule_extractor.extract_sync("hello there", "s-1")
        assert result.is_empty


class TestExtractorContract:
    @pytest.mark.parametrize("text", ["", "   ", "a" * 4001])
    def test_malformed_input_raises(self, rule_extractor: RuleBasedExtractor, text: str) -> None:
        with pytest.raises(ExtractionError) as exc_info:
            rule_extractor.extract_sync(text, "s-1")
        assert exc_info.value.session_id == "s-1"

    def test_non_string_raises(self, rule_extractor: RuleBasedExtractor) -> None:
        with pytest.raises(ExtractionError):
            rule_extractor.extract_sync(None, "s-1")  # type: ignore[arg-type]

    def test_same_input_same_output(self, rule_extractor: RuleBasedExtractor) -> None:
        first = rule_extractor.extract_sync("I run a tea stall in Pune from 6am to 10pm", "s-1")
        second = rule_extractor.extract_sync("I run a tea stall in Pune from 6am to 10pm", "s-1")
        assert first == second

    def test_language_detection(self, rule_extractor: RuleBasedExtractor) -> None:
        assert rule_extractor.extract_sync("मैं चाय बेचता हूँ", "s-1").language == "hi"
        assert rule_extractor.extract_sync("I sell tea", "s-1").language == "en"

    @pytest.mark.asyncio
    async def test_async_entry_point(self, rule_extractor: RuleBasedExtractor) -> None:
        result = await rule_extractor.extract("I sell flowers", "s-9")

        assert result.session_id == "s-9"
        assert result.produced_at == START
        assert result.business_type is not None
        assert result.business_type.value == "flowers"
