"""
Prompt templates for the business advisor.
"""

from bizadvisor.advisor.models import AdvisorContext

ADVISOR_SYSTEM_PROMPT_TEMPLATE = """You are a practical business advisor for small and informal businesses such as street vendors, stall owners and home businesses.

BUSINESS CONTEXT:
- Business type: {business_type}
- Location: {location}
- Nearby landmarks: {landmarks}
- Surroundings: {environmental_cues}
- Operating conditions: {operating_conditions}
- Preferences: {preferences}
- Not shared by the user: {unset_fields}

INSTRUCTIONS:
- Answer in {language_name}.
- Give two or three concrete, low-cost suggestions the user can act on this week.
- Use short plain sentences. The answer is read aloud, so avoid lists, symbols and markdown.
- If a detail was not shared, do not invent it.

RESPONSE FORMAT:
Write the advice first. Then add two lines:
DOMAIN: location | market | general
CONFIDENCE: a number between 0 and 1"""

LANGUAGE_NAMES = {
    "en": "English",
    "hi": "Hindi",
}

_UNKNOWN = "not known"


def _or_unknown(value: str | None) -> str:
    return value if value else _UNKNOWN


def build_system_prompt(context: AdvisorContext) -> str:
    """Build the system prompt from the merged session context.

    Args:
        context: Merged session context.

    Returns:
        Formatted system prompt.
    """
    preferences = ", ".join(f"{k}: {v}" for k, v in sorted(context.preferences.items()))
    return ADVISOR_SYSTEM_PROMPT_TEMPLATE.format(
        business_type=_or_unknown(context.business_type),
        location=_or_unknown(context.location),
        landmarks=", ".join(context.landmarks) or _UNKNOWN,
        environmental_cues=", ".join(context.environmental_cues) or _UNKNOWN,
        operating_conditions=_or_unknown(context.operating_conditions),
        preferences=preferences or _UNKNOWN,
        unset_fields=", ".join(context.unset_fields) or "none",
        language_name=LANGUAGE_NAMES.get(context.language, "English"),
    )


def build_messages(context: AdvisorContext, text: str) -> list[dict[str, str]]:
    """Chat messages for one guidance request: system prompt, recent turns, utterance."""
    messages = [{"role": "system", "content": build_system_prompt(context)}]
    for role, content in context.recent_turns:
        messages.append({"role": role, "content": content})
    messages.append({"role": "user", "content": text})
    return messages
