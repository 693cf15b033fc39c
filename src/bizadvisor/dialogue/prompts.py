"""
Question and notice texts in English and Hindi.

Texts are plain and punctuation-light because most of them are spoken.
"""

import re

from bizadvisor.context.models import ContextField
from bizadvisor.dialogue.models import ClarifyReason, NoticeKind

DEFAULT_LANGUAGE = "en"

QUESTIONS: dict[str, dict[ContextField, str]] = {
    "en": {
        ContextField.BUSINESS_TYPE: "What do you sell, or what kind of business do you run?",
        ContextField.LOCATION: "Where do you run your business? You can name the area or a landmark nearby.",
        ContextField.OPERATING_CONDITIONS: "When do you usually work, and do you sell from a shop, a cart or the roadside?",
    },
    "hi": {
        ContextField.BUSINESS_TYPE: "आप क्या बेचते हैं, या आपका काम किस तरह का है?",
        ContextField.LOCATION: "आप अपना काम कहाँ करते हैं? इलाके का नाम या पास की कोई जगह बताइए।",
        ContextField.OPERATING_CONDITIONS: "आप आम तौर पर किस समय काम करते हैं, और दुकान, ठेले या सड़क किनारे से बेचते हैं?",
    },
}

LANDMARK_FOLLOW_UP = {
    "en": "Is there a landmark near your spot in {location}, like a station, a temple or a market?",
    "hi": "{location} में आपकी जगह के पास कोई पहचान की जगह है, जैसे स्टेशन, मंदिर या बाज़ार?",
}

RECONFIRM = {
    "en": "Earlier you told me something different. Just to confirm, is your {label} {value}?",
    "hi": "पहले आपने कुछ और बताया था। पक्का करने के लिए, क्या आपका {label} {value} है?",
}

FIELD_LABELS = {
    "en": {
        ContextField.BUSINESS_TYPE: "business",
        ContextField.LOCATION: "location",
        ContextField.OPERATING_CONDITIONS: "working time and setup",
    },
    "hi": {
        ContextField.BUSINESS_TYPE: "काम",
        ContextField.LOCATION: "जगह",
        ContextField.OPERATING_CONDITIONS: "काम का समय",
    },
}

CLARIFY = {
    "en": {
        ClarifyReason.UNUSABLE_INPUT: "Sorry, I did not catch that. Could you say it again?",
        ClarifyReason.LOW_STT_CONFIDENCE: "Sorry, the recording was not clear. Could you say it once more?",
        ClarifyReason.SPEECH_UNAVAILABLE: "I cannot process voice right now. I saved your message and will handle it once you are online. You can also type your answer.",
        ClarifyReason.LOW_CONFIDENCE_HINT: "Did you mean {hint}?",
        ClarifyReason.ADVISOR_UNAVAILABLE: "I cannot get advice right now. Your details are saved. Please ask again in a little while.",
    },
    "hi": {
        ClarifyReason.UNUSABLE_INPUT: "माफ़ कीजिए, मैं समझ नहीं पाया। क्या आप फिर से बोल सकते हैं?",
        ClarifyReason.LOW_STT_CONFIDENCE: "माफ़ कीजिए, आवाज़ साफ़ नहीं थी। एक बार फिर बोलिए।",
        ClarifyReason.SPEECH_UNAVAILABLE: "अभी आवाज़ समझ नहीं पा रहा। आपका संदेश सेव है, ऑनलाइन होने पर देखूँगा। आप लिखकर भी जवाब दे सकते हैं।",
        ClarifyReason.LOW_CONFIDENCE_HINT: "क्या आपका मतलब {hint} है?",
        ClarifyReason.ADVISOR_UNAVAILABLE: "अभी सलाह नहीं मिल पा रही। आपकी जानकारी सेव है। थोड़ी देर बाद फिर पूछिए।",
    },
}

NOTICES = {
    "en": {
        NoticeKind.STORAGE_FULL: "Offline storage is full. {count} older text notes were removed to make space. Connect to the internet to sync.",
        NoticeKind.SYNC_FAILED: "{count} saved messages could not be synced.",
    },
    "hi": {
        NoticeKind.STORAGE_FULL: "ऑफ़लाइन जगह भर गई है। जगह बनाने के लिए {count} पुराने संदेश हटाए गए। सिंक करने के लिए इंटरनेट से जुड़ें।",
        NoticeKind.SYNC_FAILED: "{count} सेव किए गए संदेश सिंक नहीं हो सके।",
    },
}

_MARKUP_PATTERN = re.compile(r"[*#_`~|<>\[\]{}()•]")
_BULLET_PATTERN = re.compile(r"^\s*(?:[-–]|\d+[.)])\s+", re.MULTILINE)
_REPEATED_PUNCT_PATTERN = re.compile(r"([!?.,;:])\1+")


def _lang(language: str | None) -> str:
    return language if language in QUESTIONS else DEFAULT_LANGUAGE


def question_text(f: ContextField, language: str | None = None) -> str:
    return QUESTIONS[_lang(language)][f]


def follow_up_text(location: str, language: str | None = None) -> str:
    return LANDMARK_FOLLOW_UP[_lang(language)].format(location=location)


def reconfirm_text(f: ContextField, value: str, language: str | None = None) -> str:
    lang = _lang(language)
    return RECONFIRM[lang].format(label=FIELD_LABELS[lang][f], value=value)


def clarify_text(reason: ClarifyReason, language: str | None = None, hint: str | None = None) -> str:
    template = CLARIFY[_lang(language)][reason]
    return template.format(hint=hint or "")


def notice_text(kind: NoticeKind, count: int, language: str | None = None) -> str:
    return NOTICES[_lang(language)][kind].format(count=count)


def to_speech_text(text: str) -> str:
    """Strip markup and collapse whitespace so TTS reads plain sentences."""
    cleaned = _BULLET_PATTERN.sub("", text)
    cleaned = _MARKUP_PATTERN.sub(" ", cleaned)
    cleaned = cleaned.replace("&", " and ").replace("/", " ")
    cleaned = _REPEATED_PUNCT_PATTERN.sub(r"\1", cleaned)
    return " ".join(cleaned.split())
