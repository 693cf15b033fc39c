"""
Fixed ruleset for the rule-based entity extractor.

Lexicons map surface forms (English and common Hinglish) to canonical values;
patterns capture free-form spans. Confidence constants encode how directly a
rule reflects a user statement.
"""

import re

# ------------------------------------------------------------------
# Confidence levels
# ------------------------------------------------------------------
CONF_CORRECTION = 0.9
CONF_STATED = 0.85
CONF_STATED_PLACE = 0.9
CONF_SELF_PLACE = 0.8
CONF_PROPER_NOUN_PLACE = 0.7
CONF_OWNED_SHOP = 0.8
CONF_LEXICON_MENTION = 0.6
CONF_QUESTION_HINT = 0.4
CONF_KNOWN_LANDMARK = 0.8
CONF_UNKNOWN_LANDMARK = 0.6
CONF_ENV_CUE = 0.6
CONF_HOURS = 0.85
CONF_SCHEDULE_WORD = 0.7
CONF_SETUP_WORD = 0.7
CONF_PREFERENCE = 0.75
CONF_BUDGET = 0.8
CONF_GOAL = 0.7
CONF_DECLINE = 0.9
CONF_AFFIRMATION = 0.9

MAX_UTTERANCE_CHARS = 4000

# ------------------------------------------------------------------
# Lexicons
# ------------------------------------------------------------------
BUSINESS_LEXICON: dict[str, str] = {
    "vegetables": "vegetables",
    "vegetable": "vegetables",
    "sabzi": "vegetables",
    "sabji": "vegetables",
    "fruits": "fruits",
    "fruit": "fruits",
    "tea": "tea",
    "chai": "tea",
    "snacks": "snacks",
    "samosa": "snacks",
    "street food": "street food",
    "juice": "juice",
    "clothes": "clothes",
    "garments": "clothes",
    "tailoring": "tailoring",
    "mobile repair": "mobile repair",
    "phone repair": "mobile repair",
    "groceries": "groceries",
    "grocery": "groceries",
    "kirana": "groceries",
    "flowers": "flowers",
    "bakery": "bakery",
    "shoes": "shoes",
    "cosmetics": "cosmetics",
    "stationery": "stationery",
}

# Trailing nouns that describe the outlet rather than the goods.
OUTLET_NOUNS = ("shop", "stall", "business", "store", "cart", "stand", "counter", "centre", "center")

LANDMARK_KEYWORDS = (
    "railway station",
    "station",
    "bus stand",
    "bus stop",
    "bus depot",
    "temple",
    "mandir",
    "masjid",
    "mosque",
    "church",
    "gurudwara",
    "school",
    "college",
    "university",
    "hospital",
    "market",
    "bazaar",
    "mall",
    "bridge",
    "park",
    "metro",
    "chowk",
    "circle",
    "junction",
    "gate",
    "bank",
    "post office",
    "factory",
    "office",
    "cinema",
)

ENVIRONMENTAL_CUES: tuple[str, ...] = (
    "busy road",
    "busy street",
    "main road",
    "heavy traffic",
    "crowded",
    "quiet",
    "residential",
    "office area",
    "college area",
    "tourist",
    "dusty",
    "narrow lane",
    "highway",
    "market area",
    "industrial area",
)

SCHEDULE_WORDS: tuple[str, ...] = (
    "early morning",
    "morning",
    "afternoon",
    "evening",
    "night",
    "all day",
    "every day",
    "daily",
    "weekends",
    "weekdays",
)

SETUP_WORDS: tuple[str, ...] = (
    "handcart",
    "pushcart",
    "cart",
    "footpath",
    "roadside",
    "rented shop",
    "on rent",
    "from home",
    "home-based",
    "weekly market",
    "van",
)

DECLINE_PHRASES: tuple[str, ...] = (
    "don't know",
    "dont know",
    "do not know",
    "not sure",
    "no idea",
    "skip",
    "rather not",
    "don't want to say",
    "dont want to say",
    "do not want to say",
    "prefer not",
    "pass",
    "next question",
    "nahi pata",
    "pata nahi",
    "mat poocho",
)

AFFIRMATIONS: frozenset[str] = frozenset(
    {
        "yes",
        "yeah",
        "yep",
        "yes it is",
        "correct",
        "right",
        "that's right",
        "thats right",
        "exactly",
        "haan",
        "haan ji",
        "ji haan",
        "ji",
        "sure",
        "ok",
        "okay",
    }
)

QUESTION_STARTERS = ("should", "can", "could", "what", "which", "how", "would", "is it", "kya")

# Tokens that terminate a free-form span.
SPAN_STOPWORDS = frozenset(
    {
        "near", "and", "but", "in", "at", "where", "which", "since", "from", "to",
        "with", "so", "because", "every", "during", "on", "opposite", "behind",
        "beside", "next", "for", "till", "until", "after", "before",
    }
)

ARTICLES = frozenset({"the", "a", "an", "my", "our"})

FILLER_ADJECTIVES = frozenset({"own", "small", "little", "new", "old", "family", "local", "big"})

# ------------------------------------------------------------------
# Patterns
# ------------------------------------------------------------------
SELL_PATTERN = re.compile(
    r"\b(?:i|we)\s+(?:sell|sells|am selling|are selling|deal in|run|own|have|make)\s+(?P<item>[^,.;!?]+)"
)

OWNED_SHOP_PATTERN = re.compile(
    r"\bmy\s+(?P<item>[a-z]+(?:\s+[a-z]+)?)\s+(?:" + "|".join(OUTLET_NOUNS) + r")\b"
)

CORRECTION_PATTERN = re.compile(r"\b(?:actually|now|instead|no longer|changed)\b")

STATED_PLACE_PATTERN = re.compile(
    r"\b(?:my\s+(?:shop|stall|business|store|cart)\s+is\s+(?:located\s+)?(?:in|at)|located\s+(?:in|at))\s+(?P<place>[^,.;!?]+)",
    re.IGNORECASE,
)

SELF_PLACE_PATTERN = re.compile(
    r"\b(?:i\s+am|i'm|we\s+are|we're|i\s+live|i\s+stay|i\s+work|we\s+work)\s+(?:in|at)\s+(?P<place>[^,.;!?]+)",
    re.IGNORECASE,
)

PROPER_NOUN_PLACE_PATTERN = re.compile(
    r"\bin\s+(?P<place>[A-Z][\w'-]*(?:\s+[A-Z][\w'-]*){0,2})"
)

LANDMARK_PATTERN = re.compile(
    r"\b(?:near|opposite|behind|beside|next\s+to|close\s+to|in\s+front\s+of)\s+(?P<landmark>[^,.;!?]+)"
)

HOURS_PATTERN = re.compile(
    r"\b(?P<h1>\d{1,2})(?::(?P<m1>\d{2}))?\s*(?P<p1>am|pm)?\s*(?:to|till|until|-)\s*"
    r"(?P<h2>\d{1,2})(?::(?P<m2>\d{2}))?\s*(?P<p2>am|pm)\b"
)

PREFERENCE_PATTERN = re.compile(r"\bi\s+prefer\s+(?P<value>[^,.;!?]+)")
BUDGET_PATTERN = re.compile(
    r"\bmy\s+budget\s+is\s+(?:around\s+|about\s+|only\s+)?(?P<value>[^,.;!?]+)"
)
GOAL_PATTERN = re.compile(r"\bi\s+(?:want|plan|hope)\s+to\s+(?P<value>[^,.;!?]+)")

DEVANAGARI_PATTERN = re.compile(r"[ऀ-ॿ]")
PUNCTUATION_PATTERN = re.compile(r"[^\w\s']")


def phrase_pattern(phrase: str) -> re.Pattern[str]:
    """Word-bounded matcher for a lexicon phrase."""
    return re.compile(r"(?<![\w'])" + re.escape(phrase) + r"(?![\w'])")
