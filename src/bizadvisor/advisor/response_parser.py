"""
Response parser for the advisor's trailing DOMAIN / CONFIDENCE lines.
"""

import re
from typing import NamedTuple

from bizadvisor.advisor.models import GuidanceDomain


class ParsedGuidance(NamedTuple):
    """Parsed advisor response with the metadata lines removed."""

    text: str
    domain: GuidanceDomain
    confidence: float


DOMAIN_PATTERN = re.compile(r"^\s*DOMAIN:\s*(\w+)\s*$", re.MULTILINE | re.IGNORECASE)
CONFIDENCE_PATTERN = re.compile(
    r"^\s*CONFIDENCE:\s*([0-9]*\.?[0-9]+)\s*$", re.MULTILINE | re.IGNORECASE
)

DEFAULT_CONFIDENCE = 0.5

# Used when the model omits the DOMAIN line.
DOMAIN_KEYWORDS = {
    GuidanceDomain.LOCATION: ("location", "footfall", "spot", "near", "road", "station", "move"),
    GuidanceDomain.MARKET: ("price", "demand", "customers", "competition", "market", "sell more"),
}


def parse_guidance(raw_response: str) -> ParsedGuidance:
    """Split advisor output into text, domain tag and confidence.

    Args:
        raw_response: Raw completion text.

    Returns:
        ParsedGuidance; confidence is clamped to [0, 1].
    """
    domain: GuidanceDomain | None = None
    confidence = DEFAULT_CONFIDENCE

    domain_match = DOMAIN_PATTERN.search(raw_response)
    if domain_match:
        try:
            domain = GuidanceDomain(domain_match.group(1).lower())
        except ValueError:
            domain = None

    confidence_match = CONFIDENCE_PATTERN.search(raw_response)
    if confidence_match:
        confidence = min(1.0, max(0.0, float(confidence_match.group(1))))

    text = CONFIDENCE_PATTERN.sub("", DOMAIN_PATTERN.sub("", raw_response)).strip()

    if domain is None:
        domain = _infer_domain(text)

    return ParsedGuidance(text=text, domain=domain, confidence=confidence)


def _infer_domain(text: str) -> GuidanceDomain:
    lowered = text.lower()
    scores = {
        candidate: sum(1 for keyword in keywords if keyword in lowered)
        for candidate, keywords in DOMAIN_KEYWORDS.items()
    }
    best = max(scores, key=lambda d: scores[d])
    return best if scores[best] > 0 else GuidanceDomain.GENERAL
