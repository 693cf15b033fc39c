"""Entity extraction from user utterances."""

from bizadvisor.extraction.extractor import ExtractorProtocol, RuleBasedExtractor
from bizadvisor.extraction.models import (
    DEFAULT_CONFIDENCE_FLOOR,
    Entity,
    EntityType,
    ExtractedContext,
    LocationCandidate,
)

__all__ = [
    "DEFAULT_CONFIDENCE_FLOOR",
    "Entity",
    "EntityType",
    "ExtractedContext",
    "ExtractorProtocol",
    "LocationCandidate",
    "RuleBasedExtractor",
]
