"""
Data models for the business advisor gateway.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from bizadvisor.shared.exceptions import BizAdvisorError


class AdvisorProvider(str, Enum):
    """Supported advisor backends."""

    OPENAI = "openai"
    MOCK = "mock"


class GuidanceDomain(str, Enum):
    """Sub-domain that produced a piece of guidance."""

    LOCATION = "location"
    MARKET = "market"
    GENERAL = "general"


class AdvisorContext(BaseModel):
    """Merged session context handed to the advisor."""

    session_id: str
    user_id: str
    language: str = "en"
    business_type: str | None = None
    location: str | None = None
    landmarks: list[str] = Field(default_factory=list)
    environmental_cues: list[str] = Field(default_factory=list)
    operating_conditions: str | None = None
    preferences: dict[str, str] = Field(default_factory=dict)
    unset_fields: list[str] = Field(default_factory=list)
    recent_turns: list[tuple[str, str]] = Field(default_factory=list)

    model_config = {"frozen": False}


class GuidanceRequest(BaseModel):
    """Request for one piece of guidance."""

    context: AdvisorContext
    text: str
    model: str | None = None
    temperature: float = 0.4
    max_tokens: int = 400
    correlation_id: str = Field(default_factory=lambda: str(uuid4()))


class GuidanceResponse(BaseModel):
    """Guidance returned by the advisor."""

    text: str
    type: GuidanceDomain = GuidanceDomain.GENERAL
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    model: str | None = None
    provider: AdvisorProvider | None = None
    correlation_id: str | None = None
    latency_ms: float = 0.0
    usage: dict[str, int] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AdvisorError(BizAdvisorError):
    """Base exception for advisor errors."""

    def __init__(
        self,
        message: str,
        correlation_id: str | None = None,
        provider: AdvisorProvider | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(
            message,
            correlation_id=correlation_id,
            provider=provider.value if provider else None,
        )
        self.correlation_id = correlation_id
        self.provider = provider
        self.original_error = original_error


class AdvisorTimeoutError(AdvisorError):
    """Timeout error for advisor requests."""


class AdvisorRateLimitError(AdvisorError):
    """Rate limit error for advisor requests."""

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class AdvisorAuthenticationError(AdvisorError):
    """Authentication error for advisor requests."""


class AdvisorProviderError(AdvisorError):
    """Generic provider error for advisor requests."""
