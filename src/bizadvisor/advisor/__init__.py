"""
Business advisor gateway: one guidance capability with a domain tag.
"""

from bizadvisor.advisor.factory import create_advisor, create_advisor_from_settings
from bizadvisor.advisor.gateway import BaseAdvisorAdapter, BusinessAdvisor
from bizadvisor.advisor.mock import MockBusinessAdvisor
from bizadvisor.advisor.models import (
    AdvisorAuthenticationError,
    AdvisorContext,
    AdvisorError,
    AdvisorProvider,
    AdvisorProviderError,
    AdvisorRateLimitError,
    AdvisorTimeoutError,
    GuidanceDomain,
    GuidanceRequest,
    GuidanceResponse,
)
from bizadvisor.advisor.openai_adapter import OpenAIAdvisorAdapter

__all__ = [
    "AdvisorAuthenticationError",
    "AdvisorContext",
    "AdvisorError",
    "AdvisorProvider",
    "AdvisorProviderError",
    "AdvisorRateLimitError",
    "AdvisorTimeoutError",
    "BaseAdvisorAdapter",
    "BusinessAdvisor",
    "GuidanceDomain",
    "GuidanceRequest",
    "GuidanceResponse",
    "MockBusinessAdvisor",
    "OpenAIAdvisorAdapter",
    "create_advisor",
    "create_advisor_from_settings",
]
