"""
Mock business advisor for tests and offline development.
"""

from bizadvisor.advisor.gateway import BaseAdvisorAdapter
from bizadvisor.advisor.models import (
    AdvisorProvider,
    AdvisorProviderError,
    GuidanceDomain,
    GuidanceRequest,
    GuidanceResponse,
)
from bizadvisor.shared.logging import get_logger

logger = get_logger(__name__)

_MARKET_WORDS = ("price", "prices", "demand", "customers", "sell more", "competition", "profit")


class MockBusinessAdvisor(BaseAdvisorAdapter):
    """Deterministic advisor that answers from the merged context."""

    def __init__(self) -> None:
        super().__init__(api_key="", default_model="mock-advisor")
        self._requests: list[GuidanceRequest] = []
        self._should_fail = False
        self._fail_error = "Mock advisor failure"

    def reset(self) -> None:
        self._requests.clear()
        self._should_fail = False
        self._fail_error = "Mock advisor failure"

    def configure_failure(
        self,
        should_fail: bool = True,
        error_message: str = "Mock advisor failure",
    ) -> None:
        self._should_fail = should_fail
        self._fail_error = error_message

    @property
    def provider(self) -> AdvisorProvider:
        return AdvisorProvider.MOCK

    @property
    def requests(self) -> list[GuidanceRequest]:
        return self._requests.copy()

    def generate_guidance_sync(self, request: GuidanceRequest) -> GuidanceResponse:
        logger.info(
            "Mock: generating guidance",
            extra={"session_id": request.context.session_id},
        )
        if self._should_fail:
            raise AdvisorProviderError(
                self._fail_error,
                correlation_id=request.correlation_id,
                provider=self.provider,
            )

        self._requests.append(request)
        context = request.context
        business = context.business_type or "your business"
        lowered = request.text.lower()

        if any(word in lowered for word in _MARKET_WORDS):
            text = (
                f"Check what nearby {business} sellers charge and keep your price close. "
                f"Offer a small combo to bring repeat customers."
            )
            domain = GuidanceDomain.MARKET
        elif context.location:
            spot = context.landmarks[0] if context.landmarks else context.location
            text = (
                f"Set up where people wait or walk past near {spot}. "
                f"Busy hours there are the best time to sell {business}."
            )
            domain = GuidanceDomain.LOCATION
        else:
            text = f"Keep a simple daily record of what {business} sells best and restock that first."
            domain = GuidanceDomain.GENERAL

        return GuidanceResponse(
            text=text,
            type=domain,
            confidence=0.8,
            model=self.default_model,
            provider=self.provider,
            correlation_id=request.correlation_id,
        )

    async def health_check(self) -> bool:
        return not self._should_fail
