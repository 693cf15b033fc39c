"""
Business advisor interface definition.
"""

from abc import ABC, abstractmethod
from typing import Protocol, runtime_checkable

import anyio

from bizadvisor.advisor.models import (
    AdvisorContext,
    AdvisorProvider,
    GuidanceRequest,
    GuidanceResponse,
)


@runtime_checkable
class BusinessAdvisor(Protocol):
    """Protocol for advisor implementations.

    There is one advisor capability; the sub-domain that answered is carried
    on `GuidanceResponse.type`.
    """

    @property
    def provider(self) -> AdvisorProvider:
        ...

    async def generate_guidance(
        self,
        context: AdvisorContext,
        text: str,
        correlation_id: str | None = None,
    ) -> GuidanceResponse:
        """Produce guidance for a READY session.

        Raises:
            AdvisorTimeoutError: If the request times out.
            AdvisorRateLimitError: If rate limited by the provider.
            AdvisorAuthenticationError: If authentication fails.
            AdvisorProviderError: For other provider errors.
        """
        ...

    async def health_check(self) -> bool:
        ...


class BaseAdvisorAdapter(ABC):
    """Base class for advisor adapters.

    `generate_guidance_sync` is the source of truth; the async entry point runs
    it in a worker thread.
    """

    def __init__(
        self,
        api_key: str,
        default_model: str,
        timeout_seconds: float = 30.0,
    ) -> None:
        """Initialize the adapter.

        Args:
            api_key: API key for the provider.
            default_model: Default model to use.
            timeout_seconds: Request timeout in seconds.
        """
        self._api_key = api_key
        self._default_model = default_model
        self._timeout_seconds = timeout_seconds

    @property
    @abstractmethod
    def provider(self) -> AdvisorProvider:
        raise NotImplementedError

    @property
    def default_model(self) -> str:
        return self._default_model

    async def generate_guidance(
        self,
        context: AdvisorContext,
        text: str,
        correlation_id: str | None = None,
    ) -> GuidanceResponse:
        request = GuidanceRequest(context=context, text=text)
        if correlation_id:
            request.correlation_id = correlation_id
        return await anyio.to_thread.run_sync(self.generate_guidance_sync, request)

    @abstractmethod
    def generate_guidance_sync(self, request: GuidanceRequest) -> GuidanceResponse:
        raise NotImplementedError

    @abstractmethod
    async def health_check(self) -> bool:
        raise NotImplementedError
