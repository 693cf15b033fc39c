"""
Factory for creating business advisor instances.
"""

from bizadvisor.advisor.gateway import BusinessAdvisor
from bizadvisor.advisor.mock import MockBusinessAdvisor
from bizadvisor.advisor.models import AdvisorProvider, AdvisorProviderError
from bizadvisor.advisor.openai_adapter import OpenAIAdvisorAdapter
from bizadvisor.config import Settings, get_settings
from bizadvisor.shared.logging import get_logger

logger = get_logger(__name__)


def create_advisor(
    provider: AdvisorProvider | str,
    api_key: str | None = None,
    model: str = "gpt-4.1-mini",
    timeout_seconds: float = 30.0,
) -> BusinessAdvisor:
    """Create an advisor for the given provider.

    Args:
        provider: Provider name or enum.
        api_key: API key (required for openai).
        model: Model name for hosted providers.
        timeout_seconds: Request timeout in seconds.

    Returns:
        BusinessAdvisor instance.

    Raises:
        AdvisorProviderError: If the provider is unsupported or the API key is missing.
    """
    if isinstance(provider, str):
        try:
            provider = AdvisorProvider(provider.lower())
        except ValueError:
            raise AdvisorProviderError(
                f"Unsupported advisor provider: {provider}. "
                f"Supported providers: {[p.value for p in AdvisorProvider]}"
            )

    logger.info(
        "Creating business advisor",
        extra={"provider": provider.value, "model": model},
    )

    if provider == AdvisorProvider.MOCK:
        return MockBusinessAdvisor()

    if not api_key:
        raise AdvisorProviderError(
            f"API key required for {provider.value}. Set OPENAI_API_KEY.",
            provider=provider,
        )
    return OpenAIAdvisorAdapter(
        api_key=api_key,
        default_model=model,
        timeout_seconds=timeout_seconds,
    )


def create_advisor_from_settings(settings: Settings | None = None) -> BusinessAdvisor:
    settings = settings or get_settings()
    return create_advisor(
        provider=settings.advisor_provider,
        api_key=settings.openai_api_key or None,
        model=settings.advisor_model,
        timeout_seconds=settings.advisor_timeout_seconds,
    )
