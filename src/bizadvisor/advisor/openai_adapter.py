import time

import httpx

from bizadvisor.advisor.gateway import BaseAdvisorAdapter
from bizadvisor.advisor.models import (
    AdvisorAuthenticationError,
    AdvisorProvider,
    AdvisorProviderError,
    AdvisorRateLimitError,
    AdvisorTimeoutError,
    GuidanceRequest,
    GuidanceResponse,
)
from bizadvisor.advisor.prompts import build_messages
from bizadvisor.advisor.response_parser import parse_guidance
from bizadvisor.shared.logging import get_logger

logger = get_logger(__name__)


class OpenAIAdvisorAdapter(BaseAdvisorAdapter):
    """
    OpenAI chat-completions adapter.
    Text only; the caller handles speech.
    """

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-4.1-mini",
        timeout_seconds: float = 30.0,
        base_url: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(api_key, default_model, timeout_seconds)
        self._base_url = (base_url or "https://api.openai.com/v1").rstrip("/")
        self._chat_endpoint = f"{self._base_url}/chat/completions"
        self._transport = transport

    @property
    def provider(self) -> AdvisorProvider:
        return AdvisorProvider.OPENAI

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self._timeout_seconds, transport=self._transport)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def generate_guidance_sync(self, request: GuidanceRequest) -> GuidanceResponse:
        model = request.model or self._default_model
        payload = {
            "model": model,
            "messages": build_messages(request.context, request.text),
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }

        started = time.perf_counter()
        try:
            with self._client() as client:
                r = client.post(self._chat_endpoint, json=payload, headers=self._headers())
        except httpx.TimeoutException as exc:
            raise AdvisorTimeoutError(
                "OpenAI request timed out",
                correlation_id=request.correlation_id,
                provider=self.provider,
                original_error=exc,
            ) from exc
        except httpx.HTTPError as exc:
            raise AdvisorProviderError(
                f"OpenAI transport error: {exc}",
                correlation_id=request.correlation_id,
                provider=self.provider,
                original_error=exc,
            ) from exc
        latency_ms = (time.perf_counter() - started) * 1000.0

        if r.status_code in (401, 403):
            raise AdvisorAuthenticationError(
                f"OpenAI authentication failed ({r.status_code})",
                correlation_id=request.correlation_id,
                provider=self.provider,
            )
        if r.status_code == 429:
            retry_after = r.headers.get("retry-after")
            raise AdvisorRateLimitError(
                "OpenAI rate limit",
                retry_after=float(retry_after) if retry_after else None,
                correlation_id=request.correlation_id,
                provider=self.provider,
            )
        if r.status_code != 200:
            raise AdvisorProviderError(
                f"OpenAI error {r.status_code}",
                correlation_id=request.correlation_id,
                provider=self.provider,
            )

        try:
            data = r.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise AdvisorProviderError(
                "Malformed OpenAI response",
                correlation_id=request.correlation_id,
                provider=self.provider,
                original_error=exc,
            ) from exc

        parsed = parse_guidance(content or "")
        if not parsed.text:
            raise AdvisorProviderError(
                "Empty guidance from OpenAI",
                correlation_id=request.correlation_id,
                provider=self.provider,
            )

        logger.info(
            "Guidance generated",
            extra={
                "session_id": request.context.session_id,
                "correlation_id": request.correlation_id,
                "model": model,
                "domain": parsed.domain.value,
                "latency_ms": round(latency_ms, 1),
            },
        )

        return GuidanceResponse(
            text=parsed.text,
            type=parsed.domain,
            confidence=parsed.confidence,
            model=model,
            provider=self.provider,
            correlation_id=request.correlation_id,
            latency_ms=latency_ms,
            usage={k: int(v) for k, v in (data.get("usage") or {}).items() if isinstance(v, int)},
        )

    async def health_check(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                r = await client.get(f"{self._base_url}/models", headers=self._headers())
        except httpx.HTTPError:
            logger.warning("OpenAI health check failed", exc_info=True)
            return False
        return r.status_code == 200
