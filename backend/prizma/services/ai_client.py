"""
AI Service Client

Thin async client for an OpenAI-compatible chat completions endpoint, used
for categorization and receipt enhancement. Transport errors, 429 and 5xx
responses are retried with exponential backoff; anything still failing is
raised as ExternalServiceError so callers can degrade to rule-only paths.
"""
import asyncio
import logging
from typing import Optional

import httpx

from prizma.config import Settings
from prizma.exceptions import ConfigurationError, ExternalServiceError

logger = logging.getLogger(__name__)


class AIServiceClient:
    """Chat completions client with retry/backoff."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def aclose(self):
        await self._client.aclose()

    def _backoff(self, attempt: int) -> float:
        return self.backoff_seconds * (2 ** (attempt - 1))

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.2,
        max_tokens: int = 500,
    ) -> str:
        """
        Send one chat completion and return the message content.

        Raises:
            ExternalServiceError: request failed after all retries, or the
                provider rejected it with a non-retryable status.
        """
        url = f"{self.base_url}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        last_error: Optional[ExternalServiceError] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = await self._client.post(url, headers=headers, json=payload)
            except httpx.TransportError as e:
                last_error = ExternalServiceError(f"AI request failed: {e}", retryable=True)
            else:
                if response.status_code == 429 or response.status_code >= 500:
                    last_error = ExternalServiceError(
                        f"AI provider error {response.status_code}: {response.text[:200]}",
                        status_code=response.status_code,
                        retryable=True,
                    )
                elif response.status_code >= 400:
                    raise ExternalServiceError(
                        f"AI provider error {response.status_code}: {response.text[:200]}",
                        status_code=response.status_code,
                    )
                else:
                    return self._extract_content(response)

            if attempt < self.max_retries:
                delay = self._backoff(attempt)
                logger.warning(f"AI request attempt {attempt} failed ({last_error}), retrying in {delay:.1f}s")
                await asyncio.sleep(delay)

        logger.error(f"AI request failed after {self.max_retries} attempts: {last_error}")
        raise last_error

    @staticmethod
    def _extract_content(response: httpx.Response) -> str:
        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ExternalServiceError(f"Unexpected AI response body: {e}") from e
        return content or ""


def create_ai_client(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> Optional[AIServiceClient]:
    """
    Build the AI client from settings.

    Returns None when AI is disabled. AI enabled without an API key is a
    fatal configuration error.
    """
    if not settings.ai_enabled:
        return None
    if not settings.ai_api_key:
        raise ConfigurationError("AI_ENABLED is set but AI_API_KEY is missing")
    return AIServiceClient(
        api_key=settings.ai_api_key,
        base_url=settings.ai_base_url,
        model=settings.ai_model,
        timeout=settings.ai_timeout_seconds,
        max_retries=settings.ai_max_retries,
        backoff_seconds=settings.ai_backoff_seconds,
        transport=transport,
    )
